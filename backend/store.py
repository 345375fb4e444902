# store.py
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from backend.errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)

COLLECTION_NAME = "product_details"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _object_id(product_id: str) -> ObjectId:
    try:
        return ObjectId(str(product_id))
    except (InvalidId, TypeError):
        raise NotFoundError("Product not found")


def _iso(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            # pymongo hands back naive UTC datetimes by default
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return str(value)


def serialize_product(doc: Dict) -> Dict:
    return {
        "_id": str(doc["_id"]),
        "initialDescription": doc.get("initialDescription", ""),
        "details": [
            {
                "question": d.get("question", ""),
                "answer": d.get("answer", ""),
                "transparencyScore": int(d.get("transparencyScore", 0)),
            }
            for d in doc.get("details", [])
        ],
        "createdAt": _iso(doc.get("createdAt")),
        "updatedAt": _iso(doc.get("updatedAt")),
    }


class ProductStore:
    """
    Products live in a single collection. `details` is only ever grown with
    $push; initialDescription and createdAt are written once at insert.
    """

    def __init__(self, collection: Collection):
        self.collection = collection

    @classmethod
    def connect(cls, uri: str, db_name: str) -> "ProductStore":
        client = MongoClient(uri, serverSelectionTimeoutMS=10000)
        return cls(client[db_name][COLLECTION_NAME])

    def create(self, initial_description: str) -> Dict:
        now = _utcnow()
        doc = {
            "initialDescription": initial_description,
            "details": [],
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            result = self.collection.insert_one(doc)
        except PyMongoError as e:
            logger.error("Failed to create product: %s", e, exc_info=True)
            raise StoreError(str(e)) from e
        doc["_id"] = result.inserted_id
        logger.info("Created product %s", result.inserted_id)
        return serialize_product(doc)

    def get(self, product_id: str) -> Dict:
        oid = _object_id(product_id)
        try:
            doc = self.collection.find_one({"_id": oid})
        except PyMongoError as e:
            logger.error("Failed to fetch product %s: %s", product_id, e, exc_info=True)
            raise StoreError(str(e)) from e
        if doc is None:
            raise NotFoundError("Product not found")
        return serialize_product(doc)

    def list_all(self) -> List[Dict]:
        try:
            docs = self.collection.find().sort("updatedAt", DESCENDING)
            return [serialize_product(d) for d in docs]
        except PyMongoError as e:
            logger.error("Failed to list products: %s", e, exc_info=True)
            raise StoreError(str(e)) from e

    def append_detail(self, product_id: str, question: str, answer: str, transparency_score: int) -> Dict:
        oid = _object_id(product_id)
        detail = {
            "question": question,
            "answer": answer,
            "transparencyScore": int(transparency_score),
        }
        try:
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$push": {"details": detail}, "$set": {"updatedAt": _utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error("Failed to append detail to product %s: %s", product_id, e, exc_info=True)
            raise StoreError(str(e)) from e
        if doc is None:
            raise NotFoundError("Product not found")
        return serialize_product(doc)
