"""
Shared fixtures: an in-memory product store, a scripted model engine and a
Flask test client wired to both.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from bson import ObjectId

from backend.app import create_app
from backend.config import Settings
from backend.errors import NotFoundError
from backend.sessions import ConversationManager, SessionStore


class InMemoryProductStore:
    """Same interface as backend.store.ProductStore, backed by a dict."""

    def __init__(self):
        self.products = {}
        self._tick = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _now(self):
        self._tick += timedelta(seconds=1)
        return self._tick

    def _public(self, p):
        return {
            "_id": p["_id"],
            "initialDescription": p["initialDescription"],
            "details": [dict(d) for d in p["details"]],
            "createdAt": p["createdAt"].isoformat(),
            "updatedAt": p["updatedAt"].isoformat(),
        }

    def create(self, initial_description):
        now = self._now()
        pid = str(ObjectId())
        self.products[pid] = {
            "_id": pid,
            "initialDescription": initial_description,
            "details": [],
            "createdAt": now,
            "updatedAt": now,
        }
        return self._public(self.products[pid])

    def get(self, product_id):
        if product_id not in self.products:
            raise NotFoundError("Product not found")
        return self._public(self.products[product_id])

    def list_all(self):
        ordered = sorted(self.products.values(), key=lambda p: p["updatedAt"], reverse=True)
        return [self._public(p) for p in ordered]

    def append_detail(self, product_id, question, answer, transparency_score):
        if product_id not in self.products:
            raise NotFoundError("Product not found")
        p = self.products[product_id]
        p["details"].append({"question": question, "answer": answer, "transparencyScore": transparency_score})
        p["updatedAt"] = self._now()
        return self._public(p)


@pytest.fixture
def settings():
    return Settings(mongodb_uri="mongodb://localhost:27017", openai_api_key="test-key", log_level="WARNING")


@pytest.fixture
def store():
    return InMemoryProductStore()


@pytest.fixture
def engine():
    """Model engine double; each call returns the next scripted reply."""
    engine = MagicMock()
    engine.generate_reply.side_effect = [
        "Question: Where are the raw materials sourced from? Feedback: 3 - Very little detail so far.",
        "Question: Which factory assembles it? Feedback: 6 - Origin is clearer now.",
        "Question: Is the packaging recyclable? Feedback: 8 - Good manufacturing detail.",
    ]
    return engine


@pytest.fixture
def sessions():
    return SessionStore(ttl_seconds=3600, max_entries=100)


@pytest.fixture
def manager(store, engine, sessions):
    return ConversationManager(store, engine, sessions)


@pytest.fixture
def app(settings, store, engine, sessions):
    app = create_app(settings, store=store, engine=engine, sessions=sessions)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
