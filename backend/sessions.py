# sessions.py
import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from backend.errors import ValidationError
from gpt_engine import format_model_turn, parse_reply
from utils import ROLE_MODEL, ROLE_USER, ConversationSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default_user_session"


def normalize_session_id(session_id: Optional[str]) -> str:
    # callers without the header all share the fallback session
    return (session_id or "").strip() or DEFAULT_SESSION_ID


class SessionStore:
    """
    In-memory conversation sessions with:
    - sliding TTL (expires ttl_seconds after last touch)
    - a cap on live sessions; the least recently touched one is evicted first
    - a lock per session so requests for the same key run one at a time
    """

    def __init__(self, ttl_seconds: int, max_entries: int, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        # session_id -> {"session": ConversationSession, "lock": threading.Lock, "users": int}
        self._items: "OrderedDict[str, Dict[str, object]]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _get_or_create_unlocked(self, session_id: str) -> Dict[str, object]:
        now = self._clock()
        item = self._items.get(session_id)

        if item is not None:
            session = item["session"]
            if session.expires_at > now or item["users"]:
                session.expires_at = now + self.ttl_seconds
                self._items.move_to_end(session_id)
                return item
            # expired -> replace
            del self._items[session_id]

        item = {
            "session": ConversationSession(session_id=session_id, expires_at=now + self.ttl_seconds),
            "lock": threading.Lock(),
            "users": 0,
        }
        self._items[session_id] = item
        self._evict_idle_unlocked(keep=session_id)
        return item

    def _evict_idle_unlocked(self, keep: str) -> None:
        # checked-out sessions are never evicted; the map may overshoot until they are released
        overflow = len(self._items) - self.max_entries
        if overflow <= 0:
            return
        idle = [k for k, v in self._items.items() if v["users"] == 0 and k != keep][:overflow]
        for k in idle:
            del self._items[k]
            logger.info("Evicted session %s (capacity %d)", k, self.max_entries)

    def get(self, session_id: str) -> ConversationSession:
        with self._lock:
            return self._get_or_create_unlocked(session_id)["session"]

    @contextmanager
    def checkout(self, session_id: str) -> Iterator[ConversationSession]:
        """Yield the session with its per-session lock held."""
        with self._lock:
            item = self._get_or_create_unlocked(session_id)
            item["users"] += 1
        try:
            with item["lock"]:
                yield item["session"]
        finally:
            with self._lock:
                item["users"] -= 1

    def sweep_expired(self) -> int:
        """
        Delete expired sessions.
        Returns how many entries were removed.
        """
        now = self._clock()
        with self._lock:
            expired = [
                k for k, v in self._items.items() if v["users"] == 0 and v["session"].expires_at <= now
            ]
            for k in expired:
                del self._items[k]
        return len(expired)


class ConversationManager:
    """
    Ties sessions, the model and the product store together. Product details
    are the durable record; session history is rebuilt from them on demand.
    """

    def __init__(self, store, engine, sessions: SessionStore, max_input_chars: int = 2000):
        self.store = store
        self.engine = engine
        self.sessions = sessions
        self.max_input_chars = max_input_chars

    def resolve_session(self, session_id: Optional[str]) -> ConversationSession:
        return self.sessions.get(normalize_session_id(session_id))

    def attach_product(self, session: ConversationSession, product_id: str) -> None:
        """
        Link the session to a stored product and replay its details as history:
        the initial description as a user turn, then for each detail a model
        turn carrying the question and score followed by a user turn with the
        answer. No-op if the session already has a product.
        """
        if session.linked_product_id:
            return

        product = self.store.get(product_id)
        session.link_product(product["_id"], product["initialDescription"])
        session.history = []
        session.record_turn(ROLE_USER, product["initialDescription"])
        for detail in product["details"]:
            session.record_turn(
                ROLE_MODEL,
                format_model_turn(detail["question"], detail["transparencyScore"], detail["answer"]),
            )
            session.record_turn(ROLE_USER, detail["answer"])
        logger.info(
            "Session %s attached to product %s (%d details replayed)",
            session.session_id, product["_id"], len(product["details"]),
        )

    def record_turn(self, session: ConversationSession, role: str, text: str) -> None:
        session.record_turn(role, text)

    def commit_product_update(self, session: ConversationSession, user_input: str) -> Dict:
        """
        Persist the effect of one user turn. The first input of a session is the
        product being described, so it only creates the product shell. Every
        later input answers the most recent model question and appends one
        detail. Must run before the new turns are recorded.
        """
        if not session.linked_product_id:
            product = self.store.create(user_input)
            session.link_product(product["_id"], user_input)
            return product

        previous = parse_reply(session.last_model_turn())
        return self.store.append_detail(
            session.linked_product_id,
            question=previous.question,
            answer=user_input,
            transparency_score=previous.transparency_score,
        )

    def generate_question(self, session_id: Optional[str], user_input, product_id: Optional[str] = None) -> Dict:
        text = user_input.strip() if isinstance(user_input, str) else ""
        if not text:
            raise ValidationError("User input (product description/answer) is required")
        text = text[: self.max_input_chars]

        with self.sessions.checkout(normalize_session_id(session_id)) as session:
            if product_id:
                self.attach_product(session, str(product_id))

            reply = self.engine.generate_reply(list(session.history), text)
            parsed = parse_reply(reply)

            self.commit_product_update(session, text)
            self.record_turn(session, ROLE_USER, text)
            self.record_turn(session, ROLE_MODEL, reply)

            return {
                "question": {"text": parsed.question, "type": "text"},
                "feedback": parsed.feedback,
                "transparencyScore": parsed.transparency_score,
                "productId": session.linked_product_id,
                "conversationHistory": session.wire_history(),
            }
