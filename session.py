"""
Caller identity for one UI session.

A SessionContext carries the signed-in user and the anonymous session id
used to scope temporary listings. When bound to a LocalStore it mirrors both
into the store's `current_user` / `session_id` slots, so a device session can
be restored later with `SessionContext.restore(store)`.
"""
import logging
import uuid
from typing import Optional

from store import CURRENT_USER_KEY, SESSION_ID_KEY, USERS
from schemas import User
from utils import timestamp_ms

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return f"session_{timestamp_ms()}_{uuid.uuid4().hex[:9]}"


class SessionContext:
    def __init__(self, store=None, user: Optional[User] = None, anonymous_id: Optional[str] = None):
        self.store = store
        self.user = user
        self.anonymous_id = anonymous_id
        self.closed = False

    @classmethod
    def restore(cls, store) -> "SessionContext":
        session = cls(store)
        session.open()
        return session

    def open(self):
        """Load the persisted pointers, when bound to a store."""
        self.closed = False
        if self.store is None:
            return self
        user_id = self.store.get_value(CURRENT_USER_KEY)
        if user_id and self.user is None:
            doc = self.store.get_by_id(USERS, user_id)
            self.user = User(**doc) if doc else None
        if self.anonymous_id is None:
            self.anonymous_id = self.store.get_value(SESSION_ID_KEY)
        return self

    def close(self):
        """Drop in-memory identity. Persisted pointers survive for the next restore."""
        self.user = None
        self.anonymous_id = None
        self.closed = True

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def sign_in(self, user: User):
        self.user = user
        if self.store is not None:
            self.store.set_value(CURRENT_USER_KEY, user.id)

    def sign_out(self):
        self.user = None
        if self.store is not None:
            self.store.clear_value(CURRENT_USER_KEY)

    def anonymous_session_id(self) -> str:
        """Current anonymous id, created on first use and stable until cleared."""
        if self.anonymous_id is None and self.store is not None:
            self.anonymous_id = self.store.get_value(SESSION_ID_KEY)
        if self.anonymous_id is None:
            self.anonymous_id = new_session_id()
            logger.info("New anonymous session %s", self.anonymous_id)
            if self.store is not None:
                self.store.set_value(SESSION_ID_KEY, self.anonymous_id)
        return self.anonymous_id

    def clear_anonymous(self):
        self.anonymous_id = None
        if self.store is not None:
            self.store.clear_value(SESSION_ID_KEY)
