"""
In-process event bus for session lifecycle notifications.

Publishing is fire-and-forget: a failing handler is logged and never
propagates back into the lifecycle operation that published the event.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from burrow.session import Session

logger = logging.getLogger(__name__)

SESSION_CORRUPTED = "session.corrupted"
SESSION_CREATED = "session.created"
SESSION_DELETED = "session.deleted"
SESSION_RECYCLED = "session.recycled"
SESSION_RENAMED = "session.renamed"


@dataclass
class SessionCreatedPayload:
    session: Session


@dataclass
class SessionRecycledPayload:
    session: Session


@dataclass
class SessionDeletedPayload:
    session_id: str


@dataclass
class SessionRenamedPayload:
    session: Session
    old_name: str


@dataclass
class SessionCorruptedPayload:
    session: Session


Handler = Callable[[Any], None]


class EventBus:
    """Topic-keyed publish/subscribe."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register handler for topic. Returns an unsubscribe callable."""
        with self._lock:
            self._handlers[topic].append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._handlers[topic]:
                    self._handlers[topic].remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(topic, ()))

        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.warning("event handler for %s failed", topic, exc_info=True)

    def publish_session_created(self, session: Session) -> None:
        self.publish(SESSION_CREATED, SessionCreatedPayload(session=session))

    def publish_session_recycled(self, session: Session) -> None:
        self.publish(SESSION_RECYCLED, SessionRecycledPayload(session=session))

    def publish_session_deleted(self, session_id: str) -> None:
        self.publish(SESSION_DELETED, SessionDeletedPayload(session_id=session_id))

    def publish_session_renamed(self, session: Session, old_name: str) -> None:
        self.publish(SESSION_RENAMED, SessionRenamedPayload(session=session, old_name=old_name))

    def publish_session_corrupted(self, session: Session) -> None:
        self.publish(SESSION_CORRUPTED, SessionCorruptedPayload(session=session))
