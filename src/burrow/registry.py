"""
Session Registry - persistent store of burrow sessions.

SessionStore is the narrow contract the lifecycle engine depends on.
JsonSessionStore keeps every record in a single JSON file guarded by fcntl
locks, re-reading under the exclusive lock before each write so concurrent
burrow processes don't overwrite each other's changes.
"""

import fcntl
import json
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from burrow.errors import NoRecyclableSessionError, SessionNotFoundError
from burrow.session import Session, SessionState


class SessionStore(ABC):
    """Key-addressed session records."""

    @abstractmethod
    def list(self) -> List[Session]:
        ...

    @abstractmethod
    def get(self, session_id: str) -> Session:
        """Raises SessionNotFoundError."""

    @abstractmethod
    def save(self, session: Session) -> None:
        """Insert or replace by id."""

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Raises SessionNotFoundError."""

    def find_recyclable(self, remote: str) -> Session:
        """First recycled session for remote. Raises NoRecyclableSessionError."""
        for sess in self.list():
            if sess.state == SessionState.RECYCLED and sess.remote == remote:
                return sess
        raise NoRecyclableSessionError(remote)


class JsonSessionStore(SessionStore):
    """
    Sessions persisted to ~/.burrow/sessions.json with file locking.

    Every call reads the file fresh, so each call sees a consistent snapshot
    and nothing is cached between calls.
    Note: File locking requires Unix-like systems.
    """

    def __init__(self, path: Optional[Path] = None, lock_timeout: float = 10):
        if path is None:
            path = Path.home() / '.burrow' / 'sessions.json'
        self.path = Path(path)
        self._lock_timeout = lock_timeout  # seconds

    def _read(self) -> List[Dict[str, Any]]:
        """Read records with a shared lock (allows concurrent reads)."""
        if not self.path.exists():
            return []
        with open(self.path, 'r') as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                content = f.read()
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        if not content.strip():
            return []
        return json.loads(content).get('sessions', [])

    def _update(self, mutate: Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]]) -> None:
        """Apply mutate to the on-disk records under an exclusive lock."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        start_time = time.time()
        while True:
            # O_CREAT without O_TRUNC so two first-time writers can't clobber each other
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
            with os.fdopen(fd, 'r+') as f:
                try:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    if time.time() - start_time > self._lock_timeout:
                        raise TimeoutError(
                            f"Could not acquire session store lock after {self._lock_timeout}s"
                        )
                    time.sleep(0.01)
                    continue

                try:
                    # Re-read so we apply our change to the latest records
                    f.seek(0)
                    content = f.read()
                    current = json.loads(content).get('sessions', []) if content.strip() else []

                    updated = mutate(current)

                    f.seek(0)
                    f.truncate()
                    json.dump({'sessions': updated}, f, indent=2)
                    f.flush()
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                break

    def list(self) -> List[Session]:
        return [Session.from_dict(d) for d in self._read()]

    def get(self, session_id: str) -> Session:
        for record in self._read():
            if record.get('id') == session_id:
                return Session.from_dict(record)
        raise SessionNotFoundError(session_id)

    def save(self, session: Session) -> None:
        record = session.to_dict()

        def upsert(records):
            for i, existing in enumerate(records):
                if existing.get('id') == session.id:
                    records[i] = record
                    return records
            records.append(record)
            return records

        self._update(upsert)

    def delete(self, session_id: str) -> None:
        found = []

        def remove(records):
            kept = [r for r in records if r.get('id') != session_id]
            if len(kept) != len(records):
                found.append(session_id)
            return kept

        self._update(remove)
        if not found:
            raise SessionNotFoundError(session_id)
