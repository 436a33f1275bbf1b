"""
Session domain model.

A session is one provisioned workspace (full clone or worktree) hosting an
agent. State changes go through the guarded transition methods so the
recycle/corrupt/delete interplay stays auditable.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from burrow.errors import InvalidInputError, InvalidStateError

META_WORKTREE_BRANCH = "worktree_branch"

_NON_ALPHANUMERIC = re.compile(r'[^a-z0-9]+')


def slugify(name: str) -> str:
    """
    Convert a display name to a path/URL-safe slug.

    "My Session Name" -> "my-session-name"
    """
    slug = _NON_ALPHANUMERIC.sub('-', name.strip().lower())
    return slug.strip('-')


class SessionState(Enum):
    """Lifecycle state of a session."""

    ACTIVE = "active"
    RECYCLED = "recycled"
    CORRUPTED = "corrupted"


class CloneStrategy(Enum):
    """How a session's workspace was provisioned."""

    FULL = "full"
    WORKTREE = "worktree"

    @classmethod
    def parse(cls, value: Optional[str]) -> "CloneStrategy":
        """Parse a stored or configured value; empty means FULL (legacy records)."""
        if value is None or value == "":
            return cls.FULL
        if isinstance(value, CloneStrategy):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidInputError(
                f"unknown clone strategy {value!r} (expected 'full' or 'worktree')"
            )


@dataclass
class Session:
    """An isolated git workspace for an AI agent."""

    id: str
    name: str
    slug: str
    path: str
    remote: str
    state: SessionState = SessionState.ACTIVE
    clone_strategy: CloneStrategy = CloneStrategy.FULL
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def new(cls, session_id: str, name: str, path: str, remote: str,
            strategy: CloneStrategy = CloneStrategy.FULL,
            now: Optional[datetime] = None) -> "Session":
        """Create an active session and validate it."""
        now = now or datetime.now()
        sess = cls(
            id=session_id,
            name=name,
            slug=slugify(name),
            path=path,
            remote=remote,
            state=SessionState.ACTIVE,
            clone_strategy=strategy,
            created_at=now,
            updated_at=now,
        )
        sess.validate()
        return sess

    def validate(self) -> None:
        """Raise InvalidInputError if a required field is missing."""
        if not self.id:
            raise InvalidInputError("id is required")
        if not self.name:
            raise InvalidInputError("name is required")
        if not self.path:
            raise InvalidInputError("path is required")
        if not self.remote:
            raise InvalidInputError("remote is required")
        if not isinstance(self.state, SessionState):
            raise InvalidInputError(f"invalid state {self.state!r}")

    def get_meta(self, key: str) -> str:
        return self.metadata.get(key, "")

    def set_meta(self, key: str, value: str) -> None:
        self.metadata[key] = value

    def can_recycle(self) -> bool:
        return self.state == SessionState.ACTIVE

    def mark_recycled(self, now: datetime) -> None:
        """active -> recycled"""
        if not self.can_recycle():
            raise InvalidStateError(
                f"session {self.id} cannot be recycled (state: {self.state.value})"
            )
        self.state = SessionState.RECYCLED
        self.updated_at = now

    def mark_corrupted(self, now: datetime) -> None:
        """active|recycled -> corrupted"""
        if self.state not in (SessionState.ACTIVE, SessionState.RECYCLED):
            raise InvalidStateError(
                f"session {self.id} cannot be marked corrupted (state: {self.state.value})"
            )
        self.state = SessionState.CORRUPTED
        self.updated_at = now

    def reactivate(self, name: str, now: datetime) -> None:
        """recycled -> active, taking on the new display name."""
        if self.state != SessionState.RECYCLED:
            raise InvalidStateError(
                f"session {self.id} cannot be reactivated (state: {self.state.value})"
            )
        self.name = name
        self.slug = slugify(name)
        self.state = SessionState.ACTIVE
        self.updated_at = now

    def rename(self, name: str, now: datetime) -> None:
        """Change name and slug. Path never changes."""
        self.name = name
        self.slug = slugify(name)
        self.updated_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'path': self.path,
            'remote': self.remote,
            'state': self.state.value,
            'clone_strategy': self.clone_strategy.value,
            'metadata': dict(self.metadata),
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            slug=data.get('slug') or slugify(data.get('name', '')),
            path=data.get('path', ''),
            remote=data.get('remote', ''),
            state=SessionState(data.get('state', SessionState.ACTIVE.value)),
            clone_strategy=CloneStrategy.parse(data.get('clone_strategy')),
            metadata=dict(data.get('metadata') or {}),
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
        )
