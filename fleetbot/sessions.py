"""
Scratch state of an in-flight workflow, one per operator per bot.

The store lives in process memory. A session left behind by an abandoned
conversation expires after ``ttl_seconds`` without a step.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from .models import utcnow


class Role(str, Enum):
    self_service = "self_service"
    administrator = "administrator"


class WorkflowState(str, Enum):
    selecting_vehicle = "selecting_vehicle"
    selecting_assignee = "selecting_assignee"
    selecting_destination = "selecting_destination"
    committing = "committing"


@dataclass
class WorkflowSession:
    state: Optional[WorkflowState] = None
    vehicle_name: Optional[str] = None
    assignee_id: Optional[int] = None
    assignee_name: Optional[str] = None
    assignee_telegram_id: Optional[int] = None
    destination: Optional[str] = None
    touched_at: datetime = field(default_factory=utcnow)

    def set(self, name: str, value: Any) -> None:
        if name not in _FIELDS:
            raise KeyError(name)
        setattr(self, name, value)

    def get(self, name: str) -> Any:
        if name not in _FIELDS:
            raise KeyError(name)
        return getattr(self, name)

    def clear(self) -> None:
        for name in _FIELDS:
            setattr(self, name, None)

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in _FIELDS)


_FIELDS = tuple(f.name for f in fields(WorkflowSession) if f.name != "touched_at")


class SessionStore:
    def __init__(self, ttl_seconds: int = 3600, clock=utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._sessions: dict[tuple[Role, int], WorkflowSession] = {}

    def open(self, role: Role, operator_id: int) -> WorkflowSession:
        """Start a fresh session, dropping whatever the operator had before."""
        session = WorkflowSession(touched_at=self.clock())
        self._sessions[(role, operator_id)] = session
        return session

    def get(self, role: Role, operator_id: int) -> WorkflowSession | None:
        key = (role, operator_id)
        session = self._sessions.get(key)
        if session is None:
            return None
        now = self.clock()
        if now - session.touched_at > self.ttl:
            del self._sessions[key]
            return None
        session.touched_at = now
        return session

    def clear(self, role: Role, operator_id: int) -> None:
        session = self._sessions.pop((role, operator_id), None)
        if session is not None:
            session.clear()

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [key for key, s in self._sessions.items() if now - s.touched_at > self.ttl]
        for key in expired:
            del self._sessions[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)
