"""Base domain model classes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field, PrivateAttr


def generate_id() -> str:
    """Generate a unique identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class ValueObject(BaseModel):
    """Base class for value objects (immutable)."""

    model_config = {"frozen": True}


class DomainEvent(BaseModel):
    """Base class for domain events."""

    event_id: str = Field(default_factory=generate_id)
    event_type: str = ""
    occurred_at: datetime = Field(default_factory=utc_now)
    correlation_id: str = ""

    model_config = {"frozen": True}


class AggregateRoot(BaseModel):
    """Base class for aggregates that emit domain events.

    ``revision`` increases on every mutation so that stores can detect
    lost updates; pending events are kept out of the serialized form.
    """

    id: str = Field(default_factory=generate_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    revision: int = 1

    _pending_events: list[DomainEvent] = PrivateAttr(default_factory=list)

    model_config = {"frozen": False, "validate_assignment": True}

    def touch(self) -> None:
        """Bump the revision and update timestamp."""
        self.updated_at = utc_now()
        self.revision += 1

    def record_event(self, event: DomainEvent) -> None:
        self._pending_events.append(event)

    def collect_events(self) -> list[DomainEvent]:
        """Collect and clear all pending domain events."""
        events = list(self._pending_events)
        self._pending_events.clear()
        return events

    @property
    def pending_events(self) -> list[DomainEvent]:
        return list(self._pending_events)
