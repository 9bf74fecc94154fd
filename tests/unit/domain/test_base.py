"""Unit tests for base domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from rollout.domain.models.base import (
    AggregateRoot,
    DomainEvent,
    generate_id,
    utc_now,
    ValueObject,
)


class TestGenerateId:
    def test_returns_string(self) -> None:
        assert isinstance(generate_id(), str)

    def test_unique(self) -> None:
        ids = {generate_id() for _ in range(100)}
        assert len(ids) == 100


class TestUtcNow:
    def test_returns_datetime(self) -> None:
        now = utc_now()
        assert now.tzinfo is not None


class TestAggregateRoot:
    def test_touch_bumps_revision(self) -> None:
        root = AggregateRoot()
        before = root.revision
        root.touch()
        assert root.revision == before + 1

    def test_collect_events_clears(self) -> None:
        root = AggregateRoot()
        root.record_event(DomainEvent(event_type="thing.happened"))
        assert len(root.pending_events) == 1
        events = root.collect_events()
        assert [e.event_type for e in events] == ["thing.happened"]
        assert root.pending_events == []

    def test_events_not_serialized(self) -> None:
        root = AggregateRoot()
        root.record_event(DomainEvent(event_type="thing.happened"))
        assert "_pending_events" not in root.model_dump()


class TestValueObject:
    def test_immutable(self) -> None:
        class Replicas(ValueObject):
            count: int

        r = Replicas(count=3)
        with pytest.raises(ValidationError):
            r.count = 4  # type: ignore[misc]
