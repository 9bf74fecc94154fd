"""Quality check records and gate results."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from rollout.domain.models.base import generate_id, utc_now, ValueObject


NO_QUALITY_DATA = "no-quality-data"


class QualityCheck(ValueObject):
    """A quality analysis computed by an external analyzer for one artifact."""

    id: str = Field(default_factory=generate_id)
    score: float = Field(..., ge=0, le=10)
    passed: bool
    blockers: list[str] = Field(default_factory=list)
    artifact: str = ""
    created_at: datetime = Field(default_factory=utc_now)


class GateResult(ValueObject):
    passed: bool
    reasons: list[str] = Field(default_factory=list)
    score: float | None = None
    check_id: str | None = None
