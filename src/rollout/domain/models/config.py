"""Deployment configuration: the immutable release intent.

A ``DeploymentConfig`` is created once per release by an operator or CI
system and is never mutated; the orchestrator only reads it. Strategy
parameters are a tagged union discriminated on ``kind`` so that exactly
one strategy implementation is selected when a rollout starts.
"""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import Field, field_validator, model_validator

from rollout.domain.models.base import ValueObject


_PERCENT_PATTERN = re.compile(r"^(\d{1,3})%$")
_NAME_PATTERN = r"^[a-z0-9][a-z0-9-]*$"


class StrategyKind(str, Enum):
    """Supported rollout strategies."""

    ROLLING = "rolling"
    BLUE_GREEN = "blue_green"
    CANARY = "canary"
    RECREATE = "recreate"


def resolve_replica_quantity(value: int | str, replicas: int, *, round_up: bool) -> int:
    """Resolve an absolute count or a ``"NN%"`` string against ``replicas``."""
    if isinstance(value, int):
        return value
    match = _PERCENT_PATTERN.match(value)
    if match is None:
        raise ValueError(f"Invalid replica quantity: {value!r}")
    raw = replicas * int(match.group(1)) / 100
    return math.ceil(raw) if round_up else math.floor(raw)


class RollingParams(ValueObject):
    kind: Literal["rolling"] = "rolling"
    max_surge: int | str = 1
    max_unavailable: int | str = 0

    @field_validator("max_surge", "max_unavailable")
    @classmethod
    def check_quantity(cls, value: int | str) -> int | str:
        if isinstance(value, int):
            if value < 0:
                raise ValueError("replica quantities must be >= 0")
            return value
        match = _PERCENT_PATTERN.match(value)
        if match is None or int(match.group(1)) > 100:
            raise ValueError(f"expected an integer or a percentage like '25%', got {value!r}")
        return value

    def resolve(self, replicas: int) -> tuple[int, int]:
        """Return ``(max_surge, max_unavailable)`` as absolute replica counts.

        Surge rounds up and unavailability rounds down, so a percentage
        never makes a rollout less available than requested.
        """
        surge = resolve_replica_quantity(self.max_surge, replicas, round_up=True)
        unavailable = resolve_replica_quantity(self.max_unavailable, replicas, round_up=False)
        return surge, min(unavailable, replicas)


class BlueGreenParams(ValueObject):
    kind: Literal["blue_green"] = "blue_green"
    validation_timeout_seconds: float = Field(default=300.0, gt=0)
    health_check_interval_seconds: float = Field(default=10.0, gt=0)


class CanaryStep(ValueObject):
    traffic_percent: int = Field(..., ge=1, le=100)
    hold_seconds: float = Field(default=60.0, ge=0)


class CanaryParams(ValueObject):
    kind: Literal["canary"] = "canary"
    steps: list[CanaryStep] = Field(..., min_length=1)
    success_threshold: float = Field(default=7.0, ge=0, le=10)

    @field_validator("steps")
    @classmethod
    def check_increasing(cls, steps: list[CanaryStep]) -> list[CanaryStep]:
        percents = [s.traffic_percent for s in steps]
        if any(b <= a for a, b in zip(percents, percents[1:])):
            raise ValueError("canary steps must have strictly increasing traffic_percent")
        return steps


class RecreateParams(ValueObject):
    kind: Literal["recreate"] = "recreate"
    drain_seconds: float = Field(default=0.0, ge=0)


StrategyParams = Annotated[
    Union[RollingParams, BlueGreenParams, CanaryParams, RecreateParams],
    Field(discriminator="kind"),
]


class MigrationSpec(ValueObject):
    """A schema change applied before the first stage of a rollout."""

    id: str = Field(..., min_length=1)
    description: str = ""
    apply_sql: str = Field(..., min_length=1)
    rollback_sql: str | None = None

    @property
    def reversible(self) -> bool:
        return bool(self.rollback_sql)


class QualityThresholds(ValueObject):
    required: bool = False
    required_pre_deploy: bool = False
    min_score: float = Field(default=7.0, ge=0, le=10)
    ignore_blockers: list[str] = Field(default_factory=list)


class RollbackThresholds(ValueObject):
    max_error_rate: float = Field(default=0.05, ge=0, le=1)
    max_p95_latency_ms: float = Field(default=1000.0, gt=0)
    min_quality_score: float | None = Field(default=None, ge=0, le=10)


class DeploymentConfig(ValueObject):
    application: str = Field(..., min_length=1, max_length=63, pattern=_NAME_PATTERN)
    environment: str = Field(..., min_length=1, max_length=63, pattern=_NAME_PATTERN)
    version: str = Field(..., min_length=1, max_length=128)
    image: str | None = None
    replicas: int = Field(..., ge=1, le=1000)
    strategy: StrategyParams = Field(default_factory=RollingParams)
    stage_timeout_seconds: float = Field(default=300.0, gt=0)
    deployment_timeout_seconds: float = Field(default=3600.0, gt=0)
    monitoring_window_seconds: float = Field(default=300.0, ge=0)
    probe_window_seconds: float = Field(default=5.0, ge=0)
    migration: MigrationSpec | None = None
    quality: QualityThresholds = Field(default_factory=QualityThresholds)
    rollback_trigger: RollbackThresholds = Field(default_factory=RollbackThresholds)
    auto_rollback: bool = True
    dry_run: bool = False
    metadata: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_strategy(self) -> DeploymentConfig:
        if isinstance(self.strategy, RollingParams):
            surge, _ = self.strategy.resolve(self.replicas)
            if surge < 1:
                raise ValueError("rolling max_surge must resolve to at least one replica")
        return self

    @property
    def strategy_kind(self) -> StrategyKind:
        return StrategyKind(self.strategy.kind)
