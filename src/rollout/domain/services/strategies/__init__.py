"""Rollout strategies, one implementation per strategy kind."""

from __future__ import annotations

from rollout.domain.models.config import (
    BlueGreenParams,
    CanaryParams,
    DeploymentConfig,
    RecreateParams,
    RollingParams,
)
from rollout.domain.services.strategies.base import StageContext, Strategy
from rollout.domain.services.strategies.blue_green import BlueGreenStrategy
from rollout.domain.services.strategies.canary import CanaryStrategy
from rollout.domain.services.strategies.recreate import RecreateStrategy
from rollout.domain.services.strategies.rolling import RollingStrategy


def select_strategy(config: DeploymentConfig) -> Strategy:
    """Pick the strategy implementation for a config's parameters."""
    params = config.strategy
    if isinstance(params, RollingParams):
        return RollingStrategy(params)
    if isinstance(params, BlueGreenParams):
        return BlueGreenStrategy(params)
    if isinstance(params, CanaryParams):
        return CanaryStrategy(params)
    if isinstance(params, RecreateParams):
        return RecreateStrategy(params)
    raise ValueError(f"Unsupported strategy parameters: {type(params).__name__}")


__all__ = [
    "BlueGreenStrategy",
    "CanaryStrategy",
    "RecreateStrategy",
    "RollingStrategy",
    "select_strategy",
    "StageContext",
    "Strategy",
]
