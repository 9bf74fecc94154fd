"""Workload and artifact references shared with the control plane."""

from __future__ import annotations

from rollout.domain.models.base import ValueObject


class Workload(ValueObject):
    """One version of an application in one environment (a replica set)."""

    application: str
    environment: str
    version: str

    @property
    def name(self) -> str:
        return f"{self.application}-{self.environment}-{self.version}"

    def with_version(self, version: str) -> Workload:
        return self.model_copy(update={"version": version})


class ArtifactRef(ValueObject):
    """A resolved, deployable artifact for a version."""

    version: str
    image: str
    digest: str = ""
