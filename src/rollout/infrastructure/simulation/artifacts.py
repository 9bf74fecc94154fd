"""Static artifact provider for development and testing."""

from __future__ import annotations

import hashlib

from rollout.domain.models.workload import ArtifactRef
from rollout.domain.ports.services import ArtifactProvider


class ArtifactNotFoundError(LookupError):
    pass


class StaticArtifactProvider(ArtifactProvider):
    """Resolves every version to ``{registry}:{version}`` unless marked missing."""

    def __init__(self, registry: str = "registry.local/app") -> None:
        self._registry = registry
        self._missing: set[str] = set()

    def mark_missing(self, version: str) -> None:
        self._missing.add(version)

    async def resolve(self, version: str, image: str | None = None) -> ArtifactRef:
        if version in self._missing:
            raise ArtifactNotFoundError(f"no artifact for version {version}")
        resolved = image or f"{self._registry}:{version}"
        digest = "sha256:" + hashlib.sha256(resolved.encode("utf-8")).hexdigest()
        return ArtifactRef(version=version, image=resolved, digest=digest)
