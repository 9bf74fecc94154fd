"""Static quality analyzer for development and testing."""

from __future__ import annotations

from rollout.domain.models.quality import QualityCheck
from rollout.domain.ports.services import QualityAnalyzer


class StaticQualityAnalyzer(QualityAnalyzer):
    """Serves preset quality checks per (application, version).

    A scripted sequence is consumed one check per lookup and its last entry
    repeats, which lets a score drift while a rollout is in progress.
    """

    def __init__(self) -> None:
        self._checks: dict[tuple[str, str], list[QualityCheck]] = {}
        self.lookups: list[tuple[str, str]] = []

    def set_check(self, application: str, version: str, check: QualityCheck) -> None:
        self._checks[(application, version)] = [check]

    def script(self, application: str, version: str, checks: list[QualityCheck]) -> None:
        self._checks[(application, version)] = list(checks)

    async def latest_check(self, application: str, version: str) -> QualityCheck | None:
        self.lookups.append((application, version))
        checks = self._checks.get((application, version))
        if not checks:
            return None
        if len(checks) > 1:
            return checks.pop(0)
        return checks[0]
