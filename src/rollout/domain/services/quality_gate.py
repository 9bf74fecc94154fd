"""Quality gate evaluation."""

from __future__ import annotations

from rollout.domain.models.config import QualityThresholds
from rollout.domain.models.quality import GateResult, NO_QUALITY_DATA, QualityCheck


def evaluate_quality_gate(
    check: QualityCheck | None,
    thresholds: QualityThresholds,
    min_score: float | None = None,
) -> GateResult:
    """Decide pass/fail for a quality check.

    Fails closed when a check is required and missing. Blockers always fail
    unless explicitly ignored. ``min_score`` overrides the configured
    threshold, which canary steps use for their success threshold.
    """
    floor = thresholds.min_score if min_score is None else min_score

    if check is None:
        if thresholds.required:
            return GateResult(passed=False, reasons=[NO_QUALITY_DATA])
        return GateResult(passed=True, reasons=["quality check not required"])

    reasons: list[str] = []
    ignored = set(thresholds.ignore_blockers)
    blockers = [b for b in check.blockers if b not in ignored]
    for blocker in blockers:
        reasons.append(f"blocker: {blocker}")
    if check.score < floor:
        reasons.append(f"score {check.score:.1f} below minimum {floor:.1f}")

    return GateResult(
        passed=not reasons,
        reasons=reasons,
        score=check.score,
        check_id=check.id,
    )
