"""Risk scoring for booking-time screening.

Aggregates individual screening rule results into a single composite risk
score, decides whether the booking needs manual review or should be
blocked outright, and provides a per-rule breakdown for the audit trail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from riskgate.config import Settings, settings
from riskgate.pipeline.rules_engine import RuleResult

logger = logging.getLogger(__name__)


def risk_level(score: int) -> str:
    """Map a composite score to ``low``, ``medium``, ``high`` or ``critical``."""
    if score < 30:
        return "low"
    if score < 50:
        return "medium"
    if score < 70:
        return "high"
    return "critical"


@dataclass(frozen=True, slots=True)
class ScoreResult:
    """Composite risk assessment for a single booking.

    Attributes:
        risk_score: Sum of fired rule deltas, at most 100.
        risk_level: Level derived from ``risk_score``.
        triggered_rules: Names of rules that fired.
        flags: Risk flags contributed by the fired rules, in rule order.
        requires_manual_review: ``True`` when ``risk_score >= MANUAL_REVIEW_THRESHOLD``.
        should_block: ``True`` when ``risk_score >= BLOCK_THRESHOLD``.
        breakdown: Score delta per fired rule.
    """

    risk_score: int
    risk_level: str = "low"
    triggered_rules: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)
    requires_manual_review: bool = False
    should_block: bool = False
    breakdown: dict[str, int] = field(default_factory=dict)


class RiskScorer:
    """Folds screening results into one capped score with review and block
    decisions.

    Usage::

        outcome = RiskScorer().calculate(RulesEngine().evaluate_all(screening))
        if outcome.should_block:
            ...
    """

    def __init__(
        self,
        review_threshold: int | None = None,
        block_threshold: int | None = None,
        cfg: Settings = settings,
    ) -> None:
        self.review_threshold = (
            review_threshold if review_threshold is not None else cfg.MANUAL_REVIEW_THRESHOLD
        )
        self.block_threshold = block_threshold if block_threshold is not None else cfg.BLOCK_THRESHOLD

    def calculate(self, rule_results: list[RuleResult]) -> ScoreResult:
        """Sum the deltas of fired rules; flags keep rule order without repeats."""
        triggered_rules: list[str] = []
        flags: list[str] = []
        breakdown: dict[str, int] = {}
        raw_score: int = 0

        for result in rule_results:
            if result.triggered:
                triggered_rules.append(result.rule_name)
                breakdown[result.rule_name] = result.score_delta
                raw_score += result.score_delta
                flags.extend(f for f in result.flags if f not in flags)

        capped_score = min(raw_score, 100)
        requires_review = capped_score >= self.review_threshold
        should_block = capped_score >= self.block_threshold

        logger.info(
            "Risk score: %d (raw=%d, review=%s, block=%s, rules=%s)",
            capped_score,
            raw_score,
            requires_review,
            should_block,
            triggered_rules,
        )

        return ScoreResult(
            risk_score=capped_score,
            risk_level=risk_level(capped_score),
            triggered_rules=triggered_rules,
            flags=flags,
            requires_manual_review=requires_review,
            should_block=should_block,
            breakdown=breakdown,
        )
