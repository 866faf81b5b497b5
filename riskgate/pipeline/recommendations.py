"""Rule-based recommendations for operators.

The rule table is an ordered list of ``Rule`` entries evaluated in a single
pass.  Each rule that fires contributes one ``Recommendation``; the overall
priority is the highest priority among them.  The suggested disposition is
computed separately and is advisory only.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from riskgate.config import Settings, settings
from riskgate.pipeline.flags import is_bot_signal, is_disposable_email, is_vpn_or_proxy
from riskgate.pipeline.velocity import VelocityTier

logger = logging.getLogger(__name__)

AVAILABLE_ACTIONS: tuple[str, ...] = (
    "Approve booking",
    "Reject booking",
    "Request additional verification",
    "Flag for further review",
    "Add admin notes",
    "Contact guest",
    "Block device/IP",
    "Report to fraud database",
)

OVERRIDE_OPTIONS: tuple[str, ...] = (
    "Override risk score",
    "Approve despite high risk",
    "Whitelist email/device",
    "Mark as false positive",
)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[Priority, int] = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3}


class Disposition(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVIEW = "review"


@dataclass(frozen=True, slots=True)
class RecommendationThresholds:
    high_risk_score: int = 70
    reject_score: int = 85
    approve_score: int = 30
    monitor_session_ms: int = 120_000

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> RecommendationThresholds:
        return cls(
            high_risk_score=cfg.HIGH_RISK_SCORE_THRESHOLD,
            reject_score=cfg.REJECT_SCORE_THRESHOLD,
            approve_score=cfg.APPROVE_SCORE_THRESHOLD,
            monitor_session_ms=cfg.MONITOR_SESSION_MS,
        )


@dataclass(frozen=True, slots=True)
class RecommendationInput:
    """Everything the rule table reads.

    ``session_duration_ms`` of ``None`` means no telemetry was captured and
    is treated as a zero-length session.
    """

    score: int
    email_flags: list[str] = field(default_factory=list)
    device_flags: list[str] = field(default_factory=list)
    session_flags: list[str] = field(default_factory=list)
    location_flags: list[str] = field(default_factory=list)
    identity_flags: list[str] = field(default_factory=list)
    velocity_tier: VelocityTier = VelocityTier.NORMAL
    is_anomaly: bool = False
    license_verified: bool = False
    selfie_verified: bool = False
    session_duration_ms: int | None = None

    @property
    def has_bot_signal(self) -> bool:
        return any(is_bot_signal(f) for f in self.device_flags)


@dataclass(frozen=True, slots=True)
class Rule:
    name: str
    predicate: Callable[[RecommendationInput], bool]
    action: str
    reason: str
    priority: Priority


@dataclass(frozen=True, slots=True)
class Recommendation:
    rule: str
    action: str
    reason: str
    priority: Priority


@dataclass(frozen=True, slots=True)
class RecommendationResult:
    recommendations: list[Recommendation]
    priority: Priority | None
    disposition: Disposition


def build_rules(thresholds: RecommendationThresholds) -> list[Rule]:
    return [
        Rule(
            name="high_risk_score",
            predicate=lambda i: i.score >= thresholds.high_risk_score,
            action="Require additional verification",
            reason=f"Composite risk score is {thresholds.high_risk_score} or higher",
            priority=Priority.HIGH,
        ),
        Rule(
            name="bot_detected",
            predicate=lambda i: i.has_bot_signal,
            action="Reject booking",
            reason="Automated bot detected",
            priority=Priority.HIGH,
        ),
        Rule(
            name="critical_velocity",
            predicate=lambda i: i.velocity_tier is VelocityTier.CRITICAL,
            action="Review all related bookings",
            reason="Critical booking velocity on shared device, IP or email",
            priority=Priority.HIGH,
        ),
        Rule(
            name="vpn_or_proxy",
            predicate=lambda i: any(is_vpn_or_proxy(f) for f in i.location_flags),
            action="Verify actual location",
            reason="Booking placed through a VPN or proxy",
            priority=Priority.MEDIUM,
        ),
        Rule(
            name="disposable_email",
            predicate=lambda i: any(is_disposable_email(f) for f in i.email_flags),
            action="Request permanent email",
            reason="Guest email uses a disposable domain",
            priority=Priority.MEDIUM,
        ),
        Rule(
            name="documents_incomplete",
            predicate=lambda i: not (i.license_verified and i.selfie_verified),
            action="Complete document verification",
            reason="Driver license or selfie not verified",
            priority=Priority.MEDIUM,
        ),
        Rule(
            name="short_session",
            predicate=lambda i: (i.session_duration_ms or 0) < thresholds.monitor_session_ms,
            action="Monitor for unusual activity",
            reason="Booking session was unusually short",
            priority=Priority.LOW,
        ),
        Rule(
            name="statistical_anomaly",
            predicate=lambda i: i.is_anomaly,
            action="Flag for statistical review",
            reason="Score is an outlier against recent bookings",
            priority=Priority.LOW,
        ),
    ]


def highest_priority(recommendations: list[Recommendation]) -> Priority | None:
    if not recommendations:
        return None
    return max((r.priority for r in recommendations), key=lambda p: p.rank)


class RecommendationEngine:
    """Evaluates the rule table and suggests a disposition.

    Usage::

        engine = RecommendationEngine()
        result = engine.evaluate(RecommendationInput(score=72, ...))
        result.priority  # Priority.HIGH
    """

    def __init__(
        self,
        thresholds: RecommendationThresholds | None = None,
        rules: list[Rule] | None = None,
    ) -> None:
        self.thresholds = thresholds or RecommendationThresholds.from_settings()
        self.rules = rules if rules is not None else build_rules(self.thresholds)

    def recommend(self, data: RecommendationInput) -> list[Recommendation]:
        fired: list[Recommendation] = []
        for rule in self.rules:
            triggered = rule.predicate(data)
            logger.debug("Recommendation rule %s: triggered=%s", rule.name, triggered)
            if triggered:
                fired.append(
                    Recommendation(
                        rule=rule.name,
                        action=rule.action,
                        reason=rule.reason,
                        priority=rule.priority,
                    )
                )
        return fired

    def disposition(self, data: RecommendationInput) -> Disposition:
        if data.score >= self.thresholds.reject_score or data.has_bot_signal:
            return Disposition.REJECT
        if data.score <= self.thresholds.approve_score and data.velocity_tier is VelocityTier.NORMAL:
            return Disposition.APPROVE
        return Disposition.REVIEW

    def evaluate(self, data: RecommendationInput) -> RecommendationResult:
        recommendations = self.recommend(data)
        return RecommendationResult(
            recommendations=recommendations,
            priority=highest_priority(recommendations),
            disposition=self.disposition(data),
        )
