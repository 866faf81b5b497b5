"""Booking-time screening rules.

This module implements the rule-based screening applied when a booking is
created.  Each rule inspects the raw session and device signals captured by
the booking flow and produces a score delta that feeds into the downstream
risk scorer, plus the risk flags it wants recorded on the booking.

Rules:
    BOT_SIGNALS           -- Automation signals reported by the client.
    NO_DEVICE_FINGERPRINT -- No fingerprint could be captured.
    SHORT_SESSION         -- Booking completed in under 30 seconds.
    LOW_INTERACTION       -- Fewer than 5 interactions during the session.
    HIGH_VALUE_BOOKING    -- Booking total above the screening threshold.
    LAST_MINUTE_BOOKING   -- Trip starts less than a day after booking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from riskgate.config import Settings, settings
from riskgate.models.database import as_utc, utcnow
from riskgate.pipeline.flags import RiskFlag

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RuleResult:
    """Immutable result produced by a single screening rule.

    Attributes:
        rule_name: Canonical identifier for the rule (e.g. ``"SHORT_SESSION"``).
        triggered: True when the booking matched the rule.
        score_delta: Contribution to the screening score; zero when not triggered.
        reason: Operator-facing note on what the rule saw.
        flags: Risk flags to record on the booking when triggered.
    """

    rule_name: str
    triggered: bool
    score_delta: int
    reason: str
    flags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ScreeningConfig:
    short_session_ms: int = 30_000
    low_interaction_count: int = 5
    high_value_total: float = 1000.0

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> ScreeningConfig:
        return cls(
            short_session_ms=cfg.SHORT_SESSION_MS,
            low_interaction_count=cfg.LOW_INTERACTION_COUNT,
            high_value_total=cfg.SCREENING_HIGH_VALUE_TOTAL,
        )


@dataclass(frozen=True, slots=True)
class ScreeningInput:
    """Raw signals captured by the booking flow."""

    booking_code: str
    device_fingerprint: str | None = None
    session_duration_ms: int | None = None
    interaction_count: int | None = None
    total_amount: float = 0.0
    start_date: datetime | None = None
    bot_signals: tuple[str, ...] = field(default_factory=tuple)
    booked_at: datetime | None = None


class RulesEngine:
    """Orchestrates evaluation of all screening rules against a booking.

    Usage::

        engine = RulesEngine()
        results = engine.evaluate_all(screening_input)
    """

    def __init__(self, config: ScreeningConfig | None = None) -> None:
        self.config = config or ScreeningConfig.from_settings()

    def evaluate_bot_signals(self, data: ScreeningInput) -> RuleResult:
        """Evaluate the BOT_SIGNALS rule.

        Fires when the client reported any automation signal (webdriver,
        headless browser, scripted input).  Every signal is recorded as a
        flag alongside the generic ``bot_signal`` flag.
        """
        signals = tuple(s for s in data.bot_signals if s)
        triggered = bool(signals)
        reason = (
            f"Client reported {len(signals)} automation signal(s): {list(signals)}"
            if triggered
            else "No automation signals reported"
        )
        logger.debug("BOT_SIGNALS rule: signals=%s, triggered=%s", signals, triggered)
        return RuleResult(
            rule_name="BOT_SIGNALS",
            triggered=triggered,
            score_delta=50 if triggered else 0,
            reason=reason,
            flags=(RiskFlag.BOT_SIGNAL.value, *signals) if triggered else (),
        )

    def evaluate_device_fingerprint(self, data: ScreeningInput) -> RuleResult:
        triggered = not data.device_fingerprint
        logger.debug("NO_DEVICE_FINGERPRINT rule: triggered=%s", triggered)
        return RuleResult(
            rule_name="NO_DEVICE_FINGERPRINT",
            triggered=triggered,
            score_delta=20 if triggered else 0,
            reason="No device fingerprint captured" if triggered else "Device fingerprint present",
            flags=(RiskFlag.NO_DEVICE_FINGERPRINT.value,) if triggered else (),
        )

    def evaluate_short_session(self, data: ScreeningInput) -> RuleResult:
        """Evaluate the SHORT_SESSION rule.

        Only fires when telemetry was captured; a missing duration is left
        to the recommendation stage.
        """
        duration = data.session_duration_ms
        triggered = duration is not None and duration < self.config.short_session_ms
        reason = (
            f"Session lasted {duration} ms "
            f"(threshold: {self.config.short_session_ms} ms)"
        )
        logger.debug("SHORT_SESSION rule: duration=%s, triggered=%s", duration, triggered)
        return RuleResult(
            rule_name="SHORT_SESSION",
            triggered=triggered,
            score_delta=15 if triggered else 0,
            reason=reason,
            flags=(RiskFlag.SHORT_SESSION.value,) if triggered else (),
        )

    def evaluate_low_interaction(self, data: ScreeningInput) -> RuleResult:
        count = data.interaction_count
        triggered = count is not None and count < self.config.low_interaction_count
        logger.debug("LOW_INTERACTION rule: count=%s, triggered=%s", count, triggered)
        return RuleResult(
            rule_name="LOW_INTERACTION",
            triggered=triggered,
            score_delta=10 if triggered else 0,
            reason=(
                f"{count} interaction(s) recorded "
                f"(threshold: {self.config.low_interaction_count})"
            ),
            flags=(RiskFlag.LOW_INTERACTION.value,) if triggered else (),
        )

    def evaluate_high_value(self, data: ScreeningInput) -> RuleResult:
        triggered = data.total_amount > self.config.high_value_total
        reason = (
            f"Total ${data.total_amount:.2f} "
            f"{'exceeds' if triggered else 'within'} "
            f"threshold ${self.config.high_value_total:.2f}"
        )
        logger.debug("HIGH_VALUE_BOOKING rule: triggered=%s", triggered)
        return RuleResult(
            rule_name="HIGH_VALUE_BOOKING",
            triggered=triggered,
            score_delta=10 if triggered else 0,
            reason=reason,
        )

    def evaluate_last_minute(self, data: ScreeningInput) -> RuleResult:
        """Evaluate the LAST_MINUTE_BOOKING rule.

        Uses the booking's own creation time as reference so replayed
        historical data is screened consistently.
        """
        if data.start_date is None:
            return RuleResult(
                rule_name="LAST_MINUTE_BOOKING",
                triggered=False,
                score_delta=0,
                reason="No start date supplied",
            )

        ref_time = as_utc(data.booked_at) or utcnow()
        lead_time = as_utc(data.start_date) - ref_time
        triggered = lead_time < timedelta(days=1)
        reason = f"Trip starts {lead_time.total_seconds() / 3600:.1f} hour(s) after booking"

        logger.debug("LAST_MINUTE_BOOKING rule: triggered=%s", triggered)
        return RuleResult(
            rule_name="LAST_MINUTE_BOOKING",
            triggered=triggered,
            score_delta=15 if triggered else 0,
            reason=reason,
        )

    def evaluate_all(self, data: ScreeningInput) -> list[RuleResult]:
        """Run every screening rule against a single booking.

        Rules are evaluated in a fixed order so the recorded flags keep a
        deterministic ordering.

        Args:
            data: The booking signals to evaluate.

        Returns:
            One ``RuleResult`` per registered rule, in registration order.
        """
        results: list[RuleResult] = [
            self.evaluate_bot_signals(data),
            self.evaluate_device_fingerprint(data),
            self.evaluate_short_session(data),
            self.evaluate_low_interaction(data),
            self.evaluate_high_value(data),
            self.evaluate_last_minute(data),
        ]
        triggered_names = [r.rule_name for r in results if r.triggered]
        logger.info(
            "Booking %s triggered %d screening rule(s): %s",
            data.booking_code,
            len(triggered_names),
            triggered_names,
        )
        return results
