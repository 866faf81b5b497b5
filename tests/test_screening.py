"""Tests for booking-time screening rules and the screening scorer."""
from datetime import datetime, timedelta, timezone

import pytest

from riskgate.pipeline.risk_scorer import RiskScorer, risk_level
from riskgate.pipeline.rules_engine import RulesEngine, ScreeningConfig, ScreeningInput

BOOKED_AT = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def screening(**overrides) -> ScreeningInput:
    values = {
        "booking_code": "BK-TEST",
        "device_fingerprint": "dev-1",
        "session_duration_ms": 240_000,
        "interaction_count": 30,
        "total_amount": 300.0,
        "start_date": BOOKED_AT + timedelta(days=5),
        "booked_at": BOOKED_AT,
    }
    values.update(overrides)
    return ScreeningInput(**values)


@pytest.fixture
def engine() -> RulesEngine:
    return RulesEngine(ScreeningConfig())


class TestRulesEngine:
    def test_clean_booking_triggers_nothing(self, engine: RulesEngine) -> None:
        results = engine.evaluate_all(screening())

        assert [r.rule_name for r in results] == [
            "BOT_SIGNALS",
            "NO_DEVICE_FINGERPRINT",
            "SHORT_SESSION",
            "LOW_INTERACTION",
            "HIGH_VALUE_BOOKING",
            "LAST_MINUTE_BOOKING",
        ]
        assert not any(r.triggered for r in results)

    def test_bot_signals_record_each_signal(self, engine: RulesEngine) -> None:
        result = engine.evaluate_bot_signals(screening(bot_signals=("webdriver_detected",)))

        assert result.triggered
        assert result.score_delta == 50
        assert result.flags == ("bot_signal", "webdriver_detected")

    def test_missing_fingerprint(self, engine: RulesEngine) -> None:
        result = engine.evaluate_device_fingerprint(screening(device_fingerprint=None))

        assert result.triggered
        assert result.flags == ("no_device_fingerprint",)

    def test_short_session_needs_telemetry(self, engine: RulesEngine) -> None:
        assert engine.evaluate_short_session(screening(session_duration_ms=29_999)).triggered
        assert not engine.evaluate_short_session(screening(session_duration_ms=30_000)).triggered
        assert not engine.evaluate_short_session(screening(session_duration_ms=None)).triggered

    def test_low_interaction(self, engine: RulesEngine) -> None:
        assert engine.evaluate_low_interaction(screening(interaction_count=4)).triggered
        assert not engine.evaluate_low_interaction(screening(interaction_count=None)).triggered

    def test_high_value_is_strict(self, engine: RulesEngine) -> None:
        assert not engine.evaluate_high_value(screening(total_amount=1000.0)).triggered
        assert engine.evaluate_high_value(screening(total_amount=1000.01)).triggered

    def test_last_minute_uses_booking_time(self, engine: RulesEngine) -> None:
        soon = screening(start_date=BOOKED_AT + timedelta(hours=6))
        later = screening(start_date=BOOKED_AT + timedelta(days=2))

        assert engine.evaluate_last_minute(soon).triggered
        assert not engine.evaluate_last_minute(later).triggered
        assert not engine.evaluate_last_minute(screening(start_date=None)).triggered


class TestRiskScorer:
    def test_scripted_booking_is_blocked(self, engine: RulesEngine) -> None:
        data = screening(
            bot_signals=("headless_browser",),
            session_duration_ms=5_000,
            interaction_count=2,
            start_date=BOOKED_AT + timedelta(hours=2),
        )

        result = RiskScorer().calculate(engine.evaluate_all(data))

        assert result.risk_score == 90
        assert result.risk_level == "critical"
        assert result.should_block is True
        assert result.requires_manual_review is True
        assert result.triggered_rules == [
            "BOT_SIGNALS",
            "SHORT_SESSION",
            "LOW_INTERACTION",
            "LAST_MINUTE_BOOKING",
        ]
        assert result.flags == ["bot_signal", "headless_browser", "short_session", "low_interaction"]
        assert result.breakdown["BOT_SIGNALS"] == 50

    def test_score_is_capped(self, engine: RulesEngine) -> None:
        data = screening(
            bot_signals=("webdriver_detected",),
            device_fingerprint=None,
            session_duration_ms=1_000,
            interaction_count=0,
            total_amount=5_000.0,
            start_date=BOOKED_AT,
        )

        result = RiskScorer().calculate(engine.evaluate_all(data))

        assert result.risk_score == 100

    def test_thresholds(self, engine: RulesEngine) -> None:
        data = screening(bot_signals=("bot_signal",), device_fingerprint=None)

        result = RiskScorer(review_threshold=60, block_threshold=85).calculate(engine.evaluate_all(data))

        assert result.risk_score == 70
        assert result.requires_manual_review is True
        assert result.should_block is False

    @pytest.mark.parametrize(
        "score, level",
        [(0, "low"), (29, "low"), (30, "medium"), (49, "medium"), (50, "high"), (69, "high"), (70, "critical")],
    )
    def test_risk_level(self, score: int, level: str) -> None:
        assert risk_level(score) == level
