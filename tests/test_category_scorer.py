"""Tests for flag classification and category scoring."""
import pytest

from riskgate.pipeline.category_scorer import CategoryScorer, CategoryWeights, partition_flags
from riskgate.pipeline.flags import (
    RiskCategory,
    RiskFlag,
    classify_flag,
    is_bot_signal,
    is_disposable_email,
    is_vpn_or_proxy,
)
from tests.factories import build_booking, build_fleet


class TestClassifyFlag:
    """Enumerated flags use their declared category; others match by keyword."""

    @pytest.mark.parametrize(
        "flag, category",
        [
            ("disposable_domain", RiskCategory.EMAIL),
            ("headless_browser", RiskCategory.DEVICE),
            ("copy_paste_used", RiskCategory.SESSION),
            ("tor_exit_node", RiskCategory.LOCATION),
            ("selfie_unverified", RiskCategory.IDENTITY),
        ],
    )
    def test_enumerated_flags(self, flag: str, category: RiskCategory) -> None:
        assert classify_flag(flag) is category
        assert RiskFlag(flag).category is category

    def test_keyword_fallback_for_unknown_flag(self) -> None:
        assert classify_flag("residential_proxy_suspected") is RiskCategory.LOCATION
        assert classify_flag("rapid_form_fill") is RiskCategory.SESSION

    def test_first_matching_category_wins(self) -> None:
        # "mail" (email) and "device" (device) both match; email is checked first.
        assert classify_flag("device_mail_mismatch") is RiskCategory.EMAIL

    def test_unmatched_flag_is_unclassified(self) -> None:
        assert classify_flag("weekend_booking") is None

    def test_predicates(self) -> None:
        assert is_bot_signal("bot_signal")
        assert is_bot_signal("webdriver_detected")
        assert is_bot_signal("automation_framework_seen")
        assert not is_bot_signal("no_device_fingerprint")
        assert is_vpn_or_proxy("vpn_detected")
        assert is_vpn_or_proxy("proxy_detected")
        assert not is_vpn_or_proxy("country_mismatch")
        assert is_disposable_email("disposable_domain")
        assert not is_disposable_email("email_unverified")


class TestPartitionFlags:
    def test_drops_unclassified_and_keeps_order(self) -> None:
        partitions = partition_flags(["vpn_detected", "weekend_booking", "proxy_detected", ""])

        assert partitions[RiskCategory.LOCATION] == ["vpn_detected", "proxy_detected"]
        assert sum(len(v) for v in partitions.values()) == 2

    def test_none_is_empty(self) -> None:
        assert all(v == [] for v in partition_flags(None).values())


class TestCategoryScorer:
    def test_disposable_domain_and_vpn(self) -> None:
        _, car = build_fleet()
        booking = build_booking(car, risk_flags=["disposable_domain", "vpn_detected"])

        breakdown = CategoryScorer(CategoryWeights()).score(booking)

        assert breakdown.email.score == 15
        assert breakdown.location.score == 15
        assert breakdown.device.score == 0
        assert breakdown.session.score == 0
        assert breakdown.identity.score == 0
        assert breakdown.total == 30
        assert breakdown.email.details["disposable"] is True
        assert breakdown.location.details["vpn"] is True
        assert breakdown.location.details["proxy"] is False

    def test_subscore_is_capped_at_100(self) -> None:
        _, car = build_fleet()
        flags = [
            "bot_signal",
            "headless_browser",
            "webdriver_detected",
            "no_device_fingerprint",
            "cookies_disabled",
            "shared_device",
        ]
        booking = build_booking(car, risk_flags=flags)

        breakdown = CategoryScorer(CategoryWeights()).score(booking)

        assert breakdown.device.score == 100
        assert breakdown.device.details["bot_signals"] == [
            "bot_signal",
            "headless_browser",
            "webdriver_detected",
        ]
        assert breakdown.device.details["cookies_enabled"] is False

    def test_total_is_capped_at_100(self) -> None:
        _, car = build_fleet()
        flags = ["bot_signal", "headless_browser", "webdriver_detected", "shared_device"]
        flags += ["vpn_detected", "proxy_detected", "country_mismatch"]
        booking = build_booking(car, risk_flags=flags)

        breakdown = CategoryScorer(CategoryWeights()).score(booking)

        assert breakdown.device.score == 80
        assert breakdown.location.score == 45
        assert breakdown.total == 100
        for category in breakdown.as_dict().values():
            assert 0 <= category.score <= 100

    def test_alternate_weights(self) -> None:
        _, car = build_fleet()
        booking = build_booking(car, risk_flags=["short_session", "low_interaction"])

        breakdown = CategoryScorer(CategoryWeights(session=40)).score(booking)

        assert breakdown.session.score == 80

    def test_details_come_from_booking(self) -> None:
        _, car = build_fleet()
        booking = build_booking(
            car,
            guest_email="Someone@Mailinator.com",
            booking_ip_address="203.0.113.9",
            booking_country="US",
            license_photo_url="https://docs.example/license.jpg",
            license_verified=True,
            session_duration_ms=4_000,
        )

        breakdown = CategoryScorer().score(booking)

        assert breakdown.email.details["domain"] == "mailinator.com"
        assert breakdown.location.details["ip"] == "203.0.113.9"
        assert breakdown.session.details["duration_ms"] == 4_000
        assert breakdown.identity.details["license_photo"] is True
        assert breakdown.identity.details["selfie_photo"] is False
        assert breakdown.identity.details["license_verified"] is True
