"""Category scoring for booking risk flags.

Partitions a booking's flag list into the five risk categories and turns
each partition into a 0-100 subscore (``min(100, count * weight)``) plus a
category-specific detail object assembled from the booking's raw
attributes.  Scoring is a pure function of the booking record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from riskgate.config import Settings, settings
from riskgate.models.database import Booking
from riskgate.pipeline.flags import (
    CATEGORY_ORDER,
    RiskCategory,
    classify_flag,
    is_bot_signal,
    is_disposable_email,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CategoryWeights:
    """Points each matched flag contributes to its category subscore."""

    email: int = 15
    device: int = 20
    session: int = 10
    location: int = 15
    identity: int = 10

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> CategoryWeights:
        return cls(
            email=cfg.EMAIL_WEIGHT,
            device=cfg.DEVICE_WEIGHT,
            session=cfg.SESSION_WEIGHT,
            location=cfg.LOCATION_WEIGHT,
            identity=cfg.IDENTITY_WEIGHT,
        )

    def for_category(self, category: RiskCategory) -> int:
        return getattr(self, category.value)


@dataclass(frozen=True, slots=True)
class CategoryScore:
    """Subscore for one risk category.

    Attributes:
        category: The category this score belongs to.
        score: Subscore in [0, 100].
        flags: Flags classified into the category, in booking order.
        details: Raw attributes relevant to the category.
    """

    category: RiskCategory
    score: int
    flags: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CategoryBreakdown:
    email: CategoryScore
    device: CategoryScore
    session: CategoryScore
    location: CategoryScore
    identity: CategoryScore

    def as_dict(self) -> dict[str, CategoryScore]:
        return {category.value: getattr(self, category.value) for category in CATEGORY_ORDER}

    @property
    def total(self) -> int:
        """Sum of the category subscores, capped at 100."""
        return min(100, sum(cs.score for cs in self.as_dict().values()))


def partition_flags(flags: list[str] | None) -> dict[RiskCategory, list[str]]:
    """Group *flags* by category, dropping those no category claims."""
    partitions: dict[RiskCategory, list[str]] = {category: [] for category in CATEGORY_ORDER}
    for flag in flags or []:
        if not isinstance(flag, str) or not flag:
            continue
        category = classify_flag(flag)
        if category is None:
            logger.debug("Unclassified risk flag %r ignored", flag)
            continue
        partitions[category].append(flag)
    return partitions


class CategoryScorer:
    """Turns a booking's flags into five category subscores.

    Usage::

        scorer = CategoryScorer()
        breakdown = scorer.score(booking)
        breakdown.device.score
    """

    def __init__(self, weights: CategoryWeights | None = None) -> None:
        self.weights = weights or CategoryWeights.from_settings()

    def score(self, booking: Booking) -> CategoryBreakdown:
        partitions = partition_flags(booking.risk_flags)
        return CategoryBreakdown(
            email=self._build(RiskCategory.EMAIL, partitions, self._email_details(booking, partitions)),
            device=self._build(RiskCategory.DEVICE, partitions, self._device_details(booking, partitions)),
            session=self._build(RiskCategory.SESSION, partitions, self._session_details(booking)),
            location=self._build(
                RiskCategory.LOCATION, partitions, self._location_details(booking, partitions)
            ),
            identity=self._build(RiskCategory.IDENTITY, partitions, self._identity_details(booking)),
        )

    def _build(
        self,
        category: RiskCategory,
        partitions: dict[RiskCategory, list[str]],
        details: dict[str, Any],
    ) -> CategoryScore:
        flags = partitions[category]
        score = min(100, len(flags) * self.weights.for_category(category))
        return CategoryScore(category=category, score=score, flags=list(flags), details=details)

    # ------------------------------------------------------------------
    # Per-category detail objects
    # ------------------------------------------------------------------

    @staticmethod
    def _email_details(
        booking: Booking,
        partitions: dict[RiskCategory, list[str]],
    ) -> dict[str, Any]:
        domain = booking.email_domain
        if not domain and booking.guest_email and "@" in booking.guest_email:
            domain = booking.guest_email.rsplit("@", 1)[1].lower()
        return {
            "address": booking.guest_email,
            "domain": domain,
            "verified": bool(booking.email_verified),
            "disposable": any(is_disposable_email(f) for f in partitions[RiskCategory.EMAIL]),
        }

    @staticmethod
    def _device_details(
        booking: Booking,
        partitions: dict[RiskCategory, list[str]],
    ) -> dict[str, Any]:
        device_flags = partitions[RiskCategory.DEVICE]
        return {
            "fingerprint": booking.device_fingerprint,
            "bot_signals": [f for f in device_flags if is_bot_signal(f)],
            "cookies_enabled": not any("cookie" in f.lower() for f in device_flags),
        }

    @staticmethod
    def _session_details(booking: Booking) -> dict[str, Any]:
        return {
            "duration_ms": booking.session_duration_ms,
            "interactions": booking.interaction_count,
            "copy_paste_used": bool(booking.copy_paste_used),
            "validation_errors": booking.validation_error_count or 0,
        }

    @staticmethod
    def _location_details(
        booking: Booking,
        partitions: dict[RiskCategory, list[str]],
    ) -> dict[str, Any]:
        location_flags = [f.lower() for f in partitions[RiskCategory.LOCATION]]
        return {
            "ip": booking.booking_ip_address,
            "country": booking.booking_country,
            "city": booking.booking_city,
            "vpn": any("vpn" in f for f in location_flags),
            "proxy": any("proxy" in f or "tor_" in f for f in location_flags),
        }

    @staticmethod
    def _identity_details(booking: Booking) -> dict[str, Any]:
        return {
            "phone_verified": bool(booking.phone_verified),
            "email_verified": bool(booking.email_verified),
            "license_verified": bool(booking.license_verified),
            "selfie_verified": bool(booking.selfie_verified),
            "license_photo": booking.license_photo_url is not None,
            "selfie_photo": booking.selfie_photo_url is not None,
        }
