"""Suspicious pattern discovery across recent bookings.

Scans bookings created within a timeframe and reports groups that look
coordinated:

    velocity          -- 3+ bookings from one device, or 5+ from one IP
                         using several devices
    device_cluster    -- one device used under several guest identities
    email_pattern     -- 3+ bookings on one domain with sequential or
                         near-identical usernames
    identity_farming  -- 5+ bookings from one device, 3+ emails and
                         under 20% completed
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from difflib import SequenceMatcher
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from riskgate.config import settings
from riskgate.errors import InvalidRequestError, StoreUnavailableError
from riskgate.models.database import Booking, as_utc, utcnow

logger = logging.getLogger(__name__)

TIMEFRAMES: dict[str, timedelta] = {
    "1d": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

SEVERITY_ORDER: dict[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}

PATTERN_TYPES: frozenset[str] = frozenset(
    {"velocity", "device_cluster", "email_pattern", "identity_farming"}
)

_DIGITS = re.compile(r"\d+")


@dataclass(frozen=True, slots=True)
class SuspiciousPattern:
    type: str
    severity: str
    confidence: int
    booking_ids: list[str]
    description: str
    details: dict[str, Any]
    first_seen: datetime
    last_seen: datetime

    @property
    def occurrences(self) -> int:
        return len(self.booking_ids)


@dataclass(frozen=True, slots=True)
class PatternReport:
    patterns: list[SuspiciousPattern]
    timeframe: str
    summary: dict[str, Any] = field(default_factory=dict)


def has_sequential_usernames(usernames: list[str]) -> bool:
    """True when two usernames carry consecutive numbers (user1, user2)."""
    numbers: list[int] = []
    for username in usernames:
        match = _DIGITS.search(username)
        if match:
            numbers.append(int(match.group()))
    numbers.sort()
    return any(b == a + 1 for a, b in zip(numbers, numbers[1:]))


def has_similar_usernames(usernames: list[str], threshold: float = 0.8) -> bool:
    """True when usernames share a base once digits are stripped, or any
    pair is more than *threshold* similar."""
    if len(usernames) < 2:
        return False
    if len({_DIGITS.sub("", u) for u in usernames}) == 1:
        return True
    for i, first in enumerate(usernames):
        for second in usernames[i + 1 :]:
            if SequenceMatcher(None, first, second).ratio() > threshold:
                return True
    return False


def _span(bookings: list[Booking]) -> tuple[datetime, datetime]:
    times = [as_utc(b.created_at) for b in bookings]
    return min(times), max(times)


def _group(bookings: list[Booking], key) -> dict[str, list[Booking]]:
    groups: dict[str, list[Booking]] = defaultdict(list)
    for booking in bookings:
        value = key(booking)
        if value:
            groups[value].append(booking)
    return groups


def detect_velocity(bookings: list[Booking]) -> list[SuspiciousPattern]:
    patterns: list[SuspiciousPattern] = []

    for device, group in _group(bookings, lambda b: b.device_fingerprint).items():
        if len(group) < 3:
            continue
        group.sort(key=lambda b: as_utc(b.created_at))
        gaps = [
            (as_utc(b.created_at) - as_utc(a.created_at)).total_seconds() / 60
            for a, b in zip(group, group[1:])
        ]
        avg_minutes = sum(gaps) / len(gaps)
        if avg_minutes < 5:
            severity = "critical"
        elif avg_minutes < 30:
            severity = "high"
        elif avg_minutes < 120:
            severity = "medium"
        else:
            severity = "low"
        first, last = _span(group)
        patterns.append(
            SuspiciousPattern(
                type="velocity",
                severity=severity,
                confidence=95,
                booking_ids=[b.id for b in group],
                description=(
                    f"{len(group)} bookings from same device in "
                    f"{round(avg_minutes)} min avg interval"
                ),
                details={
                    "device_fingerprint": device,
                    "booking_count": len(group),
                    "avg_minutes_between": round(avg_minutes, 2),
                    "emails": sorted({b.guest_email for b in group if b.guest_email}),
                },
                first_seen=first,
                last_seen=last,
            )
        )

    for ip, group in _group(bookings, lambda b: b.booking_ip_address).items():
        devices = {b.device_fingerprint for b in group if b.device_fingerprint}
        if len(group) < 5 or len(devices) < 2:
            continue
        first, last = _span(group)
        patterns.append(
            SuspiciousPattern(
                type="velocity",
                severity="high" if len(devices) > 3 else "medium",
                confidence=85,
                booking_ids=[b.id for b in group],
                description=f"{len(group)} bookings from same IP using {len(devices)} different devices",
                details={
                    "ip_address": ip,
                    "booking_count": len(group),
                    "unique_devices": len(devices),
                },
                first_seen=first,
                last_seen=last,
            )
        )
    return patterns


def detect_device_clusters(bookings: list[Booking]) -> list[SuspiciousPattern]:
    patterns: list[SuspiciousPattern] = []
    for device, group in _group(bookings, lambda b: b.device_fingerprint).items():
        if len(group) < 2:
            continue
        emails = {b.guest_email.lower() for b in group if b.guest_email}
        names = {b.guest_name.lower() for b in group if b.guest_name}
        if len(emails) <= 1 and len(names) <= 1:
            continue
        first, last = _span(group)
        patterns.append(
            SuspiciousPattern(
                type="device_cluster",
                severity="high" if len(emails) > 3 else "medium" if len(emails) > 1 else "low",
                confidence=90,
                booking_ids=[b.id for b in group],
                description=(
                    f"Same device used by {len(emails)} different emails "
                    f"and {len(names)} different names"
                ),
                details={
                    "device_fingerprint": device,
                    "emails": sorted(emails),
                    "names": sorted(names),
                    "risk_scores": [b.risk_score for b in group if b.risk_score],
                },
                first_seen=first,
                last_seen=last,
            )
        )
    return patterns


def detect_email_patterns(bookings: list[Booking]) -> list[SuspiciousPattern]:
    patterns: list[SuspiciousPattern] = []
    by_domain = _group(
        bookings,
        lambda b: b.guest_email.rsplit("@", 1)[1].lower()
        if b.guest_email and "@" in b.guest_email
        else None,
    )
    for domain, group in by_domain.items():
        if len(group) < 3:
            continue
        usernames = [b.guest_email.rsplit("@", 1)[0].lower() for b in group]
        sequential = has_sequential_usernames(usernames)
        if not sequential and not has_similar_usernames(usernames):
            continue
        first, last = _span(group)
        patterns.append(
            SuspiciousPattern(
                type="email_pattern",
                severity="high" if sequential else "medium",
                confidence=95 if sequential else 80,
                booking_ids=[b.id for b in group],
                description=(
                    f"{'Sequential' if sequential else 'Similar'} email patterns detected from {domain}"
                ),
                details={
                    "domain": domain,
                    "emails": [b.guest_email for b in group],
                    "pattern": "sequential" if sequential else "similar",
                    "unique_devices": len({b.device_fingerprint for b in group if b.device_fingerprint}),
                    "unique_ips": len({b.booking_ip_address for b in group if b.booking_ip_address}),
                },
                first_seen=first,
                last_seen=last,
            )
        )
    return patterns


def detect_identity_farming(bookings: list[Booking]) -> list[SuspiciousPattern]:
    patterns: list[SuspiciousPattern] = []
    for device, group in _group(bookings, lambda b: b.device_fingerprint).items():
        emails = {b.guest_email for b in group if b.guest_email}
        completed = sum(1 for b in group if b.status == "COMPLETED")
        rate = completed / len(group)
        if len(group) < 5 or rate >= 0.2 or len(emails) < 3:
            continue
        statuses: dict[str, int] = defaultdict(int)
        for b in group:
            statuses[b.status] += 1
        first, last = _span(group)
        patterns.append(
            SuspiciousPattern(
                type="identity_farming",
                severity="high",
                confidence=80,
                booking_ids=[b.id for b in group],
                description=(
                    f"Potential identity farming: {len(emails)} identities created, "
                    f"only {round(rate * 100)}% completion rate"
                ),
                details={
                    "device_fingerprint": device,
                    "total_bookings": len(group),
                    "completed_bookings": completed,
                    "completion_rate": round(rate * 100, 1),
                    "unique_emails": sorted(emails),
                    "statuses": dict(statuses),
                },
                first_seen=first,
                last_seen=last,
            )
        )
    return patterns


DETECTORS = (
    detect_velocity,
    detect_device_clusters,
    detect_email_patterns,
    detect_identity_farming,
)


class SuspiciousPatternDetector:
    """Runs every detector over the bookings of a timeframe."""

    def __init__(self, scan_limit: int | None = None) -> None:
        self.scan_limit = scan_limit or settings.PATTERN_SCAN_LIMIT

    async def detect(
        self,
        session: AsyncSession,
        timeframe: str = "7d",
        min_severity: str = "low",
        pattern_type: str | None = None,
    ) -> PatternReport:
        if timeframe not in TIMEFRAMES:
            raise InvalidRequestError(f"Unknown timeframe '{timeframe}'; expected 1d, 7d or 30d")
        if min_severity not in SEVERITY_ORDER:
            raise InvalidRequestError(f"Unknown severity '{min_severity}'")
        if pattern_type is not None and pattern_type not in PATTERN_TYPES:
            raise InvalidRequestError(f"Unknown pattern type '{pattern_type}'")

        cutoff = utcnow() - TIMEFRAMES[timeframe]
        stmt = (
            select(Booking)
            .where(Booking.created_at >= cutoff)
            .order_by(Booking.created_at.desc())
            .limit(self.scan_limit)
        )
        try:
            newest = list((await session.scalars(stmt)).all())
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("Could not load bookings for pattern detection") from exc
        # The cap keeps the newest rows; detectors expect oldest first.
        bookings = newest[::-1]

        patterns: list[SuspiciousPattern] = []
        for detector in DETECTORS:
            patterns.extend(detector(bookings))

        floor = SEVERITY_ORDER[min_severity]
        patterns = [
            p
            for p in patterns
            if SEVERITY_ORDER[p.severity] >= floor and (pattern_type is None or p.type == pattern_type)
        ]
        patterns.sort(key=lambda p: (SEVERITY_ORDER[p.severity], p.confidence), reverse=True)

        summary = {
            "total_patterns": len(patterns),
            "critical_patterns": sum(1 for p in patterns if p.severity == "critical"),
            "high_patterns": sum(1 for p in patterns if p.severity == "high"),
            "medium_patterns": sum(1 for p in patterns if p.severity == "medium"),
            "low_patterns": sum(1 for p in patterns if p.severity == "low"),
            "affected_bookings": len({bid for p in patterns for bid in p.booking_ids}),
            "scanned_bookings": len(bookings),
        }
        logger.info(
            "Pattern scan over %s: %d pattern(s) in %d booking(s)",
            timeframe,
            len(patterns),
            len(bookings),
        )
        return PatternReport(patterns=patterns, timeframe=timeframe, summary=summary)
