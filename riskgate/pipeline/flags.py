"""Risk flag taxonomy.

Upstream signal producers attach free-form flag strings to a booking.  The
known ones are enumerated by ``RiskFlag``; each member carries the
``RiskCategory`` it belongs to.  Strings outside the enumeration are
classified by keyword, checking categories in the fixed order
email, device, session, location, identity.  The first category whose
keyword set matches wins.
"""

from __future__ import annotations

from enum import Enum


class RiskCategory(str, Enum):
    EMAIL = "email"
    DEVICE = "device"
    SESSION = "session"
    LOCATION = "location"
    IDENTITY = "identity"


CATEGORY_ORDER: tuple[RiskCategory, ...] = (
    RiskCategory.EMAIL,
    RiskCategory.DEVICE,
    RiskCategory.SESSION,
    RiskCategory.LOCATION,
    RiskCategory.IDENTITY,
)

CATEGORY_KEYWORDS: dict[RiskCategory, tuple[str, ...]] = {
    RiskCategory.EMAIL: ("email", "disposable", "domain", "mail"),
    RiskCategory.DEVICE: (
        "device",
        "bot",
        "headless",
        "webdriver",
        "fingerprint",
        "cookie",
        "automation",
    ),
    RiskCategory.SESSION: ("session", "interaction", "paste", "validation", "typing", "rapid"),
    RiskCategory.LOCATION: ("vpn", "proxy", "tor_", "ip_", "country", "location", "geo"),
    RiskCategory.IDENTITY: ("license", "selfie", "identity", "document", "phone", "verification"),
}

BOT_KEYWORDS: tuple[str, ...] = ("bot", "headless", "webdriver", "automation")


class RiskFlag(str, Enum):
    """Flags emitted by the booking-time signal producers."""

    DISPOSABLE_DOMAIN = "disposable_domain"
    DISPOSABLE_EMAIL = "disposable_email"
    EMAIL_UNVERIFIED = "email_unverified"
    SUSPICIOUS_EMAIL_PATTERN = "suspicious_email_pattern"

    BOT_SIGNAL = "bot_signal"
    HEADLESS_BROWSER = "headless_browser"
    WEBDRIVER_DETECTED = "webdriver_detected"
    NO_DEVICE_FINGERPRINT = "no_device_fingerprint"
    COOKIES_DISABLED = "cookies_disabled"
    SHARED_DEVICE = "shared_device"

    SHORT_SESSION = "short_session"
    LOW_INTERACTION = "low_interaction"
    COPY_PASTE_USED = "copy_paste_used"
    MULTIPLE_VALIDATION_ERRORS = "multiple_validation_errors"

    VPN_DETECTED = "vpn_detected"
    PROXY_DETECTED = "proxy_detected"
    TOR_EXIT_NODE = "tor_exit_node"
    COUNTRY_MISMATCH = "country_mismatch"
    HIGH_RISK_COUNTRY = "high_risk_country"

    LICENSE_UNVERIFIED = "license_unverified"
    SELFIE_UNVERIFIED = "selfie_unverified"
    PHONE_UNVERIFIED = "phone_unverified"
    DOCUMENT_MISMATCH = "document_mismatch"

    @property
    def category(self) -> RiskCategory:
        return _FLAG_CATEGORIES[self]

    @property
    def is_bot_signal(self) -> bool:
        return self in (
            RiskFlag.BOT_SIGNAL,
            RiskFlag.HEADLESS_BROWSER,
            RiskFlag.WEBDRIVER_DETECTED,
        )


_FLAG_CATEGORIES: dict[RiskFlag, RiskCategory] = {
    RiskFlag.DISPOSABLE_DOMAIN: RiskCategory.EMAIL,
    RiskFlag.DISPOSABLE_EMAIL: RiskCategory.EMAIL,
    RiskFlag.EMAIL_UNVERIFIED: RiskCategory.EMAIL,
    RiskFlag.SUSPICIOUS_EMAIL_PATTERN: RiskCategory.EMAIL,
    RiskFlag.BOT_SIGNAL: RiskCategory.DEVICE,
    RiskFlag.HEADLESS_BROWSER: RiskCategory.DEVICE,
    RiskFlag.WEBDRIVER_DETECTED: RiskCategory.DEVICE,
    RiskFlag.NO_DEVICE_FINGERPRINT: RiskCategory.DEVICE,
    RiskFlag.COOKIES_DISABLED: RiskCategory.DEVICE,
    RiskFlag.SHARED_DEVICE: RiskCategory.DEVICE,
    RiskFlag.SHORT_SESSION: RiskCategory.SESSION,
    RiskFlag.LOW_INTERACTION: RiskCategory.SESSION,
    RiskFlag.COPY_PASTE_USED: RiskCategory.SESSION,
    RiskFlag.MULTIPLE_VALIDATION_ERRORS: RiskCategory.SESSION,
    RiskFlag.VPN_DETECTED: RiskCategory.LOCATION,
    RiskFlag.PROXY_DETECTED: RiskCategory.LOCATION,
    RiskFlag.TOR_EXIT_NODE: RiskCategory.LOCATION,
    RiskFlag.COUNTRY_MISMATCH: RiskCategory.LOCATION,
    RiskFlag.HIGH_RISK_COUNTRY: RiskCategory.LOCATION,
    RiskFlag.LICENSE_UNVERIFIED: RiskCategory.IDENTITY,
    RiskFlag.SELFIE_UNVERIFIED: RiskCategory.IDENTITY,
    RiskFlag.PHONE_UNVERIFIED: RiskCategory.IDENTITY,
    RiskFlag.DOCUMENT_MISMATCH: RiskCategory.IDENTITY,
}


def parse_flag(flag: str) -> RiskFlag | None:
    """Return the enum member for *flag*, or ``None`` for free-form strings."""
    try:
        return RiskFlag(flag.strip().lower())
    except ValueError:
        return None


def classify_flag(flag: str) -> RiskCategory | None:
    """Assign *flag* to its category.

    Enumerated flags use their declared category; anything else falls back
    to keyword matching.  Returns ``None`` when no keyword set matches.
    """
    known = parse_flag(flag)
    if known is not None:
        return known.category

    lowered = flag.lower()
    for category in CATEGORY_ORDER:
        if any(keyword in lowered for keyword in CATEGORY_KEYWORDS[category]):
            return category
    return None


def is_bot_signal(flag: str) -> bool:
    known = parse_flag(flag)
    if known is not None:
        return known.is_bot_signal
    lowered = flag.lower()
    return classify_flag(flag) is RiskCategory.DEVICE and any(k in lowered for k in BOT_KEYWORDS)


def is_vpn_or_proxy(flag: str) -> bool:
    lowered = flag.lower()
    return classify_flag(flag) is RiskCategory.LOCATION and any(
        k in lowered for k in ("vpn", "proxy", "tor_")
    )


def is_disposable_email(flag: str) -> bool:
    return classify_flag(flag) is RiskCategory.EMAIL and "disposable" in flag.lower()
