#!/usr/bin/env python3
"""Generate synthetic rental booking data for the risk gating demo.

Produces bookings over the last seven days for a simulated fleet of hosts
and cars, with five embedded risk patterns that the screening rules,
the verification gate and the pattern detectors are designed to catch.

Usage::

    python data/generate_data.py

Output:
    data/bookings.json  -- list of booking dictionaries.
"""

from __future__ import annotations

import json
import random
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Final

from faker import Faker

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

fake = Faker(["en_US"])

BASE_DATE: Final[datetime] = (datetime.now(timezone.utc) - timedelta(days=7)).replace(microsecond=0)

CAR_TYPES: Final[list[str]] = ["economy", "compact", "suv", "luxury", "exotic"]
CAR_TYPE_WEIGHTS: Final[list[float]] = [0.35, 0.25, 0.25, 0.10, 0.05]

DAILY_RATE_RANGES: Final[dict[str, tuple[float, float]]] = {
    "economy": (35.0, 70.0),
    "compact": (50.0, 90.0),
    "suv": (80.0, 180.0),
    "luxury": (250.0, 450.0),
    "exotic": (600.0, 1500.0),
}

MAKES: Final[dict[str, list[tuple[str, str]]]] = {
    "economy": [("Toyota", "Corolla"), ("Honda", "Civic"), ("Hyundai", "Elantra")],
    "compact": [("Mazda", "3"), ("Volkswagen", "Golf"), ("Kia", "Forte")],
    "suv": [("Toyota", "RAV4"), ("Ford", "Explorer"), ("Jeep", "Wrangler")],
    "luxury": [("BMW", "7 Series"), ("Mercedes-Benz", "S-Class"), ("Audi", "A8")],
    "exotic": [("Lamborghini", "Huracan"), ("Ferrari", "Roma"), ("McLaren", "720S")],
}

COUNTRIES: Final[list[str]] = ["US", "CA", "MX", "GB", "DE"]
COUNTRY_WEIGHTS: Final[list[float]] = [0.80, 0.08, 0.05, 0.04, 0.03]

STATUSES: Final[list[str]] = ["PENDING", "CONFIRMED", "COMPLETED", "CANCELLED"]
STATUS_WEIGHTS: Final[list[float]] = [0.20, 0.35, 0.35, 0.10]

DISPOSABLE_DOMAINS: Final[list[str]] = ["mailinator.com", "guerrillamail.com", "10minutemail.com"]

BOT_SIGNALS: Final[list[str]] = ["headless_browser", "webdriver_detected"]

FUEL_LEVELS: Final[list[str]] = ["Full", "3/4", "1/2"]

# ---------------------------------------------------------------------------
# Fleet
# ---------------------------------------------------------------------------


def _uuid() -> str:
    """Generate a new UUID4 string."""
    return str(uuid.uuid4())


def generate_fleet(hosts: int = 15, cars: int = 40) -> list[tuple[dict[str, object], dict[str, object]]]:
    """Build a fleet of ``(car, host)`` pairs.

    Roughly a third of the hosts are platform-verified.

    Args:
        hosts: Number of hosts.
        cars: Number of cars spread over those hosts.

    Returns:
        List of ``(car, host)`` dictionaries.
    """
    host_pool = [
        {
            "id": f"host_{i:03d}",
            "name": fake.name(),
            "email": fake.email(),
            "is_verified": random.random() < 0.35,
        }
        for i in range(hosts)
    ]
    fleet: list[tuple[dict[str, object], dict[str, object]]] = []
    for i in range(cars):
        car_type = random.choices(CAR_TYPES, weights=CAR_TYPE_WEIGHTS, k=1)[0]
        make, model = random.choice(MAKES[car_type])
        low, high = DAILY_RATE_RANGES[car_type]
        car = {
            "id": f"car_{i:03d}",
            "make": make,
            "model": model,
            "car_type": car_type,
            "daily_rate": round(random.uniform(low, high), 2),
            "instant_book": random.random() < 0.7,
        }
        fleet.append((car, random.choice(host_pool)))
    return fleet


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _random_timestamp(day_start: int = 0, day_end: int = 7) -> datetime:
    """Return a random timestamp between *day_start* and *day_end* days after BASE_DATE."""
    seconds = random.randint(day_start * 86400, day_end * 86400 - 1)
    return BASE_DATE + timedelta(seconds=seconds)


def _device_fingerprint() -> str | None:
    """Return a random hex device fingerprint or None."""
    if random.random() < 0.05:
        return None
    return uuid.uuid4().hex[:16]


def _build_booking(
    fleet: list[tuple[dict[str, object], dict[str, object]]],
    *,
    created_at: datetime | None = None,
    car: dict[str, object] | None = None,
    host: dict[str, object] | None = None,
    guest_name: str | None = None,
    email: str | None = None,
    ip: str | None = None,
    country: str | None = None,
    days: int | None = None,
    lead_days: int | None = None,
    status: str | None = None,
    session_duration_ms: int | None = None,
    interaction_count: int | None = None,
    risk_flags: list[str] | None = None,
    bot_signals: list[str] | None = None,
    verified: bool | None = None,
    device_fingerprint: str | None = ...,  # type: ignore[assignment]
) -> dict[str, object]:
    """Build a single booking dictionary with defaults for unset fields.

    All keyword arguments override the randomly generated defaults.

    Returns:
        A dictionary matching the booking intake schema.
    """
    if car is None or host is None:
        car, host = random.choice(fleet)
    ts = created_at or _random_timestamp()
    n_days = days if days is not None else random.choices([1, 2, 3, 5, 7], weights=[0.2, 0.3, 0.25, 0.15, 0.1], k=1)[0]
    lead = lead_days if lead_days is not None else random.randint(1, 30)
    start = ts + timedelta(days=lead)
    rate = float(car["daily_rate"])
    addr = email or fake.email()
    ok = verified if verified is not None else random.random() < 0.8

    # Handle sentinel for device_fingerprint
    dfp: str | None
    if device_fingerprint is ...:
        dfp = _device_fingerprint()
    else:
        dfp = device_fingerprint  # type: ignore[assignment]

    return {
        "id": _uuid(),
        "booking_code": f"BK-{uuid.uuid4().hex[:8].upper()}",
        "car": car,
        "host": host,
        "created_at": ts.isoformat(),
        "status": status or random.choices(STATUSES, weights=STATUS_WEIGHTS, k=1)[0],
        "guest_name": guest_name or fake.name(),
        "guest_email": addr,
        "risk_flags": list(risk_flags or []),
        "bot_signals": list(bot_signals or []),
        "device_fingerprint": dfp,
        "booking_ip_address": ip or fake.ipv4_public(),
        "booking_country": country or random.choices(COUNTRIES, weights=COUNTRY_WEIGHTS, k=1)[0],
        "booking_city": fake.city(),
        "session_duration_ms": (
            session_duration_ms if session_duration_ms is not None else random.randint(90_000, 900_000)
        ),
        "interaction_count": interaction_count if interaction_count is not None else random.randint(15, 120),
        "copy_paste_used": random.random() < 0.1,
        "validation_error_count": random.choices([0, 1, 2], weights=[0.8, 0.15, 0.05], k=1)[0],
        "phone_verified": ok,
        "email_verified": ok,
        "license_verified": ok and random.random() < 0.9,
        "selfie_verified": ok and random.random() < 0.7,
        "total_amount": round(rate * n_days, 2),
        "daily_rate": rate,
        "number_of_days": n_days,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=n_days)).isoformat(),
        "start_mileage": random.randint(5_000, 60_000),
        "fuel_level_start": random.choice(FUEL_LEVELS),
    }


# ---------------------------------------------------------------------------
# Risk pattern generators
# ---------------------------------------------------------------------------


def generate_bot_bursts(fleet) -> list[dict[str, object]]:
    """Pattern 1: Bot bursts -- 4 devices, each firing 3-5 bookings minutes apart.

    Each burst uses sequential usernames on a disposable domain and
    reports headless or webdriver signals, simulating scripted account
    creation.

    Returns:
        List of booking dicts (12-20 total).
    """
    bookings: list[dict[str, object]] = []

    for _ in range(4):
        device = uuid.uuid4().hex[:16]
        ip = fake.ipv4_public()
        domain = random.choice(DISPOSABLE_DOMAINS)
        stem = fake.user_name()
        base_ts = _random_timestamp(day_start=5, day_end=7) - timedelta(hours=1)
        for j in range(random.randint(3, 5)):
            bookings.append(
                _build_booking(
                    fleet,
                    created_at=base_ts + timedelta(minutes=2 * j, seconds=random.randint(0, 59)),
                    email=f"{stem}{j + 1}@{domain}",
                    ip=ip,
                    device_fingerprint=device,
                    session_duration_ms=random.randint(4_000, 20_000),
                    interaction_count=random.randint(1, 4),
                    lead_days=0,
                    status="PENDING",
                    risk_flags=["disposable_email"],
                    bot_signals=[random.choice(BOT_SIGNALS)],
                    verified=False,
                )
            )

    return bookings


def generate_luxury_bookings(fleet) -> list[dict[str, object]]:
    """Pattern 2: High-value luxury and exotic rentals that must pass the gate.

    Returns:
        List of 8 booking dicts.
    """
    premium = [(car, host) for car, host in fleet if car["car_type"] in ("luxury", "exotic")]
    if not premium:
        return []

    bookings: list[dict[str, object]] = []
    for _ in range(8):
        car, host = random.choice(premium)
        bookings.append(_build_booking(fleet, car=car, host=host, days=random.randint(3, 6), status="PENDING"))
    return bookings


def generate_vpn_bookings(fleet) -> list[dict[str, object]]:
    """Pattern 3: Bookings behind VPNs or proxies from a mismatched country.

    Returns:
        List of 10 booking dicts.
    """
    bookings: list[dict[str, object]] = []
    for _ in range(10):
        flags = [random.choice(["vpn_detected", "proxy_detected"]), "country_mismatch"]
        bookings.append(
            _build_booking(
                fleet,
                country=random.choice(["NG", "RU", "BR"]),
                risk_flags=flags,
                session_duration_ms=random.randint(25_000, 90_000),
            )
        )
    return bookings


def generate_identity_farms(fleet) -> list[dict[str, object]]:
    """Pattern 4: Identity farming -- one device, many identities, few completions.

    Two devices each create 6 bookings over several days under different
    names and emails; almost all are cancelled.

    Returns:
        List of 12 booking dicts.
    """
    bookings: list[dict[str, object]] = []
    for _ in range(2):
        device = uuid.uuid4().hex[:16]
        for _ in range(6):
            bookings.append(
                _build_booking(
                    fleet,
                    created_at=_random_timestamp(day_start=1, day_end=7),
                    device_fingerprint=device,
                    status=random.choices(["CANCELLED", "PENDING"], weights=[0.8, 0.2], k=1)[0],
                    verified=False,
                )
            )
    return bookings


def generate_extended_rentals(fleet) -> list[dict[str, object]]:
    """Pattern 5: Extended rentals of two weeks or more.

    Returns:
        List of 6 booking dicts.
    """
    return [_build_booking(fleet, days=random.randint(14, 30), status="PENDING") for _ in range(6)]


# ---------------------------------------------------------------------------
# Clean booking generator
# ---------------------------------------------------------------------------


def generate_clean_bookings(fleet, count: int) -> list[dict[str, object]]:
    """Generate legitimate-looking bookings with natural distribution.

    Args:
        fleet: ``(car, host)`` pairs to book against.
        count: Number of clean bookings to produce.

    Returns:
        List of *count* booking dicts.
    """
    return [_build_booking(fleet) for _ in range(count)]


# ---------------------------------------------------------------------------
# Dataset assembly
# ---------------------------------------------------------------------------


def generate_dataset(total: int = 300) -> list[dict[str, object]]:
    """Assemble the full synthetic dataset with embedded risk patterns.

    Generates risk patterns first (they require specific timing constraints),
    then fills the remainder with clean bookings to reach *total*.
    The final list is sorted chronologically by ``created_at``.

    Args:
        total: Minimum total number of bookings to produce.

    Returns:
        A list of at least *total* booking dicts sorted by creation time.
    """
    fleet = generate_fleet()
    bookings: list[dict[str, object]] = []

    # 1. Generate risk patterns first (they need specific timing)
    bookings.extend(generate_bot_bursts(fleet))
    bookings.extend(generate_luxury_bookings(fleet))
    bookings.extend(generate_vpn_bookings(fleet))
    bookings.extend(generate_identity_farms(fleet))
    bookings.extend(generate_extended_rentals(fleet))

    # 2. Fill remainder with clean bookings
    clean_needed = max(0, total - len(bookings))
    bookings.extend(generate_clean_bookings(fleet, clean_needed))

    # 3. Sort by creation time
    bookings.sort(key=lambda x: str(x["created_at"]))

    return bookings


def _print_summary(bookings: list[dict[str, object]]) -> None:
    """Print a summary of the generated dataset to stdout.

    Args:
        bookings: The full list of generated bookings.
    """
    total = len(bookings)
    statuses: dict[str, int] = {}
    car_types: dict[str, int] = {}
    for bk in bookings:
        st = str(bk["status"])
        statuses[st] = statuses.get(st, 0) + 1
        ct = str(bk["car"]["car_type"])  # type: ignore[index]
        car_types[ct] = car_types.get(ct, 0) + 1

    amounts = [float(bk["total_amount"]) for bk in bookings]
    avg_amount = sum(amounts) / len(amounts) if amounts else 0.0
    bot_count = sum(1 for bk in bookings if bk["bot_signals"])
    flagged_count = sum(1 for bk in bookings if bk["risk_flags"])

    print(f"\n{'=' * 60}")
    print("  Synthetic Rental Booking Dataset Summary")
    print(f"{'=' * 60}")
    print(f"  Total bookings:          {total}")
    print(f"  Window start:            {BASE_DATE.strftime('%Y-%m-%d')} (7d)")
    print()
    print("  --- Status Distribution ---")
    for key, count in sorted(statuses.items()):
        print(f"    {key:<20s} {count:>4d}  ({count / total * 100:5.1f}%)")
    print()
    print("  --- Car Types ---")
    for key, count in sorted(car_types.items()):
        print(f"    {key:<20s} {count:>4d}  ({count / total * 100:5.1f}%)")
    print()
    print("  --- Amount Statistics ---")
    print(f"    Min:  ${min(amounts, default=0.0):>10.2f}")
    print(f"    Max:  ${max(amounts, default=0.0):>10.2f}")
    print(f"    Avg:  ${avg_amount:>10.2f}")
    print()
    print("  --- Risk Pattern Indicators ---")
    print(f"    Bot signals:           {bot_count}")
    print(f"    Upstream risk flags:   {flagged_count}")
    print(f"{'=' * 60}\n")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Generate synthetic rental booking data")
    parser.add_argument(
        "--count", type=int, default=300,
        help="Total number of bookings to generate (default: 300)",
    )
    parser.add_argument(
        "--seed", type=int, default=42,
        help="Random seed for reproducibility (default: 42)",
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Output file path (default: data/bookings.json)",
    )
    args = parser.parse_args()

    random.seed(args.seed)
    Faker.seed(args.seed)

    print(f"Generating {args.count} bookings (seed={args.seed})...")
    dataset = generate_dataset(total=args.count)

    script_dir = Path(__file__).resolve().parent
    output_path = Path(args.output) if args.output else script_dir / "bookings.json"

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(dataset, f, indent=2, default=str)

    print(f"Generated {len(dataset)} bookings -> {output_path}")
    _print_summary(dataset)
