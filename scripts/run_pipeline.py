#!/usr/bin/env python3
"""Load a bookings file into the risk gate store.

Each booking is screened, blocked when its score reaches the block
threshold and checked against the verification gate.  Generate a file
first with ``python data/generate_data.py``.

Usage::

    python scripts/run_pipeline.py [--data-file data/bookings.json] [--delay 0.01] [--generate 300]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Any

# Allow ``python scripts/run_pipeline.py`` from a checkout without installing.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from riskgate.config import settings  # noqa: E402
from riskgate.models.database import create_tables  # noqa: E402
from riskgate.pipeline.ingestion import BookingIngestionPipeline  # noqa: E402

logger = logging.getLogger("run_pipeline")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Screen and gate a batch of rental bookings")
    parser.add_argument("--data-file", default="data/bookings.json", help="JSON array of bookings")
    parser.add_argument(
        "--delay",
        type=float,
        default=0.0,
        help="Seconds to wait between bookings, to mimic live traffic",
    )
    parser.add_argument(
        "--generate",
        type=int,
        metavar="N",
        help="Ingest N freshly generated bookings instead of reading --data-file",
    )
    return parser.parse_args(argv)


def _report(summary: dict[str, Any]) -> None:
    total = summary["total"]
    share = summary["flagged"] / total * 100 if total else 0.0
    rows = [
        ("Bookings ingested", str(total)),
        ("Flagged for review", f"{summary['flagged']} ({share:.1f}%)"),
        ("Blocked at intake", str(summary["blocked"])),
        ("Sent to verification", str(summary["requiring_verification"])),
        ("Elapsed", f"{summary['processing_time_seconds']:.2f}s"),
    ]
    width = max(len(label) for label, _ in rows)
    print()
    for label, value in rows:
        print(f"  {label:<{width}}  {value}")
    print(f"\n  Store: {settings.DATABASE_URL}")
    print("  Serve the API with: uvicorn riskgate.api.main:app --reload")


async def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    await create_tables()
    pipeline = BookingIngestionPipeline()
    if args.generate:
        from data.generate_data import generate_dataset

        logger.info("Generating %d synthetic bookings", args.generate)
        summary = await pipeline.ingest_from_list(generate_dataset(total=args.generate), args.delay)
    else:
        summary = await pipeline.ingest_from_json(args.data_file, delay_seconds=args.delay)
    _report(summary)


if __name__ == "__main__":
    asyncio.run(main())
