#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from geoclock.db import SessionLocal
from geoclock.logging_utils import setup_json_logging
from geoclock.services.verification import cleanup_old_location_data
from geoclock.settings import get_settings

logger = logging.getLogger("geoclock.maintenance")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete location data past the retention window.")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Override LOCATION_RETENTION_DAYS for this run.",
    )
    return parser.parse_args(argv)


def run(retention_days: int | None = None) -> dict:
    days = retention_days or get_settings().location_retention_days
    db = SessionLocal()
    try:
        deleted = cleanup_old_location_data(db, days)
    finally:
        db.close()
    return {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "retention_days": days,
        "deleted": deleted,
    }


def main(argv: list[str] | None = None) -> int:
    setup_json_logging()
    args = parse_args(argv)
    try:
        report = run(args.retention_days)
    except Exception:
        logger.exception("location_cleanup_failed")
        return 1
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
