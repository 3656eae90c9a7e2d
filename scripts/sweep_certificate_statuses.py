"""
Re-evaluate expiry-driven certificate statuses.

Usage:
  python scripts/sweep_certificate_statuses.py [--chunk-size 500] [--as-of 2025-01-31]

Meant for a daily cron/scheduler. Certificates with an expiry date whose
status is active, expiring_soon or completed are re-evaluated against today
and any change is persisted. Running it twice changes nothing the second time.
"""
import argparse
import os
import sys
from datetime import date

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from certhub.clock import FixedClock, SystemClock
from certhub.db import SessionLocal
from certhub.logging import setup_logging
from certhub.services.certificates import sweep_expiry_statuses


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Re-evaluate certificate expiry statuses")
    parser.add_argument("--chunk-size", type=int, default=None, help="rows per commit (default from settings)")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="evaluate as of this date (YYYY-MM-DD)")
    args = parser.parse_args(argv)

    setup_logging()
    clock = FixedClock(args.as_of) if args.as_of else SystemClock()
    db = SessionLocal()
    try:
        changed = sweep_expiry_statuses(db, clock, args.chunk_size)
    finally:
        db.close()
    print(f"Certificates updated: {changed}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
