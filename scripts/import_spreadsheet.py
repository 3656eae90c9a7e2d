"""
Import employees or certificates from an .xlsx/.csv file.

Usage:
  python scripts/import_spreadsheet.py employees <file> [--no-update] [--actor ID]
  python scripts/import_spreadsheet.py certificates <file> [--no-update] [--actor ID]

Rows go through the same validation as the API. Each row is committed on its
own; failing rows are listed at the end with their spreadsheet row number.
"""
import argparse
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from certhub.clock import SystemClock
from certhub.db import SessionLocal
from certhub.errors import ValidationError
from certhub.logging import setup_logging
from certhub.services import spreadsheet


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Import employees or certificates from a spreadsheet")
    parser.add_argument("kind", choices=["employees", "certificates"])
    parser.add_argument("path")
    parser.add_argument("--no-update", action="store_true", help="skip rows that already exist")
    parser.add_argument("--actor", default="import-script", help="actor id recorded in the audit log")
    args = parser.parse_args(argv)

    setup_logging()
    with open(args.path, "rb") as f:
        content = f.read()
    try:
        rows = spreadsheet.read_rows(os.path.basename(args.path), content)
    except ValidationError as e:
        print(f"ERROR: {e.errors.get('file', e.message)}")
        return 1

    importer = spreadsheet.import_employees if args.kind == "employees" else spreadsheet.import_certificates
    db = SessionLocal()
    try:
        result = importer(db, rows, args.actor, SystemClock(), update_existing=not args.no_update)
    finally:
        db.close()

    print(f"Created: {result['created']}  Updated: {result['updated']}  Skipped: {result['skipped']}")
    for error in result["errors"]:
        details = "; ".join(f"{k}: {v}" for k, v in error["errors"].items()) or error["message"]
        print(f"  row {error['row']}: {details}")
    return 0 if not result["errors"] else 2


if __name__ == "__main__":
    sys.exit(main())
