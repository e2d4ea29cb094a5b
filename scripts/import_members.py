#!/usr/bin/env python3
"""
Bulk-load the member register from a CSV or Excel file, e.g. when moving
an RT's paper/spreadsheet register into the system.

Usage:
    python scripts/import_members.py members.xlsx
    python scripts/import_members.py members.csv --dry-run

Rows are validated exactly like the admin import screen. Rows that fail
(missing name, bad NIK, duplicate member number) are reported and skipped;
everything else is created in one transaction.
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.rukem.models import User
from app.rukem.modules.members.parsers import parse_members_file
from app.rukem.modules.members.service import import_members
from scripts._db_utils import script_session


class DryRun(Exception):
    """Raised to roll back the import after reporting."""


def main() -> int:
    parser = argparse.ArgumentParser(description="Import RUKEM members from CSV/XLSX")
    parser.add_argument("path", help="CSV or .xlsx file")
    parser.add_argument("--dry-run", action="store_true", help="Validate and report without saving")
    parser.add_argument("--actor", default=os.environ.get("ADMIN_EMAIL") or "admin@rukem.local", help="Account recorded as creator")
    args = parser.parse_args()

    path = Path(args.path)
    if not path.is_file():
        print(f"ERROR: file not found: {path}")
        return 1

    try:
        rows, parse_errors = parse_members_file(path.name, path.read_bytes())
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    database_url = os.environ.get("DATABASE_URL") or "sqlite:///rukem.db"
    try:
        with script_session(database_url) as s:
            actor = s.query(User).filter(User.email == args.actor.strip().lower()).one_or_none()
            if actor is None:
                print(f"ERROR: account '{args.actor}' not found. Run scripts/init_db.py first.")
                return 1

            created, row_errors = import_members(s, rows, actor)
            errors = [f"Row {e.row_number}: {e.message}" for e in parse_errors] + row_errors

            print(f"Members {'valid' if args.dry_run else 'created'}: {created}")
            print(f"Rows skipped: {len(errors)}")
            for err in errors[:50]:
                print(f"  {err}")
            if len(errors) > 50:
                print(f"  ... and {len(errors) - 50} more")

            if args.dry_run:
                raise DryRun()
    except DryRun:
        print("Dry run: nothing saved.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
