"""
Release phase: migrate the schema, then seed permissions/roles/admin.

Refuses to run without DATABASE_URL, and refuses SQLite when ENV is
production. Seeding is idempotent and never overwrites an existing
admin password.

Usage:
  python scripts/release.py                 # migrate + seed
  python scripts/release.py --migrate-only
  python scripts/release.py --seed-only
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")
    return db_url


def migrate(db_url: str, revision: str = "head") -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    print(f"Upgrading schema to {revision}...", flush=True)
    command.upgrade(cfg, revision)


def seed(db_url: str) -> None:
    from scripts import init_db

    print("Seeding permissions, roles and admin account...", flush=True)
    init_db.seed_only(database_url=db_url)


def run_release(*, do_migrate: bool = True, do_seed: bool = True) -> None:
    db_url = _database_url()
    print(f"=== RUKEM release (ENV={os.environ.get('ENV') or 'unset'}) ===", flush=True)
    if do_migrate:
        migrate(db_url)
    if do_seed:
        seed(db_url)
    print("=== RUKEM release done ===", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="RUKEM release phase")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--migrate-only", action="store_true", help="Run migrations without seeding")
    group.add_argument("--seed-only", action="store_true", help="Seed without running migrations")
    args = parser.parse_args()
    run_release(do_migrate=not args.seed_only, do_seed=not args.migrate_only)


if __name__ == "__main__":
    main()
