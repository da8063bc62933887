"""
Release-phase helper.

Goal:
- Fail fast if a production deploy would run against SQLite.
- Run alembic migrations.
- Seed the admin user and any missing default collection centers (idempotent; existing rows are left alone).

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def run_release() -> None:
    from app.kithul.config import load_settings

    settings = load_settings()
    db_url = settings.database_url
    env = settings.env.lower()
    if env in ("prod", "production"):
        if not (os.environ.get("DATABASE_URL") or "").strip():
            raise RuntimeError("Missing required environment variable DATABASE_URL.")
        if db_url.startswith("sqlite"):
            raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")
    if db_url.startswith("sqlite"):
        os.makedirs(settings.app_data_dir, exist_ok=True)

    print("=== Kithul Flow Ops release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    print("Running Alembic migrations...", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)

    print("Seeding admin/centers (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("Seed complete.", flush=True)
    print("=== Kithul Flow Ops release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
