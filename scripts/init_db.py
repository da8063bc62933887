import argparse
import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy.orm import Session

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.kithul.config import load_settings
from app.kithul.db import build_engine, url_session_scope
from app.kithul.models import Base, User
from app.kithul.modules.admin.models import CollectionCenter
from app.kithul.roles import ADMINISTRATOR
from app.kithul.utils import utcnow

DEFAULT_CENTERS = [
    {
        "center_id": "center001",
        "center_name": "Galle Collection Center",
        "location": "Galle",
        "center_agent": "John Silva",
        "contact_phone": "+94 71 000 0001",
    },
    {
        "center_id": "center002",
        "center_name": "Kurunegala Collection Center",
        "location": "Kurunegala",
        "center_agent": "Mary Perera",
        "contact_phone": "+94 77 000 0002",
    },
    {
        "center_id": "center003",
        "center_name": "Hikkaduwa Collection Center",
        "location": "Hikkaduwa",
        "center_agent": "David Fernando",
        "contact_phone": "+94 77 000 0003",
    },
    {
        "center_id": "center004",
        "center_name": "Matara Collection Center",
        "location": "Matara",
        "center_agent": "Sarah Jayawardena",
        "contact_phone": "+94 71 000 0004",
    },
]


def _admin_password() -> str:
    password = os.environ.get("ADMIN_PASSWORD") or ""
    if password:
        return password
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        raise RuntimeError("ADMIN_PASSWORD must be set in production.")
    return "change-me"


def seed(s: Session, *, refresh_centers: bool = False) -> None:
    """
    Admin user + default collection centers.
    Does NOT overwrite an existing admin user's password.
    Existing centers are left alone unless refresh_centers is set, so a center an
    administrator deactivated or edited stays that way across restarts.
    """
    admin_user_id = (os.environ.get("ADMIN_USER_ID") or "admin").strip()

    admin = s.query(User).filter(User.user_id == admin_user_id).one_or_none()
    if not admin:
        admin = User(
            user_id=admin_user_id,
            password_hash=generate_password_hash(_admin_password()),
            name="Administrator",
            role=ADMINISTRATOR,
            is_active=True,
        )
        s.add(admin)
        print(f"Created admin user '{admin_user_id}'", flush=True)

    for row in DEFAULT_CENTERS:
        center = s.query(CollectionCenter).filter(CollectionCenter.center_id == row["center_id"]).one_or_none()
        if center is not None and not refresh_centers:
            continue
        if center is None:
            center = CollectionCenter(center_id=row["center_id"])
            s.add(center)
        for attr, value in row.items():
            setattr(center, attr, value)
        center.is_active = True
        center.updated_at = utcnow()
        print(f"Seeded {row['center_name']} ({row['center_id']})", flush=True)


def seed_only(*, database_url: str | None = None, refresh_centers: bool = False) -> None:
    db_url = (database_url or load_settings().database_url).strip()
    # Use direct engine/session so this can run in release without importing app.wsgi.
    with url_session_scope(db_url) as s:
        seed(s, refresh_centers=refresh_centers)


def main() -> None:
    """Local/dev bootstrap: create tables directly (no migrations) and seed."""
    parser = argparse.ArgumentParser(description="Create tables and seed the admin user and default centers.")
    parser.add_argument(
        "--refresh-centers",
        action="store_true",
        help="Reset existing default centers to their seed values and reactivate them.",
    )
    args = parser.parse_args()

    settings = load_settings()
    os.makedirs(settings.app_data_dir, exist_ok=True)
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(engine)
    engine.dispose()
    seed_only(database_url=settings.database_url, refresh_centers=args.refresh_centers)
    print("Database initialized.", flush=True)


if __name__ == "__main__":
    main()
