"""
Seed the default roles and, optionally, a first admin user.

Usage:
    python scripts/seed_roles.py [--overwrite]

ADMIN_USERNAME / ADMIN_EMAIL / ADMIN_PASSWORD in the environment (or .env)
create the admin account when it does not exist yet.
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from opsboard.db import Base, SessionLocal, engine  # noqa: E402
from opsboard.auth.permissions import seed_default_roles  # noqa: E402
from opsboard.auth.security import get_password_hash  # noqa: E402
from opsboard.models.models import Role, User  # noqa: E402


def seed_admin(db) -> None:
    username = os.getenv("ADMIN_USERNAME")
    password = os.getenv("ADMIN_PASSWORD")
    if not username or not password:
        print("ADMIN_USERNAME/ADMIN_PASSWORD not set, skipping admin user")
        return
    if db.query(User).filter(User.username == username).first():
        print(f"User '{username}' already exists")
        return
    admin_role = db.query(Role).filter(Role.name == "admin").first()
    user = User(
        username=username,
        email=(os.getenv("ADMIN_EMAIL") or f"{username}@example.com").lower(),
        display_name=username,
        password_hash=get_password_hash(password),
        is_active=True,
    )
    user.roles = [admin_role] if admin_role else []
    db.add(user)
    db.commit()
    print(f"Created admin user '{username}'")


def main() -> None:
    overwrite = "--overwrite" in sys.argv[1:]
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        changed = seed_default_roles(db, overwrite=overwrite)
        print(f"Roles created/updated: {changed}")
        seed_admin(db)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
