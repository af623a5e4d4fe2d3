"""
Seed demo users - one per role, plus a Collection Manager profile.

Usage:
    python scripts/seed_users.py              # Uses development DB
    python scripts/seed_users.py --env prod   # Uses production DB

Idempotent: existing e-mail addresses are skipped.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from app.models import db
from app.models.auth import (
    ROLE_ADMIN,
    ROLE_AUDITOR,
    ROLE_COLLECTION_MANAGER,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    User,
)
from app.services.jwt_service import generate_access_token
from app.services.user_service import create_user, get_user_by_email

DEMO_PASSWORD = os.getenv("SEED_PASSWORD", "Compliance2026!")

USERS = [
    ("agency@compliance-portal.com", "Demo Collection Agency", ROLE_USER, {}),
    ("admin@compliance-portal.com", "Portal Admin", ROLE_ADMIN, {}),
    ("superadmin@compliance-portal.com", "Portal Super Admin", ROLE_SUPER_ADMIN, {}),
    ("auditor@compliance-portal.com", "Compliance Auditor", ROLE_AUDITOR, {}),
    ("cm@compliance-portal.com", "Demo Collection Manager", ROLE_COLLECTION_MANAGER, {
        "employee_id": "CM-0001",
        "designation": "Collection Manager",
        "products_assigned": ["Personal Loan", "Credit Card"],
    }),
]


def seed_users():
    for email, name, role, profile in USERS:
        existing = get_user_by_email(email)
        if existing:
            print(f"  {role:20s} {email}: already exists (id={existing.id})")
            continue
        user = create_user(email, name, role, DEMO_PASSWORD, **profile)
        print(f"  {role:20s} {email}: created (id={user.id})")


def main():
    parser = argparse.ArgumentParser(description="Seed one demo user per role")
    parser.add_argument("--env", default="development", help="App environment")
    parser.add_argument("--tokens", action="store_true", help="Print an access token per user")
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)

    with app.app_context():
        db.create_all()
        print("Seeding users...")
        seed_users()
        print(f"Users: {User.query.count()}  (password: {DEMO_PASSWORD})")

        if args.tokens:
            for user in User.query.order_by(User.id).all():
                print(f"  {user.email}: {generate_access_token(user.id, user.role)}")


if __name__ == "__main__":
    main()
