"""
Bootstrap the first admin on a fresh database.

    ADMIN_EMAIL=ops@kingrent.ch ADMIN_PASSWORD=... python create_admin.py

Same as `flask create-admin`, for hosts where the Flask CLI is not wired up.
"""
import os
import sys

from kingrent import create_app
from kingrent.extensions import db
from kingrent.models import AppRole, User
from kingrent.utils.passwords import hash_password, validate_password

EMAIL = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
PASSWORD = os.getenv("ADMIN_PASSWORD") or ""
NAME = os.getenv("ADMIN_NAME", "KingRent Admin")

if not EMAIL or not PASSWORD:
    sys.exit("Set ADMIN_EMAIL and ADMIN_PASSWORD")

ok, msg = validate_password(PASSWORD)
if not ok:
    sys.exit(msg)

app = create_app()

with app.app_context():
    if User.query.filter(db.func.lower(User.email) == EMAIL).first():
        sys.exit(f"User already exists: {EMAIL}")

    admin = User(
        name=NAME,
        email=EMAIL,
        role=AppRole.ADMIN.value,
        must_change_password=True,
        password_hash=hash_password(PASSWORD),
    )
    db.session.add(admin)
    db.session.commit()

    print("Admin created:", EMAIL)
