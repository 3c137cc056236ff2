"""
Create an admin account (e.g. the first super admin). Run from project root:
  python -m app.scripts.create_admin NAME EMAIL PASSWORD [role] [--permissions members,events]
Example:
  python -m app.scripts.create_admin "Church Office" office@example.org 'S3cure-pass' super_admin
"""
import argparse
import logging
import sys

from app.core.database import SessionLocal
from app.core.security import (
    PASSWORD_MAX_BYTES,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    hash_password,
    password_fits_bcrypt,
)
from app.models.admin import DEFAULT_PERMISSIONS, Admin, AdminRole, Permission
from app.services.auth import get_admin_by_email, normalize_email

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def _parse_permissions(raw: str | None) -> list[str]:
    if raw is None:
        return list(DEFAULT_PERMISSIONS)
    tags = [t.strip() for t in raw.split(",") if t.strip()]
    valid = {p.value for p in Permission}
    unknown = [t for t in tags if t not in valid]
    if unknown:
        raise ValueError(f"Invalid permissions: {', '.join(unknown)}")
    return tags


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a Church Admin account (no registration UI).")
    parser.add_argument("name", help="Display name (2-100 chars)")
    parser.add_argument("email", help="Login email (stored lower-cased)")
    parser.add_argument("password", help=f"Password ({PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} chars)")
    parser.add_argument(
        "role",
        nargs="?",
        default=AdminRole.ADMIN.value,
        choices=[r.value for r in AdminRole],
    )
    parser.add_argument(
        "--permissions",
        default=None,
        help="Comma-separated permission tags (ignored for super_admin)",
    )
    args = parser.parse_args()

    name = args.name.strip()
    email = normalize_email(args.email)
    if not (2 <= len(name) <= 100):
        print("Name must be 2-100 characters.", file=sys.stderr)
        return 1
    if "@" not in email:
        print("Invalid email address.", file=sys.stderr)
        return 1
    if not (PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN):
        print(f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.", file=sys.stderr)
        return 1
    if not password_fits_bcrypt(args.password):
        print(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.", file=sys.stderr)
        return 1
    try:
        permissions = _parse_permissions(args.permissions)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1
    if args.role == AdminRole.SUPER_ADMIN.value:
        permissions = [p.value for p in Permission]

    db = SessionLocal()
    try:
        if get_admin_by_email(db, email) is not None:
            print(f"Admin '{email}' already exists.", file=sys.stderr)
            return 1
        admin = Admin(
            name=name,
            email=email,
            password_hash=hash_password(args.password),
            role=args.role,
            permissions=permissions,
            is_active=True,
        )
        db.add(admin)
        db.commit()
        logger.info("Created admin", extra={"admin_id": admin.id, "role": args.role})
        print(f"Created admin '{email}' with role '{args.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
