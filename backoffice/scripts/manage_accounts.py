"""
Account administration. Run from project root:
  python -m backoffice.scripts.manage_accounts seed-roles
  python -m backoffice.scripts.manage_accounts unlock ACCOUNT_ID
Example:
  python -m backoffice.scripts.manage_accounts unlock 42
"""
import argparse
import logging
import sys

from sqlalchemy.orm import Session

from backoffice.core.config import get_settings
from backoffice.core.database import SessionLocal
from backoffice.models import Permission, Role
from backoffice.services.auth import AuthService
from backoffice.services.errors import AccountNotFound

logger = logging.getLogger(__name__)

# Default catalogue: registration attaches the first two roles by account kind.
DEFAULT_ROLES: dict[str, tuple[str, list[str]]] = {
    "Customer": ("Self-service customer", ["reservations.read", "reservations.create"]),
    "Employee": (
        "Agency staff",
        ["reservations.read", "reservations.create", "hotels.read", "providers.read"],
    ),
    "Administrator": (
        "Back-office administrator",
        [
            "accounts.unlock",
            "reservations.read",
            "reservations.create",
            "hotels.read",
            "providers.read",
        ],
    ),
}


def seed_roles(db: Session) -> tuple[int, int]:
    """Create missing default roles and permissions. Returns (roles_created, permissions_created)."""
    roles_created = 0
    permissions_created = 0
    permissions_by_name = {p.name: p for p in db.query(Permission).all()}
    for role_name, (description, permission_names) in DEFAULT_ROLES.items():
        role = db.query(Role).filter(Role.name == role_name).first()
        if role is None:
            role = Role(name=role_name, description=description, is_active=True)
            db.add(role)
            roles_created += 1
        for permission_name in permission_names:
            permission = permissions_by_name.get(permission_name)
            if permission is None:
                permission = Permission(name=permission_name)
                db.add(permission)
                permissions_by_name[permission_name] = permission
                permissions_created += 1
            if permission not in role.permissions:
                role.permissions.append(permission)
    db.commit()
    return roles_created, permissions_created


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Back-office account administration.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("seed-roles", help="Create the default roles and permissions")
    unlock_parser = sub.add_parser("unlock", help="Unlock an account locked by failed logins")
    unlock_parser.add_argument("account_id", type=int, help="Account id")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    db = SessionLocal()
    try:
        if args.command == "seed-roles":
            roles_created, permissions_created = seed_roles(db)
            print(f"Created {roles_created} role(s) and {permissions_created} permission(s).")
            return 0
        try:
            account = AuthService(db, get_settings()).unlock_account(args.account_id)
        except AccountNotFound:
            print(f"Account {args.account_id} not found.", file=sys.stderr)
            return 1
        print(f"Unlocked account '{account.username}' (id {account.id}).")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
