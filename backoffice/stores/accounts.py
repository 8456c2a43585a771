"""Account lookups and atomic lockout/credential updates."""

from datetime import datetime

from sqlalchemy import case, func, insert, or_, true
from sqlalchemy.orm import Session

from backoffice.models import Account, Role, account_roles


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_by_id(db: Session, account_id: int, refresh: bool = False) -> Account | None:
    """Load an account; refresh=True bypasses the identity map after bulk UPDATEs."""
    return db.get(Account, account_id, populate_existing=refresh)


def get_by_email(db: Session, email: str) -> Account | None:
    return db.query(Account).filter(Account.email == normalize_email(email)).first()


def get_by_username_or_email(db: Session, identifier: str) -> Account | None:
    """
    Single case-insensitive lookup path for login: username or email.
    Usernames cannot contain '@', so a username never matches an email. Usernames
    differing only in case are distinct rows; the exact-case one wins.
    """
    ident = identifier.strip()
    if not ident:
        return None
    return (
        db.query(Account)
        .filter(
            or_(
                func.lower(Account.username) == ident.lower(),
                Account.email == normalize_email(ident),
            )
        )
        .order_by((Account.username == ident).desc(), Account.id)
        .first()
    )


def username_exists(db: Session, username: str) -> bool:
    return db.query(Account.id).filter(Account.username == username.strip()).first() is not None


def email_exists(db: Session, email: str) -> bool:
    return (
        db.query(Account.id)
        .filter(func.lower(Account.email) == normalize_email(email))
        .first()
        is not None
    )


def create_account(
    db: Session,
    *,
    username: str,
    email: str,
    password_hash: str,
    kind: str,
    display_name: str | None,
    now: datetime,
) -> Account:
    account = Account(
        username=username.strip(),
        email=normalize_email(email),
        password_hash=password_hash,
        kind=kind,
        display_name=display_name,
        is_active=True,
        is_locked=False,
        failed_attempts=0,
        created_at=now,
    )
    db.add(account)
    db.flush()
    return account


def record_failed_attempt(
    db: Session, account_id: int, max_failed: int, now: datetime
) -> tuple[int, bool]:
    """
    Increment the failure counter and lock at the threshold in one statement.

    The SET expressions read the pre-update row, so two concurrent failures
    serialise on the row lock and each sees its own increment.
    Returns (failed_attempts, is_locked) after the update.
    """
    db.query(Account).filter(Account.id == account_id).update(
        {
            Account.failed_attempts: Account.failed_attempts + 1,
            # LockoutPolicy.should_lock applied to the post-increment count.
            Account.is_locked: case(
                (Account.failed_attempts + 1 >= max_failed, true()),
                else_=Account.is_locked,
            ),
            Account.updated_at: now,
        },
        synchronize_session=False,
    )
    row = (
        db.query(Account.failed_attempts, Account.is_locked)
        .filter(Account.id == account_id)
        .one()
    )
    return row.failed_attempts, bool(row.is_locked)


def record_successful_login(db: Session, account_id: int, now: datetime) -> bool:
    """Reset the counter and stamp last access. False if the account got locked meanwhile."""
    updated = (
        db.query(Account)
        .filter(Account.id == account_id, Account.is_locked.is_(False))
        .update(
            {
                Account.failed_attempts: 0,
                Account.last_access_at: now,
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def set_password(db: Session, account_id: int, password_hash: str, now: datetime) -> bool:
    """Replace the password hash and clear any lockout."""
    updated = (
        db.query(Account)
        .filter(Account.id == account_id)
        .update(
            {
                Account.password_hash: password_hash,
                Account.is_locked: False,
                Account.failed_attempts: 0,
                Account.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def unlock(db: Session, account_id: int, now: datetime) -> bool:
    updated = (
        db.query(Account)
        .filter(Account.id == account_id)
        .update(
            {
                Account.is_locked: False,
                Account.failed_attempts: 0,
                Account.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def get_role_by_name(db: Session, name: str) -> Role | None:
    return db.query(Role).filter(Role.name == name, Role.is_active.is_(True)).first()


def assign_role(db: Session, account_id: int, role_id: int, now: datetime) -> None:
    db.execute(
        insert(account_roles).values(account_id=account_id, role_id=role_id, assigned_at=now)
    )


def role_and_permission_names(account: Account) -> tuple[list[str], list[str]]:
    """Active role names and the distinct union of their permission names, sorted."""
    roles = [r for r in account.roles if r.is_active]
    role_names = sorted({r.name for r in roles})
    permission_names = sorted({p.name for r in roles for p in r.permissions})
    return role_names, permission_names
