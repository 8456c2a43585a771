"""Refresh token persistence: issue, active lookup, conditional revoke, rotation chain."""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from backoffice.models import RefreshToken

logger = logging.getLogger(__name__)

# Upper bound on rotation chain walks; a chain is one link per refresh.
MAX_CHAIN_LENGTH = 1000


def create(
    db: Session,
    *,
    account_id: int,
    token: str,
    now: datetime,
    expires_at: datetime,
    created_by_ip: str | None = None,
    user_agent: str | None = None,
) -> RefreshToken:
    row = RefreshToken(
        account_id=account_id,
        token=token,
        created_at=now,
        expires_at=expires_at,
        is_revoked=False,
        created_by_ip=created_by_ip[:45] if created_by_ip else None,
        user_agent=user_agent[:500] if user_agent else None,
    )
    db.add(row)
    db.flush()
    return row


def get_by_token(db: Session, token: str) -> RefreshToken | None:
    return db.query(RefreshToken).filter(RefreshToken.token == token).first()


def get_active(db: Session, token: str, now: datetime) -> RefreshToken | None:
    """Token row if it is neither revoked nor expired."""
    return (
        db.query(RefreshToken)
        .filter(
            RefreshToken.token == token,
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > now,
        )
        .first()
    )


def list_active_for_account(db: Session, account_id: int, now: datetime) -> list[RefreshToken]:
    return (
        db.query(RefreshToken)
        .filter(
            RefreshToken.account_id == account_id,
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > now,
        )
        .order_by(RefreshToken.created_at.desc())
        .all()
    )


def revoke_if_active(db: Session, token: str, now: datetime) -> bool:
    """
    Revoke only if still active. Exactly one of several concurrent callers
    gets True; the others see zero affected rows.
    """
    updated = (
        db.query(RefreshToken)
        .filter(
            RefreshToken.token == token,
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > now,
        )
        .update(
            {RefreshToken.is_revoked: True, RefreshToken.revoked_at: now},
            synchronize_session=False,
        )
    )
    return updated == 1


def revoke(db: Session, token: str, now: datetime, account_id: int | None = None) -> bool:
    """Revoke a token that is not revoked yet (expired or not). Optionally scoped to an owner."""
    q = db.query(RefreshToken).filter(
        RefreshToken.token == token,
        RefreshToken.is_revoked.is_(False),
    )
    if account_id is not None:
        q = q.filter(RefreshToken.account_id == account_id)
    updated = q.update(
        {RefreshToken.is_revoked: True, RefreshToken.revoked_at: now},
        synchronize_session=False,
    )
    return updated == 1


def revoke_all_for_account(db: Session, account_id: int, now: datetime) -> int:
    """Revoke every unrevoked token of the account. Returns the number revoked."""
    return (
        db.query(RefreshToken)
        .filter(
            RefreshToken.account_id == account_id,
            RefreshToken.is_revoked.is_(False),
        )
        .update(
            {RefreshToken.is_revoked: True, RefreshToken.revoked_at: now},
            synchronize_session=False,
        )
    )


def set_replaced_by(db: Session, token: str, replaced_by_token: str) -> None:
    db.query(RefreshToken).filter(RefreshToken.token == token).update(
        {RefreshToken.replaced_by_token: replaced_by_token},
        synchronize_session=False,
    )


def revoke_descendants(db: Session, token: str, now: datetime) -> int:
    """Follow replaced_by_token links from token and revoke every successor still unrevoked."""
    revoked = 0
    seen: set[str] = {token}
    current = get_by_token(db, token)
    while current is not None and current.replaced_by_token and len(seen) <= MAX_CHAIN_LENGTH:
        nxt = current.replaced_by_token
        if nxt in seen:
            logger.warning("Refresh token chain contains a cycle; stopping walk")
            break
        seen.add(nxt)
        if revoke(db, nxt, now):
            revoked += 1
        current = get_by_token(db, nxt)
    return revoked


def delete_expired(db: Session, now: datetime) -> int:
    """Delete rows whose expiry has passed. Revoked-but-unexpired rows stay for audit."""
    return (
        db.query(RefreshToken)
        .filter(RefreshToken.expires_at <= now)
        .delete(synchronize_session=False)
    )
