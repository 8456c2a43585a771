"""Recovery token persistence: purpose-tagged, single-use, one active token per account."""

from datetime import datetime

from sqlalchemy.orm import Session

from backoffice.models import PURPOSE_PASSWORD_RECOVERY, RecoveryToken


def create(
    db: Session,
    *,
    account_id: int,
    token: str,
    now: datetime,
    expires_at: datetime,
    purpose: str = PURPOSE_PASSWORD_RECOVERY,
    requested_by_ip: str | None = None,
) -> RecoveryToken:
    row = RecoveryToken(
        account_id=account_id,
        token=token,
        purpose=purpose,
        created_at=now,
        expires_at=expires_at,
        is_used=False,
        requested_by_ip=requested_by_ip[:45] if requested_by_ip else None,
    )
    db.add(row)
    db.flush()
    return row


def get_active(
    db: Session, token: str, now: datetime, purpose: str = PURPOSE_PASSWORD_RECOVERY
) -> RecoveryToken | None:
    """Token row if unused and unexpired."""
    return (
        db.query(RecoveryToken)
        .filter(
            RecoveryToken.token == token,
            RecoveryToken.purpose == purpose,
            RecoveryToken.is_used.is_(False),
            RecoveryToken.expires_at > now,
        )
        .first()
    )


def consume(
    db: Session, token: str, now: datetime, purpose: str = PURPOSE_PASSWORD_RECOVERY
) -> bool:
    """Mark used only if still active; at most one caller succeeds."""
    updated = (
        db.query(RecoveryToken)
        .filter(
            RecoveryToken.token == token,
            RecoveryToken.purpose == purpose,
            RecoveryToken.is_used.is_(False),
            RecoveryToken.expires_at > now,
        )
        .update(
            {RecoveryToken.is_used: True, RecoveryToken.used_at: now},
            synchronize_session=False,
        )
    )
    return updated == 1


def invalidate_active_for_account(
    db: Session, account_id: int, now: datetime, purpose: str = PURPOSE_PASSWORD_RECOVERY
) -> int:
    """Mark every active token of this purpose used. Returns how many were active."""
    return (
        db.query(RecoveryToken)
        .filter(
            RecoveryToken.account_id == account_id,
            RecoveryToken.purpose == purpose,
            RecoveryToken.is_used.is_(False),
            RecoveryToken.expires_at > now,
        )
        .update(
            {RecoveryToken.is_used: True, RecoveryToken.used_at: now},
            synchronize_session=False,
        )
    )


def delete_expired(db: Session, now: datetime) -> int:
    return (
        db.query(RecoveryToken)
        .filter(RecoveryToken.expires_at <= now)
        .delete(synchronize_session=False)
    )
