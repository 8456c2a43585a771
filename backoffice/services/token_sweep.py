"""Expired token cleanup: delete refresh and recovery tokens past their expiry."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from backoffice.models.base import utcnow
from backoffice.stores import recovery_tokens, refresh_tokens

if TYPE_CHECKING:
    from backoffice.core.config import Settings

logger = logging.getLogger(__name__)


def sweep_expired_tokens(
    session: Session, settings: "Settings", now: datetime | None = None
) -> tuple[int, int]:
    """
    Delete expired refresh and recovery tokens.

    Returns (refresh_deleted, recovery_deleted). Expired rows are already inert,
    so this is safe alongside live traffic and idempotent.
    """
    if not settings.TOKEN_SWEEP_ENABLED:
        logger.info("Token sweep is disabled (TOKEN_SWEEP_ENABLED=false); skipping.")
        return (0, 0)

    cutoff = now or utcnow()
    try:
        refresh_deleted = refresh_tokens.delete_expired(session, cutoff)
        recovery_deleted = recovery_tokens.delete_expired(session, cutoff)
        session.commit()
    except Exception:
        session.rollback()
        raise

    if refresh_deleted or recovery_deleted:
        logger.info(
            "Token sweep run: cutoff=%s, refresh_deleted=%s, recovery_deleted=%s",
            cutoff.isoformat(),
            refresh_deleted,
            recovery_deleted,
        )
    return (refresh_deleted, recovery_deleted)
