"""ORM model for single-use, time-limited account tokens (password recovery)."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from backoffice.models.base import Base

PURPOSE_PASSWORD_RECOVERY = "password_recovery"


class RecoveryToken(Base):
    """
    Single-use token tagged with a purpose.

    At most one unused, unexpired token exists per (account, purpose); issuing a
    new one marks the previous ones used.
    """

    __tablename__ = "recovery_tokens"
    __table_args__ = (
        Index("ix_recovery_tokens_account_active", "account_id", "is_used", "expires_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    token = Column(String(128), nullable=False, unique=True, index=True)
    purpose = Column(String(32), nullable=False, default=PURPOSE_PASSWORD_RECOVERY)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    requested_by_ip = Column(String(45), nullable=True)
