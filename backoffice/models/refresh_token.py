"""ORM model for opaque, revocable refresh tokens."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from backoffice.models.base import Base


class RefreshToken(Base):
    """
    One issued refresh token.

    Active means not revoked and not expired. Rotation revokes the row and
    records the value of its successor in replaced_by_token.
    """

    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ix_refresh_tokens_account_active", "account_id", "is_revoked", "expires_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    token = Column(String(128), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    replaced_by_token = Column(String(128), nullable=True)
    created_by_ip = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
