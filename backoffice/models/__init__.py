"""SQLAlchemy ORM models."""

from backoffice.models.account import Account, Permission, Role, account_roles, role_permissions
from backoffice.models.base import Base
from backoffice.models.recovery_token import PURPOSE_PASSWORD_RECOVERY, RecoveryToken
from backoffice.models.refresh_token import RefreshToken

__all__ = [
    "Account",
    "Base",
    "PURPOSE_PASSWORD_RECOVERY",
    "Permission",
    "RecoveryToken",
    "RefreshToken",
    "Role",
    "account_roles",
    "role_permissions",
]
