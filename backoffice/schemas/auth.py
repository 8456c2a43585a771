"""Request/response schemas for auth endpoints. JSON uses camelCase field names."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from backoffice.core.security import USERNAME_PATTERN

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CamelModel(BaseModel):
    """Accepts both the camelCase alias and the Python field name."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class RegisterRequest(CamelModel):
    username: str = Field(
        ..., min_length=3, max_length=50, pattern=USERNAME_PATTERN,
        description="Letters, digits and underscores",
    )
    email: str = Field(..., max_length=100, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1, max_length=100)
    confirm_password: str = Field(..., alias="confirmPassword", max_length=100)
    kind: str = Field(
        default="customer", min_length=1, max_length=20,
        description="'customer' or a staff kind such as 'employee'",
    )
    first_name: str | None = Field(default=None, alias="firstName", max_length=50)
    last_name: str | None = Field(default=None, alias="lastName", max_length=50)


class LoginRequest(CamelModel):
    username_or_email: str = Field(..., alias="usernameOrEmail", min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=100)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., alias="refreshToken", min_length=1, max_length=128)


class LogoutRequest(CamelModel):
    account_id: int = Field(..., alias="accountId", ge=1)
    refresh_token: str | None = Field(default=None, alias="refreshToken", max_length=128)


class RecoverRequest(CamelModel):
    email: str = Field(..., max_length=100)
    callback_base_url: str = Field(..., alias="callbackBaseUrl", min_length=1, max_length=2048)


class ValidateResetTokenRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=255)


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=255)
    new_password: str = Field(..., alias="newPassword", min_length=1, max_length=100)
    confirm_password: str = Field(..., alias="confirmPassword", max_length=100)


class ChangePasswordRequest(CamelModel):
    account_id: int = Field(..., alias="accountId", ge=1)
    current_password: str = Field(..., alias="currentPassword", min_length=1, max_length=100)
    new_password: str = Field(..., alias="newPassword", min_length=1, max_length=100)
    confirm_password: str = Field(..., alias="confirmPassword", max_length=100)


class AccountSummary(CamelModel):
    """Public view of an account (never the hash or the failure counter)."""

    id: int
    username: str
    email: str
    kind: str
    display_name: str | None = Field(default=None, alias="displayName")
    is_active: bool = Field(..., alias="isActive")
    lockout_state: str = Field(..., alias="lockoutState")
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)
    last_access_at: datetime | None = Field(default=None, alias="lastAccessAt")
    created_at: datetime | None = Field(default=None, alias="createdAt")


class SessionTokensResponse(CamelModel):
    access_token: str = Field(..., alias="accessToken")
    refresh_token: str = Field(..., alias="refreshToken")
    token_type: str = Field(default="bearer", alias="tokenType")
    expires_in: int = Field(..., alias="expiresIn", description="Access token lifetime in seconds")
    access_token_expires_at: datetime = Field(..., alias="accessTokenExpiresAt")
    refresh_token_expires_at: datetime = Field(..., alias="refreshTokenExpiresAt")


class RegisterResponse(CamelModel):
    message: str
    account: AccountSummary


class LoginResponse(CamelModel):
    message: str
    account: AccountSummary
    tokens: SessionTokensResponse


class RefreshResponse(SessionTokensResponse):
    account_id: int = Field(..., alias="accountId")
    username: str


class LogoutResponse(CamelModel):
    message: str
    account_id: int = Field(..., alias="accountId")
    revoked_count: int = Field(..., alias="revokedCount")


class RecoverResponse(CamelModel):
    """Identical whether or not the email exists; token only in non-production diagnostics."""

    message: str
    expires_in_minutes: int = Field(..., alias="expiresInMinutes")
    token: str | None = None


class ValidateResetTokenResponse(CamelModel):
    valid: bool


class AckResponse(CamelModel):
    success: bool = True
    message: str


class CurrentAccount(CamelModel):
    """Identity decoded from a bearer access token."""

    id: int
    username: str
    email: str
    kind: str
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)
