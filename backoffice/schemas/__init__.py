"""Pydantic request/response schemas."""

from backoffice.schemas.auth import (
    AccountSummary,
    AckResponse,
    ChangePasswordRequest,
    CurrentAccount,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    RecoverRequest,
    RecoverResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    SessionTokensResponse,
    ValidateResetTokenRequest,
    ValidateResetTokenResponse,
)

__all__ = [
    "AccountSummary",
    "AckResponse",
    "ChangePasswordRequest",
    "CurrentAccount",
    "LoginRequest",
    "LoginResponse",
    "LogoutRequest",
    "LogoutResponse",
    "RecoverRequest",
    "RecoverResponse",
    "RefreshRequest",
    "RefreshResponse",
    "RegisterRequest",
    "RegisterResponse",
    "ResetPasswordRequest",
    "SessionTokensResponse",
    "ValidateResetTokenRequest",
    "ValidateResetTokenResponse",
]
