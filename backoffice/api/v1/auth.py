"""Auth endpoints (register, login, refresh, logout, recovery) and bearer-token dependencies."""

import logging
from collections.abc import Callable
from typing import Annotated

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from backoffice.core.config import Settings, get_settings
from backoffice.core.database import get_db
from backoffice.models import Account
from backoffice.models.base import as_utc
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
from backoffice.services.access_tokens import decode_access_token
from backoffice.services.auth import AuthService, SessionTokens
from backoffice.services.errors import (
    AccountInactive,
    AccountLocked,
    AccountNotFound,
    AuthError,
    AuthValidationError,
    DuplicateIdentifier,
    InvalidOrExpiredToken,
    NoMatch,
    NotFound,
)
from backoffice.services.lockout import LockoutPolicy
from backoffice.stores.accounts import role_and_permission_names

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)

INVALID_CREDENTIALS_MESSAGE = "Invalid username/email or password."
RECOVERY_SENT_MESSAGE = (
    "If the email is registered, you will receive instructions to reset your password."
)

# Most specific first; the first isinstance match wins.
_STATUS_BY_ERROR: tuple[tuple[type[AuthError], int], ...] = (
    (AccountLocked, status.HTTP_403_FORBIDDEN),
    (AccountInactive, status.HTTP_403_FORBIDDEN),
    (NoMatch, status.HTTP_401_UNAUTHORIZED),
    (InvalidOrExpiredToken, status.HTTP_401_UNAUTHORIZED),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (DuplicateIdentifier, status.HTTP_400_BAD_REQUEST),
    (AuthValidationError, status.HTTP_400_BAD_REQUEST),
)


def _http_error(e: AuthError, status_code: int | None = None) -> HTTPException:
    """Map a domain error to an HTTPException; detail carries message and error code only."""
    if status_code is None:
        status_code = status.HTTP_400_BAD_REQUEST
        for error_type, mapped in _STATUS_BY_ERROR:
            if isinstance(e, error_type):
                status_code = mapped
                break
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return HTTPException(
        status_code=status_code,
        detail={"message": e.message, "errorCode": e.error_code},
        headers=headers,
    )


def _require_matching(password: str, confirmation: str) -> None:
    if password != confirmation:
        raise _http_error(AuthValidationError("Passwords do not match.", "PASSWORD_MISMATCH"))


def _client_meta(request: Request) -> tuple[str | None, str | None]:
    origin = request.client.host if request.client else None
    return origin, request.headers.get("user-agent")


def _summary(account: Account) -> AccountSummary:
    roles, permissions = role_and_permission_names(account)
    return AccountSummary(
        id=account.id,
        username=account.username,
        email=account.email,
        kind=account.kind,
        display_name=account.display_name,
        is_active=account.is_active,
        lockout_state=LockoutPolicy.state_of(account.is_locked).value,
        roles=roles,
        permissions=permissions,
        last_access_at=as_utc(account.last_access_at),
        created_at=as_utc(account.created_at),
    )


def _tokens_response(tokens: SessionTokens, settings: Settings) -> SessionTokensResponse:
    return SessionTokensResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        access_token_expires_at=tokens.access_expires_at,
        refresh_token_expires_at=tokens.refresh_expires_at,
    )


def get_auth_service(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthService:
    return AuthService(db, settings)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> RegisterResponse:
    """Create an account; the default role for its kind is attached when it exists."""
    _require_matching(body.password, body.confirm_password)
    display_name = " ".join(p.strip() for p in (body.first_name, body.last_name) if p and p.strip())
    try:
        account = service.register(
            username=body.username,
            email=body.email,
            password=body.password,
            kind=body.kind,
            display_name=display_name or None,
        )
    except AuthError as e:
        logger.warning("Registration rejected", extra={"reason": e.error_code})
        raise _http_error(e) from e
    return RegisterResponse(
        message="Account created. Please sign in.",
        account=_summary(account),
    )


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    request: Request,
    service: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> LoginResponse:
    """
    Authenticate with username or email and password; returns the account and a session.
    Include the access token in the Authorization header as: Bearer <accessToken>
    """
    origin, client_info = _client_meta(request)
    try:
        account = service.login(body.username_or_email, body.password)
    except (AccountLocked, AccountInactive) as e:
        raise _http_error(e) from e
    if account is None:
        raise _http_error(NoMatch(INVALID_CREDENTIALS_MESSAGE))
    tokens = service.issue_session(account, origin_address=origin, client_info=client_info)
    return LoginResponse(
        message=f"Welcome back, {account.username}!",
        account=_summary(account),
        tokens=_tokens_response(tokens, settings),
    )


@router.post("/refresh", response_model=RefreshResponse)
def refresh(
    body: RefreshRequest,
    request: Request,
    service: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> RefreshResponse:
    """Exchange a refresh token for a new access/refresh pair. Each refresh token works once."""
    origin, client_info = _client_meta(request)
    try:
        tokens = service.refresh_session(
            body.refresh_token, origin_address=origin, client_info=client_info
        )
    except AccountNotFound as e:
        raise _http_error(
            InvalidOrExpiredToken("Refresh token is invalid or expired."),
        ) from e
    except AuthError as e:
        raise _http_error(e) from e
    claims = decode_access_token(tokens.access_token, settings)
    base = _tokens_response(tokens, settings)
    return RefreshResponse(
        **base.model_dump(),
        account_id=claims.account_id,
        username=claims.username,
    )


@router.post("/logout", response_model=LogoutResponse)
def logout(
    body: LogoutRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> LogoutResponse:
    """Revoke one refresh token, or every session of the account when none is given."""
    revoked = service.logout(body.account_id, body.refresh_token)
    return LogoutResponse(
        message="Signed out.",
        account_id=body.account_id,
        revoked_count=revoked,
    )


@router.post("/recover", response_model=RecoverResponse)
def recover(
    body: RecoverRequest,
    request: Request,
    service: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> RecoverResponse:
    """Start password recovery. The response is the same whether or not the email exists."""
    origin, _ = _client_meta(request)
    token: str | None = None
    try:
        token = service.request_password_recovery(
            body.email, body.callback_base_url, origin_address=origin
        )
    except AccountNotFound:
        logger.info("Recovery requested for unknown email")
    except AuthValidationError as e:
        raise _http_error(e) from e
    return RecoverResponse(
        message=RECOVERY_SENT_MESSAGE,
        expires_in_minutes=settings.RECOVERY_TOKEN_EXPIRE_MINUTES,
        token=token if settings.EXPOSE_RECOVERY_TOKEN else None,
    )


@router.post("/validate-reset-token", response_model=ValidateResetTokenResponse)
def validate_reset_token(
    body: ValidateResetTokenRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> ValidateResetTokenResponse:
    """Tell the frontend whether a recovery token can still be used."""
    return ValidateResetTokenResponse(valid=service.validate_recovery_token(body.token))


@router.post("/reset-password", response_model=AckResponse)
def reset_password(
    body: ResetPasswordRequest,
    request: Request,
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> AckResponse:
    """Set a new password with a recovery token; also clears any lockout."""
    _require_matching(body.new_password, body.confirm_password)
    origin, _ = _client_meta(request)
    try:
        service.reset_password(body.token, body.new_password, origin_address=origin)
    except (InvalidOrExpiredToken, AccountNotFound) as e:
        raise _http_error(
            InvalidOrExpiredToken("Recovery token is invalid or expired."),
            status.HTTP_400_BAD_REQUEST,
        ) from e
    except AuthError as e:
        raise _http_error(e) from e
    return AckResponse(message="Password reset. You can now sign in with your new password.")


@router.post("/change-password", response_model=AckResponse)
def change_password(
    body: ChangePasswordRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> AckResponse:
    """Change the password of an account after checking the current one."""
    _require_matching(body.new_password, body.confirm_password)
    try:
        service.change_password(body.account_id, body.current_password, body.new_password)
    except NoMatch as e:
        raise _http_error(e, status.HTTP_400_BAD_REQUEST) from e
    except AuthError as e:
        raise _http_error(e) from e
    return AckResponse(message="Password changed.")


def get_current_account(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CurrentAccount:
    """Dependency: require a valid Bearer access token for an account that can still sign in."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = decode_access_token(credentials.credentials, settings)
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    account = db.get(Account, claims.account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if account.is_locked or not account.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account cannot sign in",
        )
    return CurrentAccount(
        id=claims.account_id,
        username=claims.username,
        email=claims.email,
        kind=claims.kind,
        roles=claims.roles,
        permissions=claims.permissions,
    )


def require_permission(permission: str) -> Callable[..., CurrentAccount]:
    """Dependency factory: require an authenticated account whose token grants permission."""

    def dependency(
        current: Annotated[CurrentAccount, Depends(get_current_account)],
    ) -> CurrentAccount:
        if permission not in current.permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{permission}' required",
            )
        return current

    return dependency


@router.get("/me", response_model=CurrentAccount)
def me(
    current: Annotated[CurrentAccount, Depends(get_current_account)],
) -> CurrentAccount:
    """Identity, roles and permissions carried by the presented access token."""
    return current


@router.post("/accounts/{account_id}/unlock", response_model=AckResponse)
def unlock_account(
    account_id: int,
    admin: Annotated[CurrentAccount, Depends(require_permission("accounts.unlock"))],
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> AckResponse:
    """Administrative unlock of an account locked by failed logins."""
    try:
        service.unlock_account(account_id)
    except AuthError as e:
        raise _http_error(e) from e
    logger.info("Account unlocked by administrator", extra={"account_id": account_id, "by": admin.id})
    return AckResponse(message="Account unlocked.")
