"""Domain errors raised by the authentication flows; the API layer maps them to HTTP statuses."""


class AuthError(Exception):
    """Base for every identity/session failure. error_code is stable for API clients."""

    error_code = "AUTH_ERROR"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message)


class AuthValidationError(AuthError):
    """Malformed input or mismatched confirmation; the caller can resubmit."""

    error_code = "VALIDATION_ERROR"


class WeakSecret(AuthValidationError):
    """Password does not satisfy the strength policy."""

    error_code = "WEAK_PASSWORD"


class DuplicateIdentifier(AuthError):
    """Username or email already registered."""

    error_code = "DUPLICATE_IDENTIFIER"


class NoMatch(AuthError):
    """Credentials did not match. Never says whether the account exists."""

    error_code = "INVALID_CREDENTIALS"


class AccountLocked(AuthError):
    """Account is locked after too many failed attempts; needs an administrator."""

    error_code = "ACCOUNT_LOCKED"


class AccountInactive(AuthError):
    """Account has been deactivated."""

    error_code = "ACCOUNT_INACTIVE"


class InvalidOrExpiredToken(AuthError):
    """Refresh or recovery token is unknown, expired, revoked or already used."""

    error_code = "INVALID_OR_EXPIRED_TOKEN"


class NotFound(AuthError):
    """Referenced record does not exist."""

    error_code = "NOT_FOUND"


class AccountNotFound(NotFound):
    """Referenced account does not exist."""

    error_code = "ACCOUNT_NOT_FOUND"
