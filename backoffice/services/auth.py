"""Identity and session flows: register, login with lockout, token issue/rotation, logout, recovery."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.core.security import (
    check_password_strength,
    check_username,
    generate_opaque_token,
    hash_password,
    verify_password,
)
from backoffice.models import PURPOSE_PASSWORD_RECOVERY, Account
from backoffice.models.base import utcnow
from backoffice.services.access_tokens import AccessTokenClaims, create_access_token
from backoffice.services.errors import (
    AccountInactive,
    AccountLocked,
    AccountNotFound,
    AuthValidationError,
    DuplicateIdentifier,
    InvalidOrExpiredToken,
    NoMatch,
    WeakSecret,
)
from backoffice.services.lockout import LockoutPolicy, LockoutStatus
from backoffice.services.notifications import Notifier
from backoffice.stores import accounts, recovery_tokens, refresh_tokens

if TYPE_CHECKING:
    from backoffice.core.config import Settings

logger = logging.getLogger(__name__)

CUSTOMER_KIND = "customer"

LOCKED_MESSAGE = "Account is locked. Contact an administrator."
LOCKED_AFTER_FAILURES_MESSAGE = (
    "Account locked after too many failed login attempts. Contact an administrator."
)
INACTIVE_MESSAGE = "Account is inactive."


@dataclass(frozen=True)
class SessionTokens:
    """Access + refresh token pair handed to the client. Never persisted as such."""

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "bearer"


@lru_cache
def _dummy_hash(rounds: int) -> str:
    # Verified against when the identifier is unknown so both paths cost one bcrypt check.
    return hash_password("dummy-password-for-timing", rounds=rounds)


class AuthService:
    """
    Composes hashing, lockout, token signing and the token stores into the
    account flows. One instance per request/session; each mutating flow runs in
    a single transaction that is rolled back on any error.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings,
        notifier: Notifier | None = None,
        policy: LockoutPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.settings = settings
        self.notifier = notifier or Notifier(settings)
        self.policy = policy or LockoutPolicy(max_failed=settings.MAX_FAILED_LOGIN_ATTEMPTS)
        self._clock = clock

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _hash(self, plain_password: str) -> str:
        return hash_password(plain_password, rounds=self.settings.BCRYPT_ROUNDS)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        kind: str = CUSTOMER_KIND,
        display_name: str | None = None,
    ) -> Account:
        """
        Create an account, attach the default role for its kind and send a
        best-effort welcome. Returns the account with roles loaded.

        Raises DuplicateIdentifier, WeakSecret or AuthValidationError.
        """
        username = (username or "").strip()
        email = accounts.normalize_email(email or "")
        kind = (kind or CUSTOMER_KIND).strip().lower()
        if not username or not email:
            raise AuthValidationError("Username and email are required.")
        ok, reason = check_username(username)
        if not ok:
            raise AuthValidationError(reason or "Invalid username.")

        if accounts.username_exists(self.db, username):
            raise DuplicateIdentifier(f"Username '{username}' is already taken.")
        if accounts.email_exists(self.db, email):
            raise DuplicateIdentifier(f"Email '{email}' is already registered.")

        ok, reason = check_password_strength(password)
        if not ok:
            raise WeakSecret(reason or "Password does not meet the security requirements.")

        now = self._clock()
        password_hash = self._hash(password)
        role_name = (
            self.settings.DEFAULT_CUSTOMER_ROLE
            if kind == CUSTOMER_KIND
            else self.settings.DEFAULT_STAFF_ROLE
        )
        try:
            with self._transaction():
                account = accounts.create_account(
                    self.db,
                    username=username,
                    email=email,
                    password_hash=password_hash,
                    kind=kind,
                    display_name=display_name.strip() if display_name else None,
                    now=now,
                )
                role = accounts.get_role_by_name(self.db, role_name)
                if role is not None:
                    accounts.assign_role(self.db, account.id, role.id, now)
                else:
                    logger.warning(
                        "Default role not found; account created without roles",
                        extra={"role": role_name, "account_id": account.id},
                    )
                account_id = account.id
        except IntegrityError as e:
            # Lost a race with a concurrent registration of the same username/email.
            raise DuplicateIdentifier("Username or email is already registered.") from e

        logger.info(
            "Account registered",
            extra={"account_id": account_id, "username": username, "kind": kind},
        )
        self._notify_welcome(email, username)

        created = accounts.get_by_id(self.db, account_id, refresh=True)
        if created is None:
            raise AccountNotFound("Registered account could not be reloaded.")
        return created

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def login(self, username_or_email: str, password: str) -> Account | None:
        """
        Check credentials and apply the lockout policy.

        Returns the account (roles loaded) on success, None on unknown
        identifier or wrong password. Raises AccountLocked / AccountInactive.
        """
        account = accounts.get_by_username_or_email(self.db, username_or_email or "")
        if account is None:
            verify_password(password or "", _dummy_hash(self.settings.BCRYPT_ROUNDS))
            logger.info("Login failed: no match")
            return None

        status = LockoutStatus(self.policy.state_of(account.is_locked), account.failed_attempts)
        if not self.policy.can_attempt(status):
            raise AccountLocked(LOCKED_MESSAGE)
        if not account.is_active:
            raise AccountInactive(INACTIVE_MESSAGE)

        account_id = account.id
        now = self._clock()
        if not verify_password(password or "", account.password_hash):
            with self._transaction():
                failed, locked = accounts.record_failed_attempt(
                    self.db, account_id, self.policy.max_failed, now
                )
            status = LockoutStatus(self.policy.state_of(locked), failed)
            if not self.policy.can_attempt(status) or self.policy.should_lock(failed):
                logger.warning("Account locked after failed logins", extra={"account_id": account_id})
                raise AccountLocked(LOCKED_AFTER_FAILURES_MESSAGE)
            logger.info("Login failed: no match", extra={"account_id": account_id})
            return None

        with self._transaction():
            reset = accounts.record_successful_login(self.db, account_id, now)
        if not reset:
            raise AccountLocked(LOCKED_MESSAGE)
        logger.info("Login succeeded", extra={"account_id": account_id})
        return accounts.get_by_id(self.db, account_id, refresh=True)

    def validate_credentials(self, username_or_email: str, password: str) -> bool:
        """Re-authentication check with no side effects (no counters, no lockout changes)."""
        account = accounts.get_by_username_or_email(self.db, username_or_email or "")
        if account is None:
            verify_password(password or "", _dummy_hash(self.settings.BCRYPT_ROUNDS))
            return False
        if account.is_locked or not account.is_active:
            return False
        return verify_password(password or "", account.password_hash)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _issue_session(
        self,
        account: Account,
        now: datetime,
        origin_address: str | None,
        client_info: str | None,
    ) -> SessionTokens:
        role_names, permission_names = accounts.role_and_permission_names(account)
        claims = AccessTokenClaims(
            account_id=account.id,
            username=account.username,
            email=account.email,
            kind=account.kind,
            roles=role_names,
            permissions=permission_names,
        )
        access_token, access_expires_at = create_access_token(claims, self.settings, now=now)
        refresh_value = generate_opaque_token()
        refresh_expires_at = now + timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS)
        refresh_tokens.create(
            self.db,
            account_id=account.id,
            token=refresh_value,
            now=now,
            expires_at=refresh_expires_at,
            created_by_ip=origin_address,
            user_agent=client_info,
        )
        return SessionTokens(
            access_token=access_token,
            refresh_token=refresh_value,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def issue_session(
        self,
        account: Account,
        origin_address: str | None = None,
        client_info: str | None = None,
    ) -> SessionTokens:
        """Sign an access token and persist a new refresh token for the account."""
        now = self._clock()
        with self._transaction():
            tokens = self._issue_session(account, now, origin_address, client_info)
        logger.info("Session issued", extra={"account_id": account.id})
        return tokens

    def refresh_session(
        self,
        refresh_token: str,
        origin_address: str | None = None,
        client_info: str | None = None,
    ) -> SessionTokens:
        """
        Exchange an active refresh token for a new pair (single-use rotation).

        The old token is revoked with a conditional UPDATE in the same
        transaction that stores its successor, so a token presented twice,
        sequentially or concurrently, succeeds at most once.
        """
        now = self._clock()
        row = refresh_tokens.get_active(self.db, refresh_token or "", now)
        if row is None:
            if self.settings.REFRESH_REUSE_DETECTION:
                self._revoke_on_reuse(refresh_token or "", now)
            raise InvalidOrExpiredToken("Refresh token is invalid or expired.")

        account = accounts.get_by_id(self.db, row.account_id)
        if account is None:
            raise AccountNotFound("Account for this refresh token no longer exists.")
        if account.is_locked:
            raise AccountLocked(LOCKED_MESSAGE)
        if not account.is_active:
            raise AccountInactive(INACTIVE_MESSAGE)

        with self._transaction():
            if not refresh_tokens.revoke_if_active(self.db, refresh_token, now):
                raise InvalidOrExpiredToken("Refresh token is invalid or expired.")
            tokens = self._issue_session(account, now, origin_address, client_info)
            refresh_tokens.set_replaced_by(self.db, refresh_token, tokens.refresh_token)
        logger.info("Refresh token rotated", extra={"account_id": account.id})
        return tokens

    def _revoke_on_reuse(self, refresh_token: str, now: datetime) -> None:
        existing = refresh_tokens.get_by_token(self.db, refresh_token)
        if existing is None or not existing.is_revoked or not existing.replaced_by_token:
            return
        account_id = existing.account_id
        with self._transaction():
            revoked = refresh_tokens.revoke_descendants(self.db, refresh_token, now)
        logger.warning(
            "Rotated refresh token presented again; revoked its descendants",
            extra={"account_id": account_id, "revoked_count": revoked},
        )

    def logout(self, account_id: int, refresh_token: str | None = None) -> int:
        """
        Revoke one refresh token, or all of the account's tokens when none is given.
        Idempotent; returns how many tokens this call revoked.
        """
        now = self._clock()
        with self._transaction():
            if refresh_token:
                revoked = int(refresh_tokens.revoke(self.db, refresh_token, now, account_id=account_id))
            else:
                revoked = refresh_tokens.revoke_all_for_account(self.db, account_id, now)
        logger.info(
            "Logout",
            extra={"account_id": account_id, "revoked_count": revoked, "single": bool(refresh_token)},
        )
        return revoked

    # ------------------------------------------------------------------
    # Password recovery and change
    # ------------------------------------------------------------------

    def is_allowed_callback_url(self, callback_base_url: str) -> bool:
        url = (callback_base_url or "").strip().rstrip("/")
        if not url:
            return False
        for allowed in self.settings.ALLOWED_FRONTEND_URLS:
            if url == allowed or url.startswith(allowed + "/"):
                return True
        return False

    def request_password_recovery(
        self,
        email: str,
        callback_base_url: str,
        origin_address: str | None = None,
    ) -> str:
        """
        Issue a recovery token, invalidating any earlier active one, and send
        the reset link best-effort. Returns the raw token.

        Raises AuthValidationError for a callback URL outside ALLOWED_FRONTEND_URLS
        and AccountNotFound for an unknown email; the API layer hides the latter.
        """
        if not self.is_allowed_callback_url(callback_base_url):
            raise AuthValidationError("Callback URL is not an allowed frontend.")

        account = accounts.get_by_email(self.db, email or "")
        if account is None:
            raise AccountNotFound("If the email exists, a recovery message will be sent.")

        account_id = account.id
        account_email = account.email
        now = self._clock()
        token = generate_opaque_token()
        with self._transaction():
            superseded = recovery_tokens.invalidate_active_for_account(self.db, account_id, now)
            recovery_tokens.create(
                self.db,
                account_id=account_id,
                token=token,
                purpose=PURPOSE_PASSWORD_RECOVERY,
                now=now,
                expires_at=now + timedelta(minutes=self.settings.RECOVERY_TOKEN_EXPIRE_MINUTES),
                requested_by_ip=origin_address,
            )
        logger.info(
            "Password recovery requested",
            extra={"account_id": account_id, "superseded_count": superseded},
        )
        self._notify_recovery(account_email, token, callback_base_url)
        return token

    def validate_recovery_token(self, token: str) -> bool:
        """True if the token is unused and unexpired. Read-only."""
        return recovery_tokens.get_active(self.db, token or "", self._clock()) is not None

    def reset_password(
        self,
        token: str,
        new_password: str,
        origin_address: str | None = None,
    ) -> bool:
        """
        Set a new password with a recovery token. Clears the lockout, consumes
        the token, invalidates other recovery tokens and revokes all refresh tokens.

        Raises InvalidOrExpiredToken, WeakSecret or AccountNotFound.
        """
        now = self._clock()
        row = recovery_tokens.get_active(self.db, token or "", now)
        if row is None:
            raise InvalidOrExpiredToken("Recovery token is invalid or expired.")

        ok, reason = check_password_strength(new_password)
        if not ok:
            raise WeakSecret(reason or "Password does not meet the security requirements.")

        account_id = row.account_id
        if accounts.get_by_id(self.db, account_id) is None:
            raise AccountNotFound("Account for this recovery token no longer exists.")

        new_hash = self._hash(new_password)
        with self._transaction():
            if not recovery_tokens.consume(self.db, token, now):
                raise InvalidOrExpiredToken("Recovery token is invalid or expired.")
            accounts.set_password(self.db, account_id, new_hash, now)
            recovery_tokens.invalidate_active_for_account(self.db, account_id, now)
            revoked = refresh_tokens.revoke_all_for_account(self.db, account_id, now)
        logger.info(
            "Password reset with recovery token",
            extra={
                "account_id": account_id,
                "revoked_sessions": revoked,
                "origin_address": origin_address,
            },
        )
        return True

    def change_password(self, account_id: int, current_password: str, new_password: str) -> bool:
        """
        Replace the password of a signed-in account after checking the current one.
        Ends every session and recovery token of the account.

        Raises AccountNotFound, AccountLocked, AccountInactive, NoMatch,
        WeakSecret or AuthValidationError.
        """
        account = accounts.get_by_id(self.db, account_id)
        if account is None:
            raise AccountNotFound("Account not found.")
        if account.is_locked:
            raise AccountLocked(LOCKED_MESSAGE)
        if not account.is_active:
            raise AccountInactive(INACTIVE_MESSAGE)
        if not verify_password(current_password or "", account.password_hash):
            raise NoMatch("Current password is incorrect.")

        ok, reason = check_password_strength(new_password)
        if not ok:
            raise WeakSecret(reason or "Password does not meet the security requirements.")
        if verify_password(new_password, account.password_hash):
            raise AuthValidationError("New password must differ from the current password.")

        now = self._clock()
        new_hash = self._hash(new_password)
        with self._transaction():
            accounts.set_password(self.db, account_id, new_hash, now)
            recovery_tokens.invalidate_active_for_account(self.db, account_id, now)
            revoked = refresh_tokens.revoke_all_for_account(self.db, account_id, now)
        logger.info(
            "Password changed",
            extra={"account_id": account_id, "revoked_sessions": revoked},
        )
        return True

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def unlock_account(self, account_id: int) -> Account:
        """Administrative Locked -> Active transition; also resets the failure counter."""
        now = self._clock()
        with self._transaction():
            if not accounts.unlock(self.db, account_id, now):
                raise AccountNotFound("Account not found.")
        logger.info("Account unlocked", extra={"account_id": account_id})
        return self.get_account(account_id, refresh=True)

    def get_account(self, account_id: int, refresh: bool = False) -> Account:
        account = accounts.get_by_id(self.db, account_id, refresh=refresh)
        if account is None:
            raise AccountNotFound("Account not found.")
        return account

    # ------------------------------------------------------------------
    # Best-effort notifications
    # ------------------------------------------------------------------

    def _notify_welcome(self, email: str, username: str) -> None:
        try:
            self.notifier.send_welcome(email, username)
        except Exception:
            logger.exception("Welcome notification failed")

    def _notify_recovery(self, email: str, token: str, callback_base_url: str) -> None:
        try:
            self.notifier.send_password_recovery(
                email,
                token,
                callback_base_url,
                self.settings.RECOVERY_TOKEN_EXPIRE_MINUTES,
            )
        except Exception:
            logger.exception("Recovery notification failed")
