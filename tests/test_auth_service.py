"""Tests for backoffice.services.auth: account flows against an in-memory SQLite database."""

import unittest
from datetime import timedelta
from unittest.mock import MagicMock

from backoffice.models import Account, RefreshToken
from backoffice.services.auth import AuthService
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
from backoffice.stores import accounts
from tests.helpers import (
    FRONTEND_URL,
    NEW_PASSWORD,
    STRONG_PASSWORD,
    FixedClock,
    make_engine,
    make_session,
    make_settings,
)


class AuthServiceTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session(self.engine)
        self.clock = FixedClock()
        self.notifier = MagicMock()
        self.settings = make_settings(**self.settings_overrides)
        self.service = AuthService(
            self.db, self.settings, notifier=self.notifier, clock=self.clock
        )

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def register_alice(self, **kwargs) -> Account:
        return self.service.register("alice", "Alice@X.com", STRONG_PASSWORD, **kwargs)

    def lock(self, account_id: int) -> None:
        accounts.record_failed_attempt(self.db, account_id, 1, self.clock())
        self.db.commit()


class TestRegister(AuthServiceTestCase):
    """register creates an account with its default role and rejects duplicates."""

    def test_customer_gets_customer_role(self) -> None:
        account = self.register_alice()
        self.assertEqual(account.username, "alice")
        self.assertEqual(account.email, "alice@x.com")
        self.assertEqual(account.kind, "customer")
        self.assertFalse(account.is_locked)
        self.assertEqual(account.failed_attempts, 0)
        roles, permissions = accounts.role_and_permission_names(account)
        self.assertEqual(roles, ["Customer"])
        self.assertIn("reservations.create", permissions)
        self.notifier.send_welcome.assert_called_once_with("alice@x.com", "alice")

    def test_staff_kind_gets_staff_role(self) -> None:
        account = self.service.register("bob", "bob@x.com", STRONG_PASSWORD, kind="Employee")
        self.assertEqual(account.kind, "employee")
        self.assertEqual(accounts.role_and_permission_names(account)[0], ["Employee"])

    def test_password_is_hashed(self) -> None:
        account = self.register_alice()
        self.assertNotEqual(account.password_hash, STRONG_PASSWORD)
        self.assertTrue(account.password_hash.startswith("$2"))

    def test_duplicate_username(self) -> None:
        self.register_alice()
        with self.assertRaises(DuplicateIdentifier):
            self.service.register("alice", "other@x.com", STRONG_PASSWORD)

    def test_duplicate_email_any_case(self) -> None:
        self.register_alice()
        with self.assertRaises(DuplicateIdentifier):
            self.service.register("alice2", "ALICE@x.com", STRONG_PASSWORD)
        self.assertEqual(self.db.query(Account).count(), 1)

    def test_weak_password(self) -> None:
        with self.assertRaises(WeakSecret) as ctx:
            self.service.register("alice", "alice@x.com", "password")
        self.assertEqual(ctx.exception.error_code, "WEAK_PASSWORD")
        self.assertEqual(self.db.query(Account).count(), 0)

    def test_blank_identifiers(self) -> None:
        with self.assertRaises(AuthValidationError):
            self.service.register("  ", "alice@x.com", STRONG_PASSWORD)

    def test_username_must_not_look_like_an_email(self) -> None:
        for username in ("al@ice", "bob.smith", "ab", "x" * 51):
            with self.subTest(username=username), self.assertRaises(AuthValidationError):
                self.service.register(username, "bob@x.com", STRONG_PASSWORD)
        self.assertEqual(self.db.query(Account).count(), 0)

    def test_missing_default_role_still_registers(self) -> None:
        service = AuthService(
            self.db,
            make_settings(DEFAULT_CUSTOMER_ROLE="Nonexistent"),
            notifier=self.notifier,
            clock=self.clock,
        )
        with self.assertLogs("backoffice.services.auth", level="WARNING"):
            account = service.register("alice", "alice@x.com", STRONG_PASSWORD)
        self.assertEqual(account.roles, [])

    def test_notification_failure_does_not_fail_registration(self) -> None:
        self.notifier.send_welcome.side_effect = RuntimeError("relay down")
        with self.assertLogs("backoffice.services.auth", level="ERROR"):
            account = self.register_alice()
        self.assertIsNotNone(account.id)


class TestLogin(AuthServiceTestCase):
    """login applies the lockout policy: five failures lock the account."""

    def setUp(self) -> None:
        super().setUp()
        self.account_id = self.register_alice().id

    def test_success_by_username_or_email(self) -> None:
        self.assertEqual(self.service.login("alice", STRONG_PASSWORD).id, self.account_id)
        self.assertEqual(self.service.login("ALICE@x.com", STRONG_PASSWORD).id, self.account_id)

    def test_success_stamps_last_access(self) -> None:
        account = self.service.login("alice", STRONG_PASSWORD)
        self.assertIsNotNone(account.last_access_at)

    def test_username_lookup_ignores_case(self) -> None:
        self.assertEqual(self.service.login("ALICE", STRONG_PASSWORD).id, self.account_id)
        self.assertTrue(self.service.validate_credentials("Alice", STRONG_PASSWORD))
        self.assertEqual(self.service.get_account(self.account_id, refresh=True).failed_attempts, 0)

    def test_unknown_identifier_returns_none(self) -> None:
        self.assertIsNone(self.service.login("nobody", STRONG_PASSWORD))

    def test_wrong_password_counts(self) -> None:
        self.assertIsNone(self.service.login("alice", "Wrong!Pass1"))
        self.assertEqual(self.service.get_account(self.account_id, refresh=True).failed_attempts, 1)

    def test_fifth_failure_locks(self) -> None:
        for _ in range(4):
            self.assertIsNone(self.service.login("alice", "Wrong!Pass1"))
        with self.assertRaises(AccountLocked) as ctx:
            self.service.login("alice", "Wrong!Pass1")
        self.assertEqual(ctx.exception.error_code, "ACCOUNT_LOCKED")
        account = self.service.get_account(self.account_id, refresh=True)
        self.assertTrue(account.is_locked)
        self.assertEqual(account.failed_attempts, 5)

    def test_locked_rejects_correct_password(self) -> None:
        self.lock(self.account_id)
        with self.assertRaises(AccountLocked):
            self.service.login("alice", STRONG_PASSWORD)
        self.assertEqual(self.service.get_account(self.account_id, refresh=True).failed_attempts, 1)

    def test_success_resets_counter(self) -> None:
        for _ in range(3):
            self.service.login("alice", "Wrong!Pass1")
        self.service.login("alice", STRONG_PASSWORD)
        self.assertEqual(self.service.get_account(self.account_id, refresh=True).failed_attempts, 0)

    def test_inactive_account(self) -> None:
        account = self.service.get_account(self.account_id)
        account.is_active = False
        self.db.commit()
        with self.assertRaises(AccountInactive):
            self.service.login("alice", STRONG_PASSWORD)

    def test_validate_credentials_has_no_side_effects(self) -> None:
        self.assertTrue(self.service.validate_credentials("alice", STRONG_PASSWORD))
        self.assertFalse(self.service.validate_credentials("alice", "Wrong!Pass1"))
        self.assertFalse(self.service.validate_credentials("nobody", STRONG_PASSWORD))
        account = self.service.get_account(self.account_id, refresh=True)
        self.assertEqual(account.failed_attempts, 0)
        self.assertIsNone(account.last_access_at)

    def test_validate_credentials_false_when_locked(self) -> None:
        self.lock(self.account_id)
        self.assertFalse(self.service.validate_credentials("alice", STRONG_PASSWORD))


class TestSessions(AuthServiceTestCase):
    """Refresh tokens rotate once; logout revokes one or all."""

    def setUp(self) -> None:
        super().setUp()
        self.account = self.register_alice()
        self.account_id = self.account.id

    def test_issue_session(self) -> None:
        tokens = self.service.issue_session(self.account, origin_address="198.51.100.7")
        self.assertEqual(tokens.token_type, "bearer")
        self.assertGreaterEqual(len(tokens.refresh_token), 64)
        self.assertEqual(tokens.access_expires_at, self.clock() + timedelta(minutes=60))
        self.assertEqual(tokens.refresh_expires_at, self.clock() + timedelta(days=7))
        row = self.db.query(RefreshToken).filter_by(token=tokens.refresh_token).one()
        self.assertEqual(row.account_id, self.account_id)
        self.assertEqual(row.created_by_ip, "198.51.100.7")

    def test_rotation_is_single_use(self) -> None:
        first = self.service.issue_session(self.account)
        second = self.service.refresh_session(first.refresh_token)
        self.assertNotEqual(first.refresh_token, second.refresh_token)
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.refresh_session(first.refresh_token)
        third = self.service.refresh_session(second.refresh_token)
        old = self.db.query(RefreshToken).filter_by(token=first.refresh_token).one()
        self.assertTrue(old.is_revoked)
        self.assertEqual(old.replaced_by_token, second.refresh_token)
        self.assertNotEqual(third.refresh_token, second.refresh_token)

    def test_unknown_token(self) -> None:
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.refresh_session("does-not-exist")

    def test_expired_token(self) -> None:
        tokens = self.service.issue_session(self.account)
        self.clock.advance(days=8)
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.refresh_session(tokens.refresh_token)

    def test_locked_account_cannot_refresh(self) -> None:
        tokens = self.service.issue_session(self.account)
        self.lock(self.account_id)
        with self.assertRaises(AccountLocked):
            self.service.refresh_session(tokens.refresh_token)

    def test_logout_single_is_idempotent(self) -> None:
        first = self.service.issue_session(self.account)
        second = self.service.issue_session(self.account)
        self.assertEqual(self.service.logout(self.account_id, first.refresh_token), 1)
        self.assertEqual(self.service.logout(self.account_id, first.refresh_token), 0)
        self.service.refresh_session(second.refresh_token)

    def test_logout_other_owner_revokes_nothing(self) -> None:
        tokens = self.service.issue_session(self.account)
        self.assertEqual(self.service.logout(self.account_id + 100, tokens.refresh_token), 0)
        self.service.refresh_session(tokens.refresh_token)

    def test_logout_all(self) -> None:
        tokens = [self.service.issue_session(self.account) for _ in range(3)]
        self.assertEqual(self.service.logout(self.account_id), 3)
        self.assertEqual(self.service.logout(self.account_id), 0)
        for t in tokens:
            with self.assertRaises(InvalidOrExpiredToken):
                self.service.refresh_session(t.refresh_token)


class TestReuseDetection(AuthServiceTestCase):
    """With REFRESH_REUSE_DETECTION, replaying a rotated token kills its successors."""

    settings_overrides = {"REFRESH_REUSE_DETECTION": True}

    def test_replay_revokes_descendants(self) -> None:
        account = self.register_alice()
        first = self.service.issue_session(account)
        second = self.service.refresh_session(first.refresh_token)
        with self.assertLogs("backoffice.services.auth", level="WARNING"):
            with self.assertRaises(InvalidOrExpiredToken):
                self.service.refresh_session(first.refresh_token)
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.refresh_session(second.refresh_token)


class TestPasswordRecovery(AuthServiceTestCase):
    """Recovery tokens are single-use, superseded by newer ones and expire."""

    def setUp(self) -> None:
        super().setUp()
        self.account = self.register_alice()
        self.account_id = self.account.id

    def test_request_notifies_with_link_base(self) -> None:
        token = self.service.request_password_recovery("ALICE@x.com", FRONTEND_URL)
        self.notifier.send_password_recovery.assert_called_once_with(
            "alice@x.com", token, FRONTEND_URL, 60
        )
        self.assertTrue(self.service.validate_recovery_token(token))

    def test_newer_token_supersedes_older(self) -> None:
        t1 = self.service.request_password_recovery("alice@x.com", FRONTEND_URL)
        t2 = self.service.request_password_recovery("alice@x.com", FRONTEND_URL)
        self.assertFalse(self.service.validate_recovery_token(t1))
        self.assertTrue(self.service.validate_recovery_token(t2))
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.reset_password(t1, NEW_PASSWORD)
        self.assertTrue(self.service.reset_password(t2, NEW_PASSWORD))

    def test_reset_clears_lockout_and_sessions(self) -> None:
        tokens = self.service.issue_session(self.account)
        for _ in range(4):
            self.service.login("alice", "Wrong!Pass1")
        with self.assertRaises(AccountLocked):
            self.service.login("alice", "Wrong!Pass1")

        token = self.service.request_password_recovery("alice@x.com", FRONTEND_URL)
        self.assertTrue(self.service.reset_password(token, NEW_PASSWORD))

        account = self.service.get_account(self.account_id, refresh=True)
        self.assertFalse(account.is_locked)
        self.assertEqual(account.failed_attempts, 0)
        self.assertIsNotNone(self.service.login("alice", NEW_PASSWORD))
        self.assertIsNone(self.service.login("alice", STRONG_PASSWORD))
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.refresh_session(tokens.refresh_token)

    def test_token_is_single_use(self) -> None:
        token = self.service.request_password_recovery("alice@x.com", FRONTEND_URL)
        self.service.reset_password(token, NEW_PASSWORD)
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.reset_password(token, "Another1!pass")

    def test_expired_token(self) -> None:
        token = self.service.request_password_recovery("alice@x.com", FRONTEND_URL)
        self.clock.advance(minutes=61)
        self.assertFalse(self.service.validate_recovery_token(token))
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.reset_password(token, NEW_PASSWORD)

    def test_weak_new_password_keeps_token(self) -> None:
        token = self.service.request_password_recovery("alice@x.com", FRONTEND_URL)
        with self.assertRaises(WeakSecret):
            self.service.reset_password(token, "short")
        self.assertTrue(self.service.validate_recovery_token(token))

    def test_unknown_email(self) -> None:
        with self.assertRaises(AccountNotFound):
            self.service.request_password_recovery("nobody@x.com", FRONTEND_URL)
        self.notifier.send_password_recovery.assert_not_called()

    def test_callback_must_be_allowed(self) -> None:
        with self.assertRaises(AuthValidationError):
            self.service.request_password_recovery("alice@x.com", "https://evil.example.net")
        self.assertTrue(self.service.is_allowed_callback_url(FRONTEND_URL + "/"))
        self.assertTrue(self.service.is_allowed_callback_url(FRONTEND_URL + "/account"))
        self.assertFalse(self.service.is_allowed_callback_url(FRONTEND_URL + ".evil.net"))


class TestChangePasswordAndUnlock(AuthServiceTestCase):
    """Signed-in password change and administrative unlock."""

    def setUp(self) -> None:
        super().setUp()
        self.account = self.register_alice()
        self.account_id = self.account.id

    def test_change_password(self) -> None:
        tokens = self.service.issue_session(self.account)
        self.assertTrue(self.service.change_password(self.account_id, STRONG_PASSWORD, NEW_PASSWORD))
        self.assertTrue(self.service.validate_credentials("alice", NEW_PASSWORD))
        with self.assertRaises(InvalidOrExpiredToken):
            self.service.refresh_session(tokens.refresh_token)

    def test_wrong_current_password(self) -> None:
        with self.assertRaises(NoMatch):
            self.service.change_password(self.account_id, "Wrong!Pass1", NEW_PASSWORD)

    def test_same_password_rejected(self) -> None:
        with self.assertRaises(AuthValidationError):
            self.service.change_password(self.account_id, STRONG_PASSWORD, STRONG_PASSWORD)

    def test_unknown_account(self) -> None:
        with self.assertRaises(AccountNotFound):
            self.service.change_password(9999, STRONG_PASSWORD, NEW_PASSWORD)

    def test_unlock(self) -> None:
        self.lock(self.account_id)
        account = self.service.unlock_account(self.account_id)
        self.assertFalse(account.is_locked)
        self.assertEqual(account.failed_attempts, 0)
        self.assertIsNotNone(self.service.login("alice", STRONG_PASSWORD))

    def test_unlock_unknown(self) -> None:
        with self.assertRaises(AccountNotFound):
            self.service.unlock_account(9999)


if __name__ == "__main__":
    unittest.main()
