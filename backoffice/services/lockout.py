"""Account lockout state machine.

Two states: ACTIVE (may attempt a login) and LOCKED (may not, whatever the
password). Failed attempts count up; reaching the threshold locks. A successful
login resets the counter. The account store applies these transitions as atomic
UPDATEs using the policy threshold (see stores/accounts.py). Only an
administrative unlock leaves LOCKED: there is no time-based unlock
(AUTO_UNLOCK_AFTER is None).
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

MAX_FAILED = 5

# Lockout lasts until an administrator unlocks the account.
AUTO_UNLOCK_AFTER: timedelta | None = None


class LockoutState(str, Enum):
    ACTIVE = "active"
    LOCKED = "locked"


@dataclass(frozen=True)
class LockoutStatus:
    state: LockoutState
    failed_attempts: int


@dataclass(frozen=True)
class LockoutPolicy:
    """Pure decisions; persistence of the counter and flag lives in the account store."""

    max_failed: int = MAX_FAILED

    def __post_init__(self) -> None:
        if self.max_failed < 1:
            raise ValueError("max_failed must be at least 1")

    @staticmethod
    def state_of(is_locked: bool) -> LockoutState:
        return LockoutState.LOCKED if is_locked else LockoutState.ACTIVE

    def should_lock(self, failed_attempts: int) -> bool:
        """True once the failure counter has reached the threshold."""
        return failed_attempts >= self.max_failed

    def can_attempt(self, status: LockoutStatus) -> bool:
        return status.state is LockoutState.ACTIVE

