"""Password hashing, password strength policy and opaque token generation."""

import re
import secrets

import bcrypt

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12

# Min/max lengths for username and password validation.
USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 50
# Letters, digits and underscores; no "@", so a username never looks like an email.
USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 100
EMAIL_MAX_LEN = 100

PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

# 64 random bytes -> 86 URL-safe base64 characters (fits the 128-char token columns).
OPAQUE_TOKEN_BYTES = 64


def hash_password(plain_password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    if not plain_password or not plain_password.strip():
        raise ValueError("Password must not be empty")
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash (constant-time comparison)."""
    if not plain_password or not hashed:
        return False
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def check_username(username: str) -> tuple[bool, str | None]:
    """Returns (True, None) for an acceptable username, otherwise (False, reason)."""
    if not username or not username.strip():
        return False, "Username is required."
    if not (USERNAME_MIN_LEN <= len(username) <= USERNAME_MAX_LEN):
        return False, f"Username must be {USERNAME_MIN_LEN} to {USERNAME_MAX_LEN} characters long."
    if not re.fullmatch(USERNAME_PATTERN, username):
        return False, "Username may only contain letters, digits and underscores."
    return True, None


def check_password_strength(plain_password: str) -> tuple[bool, str | None]:
    """
    Apply the password policy.

    Returns (True, None) when acceptable, otherwise (False, reason) with a
    message suitable for showing to the user.
    """
    if not plain_password or not plain_password.strip():
        return False, "Password is required."
    if len(plain_password) < PASSWORD_MIN_LEN:
        return False, f"Password must be at least {PASSWORD_MIN_LEN} characters long."
    if len(plain_password) > PASSWORD_MAX_LEN:
        return False, f"Password must not exceed {PASSWORD_MAX_LEN} characters."
    if not any(c.isupper() for c in plain_password):
        return False, "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in plain_password):
        return False, "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in plain_password):
        return False, "Password must contain at least one digit."
    if not any(c in PASSWORD_SYMBOLS for c in plain_password):
        return False, f"Password must contain at least one special character ({PASSWORD_SYMBOLS})."
    return True, None


def generate_opaque_token(nbytes: int = OPAQUE_TOKEN_BYTES) -> str:
    """Cryptographically random URL-safe string for refresh and recovery tokens."""
    return secrets.token_urlsafe(nbytes)
