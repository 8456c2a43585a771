"""Signed, stateless access tokens (JWT). Nothing here touches the database."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt

if TYPE_CHECKING:
    from backoffice.core.config import Settings


@dataclass(frozen=True)
class AccessTokenClaims:
    """Identity carried by an access token."""

    account_id: int
    username: str
    email: str
    kind: str
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)


def create_access_token(
    claims: AccessTokenClaims,
    settings: "Settings",
    now: datetime | None = None,
) -> tuple[str, datetime]:
    """Sign claims into a JWT. Returns (token, expires_at)."""
    issued_at = now or datetime.now(UTC)
    expire = issued_at + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload: dict[str, Any] = {
        "sub": str(claims.account_id),
        "username": claims.username,
        "email": claims.email,
        "kind": claims.kind,
        "roles": list(claims.roles),
        "permissions": list(claims.permissions),
        "jti": uuid.uuid4().hex,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": issued_at,
        "exp": expire,
    }
    token = jwt.encode(
        payload,
        settings.JWT_SECRET.get_secret_value(),
        algorithm=settings.JWT_ALGORITHM,
    )
    return token, expire


def decode_access_token(token: str, settings: "Settings") -> AccessTokenClaims:
    """
    Verify signature, expiry, issuer and audience; return the claims.
    Raises jwt.PyJWTError on an invalid or expired token, including a malformed payload.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET.get_secret_value(),
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
        options={"require": ["sub", "exp", "iat"]},
    )
    try:
        account_id = int(payload["sub"])
    except (TypeError, ValueError) as e:
        raise jwt.InvalidTokenError("Invalid token subject") from e
    return AccessTokenClaims(
        account_id=account_id,
        username=str(payload.get("username", "")),
        email=str(payload.get("email", "")),
        kind=str(payload.get("kind", "")),
        roles=[str(r) for r in payload.get("roles") or []],
        permissions=[str(p) for p in payload.get("permissions") or []],
    )
