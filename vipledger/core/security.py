from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Union
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext

from vipledger.core.config import settings
from vipledger.domain.enums import UserRole

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
ALGORITHM = settings.JWT_ALGORITHM
_RESERVED_CLAIMS = frozenset({"sub", "exp", "type", "jti", "iat"})

# Staff run the bar and the door; members only ever see their own data.
ROLE_SCOPES: dict[UserRole, list[str]] = {
    UserRole.admin: ["admin", "users:me", "vip:read", "vip:write", "pos:read", "pos:write", "nfc:write"],
    UserRole.staff: ["users:me", "vip:read", "pos:read", "pos:write", "nfc:write"],
    UserRole.vip: ["users:me"],
    UserRole.artist: ["users:me"],
}


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def scopes_for_role(role: UserRole | str) -> list[str]:
    return list(ROLE_SCOPES.get(UserRole(role), ["users:me"]))


def _signing_secret(token_type: str) -> str:
    if token_type == "refresh":
        return settings.refresh_secret_fallback
    return settings.SECRET_KEY


def _verification_secrets(token_type: str) -> list[str]:
    """Current secret first, then the rotated-out ones, without duplicates."""
    chain = [_signing_secret(token_type)]
    if token_type == "refresh":
        chain.extend(settings.REFRESH_SECRET_KEY_FALLBACKS)
        chain.extend(settings.SECRET_KEY_FALLBACKS)
        if settings.REFRESH_SECRET_KEY:
            chain.append(settings.SECRET_KEY)
    else:
        chain.extend(settings.SECRET_KEY_FALLBACKS)
    return list(dict.fromkeys(secret for secret in chain if secret))


def _encode(subject: Union[str, Any], token_type: str, lifetime: timedelta, extra: dict[str, Any] | None) -> str:
    issued = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        key: value for key, value in (extra or {}).items() if key not in _RESERVED_CLAIMS
    }
    claims.update(
        sub=str(subject),
        type=token_type,
        exp=issued + lifetime,
        iat=int(issued.timestamp()),
        jti=uuid4().hex,
    )
    return jwt.encode(claims, _signing_secret(token_type), algorithm=ALGORITHM)


def _decode(token: str, token_type: str) -> dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise JWTError("Invalid token header") from exc
    if header.get("alg") != ALGORITHM:
        raise JWTError("Token signed with unexpected algorithm")

    last_error: JWTError | None = None
    for secret in _verification_secrets(token_type):
        try:
            data = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            last_error = exc
            continue
        if data.get("type") != token_type:
            raise JWTError("Invalid token type")
        return data
    raise last_error or JWTError("No secret configured for token verification")


def create_access_token(
    subject: Union[str, Any],
    expires_minutes: int | None = None,
    extra: dict[str, Any] | None = None,
) -> str:
    minutes = expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    return _encode(subject, "access", timedelta(minutes=minutes), extra)


def create_refresh_token(
    subject: Union[str, Any],
    expires_days: int | None = None,
    extra: dict[str, Any] | None = None,
) -> str:
    days = expires_days or settings.REFRESH_TOKEN_EXPIRE_DAYS
    return _encode(subject, "refresh", timedelta(days=days), extra)


def decode_access_token(token: str) -> dict[str, Any]:
    return _decode(token, "access")


def decode_refresh_token(token: str) -> dict[str, Any]:
    return _decode(token, "refresh")
