from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from educonnect.core.config import settings
from educonnect.core.errors import InvalidToken

if TYPE_CHECKING:
    from educonnect.models.user import User

# Token classes. A pending-2FA token proves "password verified" only and is
# accepted by exactly one operation: submitting the second-factor code.
ACCESS_TOKEN_TYPE = "access"
PENDING_2FA_TOKEN_TYPE = "2fa_pending"

# Constant-time dummy hash used when no real hash exists,
# prevents timing attacks that could reveal valid emails.
_DUMMY_HASH = bcrypt.hashpw(b"educonnect-dummy-password", bcrypt.gensalt(rounds=4)).decode("utf-8")


# ── Bcrypt Password Hashing ───────────────────────────────────────────
def hash_password(plain: str) -> str:
    """
    Hash a plaintext password with bcrypt.
    bcrypt generates a unique salt, so the same password hashes differently
    each time.
    """
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """
    Timing-safe bcrypt comparison.

    Guards against:
      - None hash  (account has no password set yet)
      - Truncated / malformed hash  (bcrypt raises ValueError)
      - Timing attacks  (always runs a bcrypt check, even on the dummy hash)
    """
    candidate = plain.encode("utf-8")
    if not hashed or len(hashed) < 59:
        bcrypt.checkpw(candidate, _DUMMY_HASH.encode("utf-8"))
        return False
    try:
        return bcrypt.checkpw(candidate, hashed.encode("utf-8"))
    except ValueError:
        bcrypt.checkpw(candidate, _DUMMY_HASH.encode("utf-8"))
        return False


# ── JWT Tokens ────────────────────────────────────────────────────────
def _encode(payload: dict, expires_minutes: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **payload,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(user: "User") -> str:
    """
    Full session token. Change SECRET_KEY in .env to invalidate all tokens.

    Payload contains:
      sub  : user ID (standard JWT claim)
      email: for frontend display
      role : role at mint time; a later role change does not revoke it
      type : "access"
      iat / exp
    """
    return _encode(
        {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "type": ACCESS_TOKEN_TYPE,
        },
        settings.ACCESS_TOKEN_EXPIRE_MINUTES,
    )


def create_pending_2fa_token(user: "User") -> str:
    """Short-lived token issued after the password check when 2FA is enabled."""
    return _encode(
        {"sub": str(user.id), "type": PENDING_2FA_TOKEN_TYPE},
        settings.TWO_FACTOR_PENDING_EXPIRE_MINUTES,
    )


def decode_token(token: str) -> dict:
    """
    Decodes and verifies JWT signature + expiry.
    Raises InvalidToken on any failure, including a payload without a
    numeric subject or token type.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise InvalidToken()

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub.isdigit() or not payload.get("type"):
        raise InvalidToken()
    return payload


def decode_access_token(token: str) -> dict:
    payload = decode_token(token)
    if payload["type"] != ACCESS_TOKEN_TYPE:
        raise InvalidToken()
    return payload


def decode_pending_2fa_token(token: str) -> dict:
    payload = decode_token(token)
    if payload["type"] != PENDING_2FA_TOKEN_TYPE:
        raise InvalidToken("Invalid or expired two-factor session")
    return payload
