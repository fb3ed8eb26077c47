"""
auth/tokens.py -- Password hashing, access-token JWTs and refresh-token values.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Bcrypt's cost factor
       makes brute-force expensive for low-entropy secrets. The cost is
       configurable through BCRYPT_ROUNDS so tests can run at the minimum.

  Access tokens: python-jose with HS256. Every token carries a unique jti so
       logout and withdrawal can revoke it individually. decode() returns None
       on any failure -- the request layer turns that into a 401.

  Refresh tokens: opaque values from secrets.token_urlsafe(48) (384 bits of
       entropy). They are looked up by exact value in the refresh-token store
       and never decoded, so they carry no claims.

Layer rule: no imports from api/. core/config is only referenced for typing.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import AccessToken, Account

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("fifteen.auth")

_ALGORITHM = "HS256"
_TOKEN_TYPE = "access"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password fields at 72 characters to stay below that threshold.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash: treat as a mismatch rather than a crash.
        logger.warning("Stored password hash could not be parsed")
        return False


class BcryptHasher:
    """PasswordHasher implementation backed by bcrypt."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        return hash_password(plaintext, rounds=self.rounds)

    def verify(self, plaintext: str, hashed: str) -> bool:
        return verify_password(plaintext, hashed)


# ---------------------------------------------------------------------------
# Access tokens (JWT)
# ---------------------------------------------------------------------------


class JWTCodec:
    """Issues and verifies signed access tokens.

    Claims:
        sub         username
        account_id  numeric account id
        jti         unique token identifier (revocation key)
        iat / exp   issue and expiry times
        type        always "access"
    """

    def __init__(self, secret_key: str, expire_seconds: int, algorithm: str = _ALGORITHM) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "JWTCodec":
        return cls(settings.secret_key, settings.access_token_expire_seconds)

    def issue(self, account: Account) -> AccessToken:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=self.expire_seconds)
        token_id = generate_token_id()
        payload = {
            "sub": account.username,
            "account_id": account.id,
            "jti": token_id,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "type": _TOKEN_TYPE,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        return AccessToken(
            token=token,
            token_id=token_id,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            expires_in=self.expire_seconds,
        )

    def decode(self, token: str) -> dict | None:
        """Decode and verify a JWT. Returns the payload dict or None on any failure."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError:
            return None
        if payload.get("type") != _TOKEN_TYPE:
            return None
        if not payload.get("sub") or not payload.get("jti") or "exp" not in payload:
            return None
        return payload


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def generate_token_id() -> str:
    """Generate a unique access-token identifier (JWT ID)."""
    return str(uuid.uuid4())


def generate_refresh_token() -> str:
    """Generate an opaque refresh-token value with 384 bits of entropy."""
    return secrets.token_urlsafe(48)
