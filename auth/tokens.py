"""
auth/tokens.py -- Password hashing and the bearer token codec.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper) with a fixed cost of 12
       for every new hash. bcrypt embeds the cost in the digest, so legacy rows
       hashed with a lower cost still verify. verify_password() never raises:
       a malformed digest is just a failed verification.

  JWT: python-jose with HS256. Tokens carry user_id, email, role, iat and exp.
       TokenCodec.verify() returns None on any failure (bad signature, broken
       structure, missing claims, unknown role, expired) so callers cannot
       build an oracle out of the failure reason.

  Clock: TokenCodec takes a clock callable. Expiry is checked against it
       rather than jose's own wall-clock check, which lets tests move time
       forward without sleeping.

  Storage key: hash_token() is a plain SHA-256 of the raw token. It only has
       to be deterministic; the token itself already carries 256 bits of HMAC.

Layer rule: no imports from api/, core/, or standards/. The signing secret is
passed in by whoever builds the codec (api/main.py lifespan, tests).
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import Role

logger = logging.getLogger("lablims.auth")

ALGORITHM = "HS256"
BCRYPT_ROUNDS = 12
# bcrypt only reads the first 72 bytes; recent releases raise instead of truncating.
BCRYPT_MAX_BYTES = 72
DEFAULT_TOKEN_TTL = timedelta(hours=8)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def _secret_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Input beyond 72 bytes is ignored, matching classic bcrypt behaviour.
    """
    return bcrypt.hashpw(_secret_bytes(plain), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_secret_bytes(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Login always runs bcrypt, even for an unknown
# email, so response time does not reveal which emails exist.
DUMMY_HASH: str = hash_password("lablims_timing_dummy")


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime


class TokenCodec:
    """Issues and verifies HS256 bearer tokens with a fixed time-to-live.

    Usage:
        codec = TokenCodec(secret=settings.jwt_secret)
        token = codec.issue(user.id, user.email, user.role)
        claims = codec.verify(token)   # TokenClaims or None
    """

    def __init__(
        self,
        secret: str,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not secret:
            raise ValueError("TokenCodec requires a non-empty secret.")
        self._secret = secret
        self.ttl = ttl
        self.clock = clock

    def issue(self, user_id: int, email: str, role: Role | str) -> str:
        """Encode a signed token for the given subject."""
        issued_at = self.clock()
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "email": email,
            "role": Role(role).value,
            "iat": issued_at,
            "exp": issued_at + self.ttl,
            # Unique per issue so two logins in the same second get distinct session keys.
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims | None:
        """Decode and verify a token. Returns the claims or None on any failure."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError:
            return None

        try:
            user_id = payload["user_id"]
            exp = payload["exp"]
            iat = payload["iat"]
            claims = TokenClaims(
                user_id=int(user_id),
                email=str(payload["email"]),
                role=Role(payload["role"]),
                issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
                expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError, OverflowError, OSError):
            return None

        if isinstance(user_id, bool) or not isinstance(user_id, int):
            return None
        if claims.expires_at <= self.clock():
            return None
        return claims


def hash_token(token: str) -> str:
    """Return the deterministic storage key for a raw bearer token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
