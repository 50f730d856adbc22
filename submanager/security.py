from __future__ import annotations

import datetime as dt
import hashlib
import hmac
import uuid
from dataclasses import dataclass
from typing import Any, Dict

import jwt
from passlib.context import CryptContext

from .errors import BadRequest, Unauthorized

JWT_ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


def _clip(password: str) -> bytes:
    return password.encode("utf-8")[:72]


class PasswordHasher:
    """One-way salted password hashing.

    New hashes use pbkdf2_sha256; bcrypt hashes are still accepted on verify.
    Input is cut at 72 UTF-8 bytes so bcrypt-family hashes stay comparable.
    """

    def __init__(self, context: CryptContext | None = None):
        self._ctx = context or CryptContext(
            schemes=["pbkdf2_sha256", "bcrypt_sha256", "bcrypt"],
            default="pbkdf2_sha256",
            deprecated="auto",
        )

    def hash(self, password: str) -> str:
        if not password:
            raise BadRequest("Password must not be blank")
        return self._ctx.hash(_clip(password))

    def verify(self, password: str, password_hash: str | None) -> bool:
        if not password or not password_hash:
            return False
        try:
            return self._ctx.verify(_clip(password), password_hash)
        except (ValueError, TypeError):
            return False


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenIssuer:
    def __init__(self, secret: str, access_ttl_minutes: int = 15, refresh_ttl_days: int = 7):
        if not secret:
            raise ValueError("jwt secret must not be blank")
        self.secret = secret
        self.access_ttl = dt.timedelta(minutes=max(1, int(access_ttl_minutes)))
        self.refresh_ttl = dt.timedelta(days=max(1, int(refresh_ttl_days)))

    def _encode(self, claims: Dict[str, Any], typ: str, ttl: dt.timedelta) -> str:
        now = dt.datetime.now(dt.timezone.utc)
        payload = {
            **claims,
            "sub": str(claims["sub"]),
            "typ": typ,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def issue_pair(self, claims: Dict[str, Any]) -> TokenPair:
        """Sign a fresh access/refresh pair for ``claims`` (must contain ``sub``)."""
        return TokenPair(
            access_token=self._encode(claims, ACCESS, self.access_ttl),
            refresh_token=self._encode(claims, REFRESH, self.refresh_ttl),
        )

    def verify(self, token: str, expected_type: str) -> Dict[str, Any]:
        if not token:
            raise Unauthorized()
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.InvalidTokenError:
            raise Unauthorized()
        if payload.get("typ") != expected_type:
            raise Unauthorized()
        return payload

    @staticmethod
    def fingerprint(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def matches(token: str, stored_fingerprint: str | None) -> bool:
        if not stored_fingerprint:
            return False
        return hmac.compare_digest(TokenIssuer.fingerprint(token), stored_fingerprint)
