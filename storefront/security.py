# storefront/security.py
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import bcrypt
import jwt

from .core import AuthenticatedUser
from .models import utcnow

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Token failed signature, expiry or type checks. Never shown to callers as-is."""


# ---------------------------
# Passwords
# ---------------------------
class PasswordHasher:
    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("ascii")

    def verify(self, plaintext: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("ascii"))
        except ValueError:
            # over-long input or a malformed stored hash
            return False


# ---------------------------
# Token signing
# ---------------------------
class TokenSigner:
    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def sign(self, claims: Dict[str, Any], ttl: timedelta, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        payload = dict(claims)
        payload.update({"iat": now, "exp": now + ttl, "jti": uuid.uuid4().hex})
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str, token_type: str) -> Dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.PyJWTError as exc:
            raise TokenError(str(exc)) from exc
        if claims.get("type") != token_type:
            raise TokenError("unexpected token type")
        return claims


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


class CredentialIssuer:
    """Issues access/refresh pairs.

    The access token is verifiable on its own. The refresh token is only
    honoured while its record also exists in the refresh token store; that
    part is the coordinator's job.
    """

    def __init__(self, signer: TokenSigner, access_ttl: timedelta, refresh_ttl: timedelta):
        self.signer = signer
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def issue(self, user_id: int, email: str, role: str, now: Optional[datetime] = None) -> TokenPair:
        now = now or utcnow()
        access = self.signer.sign(
            {"sub": str(user_id), "email": email, "role": role, "type": ACCESS}, self.access_ttl, now
        )
        refresh = self.signer.sign({"sub": str(user_id), "type": REFRESH}, self.refresh_ttl, now)
        return TokenPair(access_token=access, refresh_token=refresh, refresh_expires_at=now + self.refresh_ttl)

    def verify_access(self, token: str) -> AuthenticatedUser:
        claims = self.signer.verify(token, ACCESS)
        return AuthenticatedUser(user_id=int(claims["sub"]), email=claims["email"], role=claims["role"])

    def verify_refresh(self, token: str) -> int:
        claims = self.signer.verify(token, REFRESH)
        return int(claims["sub"])
