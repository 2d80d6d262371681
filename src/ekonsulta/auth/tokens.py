"""JWT token issuance and verification.

Learn: JWT (JSON Web Token) provides stateless authentication. A token
binds one user id ("sub") to a fixed expiry ("exp" = issuance + the
configured number of days). There is no server-side revocation list: a
token stays valid until it expires or the signing secret changes.

verify() distinguishes TokenExpired from TokenInvalid so callers can log
the difference; the HTTP layer answers both with the same 401.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from ekonsulta.config import Settings


class TokenError(Exception):
    """Raised when token verification fails."""


class TokenInvalid(TokenError):
    """Bad signature, malformed structure or missing claims."""


class TokenExpired(TokenError):
    """Well-formed token past its expiry."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Signs and verifies bearer tokens with a process-wide secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(days=30),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self.secret = secret
        self.algorithm = algorithm
        self.lifetime = lifetime
        self.clock = clock or utcnow

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            lifetime=timedelta(days=settings.jwt_expire_days),
        )

    def expires_at(self, issued_at: datetime) -> datetime:
        return issued_at + self.lifetime

    def issue(self, user_id: str) -> str:
        """Create a signed token for the given user id."""
        issued_at = self.clock()
        payload = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": self.expires_at(issued_at),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        """Verify a token and return its subject (the user id).

        Raises TokenExpired or TokenInvalid on failure.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired("Token has expired")
        except jwt.InvalidTokenError as e:
            raise TokenInvalid(f"Invalid token: {e}")
        return payload["sub"]

    def claims(self, token: str) -> dict:
        """Decode without verifying. For diagnostics and tests only."""
        return jwt.decode(token, options={"verify_signature": False})
