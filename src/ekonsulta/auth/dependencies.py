"""FastAPI auth dependencies: the authentication and authorization gates.

Learn: These are used as Depends() in routers and route handlers:

    get_current_user        Authorization: Bearer <token> → CurrentIdentity
    require_roles(*roles)   CurrentIdentity → CurrentIdentity, or 403

FastAPI resolves the chain in order, so a handler behind require_roles
never runs before both gates have passed. Nothing is stored on the
request object; each gate returns the identity value to the next one.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ekonsulta.auth.tokens import TokenError, TokenService
from ekonsulta.db.engine import get_db
from ekonsulta.db.models import Role, User
from ekonsulta.errors import AuthenticationError, AuthorizationError
from ekonsulta.services.user_service import UserService

logger = structlog.get_logger()

# auto_error=False: a missing header is our 401, not FastAPI's 403.
bearer_scheme = HTTPBearer(auto_error=False, description="JWT from /auth/login")


@dataclass(frozen=True)
class CurrentIdentity:
    """The authenticated identity making the request."""

    user: User

    @property
    def user_id(self) -> str:
        return str(self.user.id)

    @property
    def role(self) -> Role:
        return self.user.role


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_user_service(
    request: Request, db: AsyncSession = Depends(get_db)
) -> UserService:
    return UserService(db, bcrypt_rounds=request.app.state.settings.bcrypt_rounds)


def bearer_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Extract the bearer token; no token means 401 before anything else runs."""
    if credentials and credentials.credentials:
        return credentials.credentials
    logger.info("auth.token_missing", path=request.url.path)
    raise AuthenticationError()


async def get_current_user(
    request: Request,
    token: str = Depends(bearer_token),
    tokens: TokenService = Depends(get_token_service),
    users: UserService = Depends(get_user_service),
) -> CurrentIdentity:
    """Verify the token and resolve its subject to a stored identity."""
    try:
        subject = tokens.verify(token)
    except TokenError as e:
        # Expired and invalid tokens get the same answer.
        logger.info("auth.token_rejected", path=request.url.path, reason=type(e).__name__)
        raise AuthenticationError()

    user = await users.find_by_id(subject)
    if not user:
        logger.info("auth.user_missing", path=request.url.path, user_id=subject)
        raise AuthenticationError("User not found")

    return CurrentIdentity(user=user)


def require_roles(*roles: Role):
    """Dependency factory: admit only identities holding one of roles."""
    allowed = frozenset(roles)

    def role_checker(
        identity: CurrentIdentity = Depends(get_current_user),
    ) -> CurrentIdentity:
        if identity.role not in allowed:
            logger.info(
                "auth.role_denied",
                user_id=identity.user_id,
                role=identity.role.value,
                allowed=sorted(r.value for r in allowed),
            )
            raise AuthorizationError(
                f"User role {identity.role.value} is not authorized to access this route"
            )
        return identity

    return role_checker


require_administrator = require_roles(Role.ADMINISTRATOR)
