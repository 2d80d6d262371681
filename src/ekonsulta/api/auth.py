"""Auth API: registration, login, current identity, logout.

Learn: Routes for user authentication:
- POST /auth/register → create an identity, returns a token
- POST /auth/login → email or username + password → token
- GET /auth/me → current identity (requires a bearer token)
- GET /auth/logout → acknowledgement only; tokens are stateless, the
  client discards its copy

Login answers an unknown identifier and a wrong password with the same
401 body, so the endpoint cannot be used to discover which accounts exist.
"""

import structlog
from fastapi import APIRouter, Depends

from ekonsulta.auth.dependencies import (
    CurrentIdentity,
    get_current_user,
    get_token_service,
    get_user_service,
)
from ekonsulta.auth.tokens import TokenService
from ekonsulta.errors import AuthenticationError, MissingCredentialsError
from ekonsulta.schemas.user import (
    EmptyEnvelope,
    LoginRequest,
    TokenResponse,
    UserCreate,
    UserEnvelope,
    UserRead,
)
from ekonsulta.services.user_service import UserService

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    body: UserCreate,
    users: UserService = Depends(get_user_service),
    tokens: TokenService = Depends(get_token_service),
):
    """Create a new identity and sign a token for it."""
    user = await users.create(body)
    return TokenResponse(token=tokens.issue(str(user.id)))


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    users: UserService = Depends(get_user_service),
    tokens: TokenService = Depends(get_token_service),
):
    """Login with email (or username) and password → JWT."""
    if not (body.email or body.username) or not body.password:
        raise MissingCredentialsError()

    user = await users.find_by_identifier(email=body.email, username=body.username)
    if not user or not await users.verify_password(user, body.password):
        logger.info(
            "auth.login_failed",
            by="email" if body.email else "username",
            known_identity=user is not None,
        )
        raise AuthenticationError("Invalid credentials")

    logger.info("auth.login", user_id=str(user.id))
    return TokenResponse(token=tokens.issue(str(user.id)))


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserEnvelope)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    """Get the current authenticated user's record."""
    user = await users.get(identity.user.id)
    return UserEnvelope(data=UserRead.model_validate(user))


# ─── Logout ─────────────────────────────────────────────


@router.get("/logout", response_model=EmptyEnvelope)
async def logout():
    """Nothing to revoke server side; the token simply stops being sent."""
    return EmptyEnvelope()
