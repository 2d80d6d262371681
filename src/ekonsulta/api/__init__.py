"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Role checks are applied at the include_router level using
FastAPI's dependencies parameter. This protects all routes in a router
without modifying individual handlers. Health and auth routers are open;
/auth/me authenticates itself, /users requires an administrator.
"""

from fastapi import APIRouter, Depends

from ekonsulta.api.auth import router as auth_router
from ekonsulta.api.health import router as health_router
from ekonsulta.api.users import router as users_router
from ekonsulta.auth.dependencies import require_administrator

api_router = APIRouter(prefix="/api/v1")

# Open routes: no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Administrator-only routes
api_router.include_router(
    users_router, tags=["users"], dependencies=[Depends(require_administrator)]
)
