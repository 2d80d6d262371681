"""Health check endpoint.

Learn: Simple GET endpoint that reports the server is running, how long
it has been up, and which protections are active. It is public and has
its own, looser rate-limit bucket so monitors can poll it.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from ekonsulta import cache

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Report liveness, uptime and the active security layers."""
    settings = request.app.state.settings
    uptime = int(time.monotonic() - request.app.state.started_at)
    redis_ok = await cache.ping()

    return {
        "status": "success",
        "message": "API is running",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "environment": settings.environment,
        "uptime": f"{uptime} seconds",
        "security": {
            "helmet": "enabled",
            "rateLimit": "enabled" if redis_ok else "disabled",
            "cors": "enabled",
            "sanitization": "enabled",
        },
    }
