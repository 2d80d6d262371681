"""Request hardening middleware: timeout, size limit, API key, HTTPS.

Learn: Each class guards one property of the incoming request and
answers with the uniform {"success": false, "error": ...} body when it
refuses. None of them touch the database or the auth layer; they run
before routing.
"""

import asyncio
import secrets

import structlog
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = structlog.get_logger()

# Reachable without an API key even when keys are configured
PUBLIC_PATHS = (
    "/api/v1/health",
    "/api-docs",
    "/openapi.json",
    "/api/v1/auth/register",
    "/api/v1/auth/login",
)


def _reject(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


class RequestTimeoutMiddleware:
    """Answer 408 when the rest of the stack takes longer than the deadline.

    A plain ASGI middleware rather than a BaseHTTPMiddleware: the inner app
    has to be cancelled on timeout, not left running behind the response.
    """

    def __init__(self, app: ASGIApp, timeout_seconds: float = 30.0):
        self.app = app
        self.timeout_seconds = timeout_seconds

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(
                self.app(scope, receive, send_wrapper), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request.timeout",
                method=scope["method"],
                path=scope["path"],
                timeout_seconds=self.timeout_seconds,
            )
            if not response_started:
                await _reject(408, "Request timeout")(scope, receive, send)


class RequestSizeLimitMiddleware:
    """Refuse request bodies larger than max_bytes with 413.

    The declared Content-Length is checked first. The body is then read
    and counted as it arrives, so a chunked body without a length is held
    to the same limit. At most max_bytes are buffered before the body is
    replayed to the inner app.
    """

    def __init__(self, app: ASGIApp, max_bytes: int = 1_000_000):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        try:
            declared = int(headers.get("content-length", "0"))
        except ValueError:
            await _reject(400, "Invalid Content-Length header")(scope, receive, send)
            return
        if declared > self.max_bytes:
            await self._too_large(scope, receive, send, declared)
            return

        chunks = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            received += len(chunk)
            if received > self.max_bytes:
                await self._too_large(scope, receive, send, received)
                return
            chunks.append(chunk)
            more_body = message.get("more_body", False)

        body = b"".join(chunks)
        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    async def _too_large(self, scope: Scope, receive: Receive, send: Send, size: int) -> None:
        logger.info("request.too_large", path=scope["path"], size=size)
        response = _reject(
            413, f"Request entity too large. Maximum size is {self.max_bytes} bytes"
        )
        await response(scope, receive, send)


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Require a configured API key on non-public paths.

    Disabled when no keys are configured.
    """

    def __init__(self, app, api_keys: list[str], header: str = "X-API-Key"):
        super().__init__(app)
        self.api_keys = list(api_keys)
        self.header = header

    def is_public(self, path: str) -> bool:
        return path == "/" or any(path.startswith(p) for p in PUBLIC_PATHS)

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self.api_keys or self.is_public(request.url.path):
            return await call_next(request)

        # CORS preflight carries no custom headers
        if request.method == "OPTIONS":
            return await call_next(request)

        key = request.headers.get(self.header)
        if not key:
            return _reject(401, "API key is required")

        if not any(
            secrets.compare_digest(key.encode(), valid.encode()) for valid in self.api_keys
        ):
            logger.warning(
                "security.invalid_api_key",
                ip=request.client.host if request.client else None,
                key_prefix=key[:8] + "...",
            )
            return _reject(401, "Invalid API key")

        return await call_next(request)


class HTTPSRedirectMiddleware(BaseHTTPMiddleware):
    """Redirect plain-HTTP requests, as reported by the proxy, to HTTPS."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.headers.get("x-forwarded-proto") != "https":
            host = request.headers.get("host", request.url.netloc)
            target = request.url.replace(scheme="https", netloc=host)
            return RedirectResponse(str(target), status_code=307)
        return await call_next(request)
