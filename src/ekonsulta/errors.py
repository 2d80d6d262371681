"""Error taxonomy and the exception handlers that normalize it.

Learn: services and dependencies raise the typed errors below; they never
build HTTP responses themselves. register_exception_handlers() maps each
error (plus schema validation, duplicate-key and unexpected failures) to a
uniform {"success": false, ...} body. Internal detail stays in the logs.
UnhandledErrorMiddleware does the same for unexpected exceptions from
inside the middleware stack.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ekonsulta.logging import redact

logger = structlog.get_logger()

DUPLICATE_MESSAGE = "Duplicate field value entered"


class AppError(Exception):
    """Base class for errors that map to an HTTP status."""

    status_code = 500
    body_key = "error"
    default_message = "Server Error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed, missing or duplicate input."""

    status_code = 400
    default_message = "Invalid input"


class MissingCredentialsError(ValidationError):
    """Login request without an identifier or password."""

    body_key = "message"
    default_message = "Please provide an email or username and password"


class AuthenticationError(AppError):
    """Missing, invalid or expired token, or bad login credentials."""

    status_code = 401
    body_key = "message"
    default_message = "Not authorized to access this route"


class AuthorizationError(AppError):
    """Authenticated identity whose role is not allowed on the route."""

    status_code = 403
    body_key = "message"
    default_message = "Not authorized to access this route"


class NotFoundError(AppError):
    status_code = 404
    body_key = "message"
    default_message = "Resource not found"


class InternalError(AppError):
    status_code = 500


def error_body(key: str, message: str) -> dict:
    return {"success": False, key: message}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.info(
        "request.rejected",
        method=request.method,
        path=request.url.path,
        status=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.body_key, exc.message),
    )


def _validation_message(error: dict) -> str:
    field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    message = error.get("msg", "Invalid value")
    return f"{field}: {message}" if field else message


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = [_validation_message(e) for e in exc.errors()]
    logger.info(
        "request.invalid",
        method=request.method,
        path=request.url.path,
        errors=messages,
    )
    return JSONResponse(
        status_code=400,
        content=error_body("error", ", ".join(messages)),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.info("request.duplicate", method=request.method, path=request.url.path)
    return JSONResponse(status_code=400, content=error_body("error", DUPLICATE_MESSAGE))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "request.unhandled_error",
        method=request.method,
        path=request.url.path,
        query=redact(dict(request.query_params)),
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content=error_body("error", InternalError.default_message))


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all error normalizers to the app."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


class UnhandledErrorMiddleware:
    """Turn unexpected exceptions into the generic 500 body.

    Mounted inside the security-header and request-id layers, so the 500
    carries the same headers as every other response. Starlette's own
    ServerErrorMiddleware (the Exception handler above) still catches
    anything raised outside this layer.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

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
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            if response_started:
                raise
            response = await unhandled_error_handler(Request(scope), exc)
            await response(scope, receive, send)
