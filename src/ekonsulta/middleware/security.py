"""Security headers and suspicious-request monitoring.

Learn: SecurityHeadersMiddleware adds the standard hardening headers to
every response:
- X-Content-Type-Options: prevents MIME-type sniffing
- X-Frame-Options: prevents clickjacking
- X-XSS-Protection: legacy XSS filter (still useful for older browsers)
- Strict-Transport-Security: forces HTTPS for a year, subdomains included
- Referrer-Policy / Permissions-Policy: limit what leaks to other origins
and strips headers that advertise the server software.

SecurityMonitorMiddleware only observes. Requests that look like script
injection, SQL injection or Mongo operator injection are logged as
"security.suspicious_request" and then served normally; typed schemas
and bound SQL parameters are what actually defuse them.
"""

import json
import re

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ekonsulta.logging import redact

logger = structlog.get_logger()

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Referrer-Policy": "no-referrer, strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Origin-Agent-Cluster": "?1",
}

# Headers that identify the server software
STRIPPED_HEADERS = ("Server", "X-Powered-By")

SUSPICIOUS_PATTERNS = [
    re.compile(r"<script>|</script>", re.IGNORECASE),
    re.compile(r"javascript:|vbscript:|onload=|onerror=", re.IGNORECASE),
    re.compile(
        r"union.*select|select.*from|insert.*into|delete.*from|drop.*table",
        re.IGNORECASE,
    ),
    re.compile(r"\$ne|\$gt|\$lt|\$regex|\$where", re.IGNORECASE),
]

# Larger bodies are not inspected
MAX_INSPECTED_BYTES = 64 * 1024


def is_suspicious(*values: str) -> bool:
    return any(p.search(v) for p in SUSPICIOUS_PATTERNS for v in values if v)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers[header] = value
        for header in STRIPPED_HEADERS:
            if header in response.headers:
                del response.headers[header]
        return response


class SecurityMonitorMiddleware(BaseHTTPMiddleware):
    """Log requests carrying common injection payloads. Never blocks."""

    async def dispatch(self, request: Request, call_next) -> Response:
        body = b""
        inspectable = _declared_size(request) <= MAX_INSPECTED_BYTES
        if request.method in ("POST", "PUT", "PATCH") and inspectable:
            # Starlette caches the body, so the handler can still read it.
            body = (await request.body())[:MAX_INSPECTED_BYTES]
        text = body.decode("utf-8", errors="replace")
        user_agent = request.headers.get("user-agent", "")

        if is_suspicious(str(request.url), request.url.query, text, user_agent):
            logger.warning(
                "security.suspicious_request",
                ip=request.client.host if request.client else None,
                method=request.method,
                path=request.url.path,
                query=redact(dict(request.query_params)),
                body=redact(_json_or_text(text)),
                user_agent=user_agent,
            )

        return await call_next(request)


def _declared_size(request: Request) -> int:
    try:
        return int(request.headers.get("content-length", "0"))
    except ValueError:
        return MAX_INSPECTED_BYTES + 1


def _json_or_text(text: str):
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text[:200]
