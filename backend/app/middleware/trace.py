"""
Request tracing for the SafeCircle API.

Every request gets a correlation id (taken from the caller when present) and
a per-request event id; both are echoed on the response and attached to every
log line through the logging context vars. Requests that name a family group,
in the query string, a header or the path, also carry that group in their logs.
"""
import logging
import re
import time
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from backend.app.core.logging import correlation_id_ctx, event_id_ctx, family_group_id_ctx

logger = logging.getLogger(__name__)

CORRELATION_HEADERS = ("X-Correlation-ID", "X-Trace-ID")
FAMILY_HEADER = "X-Family-Group-ID"

# /families/{id}/..., /locations/family/{id}
_FAMILY_PATH = re.compile(r"/(?:families|family)/([^/]+)")

# Health probes are logged at debug level
QUIET_PATHS = ("/health", "/ready")
STREAM_SEGMENT = "/stream/"


def resolve_correlation_id(request: Request) -> str:
    for header in CORRELATION_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return str(uuid.uuid4())


def family_group_hint(request: Request) -> Optional[str]:
    """Family group named by the request, if any. Used for log scoping only, never for access control."""
    hint = request.query_params.get("family_group_id") or request.headers.get(FAMILY_HEADER)
    if hint:
        return hint
    match = _FAMILY_PATH.search(request.url.path)
    return match.group(1) if match else None


class TracingMiddleware(BaseHTTPMiddleware):
    """
    Sets correlation, event and family-group context for the request, logs
    its outcome and resets the context afterwards.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = resolve_correlation_id(request)
        event_id = str(uuid.uuid4())
        tokens = [
            (correlation_id_ctx, correlation_id_ctx.set(correlation_id)),
            (event_id_ctx, event_id_ctx.set(event_id)),
            (family_group_id_ctx, family_group_id_ctx.set(family_group_hint(request))),
        ]

        path = request.url.path
        quiet = path in QUIET_PATHS
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {path}",
                extra={"extra_data": {
                    "method": request.method,
                    "path": path,
                    "status_code": 500,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error": str(e),
                }},
                exc_info=True,
            )
            raise
        else:
            # Stream responses return before the body is sent, so duration is time to first byte
            message = "stream opened" if STREAM_SEGMENT in path else "completed"
            logger.log(
                logging.DEBUG if quiet else logging.INFO,
                f"{request.method} {path} {message}",
                extra={"extra_data": {
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "client_ip": request.client.host if request.client else None,
                }},
            )
            response.headers["X-Correlation-ID"] = correlation_id
            response.headers["X-Event-ID"] = event_id
            return response
        finally:
            for var, token in reversed(tokens):
                var.reset(token)
