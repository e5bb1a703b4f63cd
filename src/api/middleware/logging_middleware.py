"""
Request logging middleware.

Binds a request id to every log line of the request, echoes it in the
X-Request-ID response header and counts requests by route and status.
Health and metrics probes are logged at debug level.
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match, Mount

from src.utils.logger import (
    get_logger,
    set_correlation_context,
    clear_correlation_context,
)
from src.utils.metrics import http_request_count

logger = get_logger(__name__)

PROBE_PATHS = frozenset({"/health", "/metrics"})


def route_label(request: Request) -> str:
    """
    Full template of the matched route, e.g. /edit/conversations/{conversation_id}.

    Templates keep path parameters out of the label set. Router and mount
    prefixes are included. Unmatched requests are labelled "unmatched".
    """
    scope = dict(request.scope)
    routes = request.app.routes
    prefix = ""
    while True:
        for route in routes:
            match, child_scope = route.matches(scope)
            if match == Match.FULL:
                break
        else:
            return "unmatched"
        if isinstance(route, Mount):
            prefix += route.path
            scope.update(child_scope)
            routes = route.routes
            continue
        return prefix + route.path


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Correlation and access logging for every request.

    The conversation id is bound later by the edit routes, once the body
    has been parsed.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_correlation_context(request_id=request_id, user_id=request.headers.get("X-User-ID"))

        log = logger.debug if request.url.path in PROBE_PATHS else logger.info
        started = time.perf_counter()
        route = route_label(request)
        log("api.request.start", method=request.method, path=request.url.path)

        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            logger.error(
                "api.request.error",
                method=request.method,
                path=request.url.path,
                error_detail=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            duration_ms = int((time.perf_counter() - started) * 1000)
            http_request_count.labels(
                method=request.method,
                route=route,
                status=str(status),
            ).inc()
            log(
                "api.request.complete",
                method=request.method,
                path=request.url.path,
                status_code=status,
                duration_ms=duration_ms,
            )
            clear_correlation_context()
