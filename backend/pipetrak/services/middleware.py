"""Request timing and tracing middleware for the PipeTrak API."""
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("pipetrak-api.middleware")

SKIP_LOG_PATHS = {"/health"}

# Path parameters copied onto the request log line
ROUTE_CONTEXT_PARAMS = ("project_id", "component_id", "drawing_id")


def route_context(scope: dict) -> dict:
    """Matched route template and the project/component/drawing ids it carried."""
    context = {}
    route = scope.get("route")
    if route is not None and getattr(route, "path", None):
        context["http_route"] = route.path
    params = scope.get("path_params") or {}
    for name in ROUTE_CONTEXT_PARAMS:
        if params.get(name):
            context[name] = params[name]
    return context


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an X-Request-ID, times it, and logs one line per
    request (health checks excluded). The line carries the matched route and
    any project, component or drawing id from the path. The duration is
    returned in X-Process-Time (milliseconds).
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.perf_counter()

        request.state.request_id = request_id

        response: Response = await call_next(request)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if request.url.path not in SKIP_LOG_PATHS:
            extra = {
                "http_method": request.method,
                "http_path": request.url.path,
                "http_status": response.status_code,
                "request_id": request_id,
                "duration_ms": duration_ms,
            }
            # The router fills path_params into the shared scope during call_next
            extra.update(route_context(request.scope))
            logger.info("request completed", extra=extra)

        return response
