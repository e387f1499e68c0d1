"""Request logging middleware: access log line, anti-crawl headers, cache control."""
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from trackprofit.utils.logger import log

QUIET_PATHS = ("/health",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        path = request.url.path
        if path not in QUIET_PATHS:
            log.info(f"{request.method} {path} -> {response.status_code} ({elapsed_ms:.0f}ms)")

        response.headers["X-Robots-Tag"] = "noindex, nofollow"
        if "application/json" in response.headers.get("content-type", ""):
            # Tenant data: browser may store but must revalidate each time
            response.headers["Cache-Control"] = "private, no-cache"

        return response
