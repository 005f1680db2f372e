"""
Request timing middleware.

Every response carries ``X-Request-ID`` (echoed from the caller when present)
and ``X-Request-Duration-Ms``. API calls are logged once with method, path,
status, duration, request id and acting user as structured fields.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Probes hit these every few seconds
_QUIET_PATHS = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})

SLOW_REQUEST_MS = 1000


def _wants_log(path: str) -> bool:
    return path.startswith("/api/") and path not in _QUIET_PATHS


def init_request_timing(app: Flask):
    """Attach the timing hooks to ``app``."""

    @app.before_request
    def _mark_start():
        g.started_at = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _stamp_and_log(response):
        started = g.get("started_at")
        if started is None:
            return response

        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        response.headers["X-Request-ID"] = g.get("request_id", "")
        response.headers["X-Request-Duration-Ms"] = str(elapsed_ms)

        if _wants_log(request.path):
            fields = {
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": elapsed_ms,
                "request_id": g.get("request_id"),
                "actor_id": request.headers.get("X-User-Id"),
            }
            level = logging.WARNING if elapsed_ms > SLOW_REQUEST_MS else logging.DEBUG
            logger.log(level, "%s %s -> %s in %.1fms", request.method, request.path,
                       response.status_code, elapsed_ms, extra=fields)
        return response
