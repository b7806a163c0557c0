"""
Request timing middleware.

Assigns a request id, records request duration and logs slow or failing
requests. Adds X-Request-ID and X-Request-Duration-Ms to every response.
"""

import logging
import re
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Probes hit these every few seconds
_SKIP_LOG_PREFIX = "/api/v1/health"

SLOW_THRESHOLD_MS = 1000

# Client-supplied ids are echoed into logs and headers
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _incoming_request_id() -> str:
    supplied = request.headers.get("X-Request-ID", "")
    return supplied if _REQUEST_ID_RE.match(supplied) else uuid.uuid4().hex[:12]


def _request_context() -> dict:
    view_args = request.view_args or {}
    member = getattr(g, "member", None)
    return {
        "method": request.method,
        "path": request.path,
        "remote_addr": request.remote_addr,
        "request_id": getattr(g, "request_id", ""),
        "tenant_id": getattr(g, "tenant_id", None),
        "member_id": member.id if member is not None else None,
        "route_id": view_args.get("route_id"),
        "template_id": view_args.get("template_id"),
        "application_id": view_args.get("application_id"),
    }


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = _incoming_request_id()

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = getattr(g, "request_id", "")

        if request.path.startswith(_SKIP_LOG_PREFIX):
            return response

        extra = _request_context()
        extra.update(status=response.status_code, duration_ms=duration_ms)
        if duration_ms > app.config.get("SLOW_REQUEST_MS", SLOW_THRESHOLD_MS):
            logger.warning("Slow request: %s %s %d (%.0fms)",
                           request.method, request.path,
                           response.status_code, duration_ms, extra=extra)
        elif response.status_code >= 500:
            logger.error("Server error: %s %s %d (%.0fms)",
                         request.method, request.path,
                         response.status_code, duration_ms, extra=extra)
        else:
            logger.debug("Request: %s %s %d (%.0fms)",
                         request.method, request.path,
                         response.status_code, duration_ms, extra=extra)
        return response
