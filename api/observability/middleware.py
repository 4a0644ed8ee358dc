"""
Observability Middleware

Request timing, per-request log lines and trace correlation for the
activities API. Health probes are logged at debug level only.
"""

import time
import logging
from flask import Flask, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

QUIET_PATHS = frozenset({'/api/healthz'})


def _log_level(status_code: int, path: str) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path in QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


def add_observability_middleware(app: Flask):
    """Instrument the app and log one line per request."""

    FlaskInstrumentor().instrument_app(app)

    logger = logging.getLogger(__name__)

    @app.before_request
    def start_request_timer():
        g.start_time = time.perf_counter()
        g.trace_id = None

        span = trace.get_current_span()
        if span.is_recording():
            g.trace_id = format(span.get_span_context().trace_id, "032x")
            span.set_attribute("http.remote_addr", request.remote_addr or "")

            activity_id = (request.view_args or {}).get('activity_id')
            if activity_id is not None:
                span.set_attribute("activity.id", str(activity_id))

    @app.after_request
    def log_request(response):
        duration_ms = round((time.perf_counter() - g.get('start_time', time.perf_counter())) * 1000, 2)

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("http.duration_ms", duration_ms)

        user_context = g.get('user_context')
        logger.log(
            _log_level(response.status_code, request.path),
            "%s %s -> %s", request.method, request.path, response.status_code,
            extra={
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "user_id": user_context.user_id if user_context else None,
                "role": user_context.role if user_context else None,
                "activity_id": (request.view_args or {}).get('activity_id'),
                "trace_id": g.get('trace_id')
            }
        )

        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        return response
