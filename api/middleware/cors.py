# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
CORS middleware for the portal front-end.

Origins come from ``CORS_ALLOWED_ORIGINS`` (comma separated) and
``FRONTEND_URL``; local front-end servers are added in development.
An origin ending with ``*`` matches by prefix, for preview deployments.
"""

from flask import Flask, request, make_response
from typing import List, Optional
import os
import logging

logger = logging.getLogger(__name__)

DEVELOPMENT_ORIGINS = ['http://localhost:3000', 'http://127.0.0.1:3000']

ALLOWED_METHODS = ['GET', 'POST', 'PATCH', 'OPTIONS']
ALLOWED_HEADERS = [
    'Accept', 'Accept-Language', 'Authorization', 'Content-Type',
    'X-Requested-With', 'X-Request-ID'
]
EXPOSED_HEADERS = ['Content-Length', 'Content-Type', 'X-Request-ID', 'X-Trace-Id']


def origins_from_environment() -> List[str]:
    """Collect allowed origins from the environment."""
    origins = []

    if os.getenv('ENVIRONMENT', 'development') == 'development':
        origins.extend(DEVELOPMENT_ORIGINS)

    frontend_url = os.getenv('FRONTEND_URL')
    if frontend_url:
        origins.append(frontend_url.rstrip('/'))

    configured = os.getenv('CORS_ALLOWED_ORIGINS', '')
    origins.extend(origin.strip() for origin in configured.split(',') if origin.strip())

    return origins


class CORSMiddleware:
    """Adds CORS headers for allowed origins and answers preflight requests."""

    def __init__(
        self,
        app: Flask,
        allowed_origins: Optional[List[str]] = None,
        allow_credentials: bool = True,
        max_age: int = 86400
    ):
        self.app = app
        self.allowed_origins = allowed_origins if allowed_origins is not None else origins_from_environment()
        self.allow_credentials = allow_credentials
        self.max_age = max_age

        app.before_request(self._handle_preflight)
        app.after_request(self._decorate_response)

    def is_origin_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False

        for allowed_origin in self.allowed_origins:
            if allowed_origin in ('*', origin):
                return True
            if allowed_origin.endswith('*') and origin.startswith(allowed_origin[:-1]):
                return True

        return False

    def add_cors_headers(self, response, origin: str):
        headers = response.headers
        headers['Access-Control-Allow-Origin'] = origin
        headers['Vary'] = 'Origin'
        if self.allow_credentials:
            headers['Access-Control-Allow-Credentials'] = 'true'
        headers['Access-Control-Allow-Methods'] = ', '.join(ALLOWED_METHODS)
        headers['Access-Control-Allow-Headers'] = ', '.join(ALLOWED_HEADERS)
        headers['Access-Control-Expose-Headers'] = ', '.join(EXPOSED_HEADERS)
        headers['Access-Control-Max-Age'] = str(self.max_age)
        return response

    def _handle_preflight(self):
        if request.method != 'OPTIONS':
            return None

        origin = request.headers.get('Origin')
        if not self.is_origin_allowed(origin):
            logger.warning("CORS preflight rejected", extra={"origin": origin, "path": request.path})
            return make_response('', 403)

        return self.add_cors_headers(make_response('', 200), origin)

    def _decorate_response(self, response):
        origin = request.headers.get('Origin')

        if self.is_origin_allowed(origin):
            self.add_cors_headers(response, origin)
        elif origin and request.method != 'OPTIONS':
            logger.warning("CORS origin not allowed", extra={"origin": origin, "path": request.path})

        return response


def configure_cors(app: Flask, **kwargs) -> CORSMiddleware:
    """Attach CORS handling to the application."""
    return CORSMiddleware(app, **kwargs)
