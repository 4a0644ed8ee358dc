# SPDX-License-Identifier: Apache-2.0

"""
Authentication middleware for JWT token validation and user context extraction.

This module provides Flask decorators that validate the session token and
build the user context handed to route handlers.
"""

from functools import wraps
from flask import request, g, current_app
from typing import Optional, Dict, Any, Callable
from opentelemetry import trace
import logging

from models.entities import UserContext
from services.auth import TokenValidationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthMiddleware:
    """
    JWT authentication middleware for Flask applications.

    Handles token extraction, validation and user context building for
    protected endpoints.
    """

    def __init__(self, auth_service):
        """
        Initialize the authentication middleware.

        Args:
            auth_service: JWT authentication service
        """
        self.auth_service = auth_service

    def extract_token_from_request(self) -> Optional[str]:
        """
        Extract JWT token from request headers.

        Returns:
            JWT token string or None if not found
        """
        auth_header = request.headers.get('Authorization', '')

        if not auth_header:
            return None

        if auth_header.startswith('Bearer '):
            return auth_header[7:].strip() or None

        return auth_header

    def build_user_context(self, token_payload: Dict[str, Any], request_info: Dict[str, Any]) -> UserContext:
        """
        Build user context from validated token payload and request information.

        Args:
            token_payload: Decoded JWT payload
            request_info: Request metadata (IP, user agent, etc.)

        Returns:
            UserContext object for request processing
        """
        return UserContext(
            user_id=token_payload["sub"],
            role=token_payload["role"],
            email=token_payload.get("email"),
            name=token_payload.get("name"),
            permissions=token_payload.get("permissions") or [],
            token_payload=token_payload,
            ip_address=request_info.get("ip_address"),
            user_agent=request_info.get("user_agent"),
            session_id=request_info.get("session_id")
        )

    def get_request_info(self) -> Dict[str, Any]:
        """
        Extract request metadata for user context.

        Returns:
            Dictionary with request information
        """
        return {
            "ip_address": request.remote_addr,
            "user_agent": request.headers.get('User-Agent', ''),
            "session_id": request.headers.get('X-Session-ID'),
            "request_id": request.headers.get('X-Request-ID')
        }

    def authenticate(self, token: str) -> UserContext:
        """
        Validate a token and build the caller context.

        Raises:
            TokenValidationError: If the token is rejected
        """
        token_payload = self.auth_service.validate_token(token)
        user_context = self.build_user_context(token_payload, self.get_request_info())
        g.user_context = user_context
        return user_context


def require_auth(f: Callable) -> Callable:
    """
    Decorator requiring a valid session token.

    The route receives the UserContext as first positional argument.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from middleware.error_handler import AuthenticationException

        auth_middleware: AuthMiddleware = current_app.auth_middleware
        with tracer.start_as_current_span("auth.middleware.validate_request") as span:
            span.set_attribute("auth.operation", "validate_request")

            token = auth_middleware.extract_token_from_request()
            if not token:
                span.set_attribute("auth.result", "missing_token")
                logger.warning("Authentication failed: missing token", extra={"path": request.path})
                raise AuthenticationException("Non autorisé")

            try:
                user_context = auth_middleware.authenticate(token)
            except TokenValidationError as e:
                span.set_attribute("auth.result", "invalid_token")
                logger.warning(f"Authentication failed: {str(e)}", extra={"path": request.path})
                raise AuthenticationException("Session invalide ou expirée")

            span.set_attributes({
                "auth.result": "success",
                "user.id": user_context.user_id,
                "user.role": user_context.role
            })

            logger.debug(
                "Authentication successful",
                extra={
                    "user_id": user_context.user_id,
                    "role": user_context.role,
                    "ip_address": user_context.ip_address
                }
            )

        return f(user_context, *args, **kwargs)

    return decorated_function


def optional_auth(f: Callable) -> Callable:
    """
    Decorator for optional authentication.

    Anonymous callers reach the route with a None context. A token that is
    present but invalid is still rejected.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from middleware.error_handler import AuthenticationException

        auth_middleware: AuthMiddleware = current_app.auth_middleware
        user_context = None

        token = auth_middleware.extract_token_from_request()
        if token:
            try:
                user_context = auth_middleware.authenticate(token)
            except TokenValidationError as e:
                logger.warning(f"Authentication failed: {str(e)}", extra={"path": request.path})
                raise AuthenticationException("Session invalide ou expirée")

        return f(user_context, *args, **kwargs)

    return decorated_function
