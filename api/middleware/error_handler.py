# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with structured JSON responses.
Provides centralized error handling and formatting for Flask applications.

Every error is rendered as ``{success: false, error, message, details?}``;
field-level validation details use the ``{champ, message}`` shape.
"""

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from pydantic import ValidationError
from typing import Any, Dict, List, Optional, Tuple
from opentelemetry import trace
import logging

from domain.lifecycle import LifecycleError
from middleware.validation import format_validation_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

GENERIC_SERVER_MESSAGE = "Une erreur interne est survenue"


def build_error_body(error_type: str, message: str, details: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Build the JSON error body."""
    body = {
        "success": False,
        "error": error_type,
        "message": message
    }
    if details:
        body["details"] = details
    return body


class CustomException(Exception):
    """Base class for custom application exceptions."""

    def __init__(self, message: str, status_code: int = 500, error_type: str = "application-error"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type


class ValidationException(CustomException):
    """Exception for validation errors."""

    def __init__(self, message: str, validation_errors: list = None):
        super().__init__(message, 400, "validation-error")
        self.validation_errors = validation_errors or []


class AuthenticationException(CustomException):
    """Exception for authentication errors."""

    def __init__(self, message: str):
        super().__init__(message, 401, "authentication-required")


class AuthorizationException(CustomException):
    """Exception for authorization errors."""

    def __init__(self, message: str):
        super().__init__(message, 403, "insufficient-permissions")


class NotFoundException(CustomException):
    """Exception for resource not found errors."""

    def __init__(self, message: str):
        super().__init__(message, 404, "resource-not-found")


class ServiceUnavailableException(CustomException):
    """Exception for service unavailable errors."""

    def __init__(self, message: str):
        super().__init__(message, 503, "service-unavailable")


class ErrorHandlerMiddleware:
    """Centralized error handling middleware."""

    HTTP_ERROR_TYPES = {
        400: "bad-request",
        401: "authentication-required",
        403: "insufficient-permissions",
        404: "resource-not-found",
        405: "method-not-allowed",
        409: "resource-conflict",
        413: "payload-too-large",
        415: "unsupported-media-type",
        422: "validation-error",
    }

    def __init__(self, app: Flask):
        self.app = app
        self.register_error_handlers()

    def register_error_handlers(self):
        """Register error handlers with Flask application."""

        @self.app.errorhandler(CustomException)
        def handle_custom_exception(error: CustomException):
            return self.handle_custom_exception(error)

        @self.app.errorhandler(LifecycleError)
        def handle_lifecycle_error(error: LifecycleError):
            return self.handle_lifecycle_error(error)

        @self.app.errorhandler(ValidationError)
        def handle_pydantic_error(error: ValidationError):
            return self.handle_pydantic_error(error)

        @self.app.errorhandler(HTTPException)
        def handle_http_exception(error: HTTPException):
            return self.handle_http_exception(error)

        @self.app.errorhandler(Exception)
        def handle_generic_exception(error: Exception):
            return self.handle_unexpected_error(error)

    def handle_custom_exception(self, error: CustomException) -> Tuple[Any, int]:
        """Render an application exception."""
        with tracer.start_as_current_span("error_handler.custom_exception") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "http.method": request.method,
                "http.path": request.path
            })

            logger.warning(
                f"Custom exception: {error.error_type}",
                extra={
                    "error_type": error.error_type,
                    "status_code": error.status_code,
                    "error_message": error.message,
                    "path": request.path,
                    "method": request.method
                }
            )

            details = error.validation_errors if isinstance(error, ValidationException) else None
            message = error.message
            if error.status_code >= 500 and not isinstance(error, ServiceUnavailableException):
                message = GENERIC_SERVER_MESSAGE

            return jsonify(build_error_body(error.error_type, message, details)), error.status_code

    def handle_lifecycle_error(self, error: LifecycleError) -> Tuple[Any, int]:
        """Render a refused status transition as a conflict."""
        logger.warning(
            "Lifecycle transition refused",
            extra={
                "current_status": error.current,
                "target_status": error.target,
                "error_message": error.message,
                "path": request.path,
                "method": request.method
            }
        )
        return jsonify(build_error_body("invalid-transition", error.message)), 409

    def handle_pydantic_error(self, error: ValidationError) -> Tuple[Any, int]:
        """Render a model validation failure with field-level details."""
        details = format_validation_errors(error)
        logger.warning(
            "Request validation failed",
            extra={
                "path": request.path,
                "method": request.method,
                "errors": details
            }
        )
        return jsonify(build_error_body("validation-error", "Données invalides", details)), 400

    def handle_http_exception(self, error: HTTPException) -> Tuple[Any, int]:
        """Render werkzeug HTTP errors (routing, method, body parsing)."""
        status_code = error.code or 500
        if status_code >= 500:
            return self.handle_unexpected_error(error)

        error_type = self.HTTP_ERROR_TYPES.get(status_code, "client-error")
        logger.warning(
            f"Client error: {error.name}",
            extra={
                "error_type": error_type,
                "status_code": status_code,
                "path": request.path,
                "method": request.method,
                "user_agent": request.headers.get('User-Agent'),
                "ip_address": request.remote_addr
            }
        )
        return jsonify(build_error_body(error_type, error.description or error.name)), status_code

    def handle_unexpected_error(self, error: Exception) -> Tuple[Any, int]:
        """
        Handle unexpected exceptions not caught by specific handlers.

        The response carries a generic message only; details stay in the logs.
        """
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "error_type": "unexpected-error",
                    "error_class": error.__class__.__name__,
                    "error_message": str(error),
                    "path": request.path,
                    "method": request.method,
                    "user_agent": request.headers.get('User-Agent'),
                    "ip_address": request.remote_addr
                },
                exc_info=error
            )

            return jsonify(build_error_body("internal-server-error", GENERIC_SERVER_MESSAGE)), 500
