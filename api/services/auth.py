# SPDX-License-Identifier: Apache-2.0

"""
Authentication service for JWT session token validation.

Tokens are issued by the portal's session provider and signed with a shared
secret (HS256 by default). This module validates them and exposes the caller
identity; it also signs tokens for local tooling and tests.
"""

import os
import secrets
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class TokenValidationError(Exception):
    """Raised when token validation fails."""
    pass


class AuthService:
    """
    JWT validation service for the portal session tokens.

    The token payload carries ``sub`` (user id), ``role`` and optionally
    ``permissions``, ``email`` and ``name``.
    """

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        """
        Initialize the authentication service.

        Args:
            secret: Shared signing secret
            algorithm: JWT signing algorithm
        """
        self.secret = secret or self._get_secret()
        self.algorithm = algorithm or os.getenv("JWT_ALGORITHM", "HS256")
        self.access_token_expire_minutes = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

    def _get_secret(self) -> str:
        """Get signing secret from environment or generate one for development."""
        secret_env = os.getenv("JWT_SECRET")
        if secret_env:
            return secret_env

        logger.warning("No JWT_SECRET found, generating development secret")
        return secrets.token_hex(32)

    def generate_token(self, user_id: int, role: str, permissions: Optional[List[str]] = None,
                       email: Optional[str] = None, name: Optional[str] = None) -> str:
        """
        Sign an access token for a user.

        Args:
            user_id: Numeric user id
            role: User role
            permissions: Explicit permissions carried by the token

        Returns:
            Encoded JWT
        """
        with tracer.start_as_current_span("auth.generate_token") as span:
            span.set_attributes({
                "auth.operation": "generate_token",
                "user.id": user_id,
                "user.role": role
            })

            now = datetime.now(timezone.utc)
            payload = {
                "sub": str(user_id),
                "role": role,
                "permissions": permissions or [],
                "iat": now,
                "exp": now + timedelta(minutes=self.access_token_expire_minutes),
                "type": "access"
            }
            if email:
                payload["email"] = email
            if name:
                payload["name"] = name

            return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def validate_token(self, token: str) -> Dict[str, Any]:
        """
        Validate and decode a JWT token.

        Args:
            token: JWT token string to validate

        Returns:
            Decoded token payload

        Raises:
            TokenValidationError: If token is invalid, expired or incomplete
        """
        with tracer.start_as_current_span("auth.validate_token") as span:
            span.set_attribute("auth.operation", "validate_token")

            try:
                payload = jwt.decode(
                    token,
                    self.secret,
                    algorithms=[self.algorithm],
                    options={"verify_exp": True, "require": ["sub", "exp"]}
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                logger.warning("Token validation failed: token expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning(f"Token validation failed: {str(e)}")
                raise TokenValidationError(f"Invalid token: {str(e)}")

            if payload.get("type", "access") != "access":
                raise TokenValidationError("Invalid token type. Expected access")

            if not payload.get("role"):
                raise TokenValidationError("Token carries no role")

            try:
                payload["sub"] = int(payload["sub"])
            except (TypeError, ValueError):
                raise TokenValidationError("Token subject is not a user id")

            span.set_attributes({
                "auth.validation_result": "success",
                "user.id": payload["sub"],
                "user.role": payload["role"]
            })

            logger.debug(
                "Token validated successfully",
                extra={
                    "user_id": payload["sub"],
                    "role": payload["role"]
                }
            )

            return payload
