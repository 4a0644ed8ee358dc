# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for middleware functionality.
"""

import json
import pytest
from unittest.mock import Mock
from flask import Flask, g
from typing import ClassVar, Dict, Tuple
from pydantic import BaseModel, Field, ValidationError

from domain.lifecycle import LifecycleError
from middleware.auth import AuthMiddleware, optional_auth, require_auth
from middleware.cors import CORSMiddleware, configure_cors
from middleware.error_handler import (
    ErrorHandlerMiddleware, CustomException, ValidationException,
    AuthenticationException, AuthorizationException, NotFoundException,
    ServiceUnavailableException
)
from middleware.validation import (
    format_validation_errors, parse_json_body, parse_optional_json_body, parse_query_params
)
from services.auth import TokenValidationError


class SampleModel(BaseModel):
    titre: str = Field(..., min_length=5)
    places: int = Field(default=10, ge=0)

    error_messages: ClassVar[Dict[Tuple[str, str], str]] = {
        ("titre", "string_too_short"): "Le titre doit contenir au moins 5 caractères",
    }


class TestValidationMiddleware:
    """Test request validation helpers."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)

    def test_format_validation_errors(self):
        """Test custom and default messages."""
        with pytest.raises(ValidationError) as exc_info:
            SampleModel.model_validate({"titre": "Yoga", "places": "beaucoup"})

        errors = format_validation_errors(exc_info.value, SampleModel)

        assert {"champ": "titre", "message": "Le titre doit contenir au moins 5 caractères"} in errors
        assert {"champ": "places", "message": "Nombre entier attendu"} in errors

    def test_format_missing_field(self):
        """Test the default message for missing fields."""
        with pytest.raises(ValidationError) as exc_info:
            SampleModel.model_validate({})

        assert format_validation_errors(exc_info.value) == [
            {"champ": "titre", "message": "Ce champ est obligatoire"}
        ]

    def test_parse_json_body_success(self):
        """Test a valid body."""
        with self.app.test_request_context('/test', method='POST', json={"titre": "Atelier lecture"}):
            validated = parse_json_body(SampleModel)

        assert validated.titre == "Atelier lecture"
        assert validated.places == 10

    def test_parse_json_body_not_an_object(self):
        """Test a JSON array is refused."""
        with self.app.test_request_context('/test', method='POST', json=["Atelier lecture"]):
            with pytest.raises(ValidationException) as exc_info:
                parse_json_body(SampleModel)

        assert exc_info.value.validation_errors[0]["champ"] == "body"

    def test_parse_json_body_invalid(self):
        """Test field errors are carried by the exception."""
        with self.app.test_request_context('/test', method='POST', json={"titre": "Yoga"}):
            with pytest.raises(ValidationException) as exc_info:
                parse_json_body(SampleModel)

        assert exc_info.value.status_code == 400
        assert exc_info.value.validation_errors[0]["champ"] == "titre"

    def test_parse_optional_json_body_empty(self):
        """Test an empty body validates as an empty object."""
        class OptionalModel(BaseModel):
            places: int = 0

        with self.app.test_request_context('/test', method='POST'):
            assert parse_optional_json_body(OptionalModel).places == 0

    def test_parse_query_params(self):
        """Test query-string coercion and errors."""
        with self.app.test_request_context('/test?titre=Atelier+lecture&places=3'):
            assert parse_query_params(SampleModel).places == 3

        with self.app.test_request_context('/test?titre=Atelier+lecture&places=-1'):
            with pytest.raises(ValidationException):
                parse_query_params(SampleModel)


class TestErrorHandlerMiddleware:
    """Test error handler middleware functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)
        self.error_handler = ErrorHandlerMiddleware(self.app)

        @self.app.route('/raise/<kind>')
        def raise_error(kind):
            errors = {
                "validation": ValidationException("Données invalides", [{"champ": "titre", "message": "Trop court"}]),
                "authentication": AuthenticationException("Non autorisé"),
                "authorization": AuthorizationException("Accès refusé"),
                "not-found": NotFoundException("Activité non trouvée"),
                "custom": CustomException("Erreur interne détaillée"),
                "unavailable": ServiceUnavailableException("Base de données indisponible"),
                "lifecycle": LifecycleError("Transition refusée", current="BROUILLON", target="PUBLIEE"),
                "unexpected": RuntimeError("connection string mongodb://secret"),
            }
            raise errors[kind]

        self.client = self.app.test_client()

    def get(self, kind):
        response = self.client.get(f'/raise/{kind}')
        return response.status_code, json.loads(response.data)

    def test_validation_exception(self):
        """Test validation errors carry details."""
        status, body = self.get("validation")

        assert status == 400
        assert body == {
            "success": False,
            "error": "validation-error",
            "message": "Données invalides",
            "details": [{"champ": "titre", "message": "Trop court"}]
        }

    @pytest.mark.parametrize("kind,status,error_type", [
        ("authentication", 401, "authentication-required"),
        ("authorization", 403, "insufficient-permissions"),
        ("not-found", 404, "resource-not-found"),
        ("lifecycle", 409, "invalid-transition"),
    ])
    def test_status_mapping(self, kind, status, error_type):
        """Test each exception maps to its status and error type."""
        actual_status, body = self.get(kind)

        assert actual_status == status
        assert body["success"] is False
        assert body["error"] == error_type
        assert "details" not in body

    def test_server_errors_hide_details(self):
        """Test 5xx application errors are rendered with a generic message."""
        status, body = self.get("custom")

        assert status == 500
        assert body["message"] == "Une erreur interne est survenue"

    def test_service_unavailable_keeps_message(self):
        """Test 503 errors keep their message."""
        status, body = self.get("unavailable")

        assert status == 503
        assert body["message"] == "Base de données indisponible"

    def test_unexpected_error(self):
        """Test unexpected exceptions never leak their text."""
        status, body = self.get("unexpected")

        assert status == 500
        assert "mongodb" not in body["message"]

    def test_unknown_route(self):
        """Test werkzeug errors use the same body."""
        response = self.client.get('/nowhere')

        assert response.status_code == 404
        assert json.loads(response.data)["error"] == "resource-not-found"


class TestAuthDecorators:
    """Test require_auth and optional_auth."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)
        ErrorHandlerMiddleware(self.app)
        self.auth_service = Mock()
        self.app.auth_middleware = AuthMiddleware(self.auth_service)

        @self.app.route('/private')
        @require_auth
        def private(user_context):
            return {"user_id": user_context.user_id, "role": user_context.role, "stored": g.user_context.user_id}

        @self.app.route('/public')
        @optional_auth
        def public(user_context):
            return {"user_id": user_context.user_id if user_context else None}

        self.client = self.app.test_client()

    def test_missing_token(self):
        """Test protected routes need a token."""
        response = self.client.get('/private')

        assert response.status_code == 401
        self.auth_service.validate_token.assert_not_called()

    def test_valid_token(self):
        """Test the user context is handed to the route."""
        self.auth_service.validate_token.return_value = {"sub": 10, "role": "COORDINATEUR_ACTIVITES"}

        response = self.client.get('/private', headers={'Authorization': 'Bearer abc'})

        assert response.status_code == 200
        assert json.loads(response.data) == {"user_id": 10, "role": "COORDINATEUR_ACTIVITES", "stored": 10}
        self.auth_service.validate_token.assert_called_once_with("abc")

    def test_invalid_token(self):
        """Test rejected tokens."""
        self.auth_service.validate_token.side_effect = TokenValidationError("Token has expired")

        response = self.client.get('/private', headers={'Authorization': 'Bearer abc'})

        assert response.status_code == 401
        assert json.loads(response.data)["message"] == "Session invalide ou expirée"

    def test_optional_anonymous(self):
        """Test optional routes accept anonymous callers."""
        response = self.client.get('/public')

        assert response.status_code == 200
        assert json.loads(response.data) == {"user_id": None}

    def test_optional_invalid_token(self):
        """Test optional routes still reject a bad token."""
        self.auth_service.validate_token.side_effect = TokenValidationError("Invalid token")

        response = self.client.get('/public', headers={'Authorization': 'Bearer abc'})

        assert response.status_code == 401


class TestCORSMiddleware:
    """Test CORS middleware functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)
        self.cors = CORSMiddleware(
            self.app,
            allowed_origins=['https://portail.example.org', 'https://preview-*']
        )

        @self.app.route('/api/activities')
        def activities():
            return {"success": True}

        self.client = self.app.test_client()

    def test_is_origin_allowed(self):
        """Test exact and prefix matches."""
        assert self.cors.is_origin_allowed('https://portail.example.org')
        assert self.cors.is_origin_allowed('https://preview-42.example.org')
        assert not self.cors.is_origin_allowed('https://evil.example.com')
        assert not self.cors.is_origin_allowed(None)

    def test_headers_on_allowed_origin(self):
        """Test CORS headers on a simple request."""
        response = self.client.get('/api/activities', headers={'Origin': 'https://portail.example.org'})

        assert response.headers['Access-Control-Allow-Origin'] == 'https://portail.example.org'
        assert response.headers['Access-Control-Allow-Credentials'] == 'true'
        assert 'PATCH' in response.headers['Access-Control-Allow-Methods']

    def test_no_headers_on_other_origin(self):
        """Test other origins get no CORS headers."""
        response = self.client.get('/api/activities', headers={'Origin': 'https://evil.example.com'})

        assert response.status_code == 200
        assert 'Access-Control-Allow-Origin' not in response.headers

    def test_preflight(self):
        """Test preflight requests."""
        allowed = self.client.options('/api/activities', headers={'Origin': 'https://portail.example.org'})
        refused = self.client.options('/api/activities', headers={'Origin': 'https://evil.example.com'})

        assert allowed.status_code == 200
        assert refused.status_code == 403

    def test_configure_cors_from_environment(self, monkeypatch):
        """Test origins read from CORS_ALLOWED_ORIGINS."""
        monkeypatch.setenv('ENVIRONMENT', 'production')
        monkeypatch.delenv('FRONTEND_URL', raising=False)
        monkeypatch.setenv('CORS_ALLOWED_ORIGINS', 'https://a.example.org, https://b.example.org')

        cors = configure_cors(Flask(__name__))

        assert cors.allowed_origins == ['https://a.example.org', 'https://b.example.org']
