# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request validation middleware using Pydantic models.
Provides request body and query string validation with field-level errors.
"""

from flask import request
from typing import Any, Dict, List, Optional, Type, TypeVar
from pydantic import BaseModel, ValidationError
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_MESSAGES = {
    "missing": "Ce champ est obligatoire",
    "int_parsing": "Nombre entier attendu",
    "int_type": "Nombre entier attendu",
    "bool_parsing": "Booléen attendu",
    "bool_type": "Booléen attendu",
    "string_type": "Texte attendu",
    "list_type": "Liste attendue",
}


def format_validation_errors(
    validation_error: ValidationError,
    model_class: Optional[Type[BaseModel]] = None
) -> List[Dict[str, str]]:
    """
    Format Pydantic validation errors as ``{champ, message}`` entries.

    Messages declared in the model's ``error_messages`` mapping, keyed by
    (field alias, error type), take precedence over the defaults.

    Args:
        validation_error: Pydantic ValidationError
        model_class: Model that raised the error (optional)

    Returns:
        List of field errors
    """
    custom_messages = getattr(model_class, "error_messages", {}) if model_class else {}
    errors = []

    for error in validation_error.errors():
        loc = [str(part) for part in error["loc"]]
        champ = loc[0] if loc else "formulaire"
        error_type = error["type"]

        message = custom_messages.get((champ, error_type))
        if message is None and error_type == "value_error" and error.get("ctx", {}).get("error"):
            message = str(error["ctx"]["error"])
        if message is None:
            message = DEFAULT_MESSAGES.get(error_type, error["msg"])

        errors.append({"champ": champ, "message": message})

    return errors


def _raise_validation(model_class: Type[BaseModel], error: ValidationError, source: str):
    from middleware.error_handler import ValidationException

    validation_errors = format_validation_errors(error, model_class)
    logger.warning(
        f"{source} validation failed",
        extra={
            "model": model_class.__name__,
            "path": request.path,
            "method": request.method,
            "errors": validation_errors
        }
    )
    raise ValidationException("Données invalides", validation_errors)


def parse_json_body(model_class: Type[ModelT]) -> ModelT:
    """
    Validate the JSON request body against a Pydantic model.

    Raises:
        ValidationException: If the body is missing, not an object, or invalid
    """
    from middleware.error_handler import ValidationException

    with tracer.start_as_current_span("validation.validate_json_body") as span:
        span.set_attributes({
            "validation.model": model_class.__name__,
            "http.method": request.method,
            "http.path": request.path
        })

        json_data = request.get_json(silent=True)
        if not isinstance(json_data, dict):
            span.set_attribute("validation.result", "invalid_json")
            raise ValidationException(
                "Corps de requête JSON invalide",
                [{"champ": "body", "message": "Un objet JSON est attendu"}]
            )

        try:
            validated = model_class.model_validate(json_data)
        except ValidationError as e:
            span.set_attribute("validation.result", "validation_error")
            _raise_validation(model_class, e, "Request")

        span.set_attribute("validation.result", "success")
        return validated


def parse_optional_json_body(model_class: Type[ModelT]) -> ModelT:
    """Like parse_json_body, but an empty body validates as ``{}``."""
    if not request.get_data():
        return model_class.model_validate({})
    return parse_json_body(model_class)


def parse_query_params(model_class: Type[ModelT]) -> ModelT:
    """
    Validate query parameters against a Pydantic model.

    Raises:
        ValidationException: If a parameter is invalid
    """
    with tracer.start_as_current_span("validation.validate_query_params") as span:
        span.set_attributes({
            "validation.model": model_class.__name__,
            "http.method": request.method,
            "http.path": request.path
        })

        query_data: Dict[str, Any] = request.args.to_dict()
        try:
            validated = model_class.model_validate(query_data)
        except ValidationError as e:
            span.set_attribute("validation.result", "validation_error")
            _raise_validation(model_class, e, "Query parameter")

        span.set_attribute("validation.result", "success")
        return validated
