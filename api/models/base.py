# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class BaseEntity(BaseModel):
    """Base entity with common fields for all persisted records."""

    model_config = ConfigDict(
        # Allow population by field name or alias
        populate_by_name=True,
        # Use enum values instead of enum objects
        use_enum_values=True,
        # Validate assignment
        validate_assignment=True
    )

    id: Optional[int] = Field(None, description="Numeric identifier, assigned by storage")
    created_by: int = Field(..., alias="createdBy", description="User ID who created this entity")
    created_at: datetime = Field(default_factory=datetime.utcnow, alias="createdAt", description="Creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.utcnow, alias="updatedAt", description="Last update timestamp")
    schema_version: int = Field(default=1, alias="schemaVersion", description="Schema version for migrations")

    def to_payload(self) -> dict:
        """Serialise with camelCase keys for JSON responses."""
        return self.model_dump(by_alias=True, mode="json")


class BaseRequest(BaseModel):
    """Base model for request payloads."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        str_strip_whitespace=True
    )
