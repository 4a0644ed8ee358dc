# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the activity programme.
"""

# Base models
from .base import BaseEntity, BaseRequest

# Enumerations
from .enums import (
    ActivityStatus,
    RecurrencePattern,
    UserRole,
    ValidationAction,
    ADMIN_ROLES,
    ELEVATED_READ_ROLES
)

# Core entities
from .entities import (
    Activity,
    AuditLog,
    UserContext,
    REPORT_FIELDS,
    INTERNAL_FIELDS
)

# Request models
from .requests import (
    CreateActivityRequest,
    UpdateActivityRequest,
    ActivityReportRequest,
    ValidationDecisionRequest,
    BulkSubmitRequest,
    ActivityListParams,
    ActivityPath
)

__all__ = [
    # Base models
    "BaseEntity",
    "BaseRequest",

    # Enumerations
    "ActivityStatus",
    "RecurrencePattern",
    "UserRole",
    "ValidationAction",
    "ADMIN_ROLES",
    "ELEVATED_READ_ROLES",

    # Core entities
    "Activity",
    "AuditLog",
    "UserContext",
    "REPORT_FIELDS",
    "INTERNAL_FIELDS",

    # Request models
    "CreateActivityRequest",
    "UpdateActivityRequest",
    "ActivityReportRequest",
    "ValidationDecisionRequest",
    "BulkSubmitRequest",
    "ActivityListParams",
    "ActivityPath",
]
