# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Storage, external integrations and orchestration.
"""

from .mongodb import MongoDBService, PaginationResult, get_mongodb_service, close_mongodb_connection
from .activity_store import ActivityStore, ActivityFilters, EstablishmentDirectory
from .permissions import PermissionService
from .audit import AuditService

__all__ = [
    "MongoDBService",
    "PaginationResult",
    "get_mongodb_service",
    "close_mongodb_connection",
    "ActivityStore",
    "ActivityFilters",
    "EstablishmentDirectory",
    "PermissionService",
    "AuditService"
]
