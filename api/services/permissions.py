# SPDX-License-Identifier: Apache-2.0

"""
Permission lookup backed by the users and user_permissions collections.

The orchestration services only see ``check_permission(user_id, code)``, a
single boolean capability; this module is its MongoDB implementation.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional
from opentelemetry import trace

from .mongodb import MongoDBService, USERS_COLLECTION, USER_PERMISSIONS_COLLECTION
from models.enums import UserRole

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PERMISSION_CREATE = "programmes.create"
PERMISSION_EDIT = "programmes.edit"
PERMISSION_REPORT = "programmes.report"
PERMISSION_READ = "programmes.read"
PERMISSION_VALIDATE = "programmes.validate"

ROLE_DEFAULT_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    UserRole.COORDINATEUR_ACTIVITES.value: frozenset({
        PERMISSION_CREATE, PERMISSION_EDIT, PERMISSION_REPORT, PERMISSION_READ
    }),
    UserRole.ADMIN.value: frozenset({PERMISSION_VALIDATE}),
    UserRole.GOUVERNEUR.value: frozenset({PERMISSION_READ}),
}


class PermissionService:
    """Resolves whether a user holds a permission code."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def check_permission(self, user_id: int, permission: str) -> bool:
        """
        Check a permission for a user.

        Super administrators hold every permission. Otherwise an active,
        unexpired explicit grant wins, then the defaults of the user's role.

        Args:
            user_id: Numeric user id
            permission: Permission code such as ``programmes.create``

        Returns:
            True if the permission is granted
        """
        with tracer.start_as_current_span("permissions.check") as span:
            span.set_attributes({
                "user.id": user_id,
                "auth.required_permission": permission
            })

            role = self._get_role(user_id)
            if role is None:
                span.set_attribute("auth.permission_result", "unknown_user")
                logger.warning("Permission check for unknown user", extra={"user_id": user_id})
                return False

            if role == UserRole.SUPER_ADMIN.value:
                span.set_attribute("auth.permission_result", "granted")
                return True

            granted = self._has_explicit_grant(user_id, permission) or \
                permission in ROLE_DEFAULT_PERMISSIONS.get(role, frozenset())

            span.set_attribute("auth.permission_result", "granted" if granted else "denied")
            logger.debug(
                "Permission checked",
                extra={
                    "user_id": user_id,
                    "role": role,
                    "permission": permission,
                    "granted": granted
                }
            )
            return granted

    def _get_role(self, user_id: int) -> Optional[str]:
        user = self.mongo_service.find_one(USERS_COLLECTION, {"_id": user_id})
        if not user:
            return None
        return user.get("role")

    def _has_explicit_grant(self, user_id: int, permission: str) -> bool:
        now = datetime.utcnow()
        grant = self.mongo_service.find_one(USER_PERMISSIONS_COLLECTION, {
            "userId": user_id,
            "permission": permission,
            "isActive": True,
            "$or": [{"expiresAt": None}, {"expiresAt": {"$gt": now}}]
        })
        return grant is not None
