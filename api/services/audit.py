# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for activity lifecycle logging with OpenTelemetry correlation.
"""

import logging
from typing import Dict, List, Optional, Any
from opentelemetry import trace

from .mongodb import MongoDBService, AUDIT_LOGS_COLLECTION
from models.entities import AuditLog, UserContext

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Keys left out of field-level change lists
IGNORED_CHANGE_KEYS = frozenset({"updatedAt", "_id", "id"})


class AuditService:
    """Service for audit logging with MongoDB persistence."""

    def __init__(self, mongo_service: MongoDBService):
        """Initialize audit service with MongoDB dependency."""
        self.mongo_service = mongo_service
        self.collection_name = AUDIT_LOGS_COLLECTION
        logger.info("Audit service initialized")

    def log_action(
        self,
        user_context: UserContext,
        entity: str,
        entity_id: Optional[int],
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log an audit trail entry with trace correlation and structured logging.

        Args:
            user_context: Caller performing the action
            entity: Type of entity being acted upon
            entity_id: ID of the specific entity, None for bulk actions
            action: Action being performed
            before: State before the action (optional)
            after: State after the action (optional)
            details: Free-form context such as counts (optional)

        Returns:
            str: ID of the created audit log entry
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            try:
                span_context = span.get_span_context()

                entry = AuditLog(
                    user_id=user_context.user_id,
                    entity=entity,
                    entity_id=entity_id,
                    action=action,
                    before=before,
                    after=after,
                    details=details or {},
                    ip_address=user_context.ip_address,
                    user_agent=user_context.user_agent
                )

                # Add trace correlation if available
                if span_context.is_valid:
                    entry.trace_id = format(span_context.trace_id, "032x")
                    entry.span_id = format(span_context.span_id, "016x")

                changes = self._calculate_changes(before, after) if before and after else []

                audit_entry = {
                    "timestamp": entry.timestamp,
                    "userId": entry.user_id,
                    "entity": entry.entity,
                    "entityId": entry.entity_id,
                    "action": entry.action,
                    "before": entry.before,
                    "after": entry.after,
                    "changes": changes,
                    "details": entry.details,
                    "ipAddress": entry.ip_address,
                    "userAgent": entry.user_agent,
                    "sessionId": user_context.session_id,
                    "traceId": entry.trace_id,
                    "spanId": entry.span_id,
                    "schemaVersion": 1
                }

                span.set_attributes({
                    "audit.entity": entity,
                    "audit.action": action,
                    "audit.user_id": user_context.user_id,
                    "audit.entity_id": entity_id if entity_id is not None else -1
                })

                audit_id = str(self.mongo_service.insert_one(self.collection_name, audit_entry))

                logger.info(
                    "Audit trail entry created",
                    extra={
                        "audit_id": audit_id,
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": user_context.user_id,
                        "trace_id": entry.trace_id,
                        "changes_count": len(changes),
                        "audit_category": "business_action"
                    }
                )

                return audit_id

            except Exception as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to create audit trail entry",
                    extra={
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": user_context.user_id,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

    def _calculate_changes(self, before: Dict[str, Any], after: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Calculate field-level changes for detailed audit trail.

        Args:
            before: State before the change
            after: State after the change

        Returns:
            List[Dict]: List of field changes
        """
        changes = []

        for key in sorted(set(before.keys()) | set(after.keys())):
            if key in IGNORED_CHANGE_KEYS:
                continue

            old_value = before.get(key)
            new_value = after.get(key)
            if old_value != new_value:
                changes.append({
                    "field": key,
                    "old_value": old_value,
                    "new_value": new_value
                })

        return changes
