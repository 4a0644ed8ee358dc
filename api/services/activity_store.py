# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Activity persistence and the establishment directory.

Activities are flat documents keyed by a numeric ``_id``; generated
occurrences point to their parent through ``recurrenceParentId`` and are
always reached through storage queries on that key.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Any, Tuple
from pymongo import ASCENDING
from opentelemetry import trace

from .mongodb import (
    MongoDBService, PaginationResult,
    ACTIVITIES_COLLECTION, ETABLISSEMENTS_COLLECTION, USERS_COLLECTION
)
from models.entities import Activity
from models.enums import ActivityStatus
from utils.dates import end_of_day, start_of_day, to_date, to_datetime

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ACTIVITY_SEQUENCE = "programme_activites"

# Listing order: by day, then by start time
ACTIVITY_SORT = [("date", ASCENDING), ("heureDebut", ASCENDING)]

# Aliased keys stored as datetimes although they hold calendar days
DATE_KEYS = ("date", "recurrenceEndDate")


@dataclass
class ActivityFilters:
    """Storage-level filters for activity listings."""
    etablissement_ids: Optional[List[int]] = None
    public_only: bool = False
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    statuses: List[str] = field(default_factory=list)
    created_by: Optional[int] = None

    def to_mongo_query(self) -> Dict[str, Any]:
        """Convert filters to MongoDB query."""
        query: Dict[str, Any] = {}

        if self.etablissement_ids is not None:
            query["etablissementId"] = {"$in": list(self.etablissement_ids)}

        if self.public_only:
            query["isVisiblePublic"] = True
            query["isValideParAdmin"] = True

        # Day-bounded inclusive range
        if self.date_from or self.date_to:
            date_filter = {}
            if self.date_from:
                date_filter["$gte"] = start_of_day(self.date_from)
            if self.date_to:
                date_filter["$lte"] = end_of_day(self.date_to)
            query["date"] = date_filter

        if self.statuses:
            query["statut"] = {"$in": list(self.statuses)}

        if self.created_by is not None:
            query["createdBy"] = self.created_by

        return query


def activity_to_document(activity: Activity) -> Dict[str, Any]:
    """Serialise an activity for MongoDB, keyed by its numeric id."""
    document = activity.model_dump(by_alias=True)
    document["_id"] = document.pop("id")
    for key in DATE_KEYS:
        document[key] = to_datetime(document.get(key))
    return document


def document_to_activity(document: Dict[str, Any]) -> Activity:
    """Rebuild an activity from a stored document."""
    data = dict(document)
    if "_id" in data:
        data["id"] = data.pop("_id")
    for key in DATE_KEYS:
        data[key] = to_date(data.get(key))
    return Activity.model_validate(data)


class ActivityStore:
    """MongoDB-backed activity repository."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service
        self.collection_name = ACTIVITIES_COLLECTION

    def create_with_occurrences(
        self,
        parent: Activity,
        build_occurrences: Callable[[Activity], List[Activity]]
    ) -> Tuple[Activity, List[Activity]]:
        """
        Persist a parent and its generated occurrences in one transaction.

        Identifiers are reserved before the transaction opens so a retried
        transaction writes the same documents again.

        Args:
            parent: Parent activity without an id
            build_occurrences: Builds the children once the parent id is known

        Returns:
            Tuple of the stored parent and stored children
        """
        with tracer.start_as_current_span("activity_store.create_with_occurrences") as span:
            parent_id = self.mongo_service.next_sequence(ACTIVITY_SEQUENCE)
            stored_parent = parent.model_copy(update={"id": parent_id})

            children = build_occurrences(stored_parent)
            stored_children: List[Activity] = []
            if children:
                first_id = self.mongo_service.next_sequence(ACTIVITY_SEQUENCE, count=len(children))
                stored_children = [
                    child.model_copy(update={"id": first_id + offset})
                    for offset, child in enumerate(children)
                ]

            parent_document = activity_to_document(stored_parent)
            children_documents = [activity_to_document(child) for child in stored_children]

            def write_all(session):
                self.mongo_service.insert_one(self.collection_name, parent_document, session=session)
                if children_documents:
                    self.mongo_service.insert_many(self.collection_name, children_documents, session=session)

            self.mongo_service.run_in_transaction(write_all)

            span.set_attributes({
                "activity.id": parent_id,
                "activity.occurrences_count": len(stored_children)
            })
            logger.info(
                "Activity stored with occurrences",
                extra={"activity_id": parent_id, "occurrences_count": len(stored_children)}
            )
            return stored_parent, stored_children

    def create(self, activity: Activity) -> Activity:
        """Persist a single activity."""
        activity_id = self.mongo_service.next_sequence(ACTIVITY_SEQUENCE)
        stored = activity.model_copy(update={"id": activity_id})
        self.mongo_service.insert_one(self.collection_name, activity_to_document(stored))
        return stored

    def get(self, activity_id: int) -> Optional[Activity]:
        """Fetch an activity by id."""
        document = self.mongo_service.get_collection(self.collection_name).find_one({"_id": activity_id})
        if document is None:
            return None
        return document_to_activity(document)

    def paginate(self, filters: ActivityFilters, page: int, page_size: int) -> PaginationResult:
        """Page through activities ordered by day then start time."""
        result = self.mongo_service.paginate(
            self.collection_name,
            filters.to_mongo_query(),
            page=page,
            page_size=page_size,
            sort=ACTIVITY_SORT
        )
        result.items = [document_to_activity(item) for item in result.items]
        return result

    def find_occurrences(self, parent_id: int) -> List[Activity]:
        """Generated occurrences of a recurring parent, in date order."""
        documents = self.mongo_service.find(
            self.collection_name,
            {"recurrenceParentId": parent_id},
            sort=ACTIVITY_SORT
        )
        return [document_to_activity(document) for document in documents]

    def save(self, activity: Activity) -> Activity:
        """Overwrite a stored activity with its new state."""
        document = activity_to_document(activity)
        activity_id = document.pop("_id")
        if not self.mongo_service.update_one(self.collection_name, {"_id": activity_id}, document):
            raise LookupError(f"Activity {activity_id} not found")
        return activity

    def submit_drafts(self, created_by: int, etablissement_ids: Optional[List[int]], now: datetime) -> int:
        """
        Send every draft of a creator for review.

        Returns:
            Number of activities moved
        """
        query: Dict[str, Any] = {
            "createdBy": created_by,
            "statut": ActivityStatus.BROUILLON.value
        }
        if etablissement_ids is not None:
            query["etablissementId"] = {"$in": list(etablissement_ids)}

        return self.mongo_service.update_many(self.collection_name, query, {
            "statut": ActivityStatus.EN_ATTENTE_VALIDATION.value,
            "motifRejet": None,
            "updatedAt": now
        })


class EstablishmentDirectory:
    """Read-only view of establishments and of who manages them."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def exists(self, etablissement_id: int) -> bool:
        return self.mongo_service.count(ETABLISSEMENTS_COLLECTION, {"_id": etablissement_id}) > 0

    def managed_establishments(self, user_id: int) -> List[int]:
        """
        Establishments managed by a user, read fresh on every call.

        Returns:
            List of establishment ids, empty for unknown users
        """
        user = self.mongo_service.find_one(USERS_COLLECTION, {"_id": user_id})
        if not user:
            return []
        return [int(etablissement_id) for etablissement_id in user.get("etablissementsGeres") or []]
