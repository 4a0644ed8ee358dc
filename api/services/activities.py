# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Activity orchestration services.

These services compose the pure domain functions (recurrence, record
construction, access scope, visibility, lifecycle) with storage, the
establishment directory, the permission capability and the audit trail.
Failures are raised as the application exceptions rendered by the error
handler.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from opentelemetry import trace
from pydantic import ValidationError

from domain import activities as activity_domain
from domain import lifecycle
from domain.access import (
    AccessScope, build_scoped_filter, check_read_access, check_write_access,
    needs_managed_establishments, resolve_scope
)
from domain.recurrence import expand_recurrence
from domain.visibility import project_activity, report_view
from middleware.error_handler import (
    AuthorizationException, NotFoundException, ValidationException
)
from middleware.validation import format_validation_errors
from models.entities import Activity, UserContext
from models.enums import ADMIN_ROLES, ActivityStatus, UserRole, ValidationAction
from models.requests import (
    ActivityListParams, ActivityReportRequest, BulkSubmitRequest,
    CreateActivityRequest, UpdateActivityRequest, ValidationDecisionRequest
)
from services.activity_store import ActivityFilters
from services.permissions import (
    PERMISSION_CREATE, PERMISSION_EDIT, PERMISSION_REPORT, PERMISSION_VALIDATE
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ENTITY = "ProgrammeActivite"

PermissionCheck = Callable[[int, str], bool]

IMPORT_REQUIRED_COLUMNS = ("date", "heureDebut", "heureFin", "titre", "typeActivite", "etablissementId")
IMPORT_OPTIONAL_COLUMNS = ("description", "lieu", "participantsAttendus", "responsableNom")


@dataclass
class CreationResult:
    """A stored parent and its generated occurrences."""
    parent: Activity
    occurrences: List[Activity] = field(default_factory=list)


@dataclass
class ActivityPage:
    """One page of projected activities."""
    items: List[Dict[str, Any]]
    page: int
    limit: int
    total: int
    message: Optional[str] = None

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass
class ImportResult:
    """Outcome of a CSV import."""
    imported: List[Activity]
    errors: List[Dict[str, Any]]
    total: int


class ActivityServiceBase:
    """Shared collaborators and checks of the activity services."""

    def __init__(self, store, directory, check_permission: PermissionCheck, audit_service=None):
        self.store = store
        self.directory = directory
        self.check_permission = check_permission
        self.audit_service = audit_service

    def scope_for(self, user_context: Optional[UserContext]) -> AccessScope:
        """Resolve the caller scope, reading managed establishments fresh."""
        managed = []
        if needs_managed_establishments(user_context):
            managed = self.directory.managed_establishments(user_context.user_id)
        return resolve_scope(user_context, managed)

    def require_permission(self, user_context: UserContext, permission: str, message: str) -> None:
        if not self.check_permission(user_context.user_id, permission):
            logger.warning(
                "Permission denied",
                extra={
                    "user_id": user_context.user_id,
                    "role": user_context.role,
                    "permission": permission
                }
            )
            raise AuthorizationException(message)

    def require_write_scope(self, scope: AccessScope, etablissement_id: int) -> None:
        result = check_write_access(scope, etablissement_id)
        if not result.allowed:
            raise AuthorizationException(result.reason)

    def get_activity(self, activity_id: int) -> Activity:
        activity = self.store.get(activity_id)
        if activity is None:
            raise NotFoundException("Activité non trouvée")
        return activity

    def audit(self, user_context: UserContext, action: str, entity_id: Optional[int],
              before: Optional[Activity] = None, after: Optional[Activity] = None,
              details: Optional[Dict[str, Any]] = None) -> None:
        if self.audit_service is None:
            return
        self.audit_service.log_action(
            user_context,
            ENTITY,
            entity_id,
            action,
            before=before.to_payload() if before else None,
            after=after.to_payload() if after else None,
            details=details
        )


class ActivityCreationService(ActivityServiceBase):
    """Creates activities, expanding recurring ones into occurrences."""

    def create(self, user_context: UserContext, request: CreateActivityRequest) -> CreationResult:
        """
        Create a (possibly recurring) activity.

        The parent and every generated occurrence are written in a single
        transaction.

        Raises:
            AuthorizationException: Missing permission or establishment outside scope
            ValidationException: Cross-field rules violated
            NotFoundException: Unknown establishment
        """
        with tracer.start_as_current_span("activities.create") as span:
            span.set_attributes({
                "user.id": user_context.user_id,
                "activity.etablissement_id": request.etablissement_id,
                "activity.is_recurrent": request.is_recurrent
            })

            self.require_permission(
                user_context, PERMISSION_CREATE,
                "Vous n'avez pas la permission de créer des programmes"
            )

            validation = activity_domain.validate_creation(request)
            if not validation.is_valid:
                raise ValidationException("Erreur de validation", validation.errors)

            self.require_write_scope(self.scope_for(user_context), request.etablissement_id)

            if not self.directory.exists(request.etablissement_id):
                raise NotFoundException("Établissement introuvable")

            parent = activity_domain.build_parent_record(request, user_context.user_id)

            dates = []
            if parent.is_recurrent:
                dates = expand_recurrence(
                    parent.activity_date,
                    parent.recurrence_pattern,
                    parent.recurrence_end_date,
                    parent.recurrence_days
                )

            stored_parent, occurrences = self.store.create_with_occurrences(
                parent,
                lambda stored: activity_domain.build_occurrence_records(stored, dates)
            )

            span.set_attributes({
                "activity.id": stored_parent.id,
                "activity.occurrences_count": len(occurrences)
            })

            self.audit(
                user_context, "CREATE_ACTIVITY", stored_parent.id,
                after=stored_parent,
                details={"occurrences": len(occurrences)}
            )

            logger.info(
                "Activity created",
                extra={
                    "activity_id": stored_parent.id,
                    "user_id": user_context.user_id,
                    "etablissement_id": stored_parent.etablissement_id,
                    "occurrences_count": len(occurrences)
                }
            )

            return CreationResult(parent=stored_parent, occurrences=occurrences)

    def update(self, user_context: UserContext, activity_id: int, request: UpdateActivityRequest) -> Activity:
        """
        Edit a draft or rejected activity.

        Raises:
            LifecycleError: Activity no longer editable
        """
        with tracer.start_as_current_span("activities.update") as span:
            span.set_attributes({"user.id": user_context.user_id, "activity.id": activity_id})

            self.require_permission(
                user_context, PERMISSION_EDIT,
                "Vous n'avez pas la permission de modifier des programmes"
            )

            activity = self.get_activity(activity_id)
            self.require_write_scope(self.scope_for(user_context), activity.etablissement_id)

            if activity.statut not in lifecycle.EDITABLE_STATUSES:
                raise lifecycle.LifecycleError(
                    "Seules les activités en brouillon ou rejetées peuvent être modifiées",
                    current=activity.statut
                )

            validation = activity_domain.validate_update(activity, request)
            if not validation.is_valid:
                raise ValidationException("Erreur de validation", validation.errors)

            data = activity.model_dump()
            data.update(activity_domain.changed_fields(request))
            data["updated_at"] = datetime.utcnow()
            updated = self.store.save(Activity.model_validate(data))

            self.audit(user_context, "UPDATE_ACTIVITY", activity_id, before=activity, after=updated)
            return updated


class ActivityQueryService(ActivityServiceBase):
    """Lists and reads activities within the caller scope."""

    def list(self, user_context: Optional[UserContext], params: ActivityListParams) -> ActivityPage:
        """
        Page through activities visible to the caller.

        A coordinator asking for establishments outside their scope gets an
        empty page, never an error.
        """
        with tracer.start_as_current_span("activities.list") as span:
            role = user_context.role if user_context else None
            scope = self.scope_for(user_context)
            scoped = build_scoped_filter(scope, params.etablissement_id)

            span.set_attributes({
                "activity.scope": scope.kind,
                "query.page": params.page,
                "query.limit": params.limit
            })

            if scoped.is_empty:
                return ActivityPage(items=[], page=params.page, limit=params.limit, total=0,
                                    message=scoped.message)

            filters = ActivityFilters(
                etablissement_ids=scoped.etablissement_ids,
                public_only=scoped.public_only,
                date_from=params.date_debut,
                date_to=params.date_fin,
                statuses=params.statuses()
            )
            result = self.store.paginate(filters, params.page, params.limit)

            span.set_attribute("query.total", result.total)
            return ActivityPage(
                items=[project_activity(activity, role) for activity in result.items],
                page=params.page,
                limit=params.limit,
                total=result.total
            )

    def get(self, user_context: Optional[UserContext], activity_id: int) -> Dict[str, Any]:
        """Read one activity, projected for the caller."""
        activity = self.get_activity(activity_id)
        access = check_read_access(self.scope_for(user_context), activity)
        if not access.allowed:
            raise AuthorizationException(access.reason)
        return project_activity(activity, user_context.role if user_context else None)

    def occurrences(self, user_context: Optional[UserContext], activity_id: int) -> List[Dict[str, Any]]:
        """Generated occurrences of a parent the caller may read."""
        parent = self.get_activity(activity_id)
        scope = self.scope_for(user_context)
        access = check_read_access(scope, parent)
        if not access.allowed:
            raise AuthorizationException(access.reason)

        role = user_context.role if user_context else None
        return [
            project_activity(child, role)
            for child in self.store.find_occurrences(activity_id)
            if check_read_access(scope, child).allowed
        ]

    def report(self, user_context: UserContext, activity_id: int) -> Dict[str, Any]:
        """Report fields of an activity, for its coordinators and administrators."""
        activity = self.get_activity(activity_id)
        scope = self.scope_for(user_context)
        if scope.is_public:
            raise AuthorizationException("Accès au rapport non autorisé")
        access = check_read_access(scope, activity)
        if not access.allowed:
            raise AuthorizationException(access.reason)
        return report_view(activity)


class ActivityWorkflowService(ActivityServiceBase):
    """Submission, review and publication of activities."""

    def submit(self, user_context: UserContext, activity_id: int) -> Activity:
        """Send a draft or rejected activity for review (creator or administrator)."""
        with tracer.start_as_current_span("activities.submit") as span:
            span.set_attributes({"user.id": user_context.user_id, "activity.id": activity_id})

            activity = self.get_activity(activity_id)
            if not lifecycle.can_submit(activity, user_context):
                raise AuthorizationException("Seul le créateur de l'activité ou un administrateur peut la soumettre")

            if activity.statut not in lifecycle.SUBMITTABLE_STATUSES:
                raise lifecycle.LifecycleError(
                    f"Statut actuel: {activity.statut}. Seules les activités en brouillon ou rejetées peuvent être soumises.",
                    current=activity.statut,
                    target=ActivityStatus.EN_ATTENTE_VALIDATION.value
                )

            submitted = self.store.save(lifecycle.submit_for_validation(activity))
            self.audit(user_context, "SUBMIT_FOR_VALIDATION", activity_id, before=activity, after=submitted)
            return submitted

    def submit_all(self, user_context: UserContext, request: BulkSubmitRequest) -> Dict[str, Any]:
        """
        Send every draft of the caller for review.

        Coordinators are limited to their managed establishments; an explicit
        establishment outside that list submits nothing.
        """
        with tracer.start_as_current_span("activities.submit_all") as span:
            span.set_attribute("user.id", user_context.user_id)

            if user_context.role not in ADMIN_ROLES and \
                    user_context.role != UserRole.COORDINATEUR_ACTIVITES.value:
                raise AuthorizationException("Accès non autorisé")

            scope = self.scope_for(user_context)
            scoped = build_scoped_filter(scope, request.etablissement_id)
            if scoped.is_empty:
                return {"count": 0, "message": scoped.message or "Aucune activité en brouillon à soumettre"}

            count = self.store.submit_drafts(user_context.user_id, scoped.etablissement_ids, datetime.utcnow())
            span.set_attribute("activity.submitted_count", count)

            if count == 0:
                return {"count": 0, "message": "Aucune activité en brouillon à soumettre"}

            self.audit(
                user_context, "BULK_SUBMIT_FOR_VALIDATION", None,
                details={"count": count, "etablissementIds": scoped.etablissement_ids}
            )
            return {"count": count, "message": f"{count} activité(s) soumise(s) pour validation"}

    def decide(self, user_context: UserContext, activity_id: int, request: ValidationDecisionRequest) -> Activity:
        """Approve or reject a pending activity (administrators only)."""
        with tracer.start_as_current_span("activities.decide") as span:
            span.set_attributes({
                "user.id": user_context.user_id,
                "activity.id": activity_id,
                "validation.action": request.action
            })

            self.require_permission(
                user_context, PERMISSION_VALIDATE,
                "Seuls les administrateurs peuvent valider les activités"
            )
            activity = self.get_activity(activity_id)

            if request.action == ValidationAction.VALIDATE.value:
                decided = lifecycle.approve(activity, user_context.user_id)
                action = "VALIDATE_ACTIVITY"
            else:
                decided = lifecycle.reject(activity, request.motif)
                action = "REJECT_ACTIVITY"

            saved = self.store.save(decided)
            self.audit(
                user_context, action, activity_id, before=activity, after=saved,
                details={"motif": request.motif} if request.motif else None
            )
            return saved

    def publish(self, user_context: UserContext, activity_id: int) -> Activity:
        """Publish a validated activity (administrators only)."""
        self.require_permission(
            user_context, PERMISSION_VALIDATE,
            "Seuls les administrateurs peuvent publier les activités"
        )
        activity = self.get_activity(activity_id)
        published = self.store.save(lifecycle.publish(activity))
        self.audit(user_context, "PUBLISH_ACTIVITY", activity_id, before=activity, after=published)
        return published


class ReportCompletionService(ActivityServiceBase):
    """Applies the coordinator's post-event report."""

    def complete(self, user_context: UserContext, activity_id: int, request: ActivityReportRequest,
                 now: Optional[datetime] = None) -> Activity:
        """
        Attach the report and move the activity to RAPPORT_COMPLETE.

        Raises:
            AuthorizationException: Caller neither administrator nor coordinator of the establishment
            LifecycleError: Activity not published and finished
        """
        with tracer.start_as_current_span("activities.report") as span:
            span.set_attributes({"user.id": user_context.user_id, "activity.id": activity_id})

            activity = self.get_activity(activity_id)

            if user_context.role not in ADMIN_ROLES:
                self.require_permission(
                    user_context, PERMISSION_REPORT,
                    "Vous n'avez pas la permission de remplir ce rapport"
                )
                scope = self.scope_for(user_context)
                if not scope.covers(activity.etablissement_id):
                    raise AuthorizationException("Non autorisé à modifier cette activité")

            now = now or datetime.now()
            reported = activity
            finished = None
            if activity.statut == ActivityStatus.PUBLIEE.value and lifecycle.is_finished(activity, now):
                finished = lifecycle.mark_finished(activity, now)
                reported = finished

            # Finish and report land in one write
            completed = self.store.save(lifecycle.complete_report(reported, request, now))

            if finished is not None:
                self.audit(user_context, "MARK_FINISHED", activity_id, before=activity, after=finished)
            self.audit(
                user_context, "RAPPORT_ACTIVITE", activity_id, before=reported, after=completed,
                details={
                    "presenceEffective": completed.presence_effective,
                    "tauxPresence": completed.taux_presence,
                    "noteQualite": completed.note_qualite
                }
            )

            logger.info(
                "Activity report completed",
                extra={
                    "activity_id": activity_id,
                    "user_id": user_context.user_id,
                    "taux_presence": completed.taux_presence
                }
            )
            return completed


class ActivityImportService(ActivityServiceBase):
    """Imports draft activities from a semicolon-separated CSV file."""

    def import_csv(self, user_context: UserContext, content: str) -> ImportResult:
        """
        Create one draft per valid row.

        Row numbers count the header as row 1. Invalid rows are reported and
        skipped; valid rows are stored.

        Raises:
            ValidationException: Empty file or missing required columns
        """
        with tracer.start_as_current_span("activities.import") as span:
            self.require_permission(
                user_context, PERMISSION_CREATE,
                "Seuls les coordinateurs et administrateurs peuvent importer des programmes"
            )

            reader = csv.DictReader(io.StringIO(content.lstrip()), delimiter=";")
            headers = [header.strip() for header in reader.fieldnames or []]
            reader.fieldnames = headers

            # Skip blank records
            records = [
                raw_row for raw_row in reader
                if any(isinstance(value, str) and value.strip() for value in raw_row.values())
            ]
            if not headers or not records:
                raise ValidationException(
                    "Le fichier doit contenir au moins une ligne d'en-tête et une ligne de données"
                )

            missing = [column for column in IMPORT_REQUIRED_COLUMNS if column not in headers]
            if missing:
                raise ValidationException(
                    f"Colonnes manquantes: {', '.join(missing)}",
                    [{"champ": column, "message": "Colonne manquante"} for column in missing]
                )

            scope = self.scope_for(user_context)
            imported: List[Activity] = []
            errors: List[Dict[str, Any]] = []

            for index, raw_row in enumerate(records, start=2):
                try:
                    activity = self._import_row(user_context, scope, raw_row)
                except (ValidationException, AuthorizationException, NotFoundException) as e:
                    errors.append({"row": index, "message": e.message})
                else:
                    imported.append(activity)

            span.set_attributes({
                "import.total": len(records),
                "import.imported": len(imported),
                "import.errors": len(errors)
            })

            self.audit(
                user_context, "IMPORT_ACTIVITIES", None,
                details={
                    "imported": len(imported),
                    "errors": len(errors),
                    "ids": [activity.id for activity in imported]
                }
            )

            return ImportResult(imported=imported, errors=errors, total=len(records))

    def _import_row(self, user_context: UserContext, scope: AccessScope, raw_row: Dict[str, Any]) -> Activity:
        row = {
            key: value.strip()
            for key, value in raw_row.items()
            if key in IMPORT_REQUIRED_COLUMNS + IMPORT_OPTIONAL_COLUMNS and isinstance(value, str) and value.strip()
        }

        try:
            request = CreateActivityRequest.model_validate(row)
        except ValidationError as e:
            first = format_validation_errors(e, CreateActivityRequest)[0]
            raise ValidationException(f"{first['champ']}: {first['message']}")

        validation = activity_domain.validate_creation(request)
        if not validation.is_valid:
            raise ValidationException(validation.errors[0]["message"])

        self.require_write_scope(scope, request.etablissement_id)

        if not self.directory.exists(request.etablissement_id):
            raise NotFoundException(f"Établissement {request.etablissement_id} non trouvé")

        return self.store.create(activity_domain.build_parent_record(request, user_context.user_id))
