# SPDX-License-Identifier: Apache-2.0

"""
Activity programming endpoints.

This module implements the activity API: listing and detail views shaped per
caller, creation with recurrence expansion, editing, the review workflow,
post-event reporting and CSV import.
"""

from flask import current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging
from typing import Optional

from middleware.auth import optional_auth, require_auth
from middleware.error_handler import ValidationException
from middleware.validation import parse_json_body, parse_optional_json_body, parse_query_params
from models.entities import UserContext
from models.enums import ActivityStatus
from models.requests import (
    ActivityListParams, ActivityPath, ActivityReportRequest, BulkSubmitRequest,
    CreateActivityRequest, UpdateActivityRequest, ValidationDecisionRequest
)
from domain.visibility import project_activity
from services.permissions import PERMISSION_CREATE
from services.activities import (
    ActivityCreationService, ActivityImportService, ActivityQueryService,
    ActivityWorkflowService, ReportCompletionService
)
from utils.request import ResponseBuilder, read_uploaded_text

# Set up logging and tracing
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Create API blueprint
activities_tag = Tag(name="Activities", description="Activity programming, review and reporting")
activities_bp = APIBlueprint(
    'activities',
    __name__,
    url_prefix='/api/activities',
    abp_tags=[activities_tag]
)


def _build(service_class):
    """Instantiate an activity service from the collaborators held by the app."""
    return service_class(
        current_app.activity_store,
        current_app.establishment_directory,
        current_app.check_permission,
        current_app.audit_service
    )


@activities_bp.get('')
@optional_auth
def list_activities(user_context: Optional[UserContext]):
    """
    List activities.

    Anonymous callers and citizens only see validated public activities;
    coordinators see their managed establishments.
    """
    params = parse_query_params(ActivityListParams)
    page = _build(ActivityQueryService).list(user_context, params)

    if page.message and not page.items:
        return ResponseBuilder.success([], page.message)

    return ResponseBuilder.paginated(page.items, page.total, page.page, page.limit, page.message)


@activities_bp.post('')
@require_auth
def create_activity(user_context: UserContext):
    """
    Create an activity.

    Recurring activities are expanded into draft occurrences stored with the
    parent.
    """
    with tracer.start_as_current_span(
        "activity.create",
        attributes={"user.id": user_context.user_id, "operation": "create_activity"}
    ) as span:
        service = _build(ActivityCreationService)

        # Permission is checked before the body is parsed
        service.require_permission(
            user_context, PERMISSION_CREATE,
            "Vous n'avez pas la permission de créer des programmes"
        )
        create_request = parse_json_body(CreateActivityRequest)
        result = service.create(user_context, create_request)

        span.set_attribute("activity.occurrences_count", len(result.occurrences))

        message = "Activité créée avec succès"
        if result.occurrences:
            message = f"Activité récurrente créée avec {len(result.occurrences)} occurrence(s) supplémentaire(s)"

        return ResponseBuilder.success(
            project_activity(result.parent, user_context.role),
            message,
            201,
            occurrences=len(result.occurrences)
        )


@activities_bp.post('/submit-all')
@require_auth
def submit_all_activities(user_context: UserContext):
    """Submit every draft of the caller for validation."""
    bulk_request = parse_optional_json_body(BulkSubmitRequest)
    result = _build(ActivityWorkflowService).submit_all(user_context, bulk_request)
    return ResponseBuilder.success({"count": result["count"]}, result["message"], count=result["count"])


@activities_bp.post('/import')
@require_auth
def import_activities(user_context: UserContext):
    """
    Import draft activities from a semicolon-separated CSV upload.

    Invalid rows are reported with their row number and skipped.
    """
    with tracer.start_as_current_span(
        "activity.import",
        attributes={"user.id": user_context.user_id, "operation": "import_activities"}
    ) as span:
        content = read_uploaded_text('file')
        if content is None:
            raise ValidationException(
                "Aucun fichier fourni",
                [{"champ": "file", "message": "Un fichier CSV est attendu"}]
            )

        result = _build(ActivityImportService).import_csv(user_context, content)
        span.set_attributes({
            "import.imported": len(result.imported),
            "import.errors": len(result.errors)
        })

        logger.info(
            "Activity import completed",
            extra={
                "user_id": user_context.user_id,
                "imported": len(result.imported),
                "errors": len(result.errors),
                "total": result.total
            }
        )

        return ResponseBuilder.success(
            None,
            f"{len(result.imported)} activité(s) importée(s) sur {result.total}",
            imported=len(result.imported),
            errors=result.errors,
            total=result.total
        )


@activities_bp.get('/<int:activity_id>')
@optional_auth
def get_activity(user_context: Optional[UserContext], path: ActivityPath):
    """Get one activity, shaped for the caller."""
    data = _build(ActivityQueryService).get(user_context, path.activity_id)
    return ResponseBuilder.success(data)


@activities_bp.get('/<int:activity_id>/occurrences')
@optional_auth
def list_occurrences(user_context: Optional[UserContext], path: ActivityPath):
    """List the generated occurrences of a recurring activity."""
    items = _build(ActivityQueryService).occurrences(user_context, path.activity_id)
    return ResponseBuilder.success(items, total=len(items))


@activities_bp.patch('/<int:activity_id>')
@require_auth
def update_activity(user_context: UserContext, path: ActivityPath):
    """Edit a draft or rejected activity."""
    update_request = parse_json_body(UpdateActivityRequest)
    updated = _build(ActivityCreationService).update(user_context, path.activity_id, update_request)
    return ResponseBuilder.success(
        project_activity(updated, user_context.role),
        "Activité mise à jour avec succès"
    )


@activities_bp.post('/<int:activity_id>/submit')
@require_auth
def submit_activity(user_context: UserContext, path: ActivityPath):
    """Submit an activity for validation."""
    submitted = _build(ActivityWorkflowService).submit(user_context, path.activity_id)
    return ResponseBuilder.success(
        project_activity(submitted, user_context.role),
        "Activité soumise pour validation"
    )


@activities_bp.post('/<int:activity_id>/validation')
@require_auth
def decide_activity(user_context: UserContext, path: ActivityPath):
    """Approve or reject an activity awaiting validation."""
    with tracer.start_as_current_span(
        "activity.validation",
        attributes={"user.id": user_context.user_id, "activity.id": path.activity_id}
    ) as span:
        decision = parse_json_body(ValidationDecisionRequest)
        decided = _build(ActivityWorkflowService).decide(user_context, path.activity_id, decision)
        span.set_attribute("activity.status", decided.statut)

        if decided.statut == ActivityStatus.REJETEE.value:
            message = "Activité rejetée"
        elif decided.statut == ActivityStatus.PUBLIEE.value:
            message = "Activité validée et publiée"
        else:
            message = "Activité validée"

        return ResponseBuilder.success(project_activity(decided, user_context.role), message)


@activities_bp.post('/<int:activity_id>/publish')
@require_auth
def publish_activity(user_context: UserContext, path: ActivityPath):
    """Publish a validated activity."""
    published = _build(ActivityWorkflowService).publish(user_context, path.activity_id)
    return ResponseBuilder.success(project_activity(published, user_context.role), "Activité publiée")


@activities_bp.post('/<int:activity_id>/report')
@require_auth
def complete_report(user_context: UserContext, path: ActivityPath):
    """Attach the post-event report to a finished activity."""
    report_request = parse_json_body(ActivityReportRequest)
    completed = _build(ReportCompletionService).complete(user_context, path.activity_id, report_request)
    return ResponseBuilder.success(
        project_activity(completed, user_context.role),
        "Rapport enregistré avec succès"
    )


@activities_bp.get('/<int:activity_id>/report')
@require_auth
def get_report(user_context: UserContext, path: ActivityPath):
    """Get the report fields of an activity."""
    return ResponseBuilder.success(_build(ActivityQueryService).report(user_context, path.activity_id))
