# SPDX-License-Identifier: Apache-2.0

"""
Activity record construction and cross-field validation.

This module contains pure functions that turn validated request models into
the Activity records persisted for a parent occurrence and its generated
children. Field-level errors use the ``{champ, message}`` shape returned to
the portal.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from models.entities import Activity
from models.enums import ActivityStatus, RecurrencePattern
from models.requests import CreateActivityRequest, UpdateActivityRequest
from utils.dates import parse_heure
from .recurrence import uses_specific_days

# Fields copied from the parent onto every generated occurrence
INHERITED_FIELDS = (
    "etablissement_id",
    "heure_debut",
    "heure_fin",
    "lieu",
    "titre",
    "description",
    "type_activite",
    "responsable_nom",
    "participants_attendus",
    "require_validation",
    "publication_demandee",
    "recurrence_pattern",
)

# Fields a coordinator may change while the activity is still editable
EDITABLE_FIELDS = (
    "activity_date",
    "heure_debut",
    "heure_fin",
    "titre",
    "description",
    "type_activite",
    "responsable_nom",
    "participants_attendus",
    "lieu",
)

# Editable fields that cannot be cleared
REQUIRED_FIELDS = frozenset({"activity_date", "heure_debut", "heure_fin", "titre", "type_activite"})


@dataclass
class ValidationResult:
    """Result of cross-field activity validation."""
    is_valid: bool
    errors: List[Dict[str, str]] = field(default_factory=list)


def field_error(champ: str, message: str) -> Dict[str, str]:
    return {"champ": champ, "message": message}


def validate_time_window(heure_debut: str, heure_fin: str) -> List[Dict[str, str]]:
    """
    Check that the activity ends after it starts on the same day.

    Args:
        heure_debut: Start time (already format-checked)
        heure_fin: End time (already format-checked)

    Returns:
        List of field errors, empty when the window is valid
    """
    if parse_heure(heure_fin) <= parse_heure(heure_debut):
        return [field_error("heureFin", "L'heure de fin doit être postérieure à l'heure de début")]
    return []


def validate_recurrence_rule(
    is_recurrent: bool,
    pattern: Optional[str],
    end_date: Optional[date],
    days: Optional[List[int]]
) -> List[Dict[str, str]]:
    """
    Check that a recurring activity carries a usable rule.

    A weekly rule on explicit weekdays may omit its end date; every other
    recurring rule needs one. An end date on or before the anchor is
    accepted and simply produces no further occurrence.
    """
    if not is_recurrent:
        return []

    errors = []
    if not pattern:
        errors.append(field_error("recurrencePattern", "La fréquence de récurrence est obligatoire"))
        return errors

    if end_date is None and not uses_specific_days(pattern, days):
        errors.append(field_error("recurrenceEndDate", "La date de fin de récurrence est obligatoire"))

    return errors


def validate_creation(request: CreateActivityRequest) -> ValidationResult:
    """
    Validate the cross-field rules of a creation request.

    Args:
        request: Request model with per-field rules already applied

    Returns:
        ValidationResult with field errors
    """
    errors = validate_time_window(request.heure_debut, request.heure_fin)
    errors.extend(validate_recurrence_rule(
        request.is_recurrent,
        request.recurrence_pattern,
        request.recurrence_end_date,
        request.recurrence_days
    ))
    return ValidationResult(is_valid=not errors, errors=errors)


def build_parent_record(request: CreateActivityRequest, user_id: int) -> Activity:
    """
    Build the authored occurrence of a new activity.

    Whatever visibility flags the caller asked for, the record starts as a
    draft that is neither validated nor public. The requested public
    visibility is remembered and applied on approval.

    Args:
        request: Validated creation request
        user_id: Creating user

    Returns:
        Activity without an id
    """
    is_recurrent = bool(request.is_recurrent)
    pattern = request.recurrence_pattern if is_recurrent else None
    days = None
    if is_recurrent and pattern == RecurrencePattern.WEEKLY.value and request.recurrence_days:
        days = request.recurrence_days

    return Activity(
        etablissement_id=request.etablissement_id,
        activity_date=request.activity_date,
        heure_debut=request.heure_debut,
        heure_fin=request.heure_fin,
        lieu=request.lieu,
        titre=request.titre,
        description=request.description,
        type_activite=request.type_activite,
        responsable_nom=request.responsable_nom,
        participants_attendus=request.participants_attendus,
        is_visible_public=False,
        is_valide_par_admin=False,
        require_validation=request.require_validation,
        publication_demandee=request.is_visible_public,
        statut=ActivityStatus.BROUILLON,
        is_recurrent=is_recurrent,
        recurrence_pattern=pattern,
        recurrence_end_date=request.recurrence_end_date if is_recurrent else None,
        recurrence_days=days,
        created_by=user_id
    )


def build_occurrence_records(parent: Activity, dates: List[date]) -> List[Activity]:
    """
    Build the generated occurrences of a recurring parent.

    Each child inherits the parent's time window and descriptive fields,
    points back to the parent, and carries no rule of its own.

    Args:
        parent: Persisted parent (must have an id)
        dates: Occurrence dates from the recurrence expansion

    Returns:
        Activities without ids, in date order
    """
    if parent.id is None:
        raise ValueError("Parent activity must be persisted before generating occurrences")

    inherited = {name: getattr(parent, name) for name in INHERITED_FIELDS}
    now = datetime.utcnow()

    return [
        Activity(
            **inherited,
            activity_date=occurrence_date,
            is_visible_public=False,
            is_valide_par_admin=False,
            statut=ActivityStatus.BROUILLON,
            is_recurrent=True,
            recurrence_parent_id=parent.id,
            created_by=parent.created_by,
            created_at=now,
            updated_at=now
        )
        for occurrence_date in dates
    ]


def validate_update(activity: Activity, request: UpdateActivityRequest) -> ValidationResult:
    """
    Check an edit against the merged record.

    Returns:
        ValidationResult with field errors on the merged time window
    """
    changes = changed_fields(request)
    heure_debut = changes.get("heure_debut", activity.heure_debut)
    heure_fin = changes.get("heure_fin", activity.heure_fin)
    errors = validate_time_window(heure_debut, heure_fin)
    return ValidationResult(is_valid=not errors, errors=errors)


def changed_fields(request: UpdateActivityRequest) -> Dict[str, Any]:
    """Editable fields explicitly sent in an update request."""
    sent = request.model_dump(exclude_unset=True)
    changes = {
        name: sent[name] for name in EDITABLE_FIELDS
        if name in sent and (sent[name] is not None or name not in REQUIRED_FIELDS)
    }
    if sent.get("is_visible_public") is not None:
        changes["publication_demandee"] = sent["is_visible_public"]
    return changes
