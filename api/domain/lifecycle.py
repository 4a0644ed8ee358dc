# SPDX-License-Identifier: Apache-2.0

"""
Activity lifecycle state machine.

This module contains pure functions moving an activity along its status
graph. Every transition returns a new Activity re-validated against the model
invariants; the input record is never mutated. Parents and generated
occurrences move independently.
"""

import math
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional

from models.entities import Activity, UserContext
from models.enums import ADMIN_ROLES, ActivityStatus
from models.requests import ActivityReportRequest

S = ActivityStatus

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    S.BROUILLON.value: frozenset({S.EN_ATTENTE_VALIDATION.value}),
    S.EN_ATTENTE_VALIDATION.value: frozenset({S.VALIDE.value, S.REJETEE.value}),
    S.REJETEE.value: frozenset({S.EN_ATTENTE_VALIDATION.value}),
    S.VALIDE.value: frozenset({S.PUBLIEE.value}),
    S.PUBLIEE.value: frozenset({S.TERMINEE.value}),
    S.TERMINEE.value: frozenset({S.RAPPORT_COMPLETE.value}),
    S.RAPPORT_COMPLETE.value: frozenset(),
}

# Statuses in which scheduling and descriptive fields may still change
EDITABLE_STATUSES = frozenset({S.BROUILLON.value, S.REJETEE.value})

# Statuses that may be sent for review
SUBMITTABLE_STATUSES = frozenset({S.BROUILLON.value, S.REJETEE.value})


class LifecycleError(Exception):
    """Raised when a status transition is not allowed."""

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.current = current
        self.target = target


def can_transition(current: str, target: str) -> bool:
    """Check whether the status graph has an edge from current to target."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(activity: Activity, target: str, now: Optional[datetime] = None, **updates: Any) -> Activity:
    """
    Move an activity to a new status.

    Args:
        activity: Current record
        target: Target status
        now: Timestamp recorded as the update time
        **updates: Additional field changes applied with the transition

    Returns:
        New Activity with the target status

    Raises:
        LifecycleError: If the status graph has no such edge
    """
    current = activity.statut
    if not can_transition(current, target):
        raise LifecycleError(
            f"Transition impossible de {current} vers {target}",
            current=current,
            target=target
        )

    data = activity.model_dump()
    data.update(updates)
    data["statut"] = target
    data["updated_at"] = now or datetime.utcnow()
    return Activity.model_validate(data)


def can_submit(activity: Activity, user_context: UserContext) -> bool:
    """Only the creator or an administrator may send an activity for review."""
    return activity.created_by == user_context.user_id or user_context.role in ADMIN_ROLES


def submit_for_validation(activity: Activity, now: Optional[datetime] = None) -> Activity:
    """
    Send a draft or a rejected activity for review.

    A resubmitted activity is reviewed afresh, so the previous rejection
    reason is cleared.
    """
    return transition(activity, S.EN_ATTENTE_VALIDATION.value, now, motif_rejet=None)


def approve(activity: Activity, admin_id: int, now: Optional[datetime] = None) -> Activity:
    """
    Approve a pending activity.

    When public visibility was requested at creation the activity is
    published in the same step.
    """
    now = now or datetime.utcnow()
    approved = transition(
        activity,
        S.VALIDE.value,
        now,
        is_valide_par_admin=True,
        validated_by=admin_id,
        validated_at=now
    )
    if approved.publication_demandee:
        return publish(approved, now)
    return approved


def reject(activity: Activity, motif: Optional[str] = None, now: Optional[datetime] = None) -> Activity:
    """Reject a pending activity, withdrawing any validation and visibility."""
    return transition(
        activity,
        S.REJETEE.value,
        now,
        motif_rejet=motif,
        is_valide_par_admin=False,
        is_visible_public=False,
        validated_by=None,
        validated_at=None
    )


def publish(activity: Activity, now: Optional[datetime] = None) -> Activity:
    """Make a validated activity visible to the public."""
    if not activity.is_valide_par_admin:
        raise LifecycleError(
            "Une activité doit être validée avant publication",
            current=activity.statut,
            target=S.PUBLIEE.value
        )
    return transition(activity, S.PUBLIEE.value, now, is_visible_public=True)


def is_finished(activity: Activity, now: Optional[datetime] = None) -> bool:
    """Check if the scheduled end of the activity has passed."""
    return (now or datetime.now()) >= activity.ends_at()


def mark_finished(activity: Activity, now: Optional[datetime] = None) -> Activity:
    """Record that a published activity has taken place."""
    if not is_finished(activity, now):
        raise LifecycleError(
            "L'activité n'est pas encore terminée",
            current=activity.statut,
            target=S.TERMINEE.value
        )
    return transition(activity, S.TERMINEE.value, now)


def compute_taux_presence(presence: int, participants_attendus: Optional[int]) -> Optional[int]:
    """Attendance rate in percent, rounded half up, or None without an expected count."""
    if not participants_attendus:
        return None
    return int(math.floor(presence * 100 / participants_attendus + 0.5))


def complete_report(activity: Activity, report: ActivityReportRequest, now: Optional[datetime] = None) -> Activity:
    """
    Attach the post-event report and close the activity.

    A published activity whose end has passed is first marked finished.

    Raises:
        LifecycleError: If the activity is not finished and published
    """
    now = now or datetime.now()

    if activity.statut == S.RAPPORT_COMPLETE.value:
        raise LifecycleError(
            "Le rapport de cette activité a déjà été soumis",
            current=activity.statut,
            target=S.RAPPORT_COMPLETE.value
        )

    if activity.statut == S.PUBLIEE.value:
        activity = mark_finished(activity, now)

    if activity.statut != S.TERMINEE.value:
        raise LifecycleError(
            "Le rapport ne peut être soumis que pour une activité publiée et terminée",
            current=activity.statut,
            target=S.RAPPORT_COMPLETE.value
        )

    return transition(
        activity,
        S.RAPPORT_COMPLETE.value,
        now,
        presence_effective=report.presence_effective,
        taux_presence=compute_taux_presence(report.presence_effective, activity.participants_attendus),
        note_qualite=report.note_qualite,
        commentaire_deroulement=report.commentaire_deroulement,
        difficultes=report.difficultes,
        points_positifs=report.points_positifs,
        recommandations=report.recommandations,
        photos_rapport=list(report.photos_rapport),
        rapport_complete=True,
        date_rapport=now
    )
