# SPDX-License-Identifier: Apache-2.0

"""
Role-dependent projection of activity records.

Each caller role maps to one output shape; the shape lists the keys removed
from the serialised record. Public shapes never carry report or moderation
fields, whatever the activity status.
"""

from typing import Any, Dict, FrozenSet, Optional

from models.entities import Activity, INTERNAL_FIELDS, REPORT_FIELDS
from models.enums import UserRole

SHAPE_PUBLIC = "public"
SHAPE_FULL = "full"

# Keys removed from the payload for each output shape
HIDDEN_FIELDS: Dict[str, FrozenSet[str]] = {
    SHAPE_PUBLIC: frozenset(REPORT_FIELDS) | frozenset(INTERNAL_FIELDS),
    SHAPE_FULL: frozenset(),
}

ROLE_SHAPES: Dict[str, str] = {
    UserRole.CITOYEN.value: SHAPE_PUBLIC,
    UserRole.COORDINATEUR_ACTIVITES.value: SHAPE_FULL,
    UserRole.ADMIN.value: SHAPE_FULL,
    UserRole.SUPER_ADMIN.value: SHAPE_FULL,
    UserRole.GOUVERNEUR.value: SHAPE_FULL,
}


def shape_for_role(role: Optional[str]) -> str:
    """Output shape for a role; anonymous and unknown roles get the public shape."""
    if role is None:
        return SHAPE_PUBLIC
    return ROLE_SHAPES.get(role, SHAPE_PUBLIC)


def project_activity(activity: Activity, role: Optional[str]) -> Dict[str, Any]:
    """
    Serialise an activity for a caller role.

    Args:
        activity: Activity record
        role: Caller role, None for anonymous callers

    Returns:
        JSON-ready dict with hidden keys removed entirely
    """
    hidden = HIDDEN_FIELDS[shape_for_role(role)]
    payload = activity.to_payload()
    return {key: value for key, value in payload.items() if key not in hidden}


def report_view(activity: Activity) -> Dict[str, Any]:
    """Report fields of an activity, with its identity and status."""
    payload = activity.to_payload()
    view = {key: payload.get(key) for key in REPORT_FIELDS}
    view.update({
        "id": activity.id,
        "titre": activity.titre,
        "statut": activity.statut,
        "participantsAttendus": activity.participants_attendus,
    })
    return view
