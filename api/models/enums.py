# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the activity programming platform.
"""

from enum import Enum


class ActivityStatus(str, Enum):
    """Activity lifecycle status enumeration."""
    BROUILLON = "BROUILLON"
    EN_ATTENTE_VALIDATION = "EN_ATTENTE_VALIDATION"
    VALIDE = "VALIDE"
    REJETEE = "REJETEE"
    PUBLIEE = "PUBLIEE"
    TERMINEE = "TERMINEE"
    RAPPORT_COMPLETE = "RAPPORT_COMPLETE"


class RecurrencePattern(str, Enum):
    """Supported recurrence frequencies."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    DAILY_NO_WEEKEND = "DAILY_NO_WEEKEND"


class UserRole(str, Enum):
    """Roles known to the activity programming subsystem."""
    CITOYEN = "CITOYEN"
    COORDINATEUR_ACTIVITES = "COORDINATEUR_ACTIVITES"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    GOUVERNEUR = "GOUVERNEUR"


class ValidationAction(str, Enum):
    """Admin decisions on a pending activity."""
    VALIDATE = "validate"
    REJECT = "reject"


# Roles allowed to approve, reject and publish, and to act on any establishment
ADMIN_ROLES = frozenset({UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value})

# Roles that read the full record across all establishments
ELEVATED_READ_ROLES = frozenset(ADMIN_ROLES | {UserRole.GOUVERNEUR.value})
