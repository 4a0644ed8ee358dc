# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the activity programming platform.
"""

from datetime import date, datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from .base import BaseEntity
from .enums import ActivityStatus, RecurrencePattern
from utils.dates import parse_heure


# Fields only meaningful once the post-event report is filled in
REPORT_FIELDS = (
    "presenceEffective",
    "tauxPresence",
    "commentaireDeroulement",
    "difficultes",
    "pointsPositifs",
    "photosRapport",
    "noteQualite",
    "recommandations",
    "rapportComplete",
    "dateRapport",
)

# Moderation bookkeeping that never leaves the back office
INTERNAL_FIELDS = (
    "requireValidation",
    "publicationDemandee",
    "motifRejet",
    "validatedBy",
    "validatedAt",
)


class Activity(BaseEntity):
    """One scheduled occurrence of an activity at one establishment."""

    # Scheduling
    etablissement_id: int = Field(..., gt=0, alias="etablissementId", description="Owning establishment")
    activity_date: date = Field(..., alias="date", description="Calendar day of the occurrence")
    heure_debut: str = Field(..., alias="heureDebut", description="Start time (H or HH:MM)")
    heure_fin: str = Field(..., alias="heureFin", description="End time (H or HH:MM)")
    lieu: Optional[str] = Field(None, description="Location override")

    # Descriptive
    titre: str = Field(..., min_length=5, max_length=150, description="Activity title")
    description: Optional[str] = Field(None, description="Free-text description")
    type_activite: str = Field(..., min_length=2, alias="typeActivite", description="Activity type")
    responsable_nom: Optional[str] = Field(None, alias="responsableNom", description="Person in charge")
    participants_attendus: Optional[int] = Field(None, gt=0, alias="participantsAttendus", description="Expected attendance")

    # Visibility and validation
    is_visible_public: bool = Field(default=False, alias="isVisiblePublic")
    is_valide_par_admin: bool = Field(default=False, alias="isValideParAdmin")
    require_validation: bool = Field(default=True, alias="requireValidation")
    publication_demandee: bool = Field(default=True, alias="publicationDemandee",
                                       description="Public visibility requested at creation, applied on approval")
    motif_rejet: Optional[str] = Field(None, alias="motifRejet")
    validated_by: Optional[int] = Field(None, alias="validatedBy")
    validated_at: Optional[datetime] = Field(None, alias="validatedAt")

    # Lifecycle
    statut: ActivityStatus = Field(default=ActivityStatus.BROUILLON, description="Workflow status")

    # Recurrence
    is_recurrent: bool = Field(default=False, alias="isRecurrent")
    recurrence_pattern: Optional[RecurrencePattern] = Field(None, alias="recurrencePattern")
    recurrence_end_date: Optional[date] = Field(None, alias="recurrenceEndDate")
    recurrence_days: Optional[List[int]] = Field(None, alias="recurrenceDays")
    recurrence_parent_id: Optional[int] = Field(None, alias="recurrenceParentId")

    # Post-event report
    presence_effective: Optional[int] = Field(None, ge=0, alias="presenceEffective")
    taux_presence: Optional[int] = Field(None, alias="tauxPresence")
    commentaire_deroulement: Optional[str] = Field(None, alias="commentaireDeroulement")
    difficultes: Optional[str] = None
    points_positifs: Optional[str] = Field(None, alias="pointsPositifs")
    photos_rapport: List[str] = Field(default_factory=list, alias="photosRapport")
    note_qualite: Optional[int] = Field(None, ge=1, le=5, alias="noteQualite")
    recommandations: Optional[str] = None
    rapport_complete: bool = Field(default=False, alias="rapportComplete")
    date_rapport: Optional[datetime] = Field(None, alias="dateRapport")

    @field_validator('heure_debut', 'heure_fin')
    @classmethod
    def validate_heure(cls, v):
        """Store times as zero-padded HH:MM."""
        return parse_heure(v).strftime("%H:%M")

    @field_validator('titre')
    @classmethod
    def validate_titre(cls, v):
        """Validate activity title."""
        if not v.strip():
            raise ValueError('Le titre est obligatoire')
        return v.strip()

    @field_validator('recurrence_days')
    @classmethod
    def validate_recurrence_days(cls, v):
        """Keep weekday numbers unique, sorted and within 0-6."""
        if v is None:
            return v
        if any(day < 0 or day > 6 for day in v):
            raise ValueError('Les jours de récurrence doivent être compris entre 0 et 6')
        return sorted(set(v))

    @model_validator(mode='after')
    def validate_invariants(self):
        """Validate cross-field invariants."""
        if self.is_visible_public and not self.is_valide_par_admin:
            raise ValueError('Une activité ne peut être publique sans validation administrative')

        if self.recurrence_parent_id is not None and (
            self.recurrence_days or self.recurrence_end_date is not None
        ):
            raise ValueError('Une occurrence générée ne porte pas de règle de récurrence')

        return self

    def ends_at(self) -> datetime:
        """Scheduled end of the activity as a naive datetime."""
        return datetime.combine(self.activity_date, parse_heure(self.heure_fin))


class AuditLog(BaseModel):
    """Audit log entry for lifecycle accountability."""

    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Action timestamp")
    user_id: int = Field(..., description="User who performed the action")
    entity: str = Field(..., description="Entity type")
    entity_id: Optional[int] = Field(None, description="Entity identifier, empty for bulk actions")
    action: str = Field(..., description="Action performed")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    details: Dict[str, Any] = Field(default_factory=dict, description="Free-form context")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")

    @field_validator('action')
    @classmethod
    def validate_action(cls, v):
        """Validate action type."""
        valid_actions = [
            'CREATE_ACTIVITY', 'UPDATE_ACTIVITY', 'IMPORT_ACTIVITIES',
            'SUBMIT_FOR_VALIDATION', 'BULK_SUBMIT_FOR_VALIDATION',
            'VALIDATE_ACTIVITY', 'REJECT_ACTIVITY', 'PUBLISH_ACTIVITY',
            'MARK_FINISHED', 'RAPPORT_ACTIVITE'
        ]
        if v not in valid_actions:
            raise ValueError(f'Invalid action type: {v}')
        return v


class UserContext(BaseModel):
    """User context for request processing, built from the session token."""

    user_id: int = Field(..., description="Authenticated user ID")
    role: str = Field(..., description="User role")
    email: Optional[str] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="User display name")
    permissions: List[str] = Field(default_factory=list, description="Permissions carried by the token")
    token_payload: Optional[Dict[str, Any]] = Field(None, description="Original JWT payload")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    session_id: Optional[str] = Field(None, description="Session identifier")

    model_config = ConfigDict(
        use_enum_values=True
    )
