# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.

Field names follow the camelCase keys sent by the portal front-end; messages
are the ones shown to coordinators next to the offending form field.
"""

from datetime import date
from typing import ClassVar, Dict, List, Optional, Tuple
from pydantic import Field, field_validator

from .base import BaseRequest
from .enums import RecurrencePattern, ValidationAction
from utils.dates import parse_heure, parse_iso_date


def _parse_date_field(v):
    if v is None or isinstance(v, date):
        return v
    return parse_iso_date(v)


def _check_heure(v):
    if v is None:
        return v
    return parse_heure(v).strftime("%H:%M")


class ActivityFieldsMixin:
    """Per-field validators shared by create and update payloads."""

    @field_validator('activity_date', 'recurrence_end_date', mode='before', check_fields=False)
    @classmethod
    def validate_dates(cls, v):
        """Accept only YYYY-MM-DD strings."""
        return _parse_date_field(v)

    @field_validator('heure_debut', 'heure_fin', check_fields=False)
    @classmethod
    def validate_heures(cls, v):
        """Accept H or HH:MM."""
        return _check_heure(v)

    @field_validator('recurrence_days', check_fields=False)
    @classmethod
    def validate_recurrence_days(cls, v):
        """Weekday numbers, Sunday = 0."""
        if v is None:
            return v
        if any(day < 0 or day > 6 for day in v):
            raise ValueError('Les jours de récurrence doivent être compris entre 0 (dimanche) et 6 (samedi)')
        return sorted(set(v))


class CreateActivityRequest(ActivityFieldsMixin, BaseRequest):
    """Request model for creating a (possibly recurring) activity."""

    etablissement_id: int = Field(..., gt=0, alias="etablissementId")
    activity_date: date = Field(..., alias="date")
    heure_debut: str = Field(..., alias="heureDebut")
    heure_fin: str = Field(..., alias="heureFin")
    titre: str = Field(..., min_length=5, max_length=150)
    description: Optional[str] = None
    type_activite: str = Field(..., min_length=2, alias="typeActivite")
    responsable_nom: Optional[str] = Field(None, alias="responsableNom")
    participants_attendus: Optional[int] = Field(None, gt=0, alias="participantsAttendus")
    lieu: Optional[str] = None
    is_visible_public: bool = Field(default=True, alias="isVisiblePublic")
    require_validation: bool = Field(default=True, alias="requireValidation")

    is_recurrent: bool = Field(default=False, alias="isRecurrent")
    recurrence_pattern: Optional[RecurrencePattern] = Field(None, alias="recurrencePattern")
    recurrence_end_date: Optional[date] = Field(None, alias="recurrenceEndDate")
    recurrence_days: Optional[List[int]] = Field(None, alias="recurrenceDays")

    error_messages: ClassVar[Dict[Tuple[str, str], str]] = {
        ("etablissementId", "missing"): "L'établissement est obligatoire",
        ("etablissementId", "greater_than"): "L'établissement sélectionné est invalide",
        ("etablissementId", "int_parsing"): "L'établissement sélectionné est invalide",
        ("date", "missing"): "La date est obligatoire",
        ("heureDebut", "missing"): "L'heure de début est obligatoire",
        ("heureFin", "missing"): "L'heure de fin est obligatoire",
        ("titre", "missing"): "Le titre est obligatoire",
        ("titre", "string_too_short"): "Le titre doit contenir au moins 5 caractères",
        ("titre", "string_too_long"): "Le titre ne peut pas dépasser 150 caractères",
        ("typeActivite", "missing"): "Le type d'activité est obligatoire",
        ("typeActivite", "string_too_short"): "Veuillez sélectionner un type d'activité valide",
        ("participantsAttendus", "greater_than"): "Le nombre de participants doit être positif",
        ("recurrencePattern", "enum"): "Fréquence de récurrence invalide",
    }


class UpdateActivityRequest(ActivityFieldsMixin, BaseRequest):
    """Request model for editing a draft or rejected activity."""

    activity_date: Optional[date] = Field(None, alias="date")
    heure_debut: Optional[str] = Field(None, alias="heureDebut")
    heure_fin: Optional[str] = Field(None, alias="heureFin")
    titre: Optional[str] = Field(None, min_length=5, max_length=150)
    description: Optional[str] = None
    type_activite: Optional[str] = Field(None, min_length=2, alias="typeActivite")
    responsable_nom: Optional[str] = Field(None, alias="responsableNom")
    participants_attendus: Optional[int] = Field(None, gt=0, alias="participantsAttendus")
    lieu: Optional[str] = None
    is_visible_public: Optional[bool] = Field(None, alias="isVisiblePublic")

    error_messages: ClassVar[Dict[Tuple[str, str], str]] = {
        ("titre", "string_too_short"): "Le titre doit contenir au moins 5 caractères",
        ("titre", "string_too_long"): "Le titre ne peut pas dépasser 150 caractères",
        ("participantsAttendus", "greater_than"): "Le nombre de participants doit être positif",
    }


class ActivityReportRequest(BaseRequest):
    """Post-event report filled in by the coordinator."""

    presence_effective: int = Field(..., ge=0, alias="presenceEffective")
    note_qualite: int = Field(..., ge=1, le=5, alias="noteQualite")
    commentaire_deroulement: Optional[str] = Field(None, alias="commentaireDeroulement")
    difficultes: Optional[str] = None
    points_positifs: Optional[str] = Field(None, alias="pointsPositifs")
    recommandations: Optional[str] = None
    photos_rapport: List[str] = Field(default_factory=list, alias="photosRapport")

    error_messages: ClassVar[Dict[Tuple[str, str], str]] = {
        ("presenceEffective", "missing"): "Le nombre de participants est requis",
        ("presenceEffective", "greater_than_equal"): "Le nombre de participants ne peut pas être négatif",
        ("noteQualite", "missing"): "La note de qualité est requise",
        ("noteQualite", "greater_than_equal"): "La note de qualité doit être comprise entre 1 et 5",
        ("noteQualite", "less_than_equal"): "La note de qualité doit être comprise entre 1 et 5",
    }


class ValidationDecisionRequest(BaseRequest):
    """Admin decision on an activity awaiting validation."""

    action: ValidationAction = Field(..., description="validate or reject")
    motif: Optional[str] = Field(None, max_length=500, description="Reason given on rejection")

    error_messages: ClassVar[Dict[Tuple[str, str], str]] = {
        ("action", "missing"): "Action requise (validate ou reject)",
        ("action", "enum"): "Action non reconnue",
    }


class BulkSubmitRequest(BaseRequest):
    """Optional narrowing for the bulk submission of drafts."""

    etablissement_id: Optional[int] = Field(None, gt=0, alias="etablissementId")


class ActivityListParams(BaseRequest):
    """Query-string parameters of the activity listing."""

    etablissement_id: Optional[int] = Field(None, gt=0, alias="etablissementId")
    date_debut: Optional[date] = Field(None, alias="dateDebut")
    date_fin: Optional[date] = Field(None, alias="dateFin")
    statut: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1)

    @field_validator('date_debut', 'date_fin', mode='before')
    @classmethod
    def validate_dates(cls, v):
        """Accept only YYYY-MM-DD strings."""
        if v == "":
            return None
        return _parse_date_field(v)

    @field_validator('limit')
    @classmethod
    def cap_limit(cls, v):
        """Never serve more than 100 items per page."""
        return min(v, 100)

    def statuses(self) -> List[str]:
        """Comma-separated status filter as a list."""
        if not self.statut:
            return []
        return [s.strip() for s in self.statut.split(',') if s.strip()]


class ActivityPath(BaseRequest):
    """Path parameters of single-activity endpoints."""

    activity_id: int = Field(..., description="Activity identifier")
