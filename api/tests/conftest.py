# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.

Services are exercised against in-memory fakes of the activity store, the
establishment directory, the permission capability and the audit trail.
"""

import os
import pytest
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

# Set test environment before the application module is imported
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['MONGODB_DATABASE'] = 'portail_activites_test'
os.environ['JWT_SECRET'] = 'test-secret-key-with-at-least-thirty-two-bytes'

from models.entities import Activity, UserContext
from models.enums import ActivityStatus, UserRole
from services.activity_store import ActivityFilters
from services.mongodb import PaginationResult
from services.permissions import ROLE_DEFAULT_PERMISSIONS

ADMIN_ID = 1
SUPER_ADMIN_ID = 2
COORD_ID = 10
OTHER_COORD_ID = 11
UNASSIGNED_COORD_ID = 12
CITIZEN_ID = 50
GOUVERNEUR_ID = 60

USER_ROLES = {
    ADMIN_ID: UserRole.ADMIN.value,
    SUPER_ADMIN_ID: UserRole.SUPER_ADMIN.value,
    COORD_ID: UserRole.COORDINATEUR_ACTIVITES.value,
    OTHER_COORD_ID: UserRole.COORDINATEUR_ACTIVITES.value,
    UNASSIGNED_COORD_ID: UserRole.COORDINATEUR_ACTIVITES.value,
    CITIZEN_ID: UserRole.CITOYEN.value,
    GOUVERNEUR_ID: UserRole.GOUVERNEUR.value,
}

MANAGED_ESTABLISHMENTS = {
    COORD_ID: [1, 2],
    OTHER_COORD_ID: [3],
    UNASSIGNED_COORD_ID: [],
}


class FakeActivityStore:
    """In-memory activity store with the ActivityStore interface."""

    def __init__(self):
        self.activities: Dict[int, Activity] = {}
        self._next_id = 1
        self.fail_on_occurrences = False

    def _reserve(self, count: int = 1) -> int:
        first = self._next_id
        self._next_id += count
        return first

    def create_with_occurrences(
        self,
        parent: Activity,
        build_occurrences: Callable[[Activity], List[Activity]]
    ) -> Tuple[Activity, List[Activity]]:
        snapshot = dict(self.activities)
        next_id = self._next_id
        try:
            stored_parent = parent.model_copy(update={"id": self._reserve()})
            self.activities[stored_parent.id] = stored_parent
            if self.fail_on_occurrences:
                raise RuntimeError("storage failure")
            children = build_occurrences(stored_parent)
            stored_children = []
            if children:
                first = self._reserve(len(children))
                stored_children = [
                    child.model_copy(update={"id": first + offset})
                    for offset, child in enumerate(children)
                ]
                for child in stored_children:
                    self.activities[child.id] = child
        except Exception:
            # Transaction abort
            self.activities = snapshot
            self._next_id = next_id
            raise
        return stored_parent, stored_children

    def create(self, activity: Activity) -> Activity:
        stored = activity.model_copy(update={"id": self._reserve()})
        self.activities[stored.id] = stored
        return stored

    def add(self, **fields: Any) -> Activity:
        """Store an activity built from field names (test helper)."""
        data = {
            "etablissement_id": 1,
            "activity_date": date(2024, 1, 1),
            "heure_debut": "09:00",
            "heure_fin": "11:00",
            "titre": "Atelier lecture",
            "type_activite": "ATELIER",
            "created_by": COORD_ID,
        }
        data.update(fields)
        return self.create(Activity(**data))

    def get(self, activity_id: int) -> Optional[Activity]:
        return self.activities.get(activity_id)

    def paginate(self, filters: ActivityFilters, page: int, page_size: int) -> PaginationResult:
        matching = [a for a in self.activities.values() if self._matches(a, filters)]
        matching.sort(key=lambda a: (a.activity_date, a.heure_debut))
        start = (page - 1) * page_size
        return PaginationResult(matching[start:start + page_size], len(matching), page, page_size)

    @staticmethod
    def _matches(activity: Activity, filters: ActivityFilters) -> bool:
        if filters.etablissement_ids is not None and activity.etablissement_id not in filters.etablissement_ids:
            return False
        if filters.public_only and not (activity.is_visible_public and activity.is_valide_par_admin):
            return False
        if filters.date_from and activity.activity_date < filters.date_from:
            return False
        if filters.date_to and activity.activity_date > filters.date_to:
            return False
        if filters.statuses and activity.statut not in filters.statuses:
            return False
        if filters.created_by is not None and activity.created_by != filters.created_by:
            return False
        return True

    def find_occurrences(self, parent_id: int) -> List[Activity]:
        children = [a for a in self.activities.values() if a.recurrence_parent_id == parent_id]
        return sorted(children, key=lambda a: (a.activity_date, a.heure_debut))

    def save(self, activity: Activity) -> Activity:
        if activity.id not in self.activities:
            raise LookupError(f"Activity {activity.id} not found")
        self.activities[activity.id] = activity
        return activity

    def submit_drafts(self, created_by: int, etablissement_ids: Optional[List[int]], now: datetime) -> int:
        count = 0
        for activity_id, activity in list(self.activities.items()):
            if activity.created_by != created_by or activity.statut != ActivityStatus.BROUILLON.value:
                continue
            if etablissement_ids is not None and activity.etablissement_id not in etablissement_ids:
                continue
            self.activities[activity_id] = activity.model_copy(update={
                "statut": ActivityStatus.EN_ATTENTE_VALIDATION.value,
                "motif_rejet": None,
                "updated_at": now
            })
            count += 1
        return count


class FakeDirectory:
    """In-memory establishment directory."""

    def __init__(self, establishments: Dict[int, str], managed: Dict[int, List[int]]):
        self.establishments = establishments
        self.managed = managed
        self.managed_calls = 0

    def exists(self, etablissement_id: int) -> bool:
        return etablissement_id in self.establishments

    def managed_establishments(self, user_id: int) -> List[int]:
        self.managed_calls += 1
        return list(self.managed.get(user_id, []))


class FakePermissions:
    """Role-default permission capability with optional explicit grants."""

    def __init__(self, roles: Dict[int, str]):
        self.roles = roles
        self.grants: Dict[int, set] = {}
        self.calls: List[Tuple[int, str]] = []

    def grant(self, user_id: int, permission: str) -> None:
        self.grants.setdefault(user_id, set()).add(permission)

    def __call__(self, user_id: int, permission: str) -> bool:
        self.calls.append((user_id, permission))
        role = self.roles.get(user_id)
        if role is None:
            return False
        if role == UserRole.SUPER_ADMIN.value:
            return True
        if permission in self.grants.get(user_id, set()):
            return True
        return permission in ROLE_DEFAULT_PERMISSIONS.get(role, frozenset())


class FakeAuditService:
    """Collects audit entries instead of writing them."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    def log_action(self, user_context, entity, entity_id, action, before=None, after=None, details=None) -> str:
        self.entries.append({
            "user_id": user_context.user_id,
            "entity": entity,
            "entity_id": entity_id,
            "action": action,
            "before": before,
            "after": after,
            "details": details or {}
        })
        return str(len(self.entries))

    def actions(self) -> List[str]:
        return [entry["action"] for entry in self.entries]


def make_user_context(user_id: int) -> UserContext:
    """Build a caller context for a known test user."""
    return UserContext(user_id=user_id, role=USER_ROLES[user_id])


@pytest.fixture
def store():
    """Empty in-memory activity store."""
    return FakeActivityStore()


@pytest.fixture
def directory():
    """Directory with three establishments."""
    return FakeDirectory(
        {1: "École Jean Jaurès", 2: "Centre de santé Nord", 3: "Collège Victor Hugo"},
        {user_id: list(ids) for user_id, ids in MANAGED_ESTABLISHMENTS.items()}
    )


@pytest.fixture
def permissions():
    """Role-default permission capability."""
    return FakePermissions(USER_ROLES)


@pytest.fixture
def audit():
    """Recording audit service."""
    return FakeAuditService()


@pytest.fixture
def collaborators(store, directory, permissions, audit):
    """Constructor arguments shared by the activity services."""
    return store, directory, permissions, audit


@pytest.fixture
def coordinator():
    return make_user_context(COORD_ID)


@pytest.fixture
def admin():
    return make_user_context(ADMIN_ID)


@pytest.fixture
def citizen():
    return make_user_context(CITIZEN_ID)


@pytest.fixture
def activity_payload() -> Dict[str, Any]:
    """Valid creation payload for establishment 1."""
    return {
        "etablissementId": 1,
        "date": "2024-01-01",
        "heureDebut": "09:00",
        "heureFin": "11:00",
        "titre": "Atelier lecture",
        "description": "Lecture à voix haute pour les 6-8 ans",
        "typeActivite": "ATELIER",
        "responsableNom": "Mme Diallo",
        "participantsAttendus": 20,
        "lieu": "Bibliothèque"
    }


@pytest.fixture
def flask_app(monkeypatch, store, directory, permissions, audit):
    """Application with its collaborators swapped for fakes."""
    from app import app

    app.config['TESTING'] = True
    monkeypatch.setattr(app, "activity_store", store, raising=False)
    monkeypatch.setattr(app, "establishment_directory", directory, raising=False)
    monkeypatch.setattr(app, "check_permission", permissions, raising=False)
    monkeypatch.setattr(app, "audit_service", audit, raising=False)
    return app


@pytest.fixture
def client(flask_app):
    """Flask test client."""
    with flask_app.test_client() as client:
        yield client


@pytest.fixture
def auth_headers(flask_app):
    """Build bearer headers for a known test user."""
    def _headers(user_id: int) -> Dict[str, str]:
        token = flask_app.auth_service.generate_token(user_id, USER_ROLES[user_id])
        return {'Authorization': f'Bearer {token}'}
    return _headers
