# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the activity API endpoints.

The Flask application runs with its storage, directory, permission and audit
collaborators replaced by the in-memory fakes from conftest.
"""

import io
import json
import pytest
from datetime import date
from unittest.mock import patch

from models.entities import REPORT_FIELDS
from models.enums import ActivityStatus
from conftest import ADMIN_ID, CITIZEN_ID, COORD_ID, OTHER_COORD_ID, UNASSIGNED_COORD_ID

S = ActivityStatus


class TestCreateEndpoint:
    """Test POST /api/activities."""

    def test_create_single(self, client, auth_headers, store, activity_payload):
        """Test creation returns the stored draft."""
        response = client.post('/api/activities', json=activity_payload, headers=auth_headers(COORD_ID))

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['message'] == "Activité créée avec succès"
        assert data['occurrences'] == 0
        assert data['data']['statut'] == S.BROUILLON.value
        assert data['data']['isVisiblePublic'] is False
        assert data['data']['id'] in store.activities

    def test_create_recurrent(self, client, auth_headers, store, activity_payload):
        """Test a DAILY rule creates four occurrences linked to the parent."""
        payload = dict(activity_payload, isRecurrent=True, recurrencePattern="DAILY", recurrenceEndDate="2024-01-05")

        response = client.post('/api/activities', json=payload, headers=auth_headers(COORD_ID))

        assert response.status_code == 201
        data = json.loads(response.data)
        parent_id = data['data']['id']
        assert data['occurrences'] == 4
        assert data['message'] == "Activité récurrente créée avec 4 occurrence(s) supplémentaire(s)"
        children = store.find_occurrences(parent_id)
        assert [child.activity_date for child in children] == [
            date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 5)
        ]

    def test_create_requires_token(self, client, activity_payload):
        """Test anonymous creation is refused."""
        response = client.post('/api/activities', json=activity_payload)

        assert response.status_code == 401
        data = json.loads(response.data)
        assert data['success'] is False
        assert data['error'] == "authentication-required"

    def test_create_invalid_token(self, client, activity_payload):
        """Test a forged token is refused."""
        response = client.post(
            '/api/activities', json=activity_payload, headers={'Authorization': 'Bearer not-a-token'}
        )

        assert response.status_code == 401

    def test_create_citizen_forbidden(self, client, auth_headers, activity_payload):
        """Test citizens cannot create activities."""
        response = client.post('/api/activities', json=activity_payload, headers=auth_headers(CITIZEN_ID))

        assert response.status_code == 403
        assert json.loads(response.data)['error'] == "insufficient-permissions"

    def test_create_validation_details(self, client, auth_headers, store, activity_payload):
        """Test field errors are reported as champ and message."""
        payload = dict(activity_payload, titre="Yoga", date="2024-13-01")

        response = client.post('/api/activities', json=payload, headers=auth_headers(COORD_ID))

        assert response.status_code == 400
        data = json.loads(response.data)
        assert data['success'] is False
        champs = {detail['champ'] for detail in data['details']}
        assert champs == {"titre", "date"}
        assert all(set(detail) == {"champ", "message"} for detail in data['details'])
        assert store.activities == {}

    def test_create_end_before_start(self, client, auth_headers, activity_payload):
        """Test the time window is checked."""
        payload = dict(activity_payload, heureFin="08:00")

        response = client.post('/api/activities', json=payload, headers=auth_headers(COORD_ID))

        assert response.status_code == 400
        assert json.loads(response.data)['details'][0]['champ'] == "heureFin"

    def test_create_not_json(self, client, auth_headers):
        """Test a non-JSON body is a validation error."""
        response = client.post(
            '/api/activities', data="titre=Atelier", content_type='text/plain', headers=auth_headers(COORD_ID)
        )

        assert response.status_code == 400

    def test_create_outside_scope(self, client, auth_headers, store, activity_payload):
        """Test coordinators cannot create for other establishments."""
        response = client.post(
            '/api/activities', json=dict(activity_payload, etablissementId=1), headers=auth_headers(OTHER_COORD_ID)
        )

        assert response.status_code == 403
        assert store.activities == {}


class TestListEndpoint:
    """Test GET /api/activities."""

    @pytest.fixture
    def seeded(self, store):
        store.add(etablissement_id=1)
        store.add(etablissement_id=1, statut=S.RAPPORT_COMPLETE.value, is_valide_par_admin=True,
                  is_visible_public=True, presence_effective=14, taux_presence=70, rapport_complete=True)
        store.add(etablissement_id=3, statut=S.PUBLIEE.value, is_valide_par_admin=True, is_visible_public=True)
        return store

    def test_anonymous_listing(self, client, seeded):
        """Test anonymous callers only see public activities without report keys."""
        response = client.get('/api/activities')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['pagination'] == {'page': 1, 'limit': 50, 'total': 2, 'totalPages': 1}
        for item in data['data']:
            for key in REPORT_FIELDS:
                assert key not in item

    def test_citizen_listing(self, client, auth_headers, seeded):
        """Test citizens get the public shape."""
        response = client.get('/api/activities', headers=auth_headers(CITIZEN_ID))

        data = json.loads(response.data)
        assert len(data['data']) == 2
        assert all('presenceEffective' not in item for item in data['data'])

    def test_coordinator_listing(self, client, auth_headers, seeded):
        """Test coordinators see drafts and reports of their establishments."""
        response = client.get('/api/activities', headers=auth_headers(COORD_ID))

        data = json.loads(response.data)
        assert data['pagination']['total'] == 2
        assert {item['etablissementId'] for item in data['data']} == {1}
        assert any(item.get('presenceEffective') == 14 for item in data['data'])

    def test_unassigned_coordinator(self, client, auth_headers, seeded):
        """Test coordinators without establishments get an empty list and a message."""
        response = client.get('/api/activities', headers=auth_headers(UNASSIGNED_COORD_ID))

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['data'] == []
        assert data['message'] == "Aucun établissement assigné"

    def test_filter_outside_scope(self, client, auth_headers, seeded):
        """Test a foreign establishment filter returns no rows."""
        response = client.get('/api/activities?etablissementId=3', headers=auth_headers(COORD_ID))

        assert response.status_code == 200
        assert json.loads(response.data)['data'] == []

    def test_status_filter(self, client, auth_headers, seeded):
        """Test comma-separated statuses."""
        response = client.get('/api/activities?statut=BROUILLON', headers=auth_headers(ADMIN_ID))

        data = json.loads(response.data)
        assert [item['statut'] for item in data['data']] == [S.BROUILLON.value]

    def test_start_times_sort_chronologically(self, client, auth_headers, activity_payload):
        """Test bare-hour and HH:MM start times list in time order on the same day."""
        for heure_debut, heure_fin in (("10:00", "11:30"), ("9", "9:45")):
            payload = dict(activity_payload, date="2024-01-03", heureDebut=heure_debut, heureFin=heure_fin)
            assert client.post('/api/activities', json=payload, headers=auth_headers(COORD_ID)).status_code == 201

        response = client.get('/api/activities', headers=auth_headers(ADMIN_ID))

        data = json.loads(response.data)
        assert [item['heureDebut'] for item in data['data']] == ["09:00", "10:00"]
        assert data['data'][0]['heureFin'] == "09:45"

    def test_bad_query(self, client):
        """Test invalid query parameters."""
        response = client.get('/api/activities?dateDebut=01-01-2024')

        assert response.status_code == 400
        assert json.loads(response.data)['details'][0]['champ'] == "dateDebut"


class TestDetailEndpoints:
    """Test single-activity reads."""

    def test_get_public_activity(self, client, store):
        """Test anonymous detail of a published activity."""
        activity = store.add(statut=S.PUBLIEE.value, is_valide_par_admin=True, is_visible_public=True)

        response = client.get(f'/api/activities/{activity.id}')

        assert response.status_code == 200
        data = json.loads(response.data)['data']
        assert data['id'] == activity.id
        assert 'publicationDemandee' not in data

    def test_get_draft_anonymous(self, client, store):
        """Test drafts are hidden from anonymous callers."""
        activity = store.add()

        response = client.get(f'/api/activities/{activity.id}')

        assert response.status_code == 403

    def test_get_unknown(self, client):
        """Test unknown ids."""
        response = client.get('/api/activities/999')

        assert response.status_code == 404
        assert json.loads(response.data)['message'] == "Activité non trouvée"

    def test_occurrences(self, client, auth_headers, activity_payload):
        """Test the occurrences of a recurring activity."""
        payload = dict(activity_payload, isRecurrent=True, recurrencePattern="WEEKLY",
                       recurrenceDays=[1, 3], recurrenceEndDate="2024-01-14")
        created = json.loads(client.post('/api/activities', json=payload, headers=auth_headers(COORD_ID)).data)

        response = client.get(f"/api/activities/{created['data']['id']}/occurrences", headers=auth_headers(COORD_ID))

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['total'] == 3
        assert [item['date'] for item in data['data']] == ["2024-01-03", "2024-01-08", "2024-01-10"]

    def test_update_draft(self, client, auth_headers, store):
        """Test PATCH on a draft."""
        activity = store.add()

        response = client.patch(
            f'/api/activities/{activity.id}', json={"titre": "Atelier conte"}, headers=auth_headers(COORD_ID)
        )

        assert response.status_code == 200
        assert json.loads(response.data)['data']['titre'] == "Atelier conte"

    def test_update_published_conflict(self, client, auth_headers, store):
        """Test published activities cannot be edited."""
        activity = store.add(statut=S.PUBLIEE.value, is_valide_par_admin=True, is_visible_public=True)

        response = client.patch(
            f'/api/activities/{activity.id}', json={"titre": "Atelier conte"}, headers=auth_headers(COORD_ID)
        )

        assert response.status_code == 409
        assert json.loads(response.data)['error'] == "invalid-transition"


class TestWorkflowEndpoints:
    """Test submission, validation and publication endpoints."""

    def test_submit_then_validate(self, client, auth_headers, store, audit):
        """Test a draft goes through review to publication."""
        activity = store.add(publication_demandee=True)

        submitted = client.post(f'/api/activities/{activity.id}/submit', headers=auth_headers(COORD_ID))
        assert submitted.status_code == 200
        assert json.loads(submitted.data)['data']['statut'] == S.EN_ATTENTE_VALIDATION.value

        validated = client.post(
            f'/api/activities/{activity.id}/validation', json={"action": "validate"}, headers=auth_headers(ADMIN_ID)
        )
        assert validated.status_code == 200
        data = json.loads(validated.data)
        assert data['message'] == "Activité validée et publiée"
        assert data['data']['statut'] == S.PUBLIEE.value
        assert audit.actions() == ["SUBMIT_FOR_VALIDATION", "VALIDATE_ACTIVITY"]

    def test_reject(self, client, auth_headers, store):
        """Test rejection with a motif."""
        activity = store.add(statut=S.EN_ATTENTE_VALIDATION.value)

        response = client.post(
            f'/api/activities/{activity.id}/validation',
            json={"action": "reject", "motif": "Salle indisponible"},
            headers=auth_headers(ADMIN_ID)
        )

        data = json.loads(response.data)
        assert data['message'] == "Activité rejetée"
        assert data['data']['motifRejet'] == "Salle indisponible"

    def test_validate_requires_admin(self, client, auth_headers, store):
        """Test coordinators cannot validate."""
        activity = store.add(statut=S.EN_ATTENTE_VALIDATION.value)

        response = client.post(
            f'/api/activities/{activity.id}/validation', json={"action": "validate"}, headers=auth_headers(COORD_ID)
        )

        assert response.status_code == 403

    def test_validate_draft_conflict(self, client, auth_headers, store):
        """Test drafts cannot be validated directly."""
        activity = store.add()

        response = client.post(
            f'/api/activities/{activity.id}/validation', json={"action": "validate"}, headers=auth_headers(ADMIN_ID)
        )

        assert response.status_code == 409

    def test_publish(self, client, auth_headers, store):
        """Test explicit publication of a validated activity."""
        activity = store.add(statut=S.VALIDE.value, is_valide_par_admin=True)

        response = client.post(f'/api/activities/{activity.id}/publish', headers=auth_headers(ADMIN_ID))

        assert response.status_code == 200
        assert json.loads(response.data)['data']['isVisiblePublic'] is True

    def test_submit_all(self, client, auth_headers, store):
        """Test bulk submission without a body."""
        store.add(etablissement_id=1)
        store.add(etablissement_id=2)

        response = client.post('/api/activities/submit-all', headers=auth_headers(COORD_ID))

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['count'] == 2
        assert data['data'] == {'count': 2}

    def test_submit_all_nothing(self, client, auth_headers):
        """Test bulk submission with no drafts."""
        response = client.post('/api/activities/submit-all', json={}, headers=auth_headers(COORD_ID))

        data = json.loads(response.data)
        assert data['count'] == 0
        assert data['message'] == "Aucune activité en brouillon à soumettre"


class TestReportEndpoints:
    """Test post-event reporting endpoints."""

    def test_report_flow(self, client, auth_headers, store):
        """Test a report on a past published activity, then a second attempt."""
        activity = store.add(statut=S.PUBLIEE.value, is_valide_par_admin=True, is_visible_public=True,
                             participants_attendus=20)
        report = {"presenceEffective": 15, "noteQualite": 4, "commentaireDeroulement": "Très bonne participation"}

        first = client.post(f'/api/activities/{activity.id}/report', json=report, headers=auth_headers(COORD_ID))

        assert first.status_code == 200
        data = json.loads(first.data)
        assert data['message'] == "Rapport enregistré avec succès"
        assert data['data']['statut'] == S.RAPPORT_COMPLETE.value
        assert data['data']['tauxPresence'] == 75

        second = client.post(f'/api/activities/{activity.id}/report', json=report, headers=auth_headers(COORD_ID))

        assert second.status_code == 409

    def test_report_invalid_values(self, client, auth_headers, store):
        """Test report field validation."""
        activity = store.add(statut=S.PUBLIEE.value, is_valide_par_admin=True, is_visible_public=True)

        response = client.post(
            f'/api/activities/{activity.id}/report',
            json={"presenceEffective": -3, "noteQualite": 4},
            headers=auth_headers(COORD_ID)
        )

        assert response.status_code == 400
        assert json.loads(response.data)['details'][0]['champ'] == "presenceEffective"

    def test_report_other_coordinator(self, client, auth_headers, store):
        """Test coordinators of other establishments cannot report."""
        activity = store.add(etablissement_id=1, statut=S.PUBLIEE.value, is_valide_par_admin=True,
                             is_visible_public=True)

        response = client.post(
            f'/api/activities/{activity.id}/report',
            json={"presenceEffective": 10, "noteQualite": 3},
            headers=auth_headers(OTHER_COORD_ID)
        )

        assert response.status_code == 403

    def test_get_report(self, client, auth_headers, store):
        """Test reading the report view."""
        activity = store.add(statut=S.RAPPORT_COMPLETE.value, is_valide_par_admin=True, is_visible_public=True,
                             presence_effective=12, rapport_complete=True)

        response = client.get(f'/api/activities/{activity.id}/report', headers=auth_headers(COORD_ID))

        assert response.status_code == 200
        assert json.loads(response.data)['data']['presenceEffective'] == 12

    def test_get_report_citizen(self, client, auth_headers, store):
        """Test citizens cannot read reports."""
        activity = store.add(statut=S.PUBLIEE.value, is_valide_par_admin=True, is_visible_public=True)

        response = client.get(f'/api/activities/{activity.id}/report', headers=auth_headers(CITIZEN_ID))

        assert response.status_code == 403


class TestImportEndpoint:
    """Test POST /api/activities/import."""

    CSV = (
        "date;heureDebut;heureFin;titre;typeActivite;etablissementId;lieu\n"
        "2024-03-01;09:00;11:00;Atelier lecture;ATELIER;1;Bibliothèque\n"
        "2024-03-02;14:00;13:00;Atelier dessin;ATELIER;1;\n"
    )

    def test_import(self, client, auth_headers, store):
        """Test valid rows are imported and invalid ones reported."""
        response = client.post(
            '/api/activities/import',
            data={'file': (io.BytesIO(self.CSV.encode('utf-8')), 'programme.csv')},
            content_type='multipart/form-data',
            headers=auth_headers(COORD_ID)
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['imported'] == 1
        assert data['total'] == 2
        assert data['errors'][0]['row'] == 3
        assert data['message'] == "1 activité(s) importée(s) sur 2"
        assert len(store.activities) == 1

    def test_import_latin1(self, client, auth_headers, store):
        """Test files saved from spreadsheet tools in latin-1."""
        response = client.post(
            '/api/activities/import',
            data={'file': (io.BytesIO(self.CSV.encode('latin-1')), 'programme.csv')},
            content_type='multipart/form-data',
            headers=auth_headers(COORD_ID)
        )

        assert response.status_code == 200
        stored = list(store.activities.values())
        assert stored[0].lieu == "Bibliothèque"

    def test_import_without_file(self, client, auth_headers):
        """Test a missing upload."""
        response = client.post(
            '/api/activities/import', data={}, content_type='multipart/form-data', headers=auth_headers(COORD_ID)
        )

        assert response.status_code == 400
        assert json.loads(response.data)['details'][0]['champ'] == "file"


class TestHealthEndpoint:
    """Test /api/healthz."""

    def test_healthy(self, client, flask_app):
        """Test a reachable database."""
        with patch.object(flask_app.mongodb_service, 'health_check', return_value={"status": "healthy"}):
            response = client.get('/api/healthz')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['dependencies']['mongodb']['status'] == 'healthy'

    def test_unhealthy(self, client, flask_app):
        """Test an unreachable database."""
        with patch.object(
            flask_app.mongodb_service, 'health_check',
            return_value={"status": "unhealthy", "error": "timeout"}
        ):
            response = client.get('/api/healthz')

        assert response.status_code == 503
        assert json.loads(response.data)['status'] == 'unhealthy'
