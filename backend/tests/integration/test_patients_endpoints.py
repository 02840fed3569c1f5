"""
Integration tests for patient endpoints.

Tests:
- Patient creation and validation
- Listing and search
- Update and delete (with visit cascade)
- Per-patient visit history
"""

import pytest
from datetime import datetime

from database import Patient, Visit

UNKNOWN_PATIENT_ID = "00000000-0000-0000-0000-000000000000"


class TestCreatePatient:
    """Tests for POST /patients."""

    def test_create_patient(self, client, auth_headers):
        """Test creating a patient with all fields."""
        response = client.post("/patients", json={
            "name": "  Ann Smith ",
            "date_of_birth": "1950-05-17",
            "medical_record_number": "MRN-0042"
        }, headers=auth_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Ann Smith"
        assert data["date_of_birth"] == "1950-05-17"
        assert data["medical_record_number"] == "MRN-0042"
        assert len(data["id"]) == 36

    def test_blank_mrn_stored_as_null(self, client, auth_headers):
        """Test that an empty MRN does not collide with other empty MRNs."""
        for name in ("First", "Second"):
            response = client.post("/patients", json={
                "name": name, "date_of_birth": "1950-01-01", "medical_record_number": "  "
            }, headers=auth_headers)
            assert response.status_code == 201
            assert response.json()["medical_record_number"] is None

    def test_duplicate_mrn_rejected(self, client, auth_headers, test_patient):
        """Test the uniqueness of medical record numbers."""
        response = client.post("/patients", json={
            "name": "Someone Else",
            "date_of_birth": "1960-01-01",
            "medical_record_number": test_patient.medical_record_number
        }, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Medical record number already exists"

    @pytest.mark.parametrize("payload", [
        {"name": "", "date_of_birth": "1950-01-01"},
        {"name": "   ", "date_of_birth": "1950-01-01"},
        {"name": "No Birthday"},
        {"name": "Bad Date", "date_of_birth": "17/05/1950"},
    ])
    def test_invalid_patient(self, client, auth_headers, payload):
        """Test that name and date of birth are required."""
        response = client.post("/patients", json=payload, headers=auth_headers)
        assert response.status_code == 422

    def test_requires_authentication(self, client):
        response = client.post("/patients", json={"name": "Ann", "date_of_birth": "1950-01-01"})
        assert response.status_code == 401


class TestListPatients:
    """Tests for GET /patients."""

    def test_list_all(self, client, auth_headers, test_patient, second_patient):
        response = client.get("/patients", headers=auth_headers)

        assert response.status_code == 200
        assert {p["name"] for p in response.json()} == {"Jane Doe", "John Roe"}

    @pytest.mark.parametrize("search,expected", [
        ("jane", ["Jane Doe"]),
        ("ROE", ["John Roe"]),
        ("MRN-0001", ["Jane Doe"]),
        ("nobody", []),
    ])
    def test_search_by_name_or_mrn(self, client, auth_headers, test_patient, second_patient, search, expected):
        """Test case-insensitive search on name and MRN."""
        response = client.get("/patients", params={"search": search}, headers=auth_headers)
        assert [p["name"] for p in response.json()] == expected

    def test_pagination(self, client, auth_headers, test_patient, second_patient):
        response = client.get("/patients", params={"skip": 1, "limit": 1}, headers=auth_headers)
        assert len(response.json()) == 1


class TestSinglePatient:
    """Tests for GET/PUT/DELETE /patients/{id}."""

    def test_get_patient(self, client, auth_headers, test_patient):
        response = client.get(f"/patients/{test_patient.id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["name"] == "Jane Doe"

    def test_get_missing_patient(self, client, auth_headers):
        response = client.get(f"/patients/{UNKNOWN_PATIENT_ID}", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["detail"] == "Patient not found"

    def test_partial_update(self, client, auth_headers, test_patient):
        """Test that only the sent fields change."""
        response = client.put(f"/patients/{test_patient.id}", json={"name": "Jane A. Doe"}, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Jane A. Doe"
        assert data["date_of_birth"] == "1948-03-14"
        assert data["medical_record_number"] == "MRN-0001"

    def test_clear_mrn(self, client, auth_headers, test_patient):
        response = client.put(f"/patients/{test_patient.id}", json={"medical_record_number": ""},
                              headers=auth_headers)
        assert response.json()["medical_record_number"] is None

    def test_update_to_duplicate_mrn(self, client, auth_headers, test_patient, second_patient):
        response = client.put(f"/patients/{second_patient.id}", json={"medical_record_number": "MRN-0001"},
                              headers=auth_headers)
        assert response.status_code == 400

    @pytest.mark.parametrize("payload", [{"name": "  "}, {"date_of_birth": None}])
    def test_update_cannot_blank_required_fields(self, client, auth_headers, test_patient, payload):
        response = client.put(f"/patients/{test_patient.id}", json=payload, headers=auth_headers)
        assert response.status_code == 400

    def test_delete_cascades_to_visits(self, client, auth_headers, test_patient, second_patient,
                                       make_visit, test_db):
        """Test that a patient's visits go with them and others stay."""
        make_visit(test_patient, stage="Normal", confidence=0.9)
        make_visit(test_patient, stage="Mild_Dementia", confidence=0.7)
        make_visit(second_patient, stage="Normal", confidence=0.8)

        response = client.delete(f"/patients/{test_patient.id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["visits_deleted"] == 2
        assert test_db.query(Patient).count() == 1
        assert test_db.query(Visit).count() == 1

    def test_delete_removes_uploaded_images(self, client, auth_headers, test_patient, second_patient,
                                            make_visit, test_db, upload_dir):
        """Test that the deleted patient's images leave UPLOAD_DIR and others stay."""
        own_file = upload_dir / "delete-me.jpg"
        other_file = upload_dir / "keep-me.jpg"
        own_file.write_bytes(b"scan")
        other_file.write_bytes(b"scan")

        own_visit = make_visit(test_patient, stage="Normal", confidence=0.9)
        other_visit = make_visit(second_patient, stage="Normal", confidence=0.8)
        own_visit.image_url = "/uploads/delete-me.jpg"
        other_visit.image_url = "/uploads/keep-me.jpg"
        test_db.commit()

        response = client.delete(f"/patients/{test_patient.id}", headers=auth_headers)

        assert response.status_code == 200
        assert not own_file.exists()
        assert other_file.exists()
        other_file.unlink()

    def test_delete_missing_patient(self, client, auth_headers):
        assert client.delete(f"/patients/{UNKNOWN_PATIENT_ID}", headers=auth_headers).status_code == 404


class TestPatientVisits:
    """Tests for GET /patients/{id}/visits."""

    def test_visits_newest_first(self, client, auth_headers, test_patient, make_visit):
        make_visit(test_patient, stage="Normal", created_at=datetime(2025, 1, 1))
        make_visit(test_patient, stage="Very_Mild_Dementia", created_at=datetime(2025, 3, 1))

        response = client.get(f"/patients/{test_patient.id}/visits", headers=auth_headers)

        assert response.status_code == 200
        assert [v["predicted_class"] for v in response.json()] == ["Very_Mild_Dementia", "Normal"]

    def test_visits_of_missing_patient(self, client, auth_headers):
        assert client.get(f"/patients/{UNKNOWN_PATIENT_ID}/visits", headers=auth_headers).status_code == 404
