"""
Error tests: ensure incorrect inputs produce corresponding error responses.
"""
import json
import logging

import pytest
from django.db import OperationalError
from django.test import Client, RequestFactory
from unittest.mock import patch

from program_tracker.exceptions import BlockError
from program_tracker.middleware import AppExceptionMiddleware
from progress.models import PatientEnrollment


def post_json(client, path, payload):
    return client.post(path, data=json.dumps(payload), content_type="application/json")


@pytest.mark.django_db
class TestEnrollmentErrors:
    """Error responses for the enrollment API."""

    def test_invalid_json_returns_validation_error(self):
        client = Client()
        resp = client.post("/api/enrollments/", data="not json", content_type="application/json")
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert data["type"] == "validation"
        assert data["code"] == "INVALID_JSON"

    def test_method_not_allowed_returns_block_error(self):
        resp = Client().get("/api/enrollments/")
        assert resp.status_code == 405
        data = resp.json()
        assert data["type"] == "block"
        assert data["code"] == "METHOD_NOT_ALLOWED"

    def test_non_object_body(self):
        resp = post_json(Client(), "/api/enrollments/", [1, 2])
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_REQUEST"

    def test_missing_fields_lists_every_error(self):
        resp = post_json(Client(), "/api/enrollments/", {"enrollment_date": "01/01/2024"})
        assert resp.status_code == 400
        data = resp.json()
        assert data["code"] == "VALIDATION_ERROR"
        fields = {e["field"] for e in data["detail"]["errors"]}
        assert fields == {"patient_id", "program_id", "enrollment_date"}

    def test_already_enrolled_returns_409(self, enrollment, enrollment_payload):
        resp = post_json(Client(), "/api/enrollments/", enrollment_payload)
        assert resp.status_code == 409
        data = resp.json()
        assert data["code"] == "ALREADY_ENROLLED"
        assert data["detail"]["enrollment_id"] == enrollment.id

    def test_create_enrollment_returns_201(self, enrollment_payload):
        with patch("progress.scheduler._enqueue"):
            resp = post_json(Client(), "/api/enrollments/", enrollment_payload)
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["completed_date"] == "2024-03-31"
        assert PatientEnrollment.objects.filter(id=data["enrollment_id"]).exists()

    def test_progress_for_unknown_enrollment_returns_404(self):
        resp = Client().get("/api/enrollments/999999/progress/")
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_complete_before_enrollment_date_returns_400(self, enrollment):
        resp = post_json(Client(), f"/api/enrollments/{enrollment.id}/complete/", {"completed_on": "2023-12-01"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_END_DATE"

    def test_complete_twice_returns_409(self, enrollment):
        client = Client()
        assert post_json(client, f"/api/enrollments/{enrollment.id}/complete/", {}).status_code == 200
        resp = post_json(client, f"/api/enrollments/{enrollment.id}/cancel/", {})
        assert resp.status_code == 409
        assert resp.json()["code"] == "ALREADY_CLOSED"


@pytest.mark.django_db
class TestDispensationErrors:
    """Error responses for the dispensation API."""

    def test_duplicate_returns_warning(self, enrollment, dispensation_payload):
        client = Client()
        first = post_json(client, "/api/dispensations/", dispensation_payload)
        assert first.status_code == 201

        resp = post_json(client, "/api/dispensations/", {**dispensation_payload, "dispensed_at": "2024-01-02T17:00:00Z"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert data["type"] == "warning"
        assert data["code"] == "DUPLICATE_DISPENSATION"
        assert data["detail"]["dispensation_id"] == first.json()["data"]["dispensation_id"]

    def test_unsupported_frequency_is_validation_error(self, dispensation_payload):
        resp = post_json(Client(), "/api/dispensations/", {**dispensation_payload, "frequency": "Hourly"})
        assert resp.status_code == 400
        errors = resp.json()["detail"]["errors"]
        assert errors[0]["field"] == "frequency"

    def test_bad_timestamp(self, dispensation_payload):
        resp = post_json(Client(), "/api/dispensations/", {**dispensation_payload, "dispensed_at": "yesterday"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["errors"][0]["field"] == "dispensed_at"

    def test_unknown_medication_returns_404(self, dispensation_payload):
        resp = post_json(Client(), "/api/dispensations/", {**dispensation_payload, "medication_id": 999999})
        assert resp.status_code == 404


@pytest.mark.django_db
class TestAttendanceAndDashboardErrors:
    """Error responses for attendance and dashboard endpoints."""

    def test_bad_status_in_batch(self, enrollment):
        resp = post_json(Client(), "/api/attendance/", {
            "program_id": enrollment.program_id,
            "attendance_date": "2024-01-05",
            "records": [{"patient_id": enrollment.patient_id, "status": "Sleeping"}],
        })
        assert resp.status_code == 400
        assert resp.json()["detail"]["errors"][0]["field"] == "records[0].status"

    def test_attendance_detail_rejects_put(self):
        resp = Client().put("/api/attendance/1/", data="{}", content_type="application/json")
        assert resp.status_code == 405

    def test_missed_sessions_bad_program_id(self):
        resp = Client().get("/api/dashboard/missed-sessions/?program_id=abc")
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_metrics_endpoint(self):
        resp = Client().get("/metrics")
        assert resp.status_code == 200
        assert b"dispensation_overdue" in resp.content


@pytest.mark.django_db
class TestAppExceptionMiddleware:
    """Exceptions escaping a view are turned into the JSON envelope."""

    def test_database_lock_returns_transient_503(self, dispensation_payload):
        with patch("progress.views.services.record_dispensation", side_effect=OperationalError("database is locked")):
            resp = post_json(Client(), "/api/dispensations/", dispensation_payload)

        assert resp.status_code == 503
        data = resp.json()
        assert data["success"] is False
        assert data["type"] == "transient"
        assert data["code"] == "DATABASE_UNAVAILABLE"
        assert "locked" in data["detail"]["error"]

    def test_app_exception_is_rendered(self):
        request = RequestFactory().post("/api/attendance/")
        middleware = AppExceptionMiddleware(lambda r: None)

        resp = middleware.process_exception(request, BlockError(code="NOT_FOUND", http_status=404))

        assert resp.status_code == 404
        assert json.loads(resp.content)["code"] == "NOT_FOUND"

    def test_unexpected_exception_is_logged_and_left_to_django(self, caplog):
        request = RequestFactory().get("/api/dashboard/program-summary/")
        middleware = AppExceptionMiddleware(lambda r: None)

        with caplog.at_level(logging.ERROR, logger="program_tracker.middleware"):
            assert middleware.process_exception(request, ValueError("bad row")) is None

        assert "Unhandled error on GET /api/dashboard/program-summary/" in caplog.text
