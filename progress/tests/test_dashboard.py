"""
Tests for dashboard read queries and their HTTP endpoints.
"""
from datetime import date, datetime, timezone as dt_timezone

import pytest
from django.test import Client
from django.utils import timezone

from progress import dashboard
from progress.models import (
    DueStatus,
    MedicationAdherence,
    PatientEnrollment,
    Program,
    RecordStatus,
)
from progress.scheduler import recompute_enrollment, run_recompute

UTC = dt_timezone.utc


def adherence(enrollment, medication, status, next_due):
    return MedicationAdherence.objects.create(
        enrollment=enrollment,
        medication=medication,
        frequency="Daily",
        expected_buckets=3,
        matched_buckets=2,
        adherence_rate=66.67,
        next_due_bucket=next_due,
        status=status,
        computed_at=timezone.now(),
    )


@pytest.mark.django_db
class TestEnrollmentProgress:
    """Per-enrollment progress reads materialized values."""

    def test_progress_after_recompute(self, enrollment, medication):
        run_recompute(enrollment.id, now=datetime(2024, 1, 3, 10, tzinfo=UTC))

        data = dashboard.enrollment_progress(enrollment.id)["data"]

        assert data["completed_date"] == "2024-03-31"
        assert data["sessions_expected"] == 3
        assert data["adherence_rate"] == 0.0
        assert data["recompute"]["state"] == "fresh"
        (row,) = data["medications"]
        assert row["medication_name"] == "Metformin"
        assert row["status"] == DueStatus.OVERDUE
        assert row["next_due_bucket"] == "2024-01-01T00:00:00+00:00"

    def test_never_recomputed_reports_stale(self, enrollment):
        data = dashboard.enrollment_progress(enrollment.id)["data"]
        assert data["recompute"]["state"] == "stale"
        assert data["medications"] == []

    def test_http_endpoint(self, enrollment):
        recompute_enrollment(enrollment.id, now=datetime(2024, 1, 3, 10, tzinfo=UTC))
        resp = Client().get(f"/api/enrollments/{enrollment.id}/progress/")

        assert resp.status_code == 200
        assert resp.json()["data"]["patient"]["patient_code"] == "P000001"


@pytest.mark.django_db
class TestUpcomingDispensations:
    """Due-today and overdue rows, overdue first."""

    def test_overdue_first_then_by_due_bucket(self, enrollment, make_enrollment, medication):
        other = make_enrollment()
        third = make_enrollment()
        due = adherence(enrollment, medication, DueStatus.DUE_TODAY, datetime(2024, 1, 3, tzinfo=UTC))
        late_overdue = adherence(other, medication, DueStatus.OVERDUE, datetime(2024, 1, 2, tzinfo=UTC))
        early_overdue = adherence(third, medication, DueStatus.OVERDUE, datetime(2024, 1, 1, tzinfo=UTC))

        data = dashboard.upcoming_dispensations()["data"]

        assert [r["enrollment_id"] for r in data["results"]] == [
            early_overdue.enrollment_id,
            late_overdue.enrollment_id,
            due.enrollment_id,
        ]
        assert data["overdue_count"] == 2

    def test_on_time_and_closed_enrollments_are_excluded(self, enrollment, make_enrollment, medication):
        adherence(enrollment, medication, DueStatus.ON_TIME, datetime(2024, 1, 4, tzinfo=UTC))
        closed = make_enrollment(status=PatientEnrollment.STATUS_COMPLETED)
        adherence(closed, medication, DueStatus.OVERDUE, datetime(2024, 1, 1, tzinfo=UTC))

        data = dashboard.upcoming_dispensations()["data"]
        assert data["results"] == []
        assert dashboard.overdue_count() == 0

    def test_http_endpoint(self, enrollment, medication):
        adherence(enrollment, medication, DueStatus.OVERDUE, datetime(2024, 1, 1, tzinfo=UTC))
        resp = Client().get("/api/dashboard/upcoming-dispensations/")

        assert resp.status_code == 200
        item = resp.json()["data"]["results"][0]
        assert item["patient_name"] == "John Doe"
        assert item["medication_name"] == "Metformin"
        assert item["status"] == "overdue"

    def test_metrics_gauge_reflects_overdue_rows(self, enrollment, medication):
        adherence(enrollment, medication, DueStatus.OVERDUE, datetime(2024, 1, 1, tzinfo=UTC))
        resp = Client().get("/metrics")
        assert b"dispensation_overdue 1.0" in resp.content


@pytest.mark.django_db
class TestProgramDurationSummary:
    """Per-program date range and adherence over active enrollments."""

    def test_summary(self, enrollment, make_enrollment, program):
        make_enrollment(enrollment_date=date(2024, 2, 1), completed_date=date(2024, 5, 1), adherence_rate=50.0)
        make_enrollment(
            enrollment_date=date(2023, 6, 1),
            completed_date=date(2023, 8, 30),
            status=PatientEnrollment.STATUS_COMPLETED,
            adherence_rate=10.0,
        )
        PatientEnrollment.objects.filter(id=enrollment.id).update(adherence_rate=100.0)

        (row,) = dashboard.program_duration_summary()["data"]["results"]

        assert row["program_id"] == program.id
        assert row["start_date"] == "2023-06-01"
        assert row["end_date"] == "2024-05-01"
        assert row["enrollment_count"] == 3
        assert row["active_patients"] == 2
        assert row["adherence_percent"] == 75.0

    def test_programs_without_active_patients_are_hidden(self, enrollment):
        Program.objects.create(name="Empty", type="acute", duration_in_days=30)
        inactive = Program.objects.create(name="Retired", type="acute", status=RecordStatus.INACTIVE)
        PatientEnrollment.objects.create(
            patient=enrollment.patient,
            program=inactive,
            enrollment_date=date(2024, 1, 1),
            completed_date=date(2024, 3, 31),
        )

        names = [r["program_name"] for r in dashboard.program_duration_summary()["data"]["results"]]
        assert names == ["Diabetes Care"]

    def test_http_endpoint(self, enrollment):
        resp = Client().get("/api/dashboard/program-duration-summary/")
        assert resp.status_code == 200
        assert resp.json()["data"]["results"][0]["duration_in_days"] == 90


@pytest.mark.django_db
class TestMissedSessions:
    """Patients with missed sessions in active enrollments."""

    def test_lists_patients_behind(self, enrollment, make_enrollment):
        PatientEnrollment.objects.filter(id=enrollment.id).update(
            sessions_expected=10, sessions_completed=7, sessions_missed=3, attendance_rate=70.0,
        )
        behind = make_enrollment()
        PatientEnrollment.objects.filter(id=behind.id).update(
            sessions_expected=10, sessions_completed=9, sessions_missed=0, attendance_rate=90.0,
        )
        on_track = make_enrollment()
        PatientEnrollment.objects.filter(id=on_track.id).update(
            sessions_expected=10, sessions_completed=10, attendance_rate=100.0,
        )

        results = dashboard.patients_with_missed_sessions()["data"]["results"]
        assert [r["enrollment_id"] for r in results] == [enrollment.id, behind.id]

    def test_filter_by_program(self, enrollment):
        PatientEnrollment.objects.filter(id=enrollment.id).update(sessions_expected=2, sessions_missed=2)
        other = Program.objects.create(name="Cardio", type="chronic")

        assert dashboard.patients_with_missed_sessions(program_id=other.id)["data"]["results"] == []
        resp = Client().get(f"/api/dashboard/missed-sessions/?program_id={enrollment.program_id}")
        assert resp.status_code == 200
        assert len(resp.json()["data"]["results"]) == 1
