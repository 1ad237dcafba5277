"""
Tests for linking legacy attendance rows to enrollments.
"""
import logging
from datetime import date

import pytest

from progress.backfill import backfill_attendance_enrollments
from progress.models import Attendance, AttendanceStatus, EnrollmentRecomputeState


def legacy_row(enrollment, day):
    return Attendance.objects.create(
        patient=enrollment.patient,
        program=enrollment.program,
        attendance_date=day,
        status=AttendanceStatus.PRESENT,
    )


@pytest.mark.django_db
class TestBackfillAttendanceEnrollments:
    """Match by patient, program and attendance date within [enrollment_date, completed_date)."""

    def test_links_rows_inside_window(self, enrollment):
        first = legacy_row(enrollment, date(2024, 1, 1))
        last = legacy_row(enrollment, date(2024, 3, 30))

        assert backfill_attendance_enrollments() == {"linked": 2, "unmatched": 0, "ambiguous": 0}

        first.refresh_from_db()
        last.refresh_from_db()
        assert first.enrollment_id == enrollment.id
        assert last.enrollment_id == enrollment.id
        assert EnrollmentRecomputeState.objects.filter(enrollment_id=enrollment.id).exists()

    def test_completed_date_is_outside_window(self, enrollment):
        row = legacy_row(enrollment, date(2024, 3, 31))

        assert backfill_attendance_enrollments()["unmatched"] == 1
        row.refresh_from_db()
        assert row.enrollment_id is None

    def test_overlapping_enrollments_are_ambiguous(self, enrollment, make_enrollment, caplog):
        make_enrollment(patient=enrollment.patient, enrollment_date=date(2024, 2, 1), completed_date=date(2024, 5, 1))
        row = legacy_row(enrollment, date(2024, 2, 10))

        with caplog.at_level(logging.WARNING, logger="progress.backfill"):
            summary = backfill_attendance_enrollments()

        assert summary == {"linked": 0, "unmatched": 0, "ambiguous": 1}
        assert "Ambiguous enrollment match" in caplog.text
        row.refresh_from_db()
        assert row.enrollment_id is None

    def test_rerun_is_idempotent(self, enrollment):
        legacy_row(enrollment, date(2024, 1, 5))

        assert backfill_attendance_enrollments(batch_size=1)["linked"] == 1
        assert backfill_attendance_enrollments(batch_size=1) == {"linked": 0, "unmatched": 0, "ambiguous": 0}
