"""
Tests for management commands.
"""
from datetime import date
from io import StringIO
from unittest.mock import MagicMock, patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from progress.models import Attendance, AttendanceStatus, PatientEnrollment


@pytest.mark.django_db
class TestRunProgressSweep:
    """run_progress_sweep command."""

    def test_enqueue_mode(self, enrollment):
        out = StringIO()
        with patch("progress.scheduler._enqueue") as mock_enqueue:
            call_command("run_progress_sweep", stdout=out)

        mock_enqueue.assert_called_once_with(enrollment.id)
        assert "enqueued=1" in out.getvalue()

    def test_sync_mode(self, enrollment):
        out = StringIO()
        call_command("run_progress_sweep", "--sync", stdout=out)
        assert "recomputed=1" in out.getvalue()

    def test_loop_takes_redis_lock_and_exits_on_interrupt(self, enrollment):
        mock_redis = MagicMock()
        mock_redis.lock.return_value.acquire.return_value = True
        out = StringIO()

        with patch("redis.from_url", return_value=mock_redis), \
                patch("progress.scheduler._enqueue"), \
                patch("time.sleep", side_effect=KeyboardInterrupt):
            call_command("run_progress_sweep", "--loop", "--interval", "5", stdout=out)

        mock_redis.lock.assert_called_once_with("progress:sweep:lock", timeout=5)
        assert "enqueued=1" in out.getvalue()
        assert "Sweep 已退出" in out.getvalue()

    def test_loop_skips_when_lock_is_held(self, enrollment):
        mock_redis = MagicMock()
        mock_redis.lock.return_value.acquire.return_value = False
        out = StringIO()

        with patch("redis.from_url", return_value=mock_redis), \
                patch("progress.management.commands.run_progress_sweep.sweep") as mock_sweep, \
                patch("time.sleep", side_effect=KeyboardInterrupt):
            call_command("run_progress_sweep", "--loop", stdout=out)

        mock_sweep.assert_not_called()


@pytest.mark.django_db
class TestBackfillProgress:
    """backfill_progress command."""

    def test_fills_dates_and_links_attendance(self, make_enrollment):
        enrollment = make_enrollment(completed_date=None)
        Attendance.objects.create(
            patient=enrollment.patient,
            program=enrollment.program,
            attendance_date=date(2024, 1, 2),
            status=AttendanceStatus.PRESENT,
        )
        out = StringIO()

        call_command("backfill_progress", "--batch-size", "10", stdout=out)

        output = out.getvalue()
        assert "filled=1" in output
        assert "linked=1" in output
        enrollment.refresh_from_db()
        assert enrollment.completed_date == date(2024, 3, 31)


@pytest.mark.django_db
class TestRecomputeHorizonCommand:
    """recompute_horizon command."""

    def test_updates_completed_date(self, enrollment, program):
        program.duration_in_days = 60
        program.save()
        out = StringIO()

        call_command("recompute_horizon", str(enrollment.id), stdout=out)

        assert "2024-03-01" in out.getvalue()
        assert PatientEnrollment.objects.get(id=enrollment.id).completed_date == date(2024, 3, 1)

    def test_unknown_enrollment(self):
        with pytest.raises(CommandError):
            call_command("recompute_horizon", "999999")
