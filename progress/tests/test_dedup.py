"""
Tests for bucket deduplication of dispensations.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from django.db import connection

from progress import dedup
from progress.buckets import bucket_start
from progress.dedup import is_deduplicated, reserve_bucket
from progress.models import Dispensation, Frequency

UTC = timezone.utc


def reserve(patient, medication, program, frequency, instant, **extra):
    return reserve_bucket(
        patient.id,
        medication.id,
        frequency,
        bucket_start(frequency, instant),
        program_id=program.id,
        dispensed_at=instant,
        **extra,
    )


class TestDeduplicatedFrequencies:
    """Which frequencies carry the unique bucket constraint."""

    def test_defaults(self):
        assert is_deduplicated("Daily")
        assert is_deduplicated("Monthly")
        assert not is_deduplicated("Weekly")
        assert not is_deduplicated("Twice Daily")

    def test_configurable(self, settings):
        settings.PROGRESS_DEDUP_FREQUENCIES = ["Daily", "Weekly"]
        assert is_deduplicated("weekly")
        assert not is_deduplicated("Monthly")


@pytest.mark.django_db
class TestReserveBucket:
    """One accepted row per deduplicated bucket."""

    def test_first_daily_dispensation_is_accepted(self, patient, medication, program):
        result = reserve(patient, medication, program, "Daily", datetime(2024, 1, 2, 9, 30, tzinfo=UTC), notes="n")

        assert result.accepted
        row = result.dispensation
        assert row.is_deduplicated is True
        assert row.bucket_start_at == datetime(2024, 1, 2, tzinfo=UTC)
        assert row.dispensed_at == datetime(2024, 1, 2, 9, 30, tzinfo=UTC)
        assert row.notes == "n"

    def test_second_daily_dispensation_same_day_is_duplicate(self, patient, medication, program):
        first = reserve(patient, medication, program, "Daily", datetime(2024, 1, 2, 8, tzinfo=UTC))
        second = reserve(patient, medication, program, "Daily", datetime(2024, 1, 2, 20, tzinfo=UTC))

        assert second.duplicate
        assert second.dispensation.id == first.dispensation.id
        assert Dispensation.objects.count() == 1

    def test_next_day_is_a_new_bucket(self, patient, medication, program):
        reserve(patient, medication, program, "Daily", datetime(2024, 1, 2, 23, tzinfo=UTC))
        result = reserve(patient, medication, program, "Daily", datetime(2024, 1, 3, 1, tzinfo=UTC))
        assert result.accepted
        assert Dispensation.objects.count() == 2

    def test_monthly_duplicate(self, patient, medication, program):
        reserve(patient, medication, program, "Monthly", datetime(2024, 2, 1, tzinfo=UTC))
        result = reserve(patient, medication, program, "Monthly", datetime(2024, 2, 28, tzinfo=UTC))
        assert result.duplicate
        assert result.dispensation.bucket_start_at == datetime(2024, 2, 1, tzinfo=UTC)

    def test_different_frequency_is_a_different_bucket(self, patient, medication, program):
        reserve(patient, medication, program, "Daily", datetime(2024, 2, 1, 9, tzinfo=UTC))
        result = reserve(patient, medication, program, "Monthly", datetime(2024, 2, 1, 10, tzinfo=UTC))
        assert result.accepted

    def test_weekly_is_never_deduplicated(self, patient, medication, program):
        first = reserve(patient, medication, program, "Weekly", datetime(2024, 1, 2, 9, tzinfo=UTC))
        second = reserve(patient, medication, program, "Weekly", datetime(2024, 1, 2, 9, tzinfo=UTC))

        assert first.accepted and second.accepted
        assert first.dispensation.is_deduplicated is False
        assert Dispensation.objects.filter(frequency=Frequency.WEEKLY).count() == 2

    def test_twice_daily_accepts_both_halves_and_repeats(self, patient, medication, program):
        for hour in (8, 9, 14):
            assert reserve(patient, medication, program, "Twice Daily", datetime(2024, 1, 2, hour, tzinfo=UTC)).accepted
        assert Dispensation.objects.count() == 3

    def test_weekly_deduplicated_when_configured(self, settings, patient, medication, program):
        settings.PROGRESS_DEDUP_FREQUENCIES = ["Daily", "Monthly", "Weekly"]
        reserve(patient, medication, program, "Weekly", datetime(2024, 1, 2, tzinfo=UTC))
        result = reserve(patient, medication, program, "Weekly", datetime(2024, 1, 5, tzinfo=UTC))
        assert result.duplicate

    def test_rows_written_before_config_change_do_not_block(self, settings, patient, medication, program):
        reserve(patient, medication, program, "Weekly", datetime(2024, 1, 2, tzinfo=UTC))
        settings.PROGRESS_DEDUP_FREQUENCIES = ["Daily", "Monthly", "Weekly"]
        result = reserve(patient, medication, program, "Weekly", datetime(2024, 1, 3, tzinfo=UTC))
        assert result.accepted

    def test_integrity_error_is_translated_to_duplicate(self, patient, medication, program):
        """Lost race: the precheck saw nothing, but the unique index rejects the insert."""
        existing = reserve(patient, medication, program, "Daily", datetime(2024, 1, 2, 8, tzinfo=UTC)).dispensation

        with patch.object(dedup, "_existing_in_bucket", side_effect=[None, existing]):
            result = reserve(patient, medication, program, "Daily", datetime(2024, 1, 2, 9, tzinfo=UTC))

        assert result.duplicate
        assert result.dispensation.id == existing.id
        assert Dispensation.objects.count() == 1


@pytest.mark.django_db(transaction=True)
class TestConcurrentReservations:
    """Concurrent submissions for the same bucket."""

    def test_fifty_concurrent_daily_submissions(self, patient, medication, program):
        base = datetime(2024, 1, 2, 8, tzinfo=UTC)

        def submit(i):
            try:
                result = reserve(patient, medication, program, "Daily", base + timedelta(minutes=i))
                return result.status
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=50) as pool:
            statuses = list(pool.map(submit, range(50)))

        assert statuses.count(dedup.ACCEPTED) == 1
        assert statuses.count(dedup.DUPLICATE) == 49
        assert Dispensation.objects.filter(patient=patient, medication=medication).count() == 1
