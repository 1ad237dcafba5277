"""
Pytest configuration and shared fixtures.
"""
import pytest
from datetime import date


@pytest.fixture
def patient(db):
    """An active patient."""
    from progress.models import Patient

    return Patient.objects.create(full_name="John Doe", patient_code="P000001")


@pytest.fixture
def medication(db):
    """A daily medication."""
    from progress.models import Frequency, Medication

    return Medication.objects.create(name="Metformin", dosage="500mg", frequency=Frequency.DAILY)


@pytest.fixture
def program(db, medication):
    """A 90-day program with daily sessions that includes the daily medication."""
    from progress.models import Frequency, Program

    program = Program.objects.create(
        name="Diabetes Care",
        type="chronic",
        session_frequency=Frequency.DAILY,
        duration_in_days=90,
    )
    program.medications.add(medication)
    return program


@pytest.fixture
def enrollment(db, patient, program):
    """Enrollment starting 2024-01-01; completed on 2024-03-31."""
    from progress.models import PatientEnrollment

    return PatientEnrollment.objects.create(
        patient=patient,
        program=program,
        enrollment_date=date(2024, 1, 1),
        completed_date=date(2024, 3, 31),
    )


@pytest.fixture
def make_enrollment(db, program):
    """Factory for additional patients enrolled in the program."""
    from progress.models import Patient, PatientEnrollment

    counter = {"n": 100}

    def _make(enrollment_date=date(2024, 1, 1), completed_date=date(2024, 3, 31), **fields):
        counter["n"] += 1
        patient = fields.pop("patient", None) or Patient.objects.create(
            full_name=f"Patient {counter['n']}",
            patient_code=f"P{counter['n']:06d}",
        )
        return PatientEnrollment.objects.create(
            patient=patient,
            program=fields.pop("program", program),
            enrollment_date=enrollment_date,
            completed_date=completed_date,
            **fields,
        )

    return _make


@pytest.fixture
def enrollment_payload(patient, program):
    """Payload for POST /api/enrollments/."""
    return {
        "patient_id": patient.id,
        "program_id": program.id,
        "enrollment_date": "2024-01-01",
    }


@pytest.fixture
def dispensation_payload(patient, medication, program):
    """Payload for POST /api/dispensations/."""
    return {
        "patient_id": patient.id,
        "medication_id": medication.id,
        "program_id": program.id,
        "dispensed_at": "2024-01-02T09:30:00Z",
        "notes": "Taken with food",
        "dispensed_by": "nurse.li",
    }
