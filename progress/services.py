"""
业务逻辑：报名、发药、出勤的写操作
每次写完都在同一个事务里登记重算（提交后才投递），返回 {"success": True, "data": ...}
"""
import logging

from django.db import transaction
from django.utils import timezone

from program_tracker.exceptions import BlockError, DuplicateDispensation

from .buckets import bucket_start, local_today, reporting_timezone
from .dedup import reserve_bucket
from .horizon import horizon, recompute_horizon
from .metrics import ATTENDANCE_MARKED, ENROLLMENT_CREATED
from .models import Attendance, Medication, Patient, PatientEnrollment, RecordStatus
from .repository import find_enrollment, get_enrollment, get_program, update_enrollment
from .scheduler import request_recompute
from .serializers import serialize_date

logger = logging.getLogger(__name__)


def _get_patient(patient_id):
    try:
        return Patient.objects.get(id=patient_id)
    except Patient.DoesNotExist:
        raise BlockError(message="Patient not found", code="NOT_FOUND", http_status=404) from None


def _get_medication(medication_id):
    try:
        return Medication.objects.get(id=medication_id)
    except Medication.DoesNotExist:
        raise BlockError(message="Medication not found", code="NOT_FOUND", http_status=404) from None


def _get_attendance(attendance_id):
    try:
        return Attendance.objects.get(id=attendance_id)
    except Attendance.DoesNotExist:
        raise BlockError(message="Attendance not found", code="NOT_FOUND", http_status=404) from None


def enrollment_payload(enrollment):
    return {
        "enrollment_id": enrollment.id,
        "patient_id": enrollment.patient_id,
        "program_id": enrollment.program_id,
        "enrollment_date": serialize_date(enrollment.enrollment_date),
        "completed_date": serialize_date(enrollment.completed_date),
        "ended_on": serialize_date(enrollment.ended_on),
        "status": enrollment.status,
    }


def attendance_payload(row):
    return {
        "attendance_id": row.id,
        "patient_id": row.patient_id,
        "program_id": row.program_id,
        "enrollment_id": row.enrollment_id,
        "attendance_date": serialize_date(row.attendance_date),
        "status": row.status,
        "check_in_time": serialize_date(row.check_in_time),
        "marked_by": row.marked_by,
        "notes": row.notes,
    }


def enroll_patient(data):
    """
    报名：同一课程只能有一个 active 报名
    completed_date 按课程当前时长算一次，之后课程时长变了也不跟着变
    """
    patient = _get_patient(data['patient_id'])
    program = get_program(data['program_id'])
    if program.status != RecordStatus.ACTIVE:
        raise BlockError(
            message="Program is not active",
            code="PROGRAM_INACTIVE",
            detail={"program_id": program.id},
        )

    enrollment_date = data.get('enrollment_date') or local_today()
    completed_date = horizon(enrollment_date, program.duration_in_days)

    with transaction.atomic():
        existing = (
            PatientEnrollment.objects
            .select_for_update()
            .filter(patient=patient, program=program, status=PatientEnrollment.STATUS_ACTIVE)
            .first()
        )
        if existing is not None:
            raise BlockError(
                message="Patient is already enrolled in this program",
                code="ALREADY_ENROLLED",
                detail={"enrollment_id": existing.id},
            )

        enrollment = PatientEnrollment.objects.create(
            patient=patient,
            program=program,
            enrollment_date=enrollment_date,
            completed_date=completed_date,
        )
        request_recompute(enrollment.id)

    ENROLLMENT_CREATED.inc()
    logger.info("Enrolled patient %s in program %s until %s", patient.id, program.id, completed_date)
    return {"success": True, "data": enrollment_payload(enrollment)}


def record_dispensation(data):
    """
    记录一次发药：频率缺省用药物的默认频率
    同一周期已发过（去重频率）→ DuplicateDispensation，不写新行
    """
    patient = _get_patient(data['patient_id'])
    medication = _get_medication(data['medication_id'])
    program = get_program(data['program_id'])
    frequency = data.get('frequency') or medication.frequency
    dispensed_at = data.get('dispensed_at') or timezone.now()
    bucket = bucket_start(frequency, dispensed_at)

    enrollment = None
    with transaction.atomic():
        reservation = reserve_bucket(
            patient.id,
            medication.id,
            frequency,
            bucket,
            program_id=program.id,
            dispensed_at=dispensed_at,
            notes=data.get('notes', ''),
            dispensed_by=data.get('dispensed_by', ''),
        )
        if reservation.accepted:
            on_date = dispensed_at.astimezone(reporting_timezone()).date()
            enrollment = find_enrollment(patient.id, program.id, on_date=on_date)
            if enrollment is not None:
                request_recompute(enrollment.id)

    row = reservation.dispensation
    if reservation.duplicate:
        raise DuplicateDispensation(
            detail={
                "dispensation_id": row.id,
                "frequency": row.frequency,
                "bucket_start_at": serialize_date(row.bucket_start_at),
                "dispensed_at": serialize_date(row.dispensed_at),
            },
        )

    return {
        "success": True,
        "data": {
            "dispensation_id": row.id,
            "frequency": row.frequency,
            "bucket_start_at": serialize_date(row.bucket_start_at),
            "dispensed_at": serialize_date(row.dispensed_at),
            "enrollment_id": enrollment.id if enrollment else None,
        },
    }


def mark_attendance(data):
    """
    按课程 + 日期批量记出勤，每行关联到当天有效的 enrollment
    """
    program = get_program(data['program_id'])
    attendance_date = data['attendance_date']
    records = data['records']

    patient_ids = {record['patient_id'] for record in records}
    found = set(Patient.objects.filter(id__in=patient_ids).values_list('id', flat=True))
    missing = sorted(patient_ids - found)
    if missing:
        raise BlockError(
            message="Patient not found",
            code="NOT_FOUND",
            detail={"patient_ids": missing},
            http_status=404,
        )

    rows = []
    touched = set()
    with transaction.atomic():
        for record in records:
            enrollment = find_enrollment(record['patient_id'], program.id, on_date=attendance_date)
            row = Attendance.objects.create(
                patient_id=record['patient_id'],
                program=program,
                enrollment=enrollment,
                attendance_date=attendance_date,
                status=record['status'],
                check_in_time=record.get('check_in_time') or timezone.now(),
                marked_by=data.get('marked_by', ''),
                notes=record.get('notes', ''),
            )
            rows.append(row)
            if enrollment is not None:
                touched.add(enrollment.id)

        for enrollment_id in sorted(touched):
            request_recompute(enrollment_id)

    for row in rows:
        ATTENDANCE_MARKED.labels(status=row.status).inc()

    return {
        "success": True,
        "data": {
            "count": len(rows),
            "attendance": [attendance_payload(row) for row in rows],
            "enrollment_ids": sorted(touched),
        },
    }


def _enrollment_for_attendance(row):
    if row.enrollment_id is not None:
        return row.enrollment_id
    enrollment = find_enrollment(row.patient_id, row.program_id, on_date=row.attendance_date)
    return enrollment.id if enrollment else None


def update_attendance(attendance_id, data):
    with transaction.atomic():
        row = _get_attendance(attendance_id)
        for field in ('status', 'check_in_time', 'notes', 'marked_by'):
            if field in data:
                setattr(row, field, data[field])
        row.enrollment_id = _enrollment_for_attendance(row)
        row.save()
        if row.enrollment_id is not None:
            request_recompute(row.enrollment_id)

    return {"success": True, "data": attendance_payload(row)}


def delete_attendance(attendance_id):
    with transaction.atomic():
        row = _get_attendance(attendance_id)
        enrollment_id = _enrollment_for_attendance(row)
        row.delete()
        if enrollment_id is not None:
            request_recompute(enrollment_id)

    return {"success": True, "data": {"attendance_id": attendance_id, "enrollment_id": enrollment_id}}


def _close_enrollment(enrollment_id, status, data):
    data = data or {}
    with transaction.atomic():
        enrollment = get_enrollment(enrollment_id)
        if enrollment.status != PatientEnrollment.STATUS_ACTIVE:
            raise BlockError(
                message="Enrollment is already closed",
                code="ALREADY_CLOSED",
                detail={"status": enrollment.status},
            )

        ended_on = data.get('completed_on') or local_today()
        if ended_on < enrollment.enrollment_date:
            raise BlockError(
                message="End date is before the enrollment date",
                code="INVALID_END_DATE",
                detail={
                    "enrollment_date": serialize_date(enrollment.enrollment_date),
                    "ended_on": serialize_date(ended_on),
                },
                http_status=400,
            )

        update_enrollment(
            enrollment.id,
            status=status,
            ended_on=ended_on,
            completion_notes=data.get('notes', ''),
        )
        enrollment.status = status
        enrollment.ended_on = ended_on
        request_recompute(enrollment.id)

    logger.info("Enrollment %s closed as %s on %s", enrollment.id, status, ended_on)
    return {"success": True, "data": enrollment_payload(enrollment)}


def complete_enrollment(enrollment_id, data=None):
    """工作人员手动标记完成"""
    return _close_enrollment(enrollment_id, PatientEnrollment.STATUS_COMPLETED, data)


def cancel_enrollment(enrollment_id, data=None):
    return _close_enrollment(enrollment_id, PatientEnrollment.STATUS_CANCELLED, data)


def recompute_enrollment_horizon(enrollment_id):
    """管理员操作：按课程当前时长重算 completed_date"""
    enrollment = recompute_horizon(enrollment_id)
    return {"success": True, "data": enrollment_payload(enrollment)}
