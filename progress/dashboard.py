"""
Dashboard 只读查询：只读物化好的计数 / 分类结果，不在读请求里现算
"""
from django.db.models import Avg, Case, Count, F, IntegerField, Max, Min, Q, Value, When

from .models import (
    DueStatus,
    EnrollmentRecomputeState,
    MedicationAdherence,
    PatientEnrollment,
    Program,
    RecordStatus,
)
from .repository import get_enrollment
from .serializers import serialize_date

ACTIVE = PatientEnrollment.STATUS_ACTIVE


def _adherence_row(row):
    return {
        "medication_id": row.medication_id,
        "medication_name": row.medication.name,
        "frequency": row.frequency,
        "expected_buckets": row.expected_buckets,
        "matched_buckets": row.matched_buckets,
        "adherence_rate": row.adherence_rate,
        "last_dispensed_at": serialize_date(row.last_dispensed_at),
        "next_due_bucket": serialize_date(row.next_due_bucket),
        "status": row.status,
    }


def enrollment_progress(enrollment_id):
    """
    患者详情页：计数 + 每个药物的到期状态 + 重算状态
    重算失败时这里仍是上一次成功的结果，recompute.last_error 说明原因
    """
    enrollment = get_enrollment(enrollment_id)
    rows = (
        MedicationAdherence.objects
        .filter(enrollment=enrollment)
        .select_related('medication')
        .order_by('medication_id')
    )
    state = EnrollmentRecomputeState.objects.filter(enrollment=enrollment).first()

    return {
        "success": True,
        "data": {
            "enrollment_id": enrollment.id,
            "patient": {
                "id": enrollment.patient_id,
                "full_name": enrollment.patient.full_name,
                "patient_code": enrollment.patient.patient_code,
            },
            "program": {
                "id": enrollment.program_id,
                "name": enrollment.program.name,
                "session_frequency": enrollment.program.session_frequency,
            },
            "enrollment_date": serialize_date(enrollment.enrollment_date),
            "completed_date": serialize_date(enrollment.completed_date),
            "ended_on": serialize_date(enrollment.ended_on),
            "status": enrollment.status,
            "sessions_expected": enrollment.sessions_expected,
            "sessions_completed": enrollment.sessions_completed,
            "sessions_missed": enrollment.sessions_missed,
            "attendance_rate": enrollment.attendance_rate,
            "adherence_rate": enrollment.adherence_rate,
            "medications": [_adherence_row(row) for row in rows],
            "recompute": {
                "state": state.state if state else EnrollmentRecomputeState.STATE_STALE,
                "last_completed_at": serialize_date(state.last_completed_at) if state else None,
                "last_error": state.last_error if state else '',
            },
        },
    }


def _due_rows():
    return MedicationAdherence.objects.filter(
        status__in=[DueStatus.DUE_TODAY, DueStatus.OVERDUE],
        enrollment__status=ACTIVE,
    )


def upcoming_dispensations(limit=100):
    """今天到期 + 已逾期的发药，逾期的排前面，然后按到期周期"""
    queryset = (
        _due_rows()
        .select_related('enrollment__patient', 'enrollment__program', 'medication')
        .annotate(
            priority=Case(
                When(status=DueStatus.OVERDUE, then=Value(0)),
                default=Value(1),
                output_field=IntegerField(),
            )
        )
        .order_by('priority', 'next_due_bucket', 'id')
    )

    items = []
    for row in queryset[:limit]:
        enrollment = row.enrollment
        items.append({
            "enrollment_id": enrollment.id,
            "patient_id": enrollment.patient_id,
            "patient_name": enrollment.patient.full_name,
            "program_id": enrollment.program_id,
            "program_name": enrollment.program.name,
            "medication_id": row.medication_id,
            "medication_name": row.medication.name,
            "frequency": row.frequency,
            "next_due_bucket": serialize_date(row.next_due_bucket),
            "status": row.status,
        })
    return {"success": True, "data": {"results": items, "overdue_count": overdue_count()}}


def overdue_count():
    return _due_rows().filter(status=DueStatus.OVERDUE).count()


def program_duration_summary():
    """
    每个启用课程：最早报名日、最晚完成日、报名数、active 患者数、active 报名的平均依从率
    没有 active 患者的课程不返回
    """
    programs = (
        Program.objects
        .filter(status=RecordStatus.ACTIVE)
        .annotate(
            first_enrollment_date=Min('enrollments__enrollment_date'),
            last_completed_date=Max('enrollments__completed_date'),
            enrollment_count=Count('enrollments', distinct=True),
            active_patients=Count('enrollments__patient', filter=Q(enrollments__status=ACTIVE), distinct=True),
            average_adherence=Avg('enrollments__adherence_rate', filter=Q(enrollments__status=ACTIVE)),
        )
        .filter(active_patients__gt=0)
        .order_by('name', 'id')
    )

    items = []
    for program in programs:
        items.append({
            "program_id": program.id,
            "program_name": program.name,
            "duration_in_days": program.duration_in_days,
            "start_date": serialize_date(program.first_enrollment_date),
            "end_date": serialize_date(program.last_completed_date),
            "enrollment_count": program.enrollment_count,
            "active_patients": program.active_patients,
            "adherence_percent": round(program.average_adherence or 0.0, 2),
        })
    return {"success": True, "data": {"results": items}}


def patients_with_missed_sessions(program_id=None):
    """active 报名里有缺勤，或者完成数低于应到数的患者"""
    queryset = (
        PatientEnrollment.objects
        .filter(status=ACTIVE)
        .filter(Q(sessions_missed__gt=0) | Q(sessions_completed__lt=F('sessions_expected')))
        .select_related('patient', 'program')
        .order_by('-sessions_missed', 'attendance_rate', 'id')
    )
    if program_id is not None:
        queryset = queryset.filter(program_id=program_id)

    items = []
    for enrollment in queryset:
        items.append({
            "enrollment_id": enrollment.id,
            "patient_id": enrollment.patient_id,
            "patient_name": enrollment.patient.full_name,
            "program_id": enrollment.program_id,
            "program_name": enrollment.program.name,
            "sessions_expected": enrollment.sessions_expected,
            "sessions_completed": enrollment.sessions_completed,
            "sessions_missed": enrollment.sessions_missed,
            "attendance_rate": enrollment.attendance_rate,
        })
    return {"success": True, "data": {"results": items}}
