"""
数据访问：引擎只通过这些函数读写数据库
读：get_program / get_enrollment / list_attendance / list_dispensations
写：upsert_enrollment_counters / insert_dispensation / update_enrollment
"""
from django.db.models import Q

from program_tracker.exceptions import BlockError

from .models import (
    Attendance,
    Dispensation,
    MedicationAdherence,
    PatientEnrollment,
    Program,
)

COUNTER_FIELDS = (
    'sessions_expected',
    'sessions_completed',
    'sessions_missed',
    'attendance_rate',
    'adherence_rate',
)


def get_program(program_id):
    try:
        return Program.objects.get(id=program_id)
    except Program.DoesNotExist:
        raise BlockError(message="Program not found", code="NOT_FOUND", http_status=404) from None


def get_enrollment(enrollment_id):
    try:
        return PatientEnrollment.objects.select_related('program', 'patient').get(id=enrollment_id)
    except PatientEnrollment.DoesNotExist:
        raise BlockError(message="Enrollment not found", code="NOT_FOUND", http_status=404) from None


def list_attendance(*, enrollment=None, patient_id=None, program_id=None, start=None, end=None):
    """
    按 enrollment 查：包含已关联该 enrollment 的行，以及还没 backfill 的同患者同课程的历史行
    按 patient (+ program) 查：直接过滤
    start / end 为闭区间日期
    """
    if enrollment is not None:
        queryset = Attendance.objects.filter(
            Q(enrollment_id=enrollment.id)
            | Q(enrollment__isnull=True, patient_id=enrollment.patient_id, program_id=enrollment.program_id)
        )
    else:
        queryset = Attendance.objects.filter(patient_id=patient_id)
        if program_id is not None:
            queryset = queryset.filter(program_id=program_id)

    if start is not None:
        queryset = queryset.filter(attendance_date__gte=start)
    if end is not None:
        queryset = queryset.filter(attendance_date__lte=end)
    return queryset.order_by('attendance_date', 'id')


def list_dispensations(patient_id, medication_id, start=None, end=None, frequency=None):
    """start / end 为 dispensed_at 的半开区间 [start, end)"""
    queryset = Dispensation.objects.filter(patient_id=patient_id, medication_id=medication_id)
    if frequency is not None:
        queryset = queryset.filter(frequency=frequency)
    if start is not None:
        queryset = queryset.filter(dispensed_at__gte=start)
    if end is not None:
        queryset = queryset.filter(dispensed_at__lt=end)
    return queryset.order_by('dispensed_at', 'id')


def latest_dispensation(patient_id, medication_id):
    return (
        Dispensation.objects
        .filter(patient_id=patient_id, medication_id=medication_id)
        .order_by('-dispensed_at', '-id')
        .first()
    )


def insert_dispensation(**row):
    """受部分唯一索引约束，IntegrityError 由调用方（dedup）翻译"""
    return Dispensation.objects.create(**row)


def upsert_enrollment_counters(enrollment_id, counters):
    """一次 UPDATE 写入物化计数；只接受 COUNTER_FIELDS 里的字段"""
    values = {field: counters[field] for field in COUNTER_FIELDS if field in counters}
    return PatientEnrollment.objects.filter(id=enrollment_id).update(**values)


def update_enrollment(enrollment_id, **fields):
    allowed = {'completed_date', 'status', 'ended_on', 'completion_notes'}
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unsupported enrollment fields: {sorted(unknown)}")
    return PatientEnrollment.objects.filter(id=enrollment_id).update(**fields)


def upsert_medication_adherence(enrollment_id, medication_id, values):
    row, _ = MedicationAdherence.objects.update_or_create(
        enrollment_id=enrollment_id,
        medication_id=medication_id,
        defaults=values,
    )
    return row


def prune_medication_adherence(enrollment_id, keep_medication_ids):
    """药物从课程里移除后，删掉它的旧分类结果"""
    return (
        MedicationAdherence.objects
        .filter(enrollment_id=enrollment_id)
        .exclude(medication_id__in=list(keep_medication_ids))
        .delete()
    )


def find_enrollment(patient_id, program_id, on_date=None):
    """
    找到 (patient, program) 在 on_date 当天有效的 enrollment
    优先 active；都不覆盖该日期时返回最近一次报名
    """
    queryset = PatientEnrollment.objects.filter(patient_id=patient_id, program_id=program_id)
    if on_date is not None:
        covering = queryset.filter(enrollment_date__lte=on_date).filter(
            Q(completed_date__isnull=True) | Q(completed_date__gt=on_date)
        )
        match = covering.order_by('-enrollment_date', '-id').first()
        if match is not None:
            return match
    active = queryset.filter(status=PatientEnrollment.STATUS_ACTIVE).order_by('-enrollment_date', '-id').first()
    if active is not None:
        return active
    return queryset.order_by('-enrollment_date', '-id').first()


def active_enrollment_ids():
    return (
        PatientEnrollment.objects
        .filter(status=PatientEnrollment.STATUS_ACTIVE)
        .order_by('id')
        .values_list('id', flat=True)
    )
