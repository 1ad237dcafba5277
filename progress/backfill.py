"""
历史出勤关联到 enrollment（enrollment 外键加上之前的数据）
按 (patient, program, attendance_date 落在 [enrollment_date, completed_date)) 匹配
- 0 个候选：unmatched，保持为空
- 多个候选（同一课程重复报名且时间重叠）：ambiguous，记日志，不自动挑一个
可以反复运行，已关联的行不会再动
"""
import logging

from django.db import transaction
from django.db.models import Q

from .models import Attendance, PatientEnrollment
from .scheduler import request_recompute

logger = logging.getLogger(__name__)


def _candidates(row):
    return list(
        PatientEnrollment.objects
        .filter(
            patient_id=row.patient_id,
            program_id=row.program_id,
            enrollment_date__lte=row.attendance_date,
        )
        .filter(Q(completed_date__isnull=True) | Q(completed_date__gt=row.attendance_date))
        .order_by('enrollment_date', 'id')
        .values_list('id', flat=True)
    )


def backfill_attendance_enrollments(batch_size=500):
    summary = {"linked": 0, "unmatched": 0, "ambiguous": 0}
    touched = set()

    pending = Attendance.objects.filter(enrollment__isnull=True).order_by('id')
    for row in pending.iterator(chunk_size=batch_size):
        candidates = _candidates(row)
        if not candidates:
            summary["unmatched"] += 1
            continue
        if len(candidates) > 1:
            summary["ambiguous"] += 1
            logger.warning(
                "Ambiguous enrollment match for attendance %s (patient=%s program=%s date=%s): candidates=%s",
                row.id,
                row.patient_id,
                row.program_id,
                row.attendance_date.isoformat(),
                candidates,
            )
            continue

        # 条件更新：并发跑两次也只会关联一次
        linked = Attendance.objects.filter(id=row.id, enrollment__isnull=True).update(enrollment_id=candidates[0])
        if linked:
            summary["linked"] += 1
            touched.add(candidates[0])

    with transaction.atomic():
        for enrollment_id in sorted(touched):
            request_recompute(enrollment_id)

    logger.info(
        "Attendance backfill: linked=%d unmatched=%d ambiguous=%d",
        summary["linked"],
        summary["unmatched"],
        summary["ambiguous"],
    )
    return summary
