"""
报名周期计算
- completed_date = enrollment_date + duration_in_days（自然日，不算工作日）
  例：2024-01-01 报名、90 天课程 → completed_date = 2024-03-31，当天起 enrollment 即为 completed
- 有效窗口 active window = [enrollment_date, min(today, completed_date 前一天, ended_on)]，闭区间
- completed_date 创建时算一次；课程时长之后再改不会自动传播，只能显式 recompute_horizon
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from django.db import transaction

from program_tracker.exceptions import InconsistentEnrollmentWindow

from .models import PatientEnrollment
from .repository import get_enrollment, update_enrollment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveWindow:
    start: date
    end: date
    today: date

    @property
    def is_empty(self) -> bool:
        return self.end < self.start

    @property
    def days(self) -> int:
        if self.is_empty:
            return 0
        return (self.end - self.start).days + 1

    @property
    def includes_today(self) -> bool:
        return not self.is_empty and self.end == self.today

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def horizon(enrollment_date: date, duration_in_days) -> date:
    if duration_in_days is None or duration_in_days <= 0:
        raise InconsistentEnrollmentWindow(
            message="Program duration must be a positive number of days",
            detail={"duration_in_days": duration_in_days},
        )
    return enrollment_date + timedelta(days=duration_in_days)


def active_window(
    enrollment_date: date,
    completed_date: Optional[date],
    today: date,
    ended_on: Optional[date] = None,
) -> ActiveWindow:
    if completed_date is None:
        raise InconsistentEnrollmentWindow(
            message="Enrollment has no completed date",
            detail={"enrollment_date": enrollment_date.isoformat()},
        )
    if enrollment_date > completed_date:
        raise InconsistentEnrollmentWindow(
            message="Enrollment date is after completed date",
            detail={
                "enrollment_date": enrollment_date.isoformat(),
                "completed_date": completed_date.isoformat(),
            },
        )

    end = min(today, completed_date - timedelta(days=1))
    if ended_on is not None:
        end = min(end, ended_on)
    return ActiveWindow(start=enrollment_date, end=end, today=today)


def enrollment_window(enrollment: PatientEnrollment, today: date) -> ActiveWindow:
    completed_date = ensure_completed_date(enrollment)
    return active_window(enrollment.enrollment_date, completed_date, today, enrollment.ended_on)


def ensure_completed_date(enrollment: PatientEnrollment) -> date:
    """completed_date 为空时按课程当前时长补一次；已有值绝不覆盖"""
    if enrollment.completed_date is not None:
        return enrollment.completed_date

    completed_date = horizon(enrollment.enrollment_date, enrollment.program.duration_in_days)
    updated = (
        PatientEnrollment.objects
        .filter(id=enrollment.id, completed_date__isnull=True)
        .update(completed_date=completed_date)
    )
    if not updated:
        # 并发下别人先补上了，以库里的为准
        enrollment.refresh_from_db(fields=['completed_date'])
        return enrollment.completed_date
    enrollment.completed_date = completed_date
    return completed_date


def backfill_completed_dates() -> dict:
    """一次性补齐所有缺 completed_date 的 enrollment；课程时长不合法的记日志跳过"""
    filled = 0
    skipped = 0
    pending = (
        PatientEnrollment.objects
        .filter(completed_date__isnull=True)
        .select_related('program')
        .order_by('id')
    )
    for enrollment in pending.iterator():
        try:
            ensure_completed_date(enrollment)
        except InconsistentEnrollmentWindow as exc:
            skipped += 1
            logger.warning("Skipping completed date backfill for enrollment %s: %s", enrollment.id, exc.message)
            continue
        filled += 1
    logger.info("Completed date backfill: filled=%d skipped=%d", filled, skipped)
    return {"filled": filled, "skipped": skipped}


def recompute_horizon(enrollment_id):
    """
    管理员显式操作：按课程当前的 duration_in_days 重新计算 completed_date，并安排进度重算
    """
    from .scheduler import request_recompute

    with transaction.atomic():
        enrollment = get_enrollment(enrollment_id)
        previous = enrollment.completed_date
        completed_date = horizon(enrollment.enrollment_date, enrollment.program.duration_in_days)
        update_enrollment(enrollment.id, completed_date=completed_date)
        enrollment.completed_date = completed_date
        request_recompute(enrollment.id)

    logger.info(
        "Recomputed horizon for enrollment %s: %s -> %s",
        enrollment.id,
        previous.isoformat() if previous else None,
        completed_date.isoformat(),
    )
    return enrollment
