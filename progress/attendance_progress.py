"""
出勤进度物化：按有效窗口重算 enrollment 上的四个出勤计数
- sessions_expected = 窗口内按课程频率排期的 session 数 - (Excused + Canceled)，最小为 0
- sessions_completed = Present + Late
- sessions_missed = Absent
- attendance_rate = 100 * completed / expected（保留两位小数，上限 100），expected 为 0 时为 0
幂等：同样的输入重复跑结果相同，每次出勤变更都可以安全调用
"""
import calendar
import logging
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import date
from typing import Iterable, Optional

from .buckets import local_today, normalize_frequency
from .horizon import ActiveWindow, enrollment_window
from .models import AttendanceStatus, Frequency
from .repository import get_enrollment, list_attendance, upsert_enrollment_counters

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = (AttendanceStatus.PRESENT.value, AttendanceStatus.LATE.value)
MISSED_STATUSES = (AttendanceStatus.ABSENT.value,)
EXCLUDED_STATUSES = (AttendanceStatus.EXCUSED.value, AttendanceStatus.CANCELED.value)


@dataclass(frozen=True)
class ProgressCounters:
    sessions_expected: int
    sessions_completed: int
    sessions_missed: int
    attendance_rate: float

    def as_dict(self):
        return asdict(self)


def _add_months(anchor: date, months: int) -> date:
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor.day, last_day))


def count_scheduled_sessions(session_frequency, window: ActiveWindow) -> int:
    """以窗口起点（报名日）为锚点，数窗口内的排期 session"""
    frequency = normalize_frequency(session_frequency)
    if window.is_empty:
        return 0

    days = window.days
    if frequency == Frequency.DAILY:
        return days
    if frequency == Frequency.TWICE_DAILY:
        return days * 2
    if frequency == Frequency.WEEKLY:
        return (days - 1) // 7 + 1

    # Monthly：每月同一天，月底不够就取月末
    count = 0
    occurrence = window.start
    while occurrence <= window.end:
        count += 1
        occurrence = _add_months(window.start, count)
    return count


def attendance_rate(completed: int, expected: int) -> float:
    if expected <= 0:
        return 0.0
    return min(round(100 * completed / expected, 2), 100.0)


def compute_attendance_progress(session_frequency, window: ActiveWindow, statuses: Iterable[str]) -> ProgressCounters:
    """纯计算：statuses 是窗口内出勤行的 status 列表"""
    tally = Counter(statuses)
    scheduled = count_scheduled_sessions(session_frequency, window)
    excluded = sum(tally[s] for s in EXCLUDED_STATUSES)
    completed = sum(tally[s] for s in COMPLETED_STATUSES)
    missed = sum(tally[s] for s in MISSED_STATUSES)
    expected = max(scheduled - excluded, 0)

    return ProgressCounters(
        sessions_expected=expected,
        sessions_completed=completed,
        sessions_missed=missed,
        attendance_rate=attendance_rate(completed, expected),
    )


def progress_for(enrollment, window: ActiveWindow) -> ProgressCounters:
    if window.is_empty:
        statuses = []
    else:
        statuses = list(
            list_attendance(enrollment=enrollment, start=window.start, end=window.end)
            .values_list('status', flat=True)
        )
    return compute_attendance_progress(enrollment.program.session_frequency, window, statuses)


def materialize(enrollment_id, today: Optional[date] = None) -> ProgressCounters:
    enrollment = get_enrollment(enrollment_id)
    today = today or local_today()
    window = enrollment_window(enrollment, today)
    counters = progress_for(enrollment, window)
    upsert_enrollment_counters(enrollment.id, counters.as_dict())
    logger.debug("Materialized attendance for enrollment %s: %s", enrollment.id, counters)
    return counters
