"""
发药到期分类
1. 按频率列出有效窗口内应有的周期（截止到 now，窗口已结束则截止到最后一天结束）
2. 每个周期看有没有匹配的发药记录
   - 去重频率：按落库的 bucket_start_at 匹配
   - 其它频率：dispensed_at 落在周期内即算
   同一周期多条时取最早的一条
3. adherence_rate = 100 * 匹配周期数 / 应有周期数，还没有应有周期时为 0
4. 最早一个没匹配的周期就是 next_due_bucket：已经过完 → overdue，还在进行中 → due_today
   都匹配了 → on_time，next_due_bucket 为下一个周期（课程结束后为 None）
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from django.utils import timezone

from .buckets import bucket_start, iter_buckets, local_midnight, next_bucket_start, normalize_frequency
from .dedup import is_deduplicated
from .horizon import ActiveWindow
from .models import DueStatus, RecordStatus
from .repository import latest_dispensation, list_dispensations


@dataclass(frozen=True)
class DueClassification:
    frequency: str
    expected_buckets: int
    matched_buckets: int
    adherence_rate: float
    last_dispensed_bucket: Optional[datetime]
    last_dispensed_at: Optional[datetime]
    next_due_bucket: Optional[datetime]
    status: str

    def as_dict(self):
        return asdict(self)


def adherence_rate(matched: int, expected: int) -> float:
    if expected <= 0:
        return 0.0
    return round(100 * matched / expected, 2)


def _expected_range_end(window: ActiveWindow, now: datetime, tz) -> datetime:
    if window.includes_today:
        return now
    return local_midnight(window.end + timedelta(days=1), tz)


def _matched_start(frequency, deduplicated, row, tz) -> datetime:
    if deduplicated and getattr(row, 'is_deduplicated', True) and normalize_frequency(row.frequency) == frequency:
        return row.bucket_start_at
    return bucket_start(frequency, row.dispensed_at, tz)


def classify_history(frequency, window: ActiveWindow, dispensations, now: datetime, tz=None, closes_at=None) -> DueClassification:
    """
    纯计算版本：dispensations 为该患者该药物的发药记录（有 frequency / bucket_start_at / dispensed_at）
    closes_at：课程结束的时间点，用来判断还有没有“下一个周期”
    """
    frequency = normalize_frequency(frequency)
    deduplicated = is_deduplicated(frequency)

    if window.is_empty:
        # 报名日在未来：第一个周期就是下一次到期；被提前结束的窗口没有下一次
        next_due = None
        if window.start > window.today:
            next_due = bucket_start(frequency, local_midnight(window.start, tz), tz)
        return DueClassification(
            frequency=frequency.value,
            expected_buckets=0,
            matched_buckets=0,
            adherence_rate=0.0,
            last_dispensed_bucket=None,
            last_dispensed_at=None,
            next_due_bucket=next_due,
            status=DueStatus.ON_TIME.value,
        )

    range_end = _expected_range_end(window, now, tz)
    buckets = list(iter_buckets(frequency, local_midnight(window.start, tz), range_end, tz))

    # 周期起点 -> 该周期内最早的发药时间
    earliest = {}
    for row in sorted(dispensations, key=lambda r: r.dispensed_at):
        start = _matched_start(frequency, deduplicated, row, tz)
        if start not in earliest:
            earliest[start] = row.dispensed_at

    matched = [b for b in buckets if b.start in earliest]
    unmatched = [b for b in buckets if b.start not in earliest]

    last_bucket = matched[-1].start if matched else None
    last_at = max((earliest[b.start] for b in matched), default=None)

    if unmatched:
        first_gap = unmatched[0]
        # 窗口已经关闭：没补上的周期不会再有机会，即使日历上这个周期还没过完
        closed = not window.includes_today
        status = DueStatus.OVERDUE if closed or first_gap.end <= now else DueStatus.DUE_TODAY
        next_due = first_gap.start
    else:
        status = DueStatus.ON_TIME
        next_due = None
        if window.includes_today:
            if buckets:
                next_due = next_bucket_start(frequency, buckets[-1].start, tz)
            else:
                next_due = bucket_start(frequency, local_midnight(window.start, tz), tz)
            if closes_at is not None and next_due >= closes_at:
                next_due = None

    return DueClassification(
        frequency=frequency.value,
        expected_buckets=len(buckets),
        matched_buckets=len(matched),
        adherence_rate=adherence_rate(len(matched), len(buckets)),
        last_dispensed_bucket=last_bucket,
        last_dispensed_at=last_at,
        next_due_bucket=next_due,
        status=status.value,
    )


def classify(patient_id, medication_id, frequency, window: ActiveWindow, now=None, tz=None, closes_at=None) -> DueClassification:
    frequency = normalize_frequency(frequency)
    now = now or timezone.now()
    if window.is_empty:
        rows = []
    else:
        start = bucket_start(frequency, local_midnight(window.start, tz), tz)
        end = _expected_range_end(window, now, tz)
        rows = list(list_dispensations(patient_id, medication_id, start=start, end=end))
    return classify_history(frequency, window, rows, now, tz=tz, closes_at=closes_at)


def effective_frequency(patient_id, medication):
    """患者最近一次发药记录上的频率（单独调整过的以它为准），没有记录就用药物默认频率"""
    latest = latest_dispensation(patient_id, medication.id)
    if latest is not None:
        return normalize_frequency(latest.frequency)
    return normalize_frequency(medication.frequency)


def classify_enrollment(enrollment, window: ActiveWindow, now=None, tz=None) -> List[tuple]:
    """对课程内每个在用药物做分类，返回 [(medication, DueClassification), ...]"""
    now = now or timezone.now()
    closes_at = None
    if enrollment.completed_date is not None:
        closes_at = local_midnight(enrollment.completed_date, tz)
    if enrollment.ended_on is not None:
        ended_at = local_midnight(enrollment.ended_on + timedelta(days=1), tz)
        closes_at = min(closes_at, ended_at) if closes_at else ended_at

    results = []
    medications = enrollment.program.medications.filter(status=RecordStatus.ACTIVE).order_by('id')
    for medication in medications:
        frequency = effective_frequency(enrollment.patient_id, medication)
        result = classify(
            enrollment.patient_id,
            medication.id,
            frequency,
            window,
            now=now,
            tz=tz,
            closes_at=closes_at,
        )
        results.append((medication, result))
    return results


def pooled_adherence(classifications) -> float:
    """enrollment 级别：所有药物的匹配周期之和 / 应有周期之和"""
    matched = sum(c.matched_buckets for c in classifications)
    expected = sum(c.expected_buckets for c in classifications)
    return adherence_rate(matched, expected)
