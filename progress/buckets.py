"""
分桶：把 (frequency, 时间点) 映射到规范的周期起点
- Daily: 报表时区的自然日 00:00
- Twice Daily: 00:00 / 12:00 两个时段
- Weekly: ISO 周一 00:00
- Monthly: 每月 1 日 00:00
不认识的频率抛 UnsupportedFrequency（配置错误，调用方不应重试）
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from zoneinfo import ZoneInfo

from django.conf import settings

from program_tracker.exceptions import UnsupportedFrequency

from .models import Frequency

# 'daily' / 'twice_daily' / 'weekly' / 'monthly' -> Frequency
_FREQUENCY_ALIASES = {
    member.value.lower().replace(' ', '_'): member
    for member in Frequency
}


@dataclass(frozen=True)
class Bucket:
    """一个周期：[start, end)"""
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


def normalize_frequency(value) -> Frequency:
    """接受 'Daily' / 'twice daily' / 'TWICE_DAILY' 等写法，返回 Frequency"""
    if isinstance(value, Frequency):
        return value
    key = str(value or '').strip().lower().replace('-', '_').replace(' ', '_')
    try:
        return _FREQUENCY_ALIASES[key]
    except KeyError:
        raise UnsupportedFrequency(
            message=f"Unsupported frequency: {value!r}",
            detail={"frequency": value, "supported": [f.value for f in Frequency]},
        ) from None


def reporting_timezone() -> ZoneInfo:
    return ZoneInfo(settings.PROGRESS_REPORTING_TIMEZONE)


def local_midnight(day: date, tz=None) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz or reporting_timezone())


def local_today(tz=None) -> date:
    """报表时区下的“今天”"""
    return datetime.now(tz or reporting_timezone()).date()


def _to_local(instant, tz) -> datetime:
    if isinstance(instant, datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=dt_timezone.utc)
        return instant.astimezone(tz)
    # 只有日期：按该日期的本地 00:00
    return local_midnight(instant, tz)


def bucket_start(frequency, instant, tz=None) -> datetime:
    frequency = normalize_frequency(frequency)
    tz = tz or reporting_timezone()
    local = _to_local(instant, tz)
    day = local.date()

    if frequency == Frequency.DAILY:
        return local_midnight(day, tz)
    if frequency == Frequency.TWICE_DAILY:
        hour = 12 if local.hour >= 12 else 0
        return datetime.combine(day, time(hour), tzinfo=tz)
    if frequency == Frequency.WEEKLY:
        return local_midnight(day - timedelta(days=day.weekday()), tz)
    return local_midnight(day.replace(day=1), tz)


def next_bucket_start(frequency, start, tz=None) -> datetime:
    """start 所在周期的下一个周期起点（按日历计算，跨夏令时也对齐到 00:00）"""
    frequency = normalize_frequency(frequency)
    tz = tz or reporting_timezone()
    current = bucket_start(frequency, start, tz)
    day = current.date()

    if frequency == Frequency.DAILY:
        return local_midnight(day + timedelta(days=1), tz)
    if frequency == Frequency.TWICE_DAILY:
        if current.hour < 12:
            return datetime.combine(day, time(12), tzinfo=tz)
        return local_midnight(day + timedelta(days=1), tz)
    if frequency == Frequency.WEEKLY:
        return local_midnight(day + timedelta(days=7), tz)
    if day.month == 12:
        return local_midnight(date(day.year + 1, 1, 1), tz)
    return local_midnight(date(day.year, day.month + 1, 1), tz)


def bucket_for(frequency, instant, tz=None) -> Bucket:
    start = bucket_start(frequency, instant, tz)
    return Bucket(start=start, end=next_bucket_start(frequency, start, tz))


def iter_buckets(frequency, start, end, tz=None):
    """
    依次产出起点落在 [bucket_start(start), end) 内的所有周期
    第一个周期可能早于 start（例如 Weekly 从周一开始）
    """
    frequency = normalize_frequency(frequency)
    tz = tz or reporting_timezone()
    current = bucket_start(frequency, start, tz)
    end = _to_local(end, tz)
    while current < end:
        following = next_bucket_start(frequency, current, tz)
        yield Bucket(start=current, end=following)
        current = following
