"""
发药重复检测
- 去重频率（默认 Daily / Monthly）：同一患者 + 同一药物 + 同一频率 + 同一周期 → 只保留一条
  应用层先查一次（仅提示用），最终以数据库部分唯一索引为准；唯一约束冲突翻译成 duplicate 结果
- 其它频率（Weekly / Twice Daily）：不去重，一律接受
"""
import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import IntegrityError, transaction

from .buckets import normalize_frequency
from .metrics import DISPENSATION_DUPLICATE, DISPENSATION_RECORDED
from .models import Dispensation
from .repository import insert_dispensation

logger = logging.getLogger(__name__)

ACCEPTED = 'accepted'
DUPLICATE = 'duplicate'


@dataclass
class BucketReservation:
    status: str
    dispensation: Dispensation

    @property
    def accepted(self):
        return self.status == ACCEPTED

    @property
    def duplicate(self):
        return self.status == DUPLICATE


def deduplicated_frequencies():
    return {normalize_frequency(f) for f in settings.PROGRESS_DEDUP_FREQUENCIES}


def is_deduplicated(frequency):
    return normalize_frequency(frequency) in deduplicated_frequencies()


def _existing_in_bucket(patient_id, medication_id, frequency, bucket_start):
    return (
        Dispensation.objects
        .filter(
            patient_id=patient_id,
            medication_id=medication_id,
            frequency=frequency,
            bucket_start_at=bucket_start,
            is_deduplicated=True,
        )
        .order_by('dispensed_at', 'id')
        .first()
    )


def reserve_bucket(
    patient_id,
    medication_id,
    frequency,
    bucket_start,
    *,
    program_id,
    dispensed_at,
    notes='',
    dispensed_by='',
):
    """
    尝试占用 (patient, medication, frequency, bucket_start) 这个周期
    返回 BucketReservation：accepted（新行）或 duplicate（已存在的那一行）
    落库的 bucket_start_at 总是计算出来的周期起点，与 dispensed_at 无关
    """
    frequency = normalize_frequency(frequency)
    deduplicated = is_deduplicated(frequency)

    if deduplicated:
        existing = _existing_in_bucket(patient_id, medication_id, frequency, bucket_start)
        if existing is not None:
            return _duplicate(existing, frequency)

    try:
        with transaction.atomic():
            row = insert_dispensation(
                patient_id=patient_id,
                medication_id=medication_id,
                program_id=program_id,
                frequency=frequency,
                bucket_start_at=bucket_start,
                dispensed_at=dispensed_at,
                is_deduplicated=deduplicated,
                notes=notes or '',
                dispensed_by=dispensed_by or '',
            )
    except IntegrityError:
        if not deduplicated:
            raise
        existing = _existing_in_bucket(patient_id, medication_id, frequency, bucket_start)
        if existing is None:
            # 不是周期唯一约束（比如外键不存在），按原样抛出
            raise
        return _duplicate(existing, frequency)

    DISPENSATION_RECORDED.labels(frequency=frequency.value).inc()
    return BucketReservation(status=ACCEPTED, dispensation=row)


def _duplicate(existing, frequency):
    DISPENSATION_DUPLICATE.labels(frequency=frequency.value).inc()
    logger.info(
        "Duplicate dispensation for patient=%s medication=%s frequency=%s bucket=%s (existing id=%s)",
        existing.patient_id,
        existing.medication_id,
        frequency.value,
        existing.bucket_start_at.isoformat(),
        existing.id,
    )
    return BucketReservation(status=DUPLICATE, dispensation=existing)
