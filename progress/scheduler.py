"""
进度重算调度
每个 enrollment 一行 EnrollmentRecomputeState：stale -> recomputing -> fresh / failed
- stale = 已有任务在队列里；failed = 上次重算失败且没有任务排队，下一次触发会重新投递
- request_recompute：事务提交后才投递任务，worker 一定能读到刚写的数据
- 多个触发合并：只有“变成 stale”的那次投递；重算进行中再来的触发只打 pending，跑完再算一轮
- claim：条件 UPDATE 抢占，同一 enrollment 同时只有一个重算；租约过期可被接手
- 失败：记下错误进 failed，dashboard 继续显示上一次成功的计数
"""
import logging
import time
from datetime import timedelta

from django.conf import settings
from django.db import DatabaseError, OperationalError, transaction
from django.db.models import F, Q
from django.utils import timezone

from program_tracker.exceptions import BaseAppException, RecomputeTimeout

from . import statsd_metrics
from .attendance_progress import progress_for
from .buckets import reporting_timezone
from .due_classifier import classify_enrollment, pooled_adherence
from .horizon import enrollment_window
from .metrics import RECOMPUTE_REQUESTED
from .models import EnrollmentRecomputeState, PatientEnrollment
from .repository import (
    active_enrollment_ids,
    get_enrollment,
    prune_medication_adherence,
    update_enrollment,
    upsert_enrollment_counters,
    upsert_medication_adherence,
)

logger = logging.getLogger(__name__)

STALE = EnrollmentRecomputeState.STATE_STALE
RECOMPUTING = EnrollmentRecomputeState.STATE_RECOMPUTING
FRESH = EnrollmentRecomputeState.STATE_FRESH
FAILED = EnrollmentRecomputeState.STATE_FAILED


def _lease_until(now):
    return now + timedelta(seconds=settings.PROGRESS_RECOMPUTE_LEASE_SECONDS)


def mark_stale(enrollment_id, now=None) -> bool:
    """
    标记需要重算，返回是否需要投递新任务
    这里的 UPDATE 会持有状态行的行锁直到调用方事务提交，claim / complete 会等提交后再读
    """
    now = now or timezone.now()
    _, created = EnrollmentRecomputeState.objects.get_or_create(
        enrollment_id=enrollment_id,
        defaults={'state': STALE},
    )
    if created:
        return True

    states = EnrollmentRecomputeState.objects.filter(enrollment_id=enrollment_id)

    # 正在重算且租约有效：让它跑完再来一轮
    if states.filter(state=RECOMPUTING, lease_expires_at__gt=now).update(pending=True):
        return False

    # 已经 stale：任务已在队列里，空 UPDATE 只为拿行锁
    if states.filter(state=STALE).update(state=STALE):
        return False

    # fresh / failed / 租约过期的 recomputing
    return bool(states.exclude(state=STALE).update(state=STALE, requested_at=now, pending=False))


def requeue(enrollment_id, now=None) -> bool:
    """
    任务层重试前调用：failed -> stale，重试的那个任务就是排队中的任务
    返回 False 说明失败后已有新触发投递过，不必再重试
    """
    now = now or timezone.now()
    return bool(
        EnrollmentRecomputeState.objects
        .filter(enrollment_id=enrollment_id, state=FAILED)
        .update(state=STALE, requested_at=now)
    )


def requeue_lost(enrollment_id, now=None) -> bool:
    """stale 超过一个租约还没人领：当作任务丢了，重新计时"""
    now = now or timezone.now()
    cutoff = now - timedelta(seconds=settings.PROGRESS_RECOMPUTE_LEASE_SECONDS)
    return bool(
        EnrollmentRecomputeState.objects
        .filter(enrollment_id=enrollment_id, state=STALE, requested_at__lte=cutoff)
        .update(requested_at=now)
    )


def _enqueue(enrollment_id):
    from .tasks import recompute_enrollment_task

    recompute_enrollment_task.delay(enrollment_id)


def request_recompute(enrollment_id) -> bool:
    """所有变更入口调用这个；在事务里调用时，提交后才投递"""
    if not mark_stale(enrollment_id):
        return False
    RECOMPUTE_REQUESTED.inc()
    transaction.on_commit(lambda: _enqueue(enrollment_id))
    return True


def claim(enrollment_id, now=None) -> bool:
    now = now or timezone.now()
    EnrollmentRecomputeState.objects.get_or_create(enrollment_id=enrollment_id, defaults={'state': STALE})
    claimable = (
        Q(state__in=[STALE, FRESH, FAILED])
        | Q(state=RECOMPUTING, lease_expires_at__lte=now)
        | Q(state=RECOMPUTING, lease_expires_at__isnull=True)
    )
    claimed = (
        EnrollmentRecomputeState.objects
        .filter(claimable, enrollment_id=enrollment_id)
        .update(
            state=RECOMPUTING,
            lease_expires_at=_lease_until(now),
            pending=False,
            attempts=F('attempts') + 1,
        )
    )
    return claimed == 1


def complete(enrollment_id, now=None) -> bool:
    """重算成功后调用；返回 True 表示期间又有触发，需要再跑一轮"""
    now = now or timezone.now()
    with transaction.atomic():
        state = EnrollmentRecomputeState.objects.select_for_update().get(enrollment_id=enrollment_id)
        if state.pending:
            state.pending = False
            state.lease_expires_at = _lease_until(now)
            state.save(update_fields=['pending', 'lease_expires_at'])
            return True

        state.state = FRESH
        state.lease_expires_at = None
        state.last_error = ''
        state.last_completed_at = now
        state.save(update_fields=['state', 'lease_expires_at', 'last_error', 'last_completed_at'])
        return False


def release(enrollment_id, error=None, now=None) -> bool:
    """
    重算失败：释放租约，记下错误
    重算期间来过触发（pending）就回到 stale 并重新投递，返回 True；否则进 failed 等下一次触发
    """
    now = now or timezone.now()
    states = EnrollmentRecomputeState.objects.filter(enrollment_id=enrollment_id)
    values = {'lease_expires_at': None, 'pending': False, 'last_error': str(error or '')[:2000]}

    if states.filter(pending=True).update(state=STALE, requested_at=now, **values):
        transaction.on_commit(lambda: _enqueue(enrollment_id))
        return True

    states.update(state=FAILED, **values)
    return False


def recompute_enrollment(enrollment_id, now=None) -> dict:
    """
    一次完整重算，在一个事务里写完：
    出勤计数 + 每个药物的分类结果 + enrollment 的 adherence_rate，到期的 active -> completed
    """
    now = now or timezone.now()
    today = now.astimezone(reporting_timezone()).date()

    with transaction.atomic():
        enrollment = get_enrollment(enrollment_id)
        window = enrollment_window(enrollment, today)
        counters = progress_for(enrollment, window)
        classified = classify_enrollment(enrollment, window, now=now)

        for medication, result in classified:
            upsert_medication_adherence(enrollment.id, medication.id, {**result.as_dict(), 'computed_at': now})
        prune_medication_adherence(enrollment.id, [medication.id for medication, _ in classified])

        values = counters.as_dict()
        values['adherence_rate'] = pooled_adherence([result for _, result in classified])
        upsert_enrollment_counters(enrollment.id, values)

        status = enrollment.status
        if status == PatientEnrollment.STATUS_ACTIVE and today >= enrollment.completed_date:
            status = PatientEnrollment.STATUS_COMPLETED
            update_enrollment(enrollment.id, status=status)
            logger.info("Enrollment %s reached completed date %s", enrollment.id, enrollment.completed_date)

    return {**values, 'status': status}


def run_recompute(enrollment_id, now=None) -> bool:
    """
    claim -> 重算 -> complete（有 pending 就再来一轮）
    没抢到返回 False；数据库超时 / 不可用翻译成 RecomputeTimeout，由任务层重试
    """
    # enrollment 已被删除：抛 NOT_FOUND，不留下悬空的状态行
    get_enrollment(enrollment_id)

    if not claim(enrollment_id):
        statsd_metrics.recompute_skipped()
        logger.debug("Recompute for enrollment %s already claimed elsewhere", enrollment_id)
        return False

    start = time.perf_counter()
    try:
        while True:
            recompute_enrollment(enrollment_id, now=now)
            if not complete(enrollment_id):
                break
    except OperationalError as exc:
        release(enrollment_id, exc)
        statsd_metrics.recompute_failed("timeout")
        raise RecomputeTimeout(detail={"enrollment_id": enrollment_id, "error": str(exc)}) from exc
    except Exception as exc:
        release(enrollment_id, exc)
        statsd_metrics.recompute_failed(getattr(exc, "code", type(exc).__name__).lower())
        raise

    statsd_metrics.recompute_completed()
    statsd_metrics.recompute_duration_seconds(time.perf_counter() - start)
    return True


def sweep(enqueue=True, now=None) -> dict:
    """
    定时全量：兜底漏掉的触发，并让到期的 enrollment 翻成 completed
    enqueue=True 只标记 + 投递，已有任务排队 / 正在重算的不重复投递；
    False 则当场逐个重算，单个失败记日志计数，不影响其它
    中途中断可以直接重跑
    """
    ids = list(active_enrollment_ids())

    if enqueue:
        now = now or timezone.now()
        enqueued = 0
        for enrollment_id in ids:
            if mark_stale(enrollment_id, now=now) or requeue_lost(enrollment_id, now=now):
                RECOMPUTE_REQUESTED.inc()
                _enqueue(enrollment_id)
                enqueued += 1
        statsd_metrics.sweep_enqueued(enqueued)
        logger.info("Progress sweep enqueued %d of %d enrollments", enqueued, len(ids))
        return {"enqueued": enqueued}

    summary = {"recomputed": 0, "skipped": 0, "failed": 0}
    for enrollment_id in ids:
        try:
            if run_recompute(enrollment_id, now=now):
                summary["recomputed"] += 1
            else:
                summary["skipped"] += 1
        except (BaseAppException, DatabaseError) as exc:
            summary["failed"] += 1
            logger.warning("Progress sweep failed for enrollment %s: %s", enrollment_id, exc)
        except Exception:
            summary["failed"] += 1
            logger.exception("Progress sweep crashed on enrollment %s", enrollment_id)
    logger.info(
        "Progress sweep done: recomputed=%d skipped=%d failed=%d",
        summary["recomputed"],
        summary["skipped"],
        summary["failed"],
    )
    return summary
