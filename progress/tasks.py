"""
Celery 异步任务：进度重算 + 定时全量 sweep
- 暂时性错误（RecomputeTimeout / 软超时）指数退避重试：2^retries 秒
- 配置 / 数据错误（频率不认识、窗口不一致）重试也没用，记日志后放弃
"""
import logging

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings

from program_tracker.exceptions import (
    BlockError,
    InconsistentEnrollmentWindow,
    RecomputeTimeout,
    UnsupportedFrequency,
)

from . import statsd_metrics
from .scheduler import requeue, run_recompute, sweep

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=settings.PROGRESS_RECOMPUTE_MAX_RETRIES,
    soft_time_limit=settings.PROGRESS_RECOMPUTE_TIMEOUT_SECONDS,
)
def recompute_enrollment_task(self, enrollment_id):
    """
    重算一个 enrollment 的进度
    失败时指数退避重试：2^retries 秒（1次:1s, 2次:2s, 3次:4s）
    """
    try:
        return run_recompute(enrollment_id)
    except (InconsistentEnrollmentWindow, UnsupportedFrequency) as exc:
        logger.warning("Skipping recompute for enrollment %s: %s %s", enrollment_id, exc.code, exc.detail)
        return False
    except BlockError as exc:
        # enrollment 已被删除
        logger.info("Recompute for enrollment %s dropped: %s", enrollment_id, exc.message)
        return False
    except (RecomputeTimeout, SoftTimeLimitExceeded) as exc:
        if self.request.retries >= self.max_retries:
            logger.error("Recompute for enrollment %s gave up after %d retries", enrollment_id, self.request.retries)
            raise
        if not requeue(enrollment_id):
            # 失败后已有新触发投递了任务
            logger.info("Recompute for enrollment %s already requeued by a newer trigger", enrollment_id)
            return False
        statsd_metrics.recompute_retry()
        raise self.retry(exc=exc, countdown=2 ** self.request.retries)


@shared_task
def sweep_active_enrollments_task():
    """Celery beat 定时触发"""
    return sweep(enqueue=True)
