"""
Worker 进程指标：通过 StatsD UDP 发送，由 statsd_exporter 暴露给 Prometheus
不依赖进程内存，多进程 prefork 下可正确聚合
"""
import statsd
from django.conf import settings

_PREFIX = "progress"

_client = None


def _get_client():
    global _client
    if _client is None:
        _client = statsd.StatsClient(settings.STATSD_HOST, settings.STATSD_PORT, prefix=_PREFIX)
    return _client


def recompute_completed():
    _get_client().incr("recompute_completed")


def recompute_failed(reason: str):
    # 用 metric 名携带 reason，由 statsd_exporter mapping 转为 label
    _get_client().incr(f"recompute_failed.{reason}")


def recompute_retry():
    _get_client().incr("recompute_retry")


def recompute_skipped():
    _get_client().incr("recompute_skipped")


def recompute_duration_seconds(seconds: float):
    _get_client().timing("recompute_duration", int(seconds * 1000))


def sweep_enqueued(count: int):
    _get_client().incr("sweep_enqueued", count)
