"""
Prometheus /metrics 端点
抓取时顺便刷新逾期发药数（从物化表读，一次 COUNT）
"""
from django.http import HttpResponse
from django.views.decorators.cache import never_cache
from django.views.decorators.http import require_GET
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .dashboard import overdue_count
from .metrics import OVERDUE_DISPENSATIONS


@require_GET
@never_cache
def metrics(request):
    OVERDUE_DISPENSATIONS.set(overdue_count())
    return HttpResponse(generate_latest(REGISTRY), content_type=CONTENT_TYPE_LATEST)
