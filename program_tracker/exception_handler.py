"""
统一异常处理：将 BaseAppException 转为统一 JSON 格式
"""
import logging

from django.http import JsonResponse

from .exceptions import BaseAppException

logger = logging.getLogger(__name__)


def app_exception_handler(request, exception):
    """
    处理 BaseAppException 及其子类，转为统一 JSON
    其它异常返回 None，交给 Django 默认处理
    """
    if not isinstance(exception, BaseAppException):
        return None

    _record_exception_metric(exception)
    if exception.http_status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.path, exception.message)
    return JsonResponse(
        exception.to_dict(),
        status=exception.http_status,
        json_dumps_params={"ensure_ascii": False},
    )


def _record_exception_metric(exception):
    """记录异常指标（延迟导入，避免循环导入）"""
    from progress.metrics import BLOCK_ERROR, VALIDATION_ERROR
    from .exceptions import BlockError, ValidationError

    if isinstance(exception, ValidationError):
        VALIDATION_ERROR.inc()
    elif isinstance(exception, BlockError):
        BLOCK_ERROR.labels(code=exception.code).inc()
