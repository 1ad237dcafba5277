"""
中间件：View 抛出的异常统一转成 JSON 信封
- BaseAppException：交给 exception_handler
- 数据库 OperationalError（锁等待 / 连接超时）：转成 DatabaseUnavailable(503)，写操作可以整体重试
- 其它异常：记日志后交给 Django 默认处理
"""
import logging

from django.db import OperationalError

from .exception_handler import app_exception_handler
from .exceptions import DatabaseUnavailable

logger = logging.getLogger(__name__)


class AppExceptionMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_exception(self, request, exception):
        if isinstance(exception, OperationalError):
            exception = DatabaseUnavailable(detail={"error": str(exception)})

        response = app_exception_handler(request, exception)
        if response is None:
            logger.exception("Unhandled error on %s %s", request.method, request.path, exc_info=exception)
        return response
