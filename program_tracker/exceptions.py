"""
统一错误处理：BaseAppException 及子类
所有异常格式：type, code, message, detail, http_status
"""


class BaseAppException(Exception):
    """基类：统一错误格式"""
    type = "error"
    code = "UNKNOWN"
    message = "Unknown error"
    http_status = 400

    def __init__(self, message=None, code=None, detail=None, http_status=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.code = code or self.code
        self.detail = detail if detail is not None else {}
        if http_status is not None:
            self.http_status = http_status

    def to_dict(self):
        return {
            "success": False,
            "type": self.type,
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
        }


class ValidationError(BaseAppException):
    """验证错误：输入格式不对，由 serializer 检查"""
    type = "validation"
    code = "VALIDATION_ERROR"
    message = "Validation failed"
    http_status = 400


class BlockError(BaseAppException):
    """业务阻止：业务规则不允许"""
    type = "block"
    code = "BLOCK"
    message = "Operation blocked"
    http_status = 409


class WarningException(BaseAppException):
    """业务警告：可能有问题，允许用户确认后继续"""
    type = "warning"
    code = "WARNING"
    message = "Please confirm to continue"
    http_status = 200


class UnsupportedFrequency(BaseAppException):
    """频率不在识别集合内：配置错误，不重试"""
    type = "configuration"
    code = "UNSUPPORTED_FREQUENCY"
    message = "Unsupported frequency"
    http_status = 400


class DuplicateDispensation(WarningException):
    """同一周期内已发药：不是错误，提示用户即可"""
    code = "DUPLICATE_DISPENSATION"
    message = "Already dispensed for this period"


class RecomputeTimeout(BaseAppException):
    """重算超时 / 数据库不可用：暂时性错误，由调度器退避重试"""
    type = "transient"
    code = "RECOMPUTE_TIMEOUT"
    message = "Progress recompute timed out"
    http_status = 503


class InconsistentEnrollmentWindow(BaseAppException):
    """报名窗口不一致（报名日期晚于完成日期，或课程缺少时长）：记录日志并跳过"""
    type = "block"
    code = "INCONSISTENT_ENROLLMENT_WINDOW"
    message = "Enrollment window is inconsistent"
    http_status = 409


class DatabaseUnavailable(BaseAppException):
    """请求处理中数据库超时 / 锁等待失败：暂时性错误，客户端可稍后重试"""
    type = "transient"
    code = "DATABASE_UNAVAILABLE"
    message = "Database is temporarily unavailable"
    http_status = 503
