"""
数据校验和格式转换（前端 ↔ 后端）
校验失败统一抛 ValidationError，detail.errors 里列出所有字段错误
"""
import json
from datetime import date, datetime, timezone as dt_timezone

from program_tracker.exceptions import UnsupportedFrequency, ValidationError

from .buckets import normalize_frequency
from .models import AttendanceStatus

ATTENDANCE_STATUSES = [s.value for s in AttendanceStatus]


def _parse_date(value):
    """YYYY-MM-DD -> date；格式不对返回 None"""
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def _parse_datetime(value):
    """ISO 8601 -> aware datetime；不带时区的按 UTC"""
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


def _validate_id(data, field, errors, required=True, label=None):
    label = label or field
    value = data.get(field)
    if value is None:
        if required:
            errors.append({"field": label, "message": "该字段为必填"})
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        errors.append({"field": label, "message": f"{field} 必须是正整数"})
        return None
    return value


def _validate_optional_string(data, field, errors, max_length=None):
    value = data.get(field)
    if value is None:
        return ''
    if not isinstance(value, str):
        errors.append({"field": field, "message": f"{field} 必须是字符串"})
        return ''
    if max_length and len(value) > max_length:
        errors.append({"field": field, "message": f"{field} 不能超过 {max_length} 个字符"})
    return value


def _require_object(data):
    if not isinstance(data, dict):
        raise ValidationError(
            message="请求体必须是 JSON 对象",
            code="INVALID_REQUEST",
            detail={"errors": [{"field": "_", "message": "请求体必须是 JSON 对象"}]},
        )


def _raise_if_errors(errors):
    if errors:
        raise ValidationError(
            message="数据格式校验失败",
            code="VALIDATION_ERROR",
            detail={"errors": errors},
        )


def parse_json_body(body):
    """解析 POST / PATCH body (JSON) -> dict；JSON 格式错误时抛出 ValidationError"""
    try:
        data = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(
            message="Invalid JSON format",
            code="INVALID_JSON",
            detail={"error": str(e)},
        )
    _require_object(data)
    return data


def validate_enrollment_data(data):
    """
    {patient_id, program_id, enrollment_date?}
    enrollment_date 缺省为今天（由 service 决定）
    """
    _require_object(data)
    errors = []
    cleaned = {
        "patient_id": _validate_id(data, "patient_id", errors),
        "program_id": _validate_id(data, "program_id", errors),
        "enrollment_date": None,
    }
    if data.get("enrollment_date") is not None:
        cleaned["enrollment_date"] = _parse_date(data["enrollment_date"])
        if cleaned["enrollment_date"] is None:
            errors.append({"field": "enrollment_date", "message": "报名日期格式应为 YYYY-MM-DD"})
    _raise_if_errors(errors)
    return cleaned


def validate_dispensation_data(data):
    """{patient_id, medication_id, program_id, dispensed_at, frequency?, notes?, dispensed_by?}"""
    _require_object(data)
    errors = []
    cleaned = {
        "patient_id": _validate_id(data, "patient_id", errors),
        "medication_id": _validate_id(data, "medication_id", errors),
        "program_id": _validate_id(data, "program_id", errors),
        "dispensed_at": None,
        "frequency": None,
        "notes": _validate_optional_string(data, "notes", errors),
        "dispensed_by": _validate_optional_string(data, "dispensed_by", errors, max_length=100),
    }

    if data.get("dispensed_at") is None:
        errors.append({"field": "dispensed_at", "message": "该字段为必填"})
    else:
        cleaned["dispensed_at"] = _parse_datetime(data["dispensed_at"])
        if cleaned["dispensed_at"] is None:
            errors.append({"field": "dispensed_at", "message": "发药时间应为 ISO 8601 格式"})

    if data.get("frequency") not in (None, ""):
        try:
            cleaned["frequency"] = normalize_frequency(data["frequency"])
        except UnsupportedFrequency as exc:
            errors.append({"field": "frequency", "message": exc.message})

    _raise_if_errors(errors)
    return cleaned


def _validate_attendance_record(record, index, errors):
    prefix = f"records[{index}]"
    if not isinstance(record, dict):
        errors.append({"field": prefix, "message": "出勤记录必须是 JSON 对象"})
        return None

    cleaned = {
        "patient_id": _validate_id(record, "patient_id", errors, label=f"{prefix}.patient_id"),
        "status": record.get("status"),
        "check_in_time": None,
        "notes": _validate_optional_string(record, "notes", errors),
    }
    if cleaned["status"] not in ATTENDANCE_STATUSES:
        errors.append({"field": f"{prefix}.status", "message": f"出勤状态必须是 {', '.join(ATTENDANCE_STATUSES)} 之一"})
    if record.get("check_in_time") is not None:
        cleaned["check_in_time"] = _parse_datetime(record["check_in_time"])
        if cleaned["check_in_time"] is None:
            errors.append({"field": f"{prefix}.check_in_time", "message": "签到时间应为 ISO 8601 格式"})
    return cleaned


def validate_attendance_data(data):
    """{program_id, attendance_date, marked_by?, records: [{patient_id, status, check_in_time?, notes?}]}"""
    _require_object(data)
    errors = []
    cleaned = {
        "program_id": _validate_id(data, "program_id", errors),
        "attendance_date": _parse_date(data.get("attendance_date")),
        "marked_by": _validate_optional_string(data, "marked_by", errors, max_length=100),
        "records": [],
    }
    if cleaned["attendance_date"] is None:
        errors.append({"field": "attendance_date", "message": "出勤日期格式应为 YYYY-MM-DD"})

    records = data.get("records")
    if not isinstance(records, list) or not records:
        errors.append({"field": "records", "message": "records 必须是非空数组"})
    else:
        for index, record in enumerate(records):
            cleaned["records"].append(_validate_attendance_record(record, index, errors))

    _raise_if_errors(errors)
    return cleaned


def validate_attendance_update(data):
    """PATCH：status / check_in_time / notes / marked_by 都可选，但至少给一个"""
    _require_object(data)
    errors = []
    cleaned = {}

    if "status" in data:
        if data["status"] not in ATTENDANCE_STATUSES:
            errors.append({"field": "status", "message": f"出勤状态必须是 {', '.join(ATTENDANCE_STATUSES)} 之一"})
        cleaned["status"] = data["status"]
    if "check_in_time" in data:
        cleaned["check_in_time"] = _parse_datetime(data["check_in_time"])
        if cleaned["check_in_time"] is None:
            errors.append({"field": "check_in_time", "message": "签到时间应为 ISO 8601 格式"})
    if "notes" in data:
        cleaned["notes"] = _validate_optional_string(data, "notes", errors)
    if "marked_by" in data:
        cleaned["marked_by"] = _validate_optional_string(data, "marked_by", errors, max_length=100)

    if not cleaned and not errors:
        errors.append({"field": "_", "message": "没有可更新的字段"})
    _raise_if_errors(errors)
    return cleaned


def validate_completion_data(data):
    """{completed_on?, notes?}"""
    _require_object(data)
    errors = []
    cleaned = {
        "completed_on": None,
        "notes": _validate_optional_string(data, "notes", errors),
    }
    if data.get("completed_on") is not None:
        cleaned["completed_on"] = _parse_date(data["completed_on"])
        if cleaned["completed_on"] is None:
            errors.append({"field": "completed_on", "message": "日期格式应为 YYYY-MM-DD"})
    _raise_if_errors(errors)
    return cleaned


def serialize_date(value):
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)
