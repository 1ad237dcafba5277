"""
View 层：只做请求解析 + 调 service，错误由 AppExceptionMiddleware 统一转成 JSON
"""
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from program_tracker.exceptions import BlockError, ValidationError

from . import dashboard, services
from .serializers import (
    parse_json_body,
    validate_attendance_data,
    validate_attendance_update,
    validate_completion_data,
    validate_dispensation_data,
    validate_enrollment_data,
)


def _require_method(request, *methods):
    if request.method not in methods:
        raise BlockError(
            message="Method not allowed",
            code="METHOD_NOT_ALLOWED",
            detail={"allowed": list(methods)},
            http_status=405,
        )


def _json(data, status=200):
    return JsonResponse(data, status=status, json_dumps_params={"ensure_ascii": False})


@csrf_exempt
def create_enrollment(request):
    """POST /api/enrollments/"""
    _require_method(request, "POST")
    data = validate_enrollment_data(parse_json_body(request.body))
    return _json(services.enroll_patient(data), status=201)


def enrollment_progress(request, enrollment_id):
    """GET /api/enrollments/<id>/progress/"""
    _require_method(request, "GET")
    return _json(dashboard.enrollment_progress(enrollment_id))


@csrf_exempt
def complete_enrollment(request, enrollment_id):
    """POST /api/enrollments/<id>/complete/"""
    _require_method(request, "POST")
    data = validate_completion_data(parse_json_body(request.body))
    return _json(services.complete_enrollment(enrollment_id, data))


@csrf_exempt
def cancel_enrollment(request, enrollment_id):
    """POST /api/enrollments/<id>/cancel/"""
    _require_method(request, "POST")
    data = validate_completion_data(parse_json_body(request.body))
    return _json(services.cancel_enrollment(enrollment_id, data))


@csrf_exempt
def recompute_horizon(request, enrollment_id):
    """POST /api/enrollments/<id>/recompute-horizon/（管理员）"""
    _require_method(request, "POST")
    return _json(services.recompute_enrollment_horizon(enrollment_id))


@csrf_exempt
def create_dispensation(request):
    """
    POST /api/dispensations/
    同一周期重复发药返回 200 + type=warning（DuplicateDispensation），不是错误
    """
    _require_method(request, "POST")
    data = validate_dispensation_data(parse_json_body(request.body))
    return _json(services.record_dispensation(data), status=201)


@csrf_exempt
def mark_attendance(request):
    """POST /api/attendance/"""
    _require_method(request, "POST")
    data = validate_attendance_data(parse_json_body(request.body))
    return _json(services.mark_attendance(data), status=201)


@csrf_exempt
def attendance_detail(request, attendance_id):
    """PATCH / DELETE /api/attendance/<id>/"""
    _require_method(request, "PATCH", "DELETE")
    if request.method == "DELETE":
        return _json(services.delete_attendance(attendance_id))
    data = validate_attendance_update(parse_json_body(request.body))
    return _json(services.update_attendance(attendance_id, data))


def upcoming_dispensations(request):
    """GET /api/dashboard/upcoming-dispensations/"""
    _require_method(request, "GET")
    return _json(dashboard.upcoming_dispensations())


def program_duration_summary(request):
    """GET /api/dashboard/program-duration-summary/"""
    _require_method(request, "GET")
    return _json(dashboard.program_duration_summary())


def missed_sessions(request):
    """GET /api/dashboard/missed-sessions/?program_id=xxx"""
    _require_method(request, "GET")
    program_id = (request.GET.get("program_id") or "").strip()
    if program_id and not program_id.isdigit():
        raise ValidationError(
            message="数据格式校验失败",
            code="VALIDATION_ERROR",
            detail={"errors": [{"field": "program_id", "message": "program_id 必须是正整数"}]},
        )
    return _json(dashboard.patients_with_missed_sessions(int(program_id) if program_id else None))
