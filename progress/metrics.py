"""
Prometheus 指标定义（Web 进程，/metrics 暴露）
"""
from prometheus_client import Counter, Gauge, Histogram

# 业务指标
DISPENSATION_RECORDED = Counter(
    "dispensation_recorded_total",
    "成功记录的发药次数",
    ["frequency"],
)
DISPENSATION_DUPLICATE = Counter(
    "dispensation_duplicate_total",
    "同一周期重复发药被拦下的次数",
    ["frequency"],
)
ATTENDANCE_MARKED = Counter(
    "attendance_marked_total",
    "记录的出勤行数",
    ["status"],
)
ENROLLMENT_CREATED = Counter(
    "enrollment_created_total",
    "新建报名数",
)
RECOMPUTE_REQUESTED = Counter(
    "progress_recompute_requested_total",
    "投递的进度重算请求数（合并后的）",
)
OVERDUE_DISPENSATIONS = Gauge(
    "dispensation_overdue",
    "当前逾期的 (enrollment, 药物) 数，/metrics 抓取时刷新",
)

# 性能指标（Histogram 自动提供 _count, _sum, _bucket）
API_DISPENSATION_DURATION = Histogram(
    "api_dispensation_duration_seconds",
    "POST /api/dispensations/ 响应时间",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)
API_ATTENDANCE_DURATION = Histogram(
    "api_attendance_duration_seconds",
    "POST /api/attendance/ 响应时间",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)
API_DASHBOARD_DURATION = Histogram(
    "api_dashboard_duration_seconds",
    "GET /api/dashboard/* 响应时间",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0),
)

# 错误指标
HTTP_5XX = Counter("http_5xx_total", "5xx 错误数")
HTTP_4XX = Counter("http_4xx_total", "4xx 错误数", ["code"])
VALIDATION_ERROR = Counter("validation_error_total", "数据格式校验失败次数")
BLOCK_ERROR = Counter("block_error_total", "Block 错误次数", ["code"])
