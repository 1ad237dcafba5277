from django.contrib import admin
from django.urls import path

from progress import views, views_metrics

# 格式为：
"""
- urlpatterns = [path(), path()...] -> 这里放所有path
- path的格式：path(路径， 对应的views里的方法， name)
"""
urlpatterns = [
    path('admin/', admin.site.urls),
    path('metrics', views_metrics.metrics, name='metrics'),
    path('api/enrollments/', views.create_enrollment, name='create_enrollment'),
    path('api/enrollments/<int:enrollment_id>/progress/', views.enrollment_progress, name='enrollment_progress'),
    path('api/enrollments/<int:enrollment_id>/complete/', views.complete_enrollment, name='complete_enrollment'),
    path('api/enrollments/<int:enrollment_id>/cancel/', views.cancel_enrollment, name='cancel_enrollment'),
    path(
        'api/enrollments/<int:enrollment_id>/recompute-horizon/',
        views.recompute_horizon,
        name='recompute_horizon',
    ),
    path('api/dispensations/', views.create_dispensation, name='create_dispensation'),
    path('api/attendance/', views.mark_attendance, name='mark_attendance'),
    path('api/attendance/<int:attendance_id>/', views.attendance_detail, name='attendance_detail'),
    path(
        'api/dashboard/upcoming-dispensations/',
        views.upcoming_dispensations,
        name='upcoming_dispensations',
    ),
    path(
        'api/dashboard/program-duration-summary/',
        views.program_duration_summary,
        name='program_duration_summary',
    ),
    path('api/dashboard/missed-sessions/', views.missed_sessions, name='missed_sessions'),
]
