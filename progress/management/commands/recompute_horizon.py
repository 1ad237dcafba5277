"""
管理员操作：课程时长改了之后，按新时长重算某个 enrollment 的 completed_date
运行: python manage.py recompute_horizon <enrollment_id>
"""
from django.core.management.base import BaseCommand, CommandError

from program_tracker.exceptions import BaseAppException
from progress.horizon import recompute_horizon


class Command(BaseCommand):
    help = '按课程当前的 duration_in_days 重算 enrollment 的 completed_date，并安排进度重算'

    def add_arguments(self, parser):
        parser.add_argument('enrollment_id', type=int)

    def handle(self, *args, **options):
        try:
            enrollment = recompute_horizon(options['enrollment_id'])
        except BaseAppException as e:
            raise CommandError(e.message) from e
        self.stdout.write(
            self.style.SUCCESS(
                f'Enrollment {enrollment.id}: completed_date = {enrollment.completed_date.isoformat()}'
            )
        )
