"""
一次性数据补齐：先补 completed_date，再把历史出勤关联到 enrollment
可以重复运行
"""
from django.core.management.base import BaseCommand

from progress.backfill import backfill_attendance_enrollments
from progress.horizon import backfill_completed_dates


class Command(BaseCommand):
    help = '补齐 enrollment.completed_date，并按日期范围把历史出勤关联到 enrollment'

    def add_arguments(self, parser):
        parser.add_argument('--batch-size', type=int, default=500)

    def handle(self, *args, **options):
        dates = backfill_completed_dates()
        self.stdout.write(f"completed_date: filled={dates['filled']} skipped={dates['skipped']}")

        links = backfill_attendance_enrollments(batch_size=options['batch_size'])
        self.stdout.write(
            f"attendance: linked={links['linked']} unmatched={links['unmatched']} ambiguous={links['ambiguous']}"
        )
        if links['ambiguous']:
            self.stderr.write('存在无法自动判断的出勤记录，详见日志（Ambiguous enrollment match）')
