"""
手动 / 常驻跑进度 sweep（不依赖 Celery beat 时用）
运行:
  python manage.py run_progress_sweep            标记 stale 并投递 Celery 任务
  python manage.py run_progress_sweep --sync     当场逐个重算
  python manage.py run_progress_sweep --loop     按间隔一直跑，Ctrl+C 退出
--loop 时用 Redis 锁保证多个实例同一时间只有一个在 sweep
"""
import time

import redis
from django.conf import settings
from django.core.management.base import BaseCommand

from progress.scheduler import sweep

LOCK_KEY = "progress:sweep:lock"


class Command(BaseCommand):
    help = '重算所有 active enrollment 的进度（出勤计数 + 发药依从率）'

    def add_arguments(self, parser):
        parser.add_argument('--sync', action='store_true', help='当场重算，不投递 Celery 任务')
        parser.add_argument('--loop', action='store_true', help='按 --interval 间隔一直运行')
        parser.add_argument(
            '--interval',
            type=int,
            default=settings.PROGRESS_SWEEP_INTERVAL_SECONDS,
            help='--loop 时两次 sweep 之间的秒数',
        )

    def handle(self, *args, **options):
        enqueue = not options['sync']
        if not options['loop']:
            self._report(sweep(enqueue=enqueue))
            return

        interval = options['interval']
        r = redis.from_url(settings.REDIS_URL)
        self.stdout.write(f'Sweep 启动，每 {interval} 秒一次... (Ctrl+C 退出)')

        while True:
            try:
                lock = r.lock(LOCK_KEY, timeout=interval)
                if lock.acquire(blocking=False):
                    self._report(sweep(enqueue=enqueue))
                else:
                    self.stdout.write('另一个实例正在 sweep，跳过本轮')
                time.sleep(interval)
            except KeyboardInterrupt:
                self.stdout.write('Sweep 已退出')
                break
            except redis.RedisError as e:
                self.stderr.write(f'Redis 出错: {e}')
                time.sleep(interval)

    def _report(self, summary):
        parts = ', '.join(f'{key}={value}' for key, value in summary.items())
        self.stdout.write(self.style.SUCCESS(f'Sweep 完成: {parts}'))
