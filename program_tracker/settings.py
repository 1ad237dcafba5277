import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'django-insecure-dev-key-change-in-production')
DEBUG = os.getenv('DJANGO_DEBUG', '1') == '1'
ALLOWED_HOSTS = ['*']

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'progress',
]

MIDDLEWARE = [
    'progress.middleware_metrics.MetricsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'program_tracker.middleware.AppExceptionMiddleware',
]

ROOT_URLCONF = 'program_tracker.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'program_tracker.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.getenv('POSTGRES_DB', 'program_tracker'),
        'USER': os.getenv('POSTGRES_USER', 'program_user'),
        'PASSWORD': os.getenv('POSTGRES_PASSWORD', 'program_pass'),
        'HOST': os.getenv('POSTGRES_HOST', 'db'),
        'PORT': os.getenv('POSTGRES_PORT', '5432'),
    }
}

AUTH_PASSWORD_VALIDATORS = []

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'standard': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'standard',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django.db.backends': {
            'level': 'WARNING',
        },
    },
}

# 报表/分桶使用的时区（Daily 桶 = 该时区的自然日）
PROGRESS_REPORTING_TIMEZONE = os.getenv('PROGRESS_REPORTING_TIMEZONE', 'UTC')

# 需要按周期去重的频率；默认只有 Daily / Monthly，Weekly / Twice Daily 是否需要去重待产品确认
PROGRESS_DEDUP_FREQUENCIES = [
    f.strip()
    for f in os.getenv('PROGRESS_DEDUP_FREQUENCIES', 'Daily,Monthly').split(',')
    if f.strip()
]

# 定时全量扫描间隔（秒），默认一天一次
PROGRESS_SWEEP_INTERVAL_SECONDS = int(os.getenv('PROGRESS_SWEEP_INTERVAL_SECONDS', '86400'))

# 单个 enrollment 重算的租约时长：超时后其它 worker 可以接手
PROGRESS_RECOMPUTE_LEASE_SECONDS = int(os.getenv('PROGRESS_RECOMPUTE_LEASE_SECONDS', '300'))
PROGRESS_RECOMPUTE_TIMEOUT_SECONDS = int(os.getenv('PROGRESS_RECOMPUTE_TIMEOUT_SECONDS', '120'))
PROGRESS_RECOMPUTE_MAX_RETRIES = int(os.getenv('PROGRESS_RECOMPUTE_MAX_RETRIES', '3'))

# StatsD（worker 进程指标）
STATSD_HOST = os.getenv('STATSD_HOST', 'statsd_exporter')
STATSD_PORT = int(os.getenv('STATSD_PORT', '9125'))

# Redis（Celery broker + result backend）
REDIS_HOST = os.getenv('REDIS_HOST', 'redis')
REDIS_PORT = int(os.getenv('REDIS_PORT', '6379'))
REDIS_URL = f'redis://{REDIS_HOST}:{REDIS_PORT}/0'

# Celery
CELERY_BROKER_URL = REDIS_URL
CELERY_RESULT_BACKEND = REDIS_URL
CELERY_BEAT_SCHEDULE = {
    'progress-sweep': {
        'task': 'progress.tasks.sweep_active_enrollments_task',
        'schedule': PROGRESS_SWEEP_INTERVAL_SECONDS,
    },
}
