"""
Django settings for studio_portal project.

Scope:
- Student ledger, payment and lesson transaction stores
- Expense store
- Website booking store (referral codes)
- Revenue & referral reconciliation reports
"""
import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


DEBUG = os.getenv('DJANGO_DEBUG', 'False').lower() in {'1', 'true', 'yes'}
SECRET_KEY = os.getenv(
    'DJANGO_SECRET_KEY',
    'change-this-secret-key-in-production-6b1d0e4fa2c94b0f9d5a7c3e8f2b1a60',
)
ALLOWED_HOSTS = [
    host.strip()
    for host in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]


INSTALLED_APPS = [
    'apps.core.students.apps.StudentsConfig',
    'apps.finance.payments.apps.PaymentsConfig',
    'apps.finance.expenses.apps.ExpensesConfig',
    'apps.operations.bookings.apps.BookingsConfig',
    'apps.finance.reports.apps.ReportsConfig',
]


MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]


ROOT_URLCONF = 'studio_portal.urls'

WSGI_APPLICATION = 'studio_portal.wsgi.application'


DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.getenv('DJANGO_DB_NAME', str(BASE_DIR / 'db.sqlite3')),
    }
}


LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('DJANGO_TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': os.getenv('STUDIO_LOG_LEVEL', 'WARNING').upper(),
            'propagate': False,
        },
    },
}


TEST_RUNNER = 'apps.core.test_runner.InstalledAppsOnlyDiscoverRunner'

REPORTS_BRAND_NAME = os.getenv('REPORTS_BRAND_NAME', 'OJO Coaching Academy')
REPORTS_PDF_ROWS_PER_PAGE = int(os.getenv('REPORTS_PDF_ROWS_PER_PAGE', '25'))
REPORTS_COLLECT_PARALLEL = os.getenv('REPORTS_COLLECT_PARALLEL', 'False').lower() in {'1', 'true', 'yes'}
REPORTS_TOP_REFERRERS = int(os.getenv('REPORTS_TOP_REFERRERS', '10'))
