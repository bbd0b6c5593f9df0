from django.apps import AppConfig


class ReportsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.finance.reports'
    label = 'finance_reports'
    verbose_name = 'Revenue & referral reports'
