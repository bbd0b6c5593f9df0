from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings

from . import exports
from .collector import Collector
from .filters import (
    ExpenseCriteria,
    FilterCriteria,
    apply_expense_filters,
    apply_expense_sort,
    apply_filters,
    apply_sort,
    as_criteria,
    as_expense_criteria,
)
from .records import CollectedData, CombinedReferrerTotals
from .referrals import (
    ReferralOverview,
    combine,
    rank_referrers,
    referral_overview,
    resolve_app_referrals,
    resolve_website_referrals,
)
from .services import (
    ExpenseSummary,
    FinancialOverview,
    aggregate,
    expense_summary,
    financial_overview,
    net_income,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RevenueReport:
    collected: CollectedData
    criteria: FilterCriteria
    sort_key: str
    direction: str
    metrics: object
    rows: tuple
    app_referrers: dict
    website_referrers: dict
    app_leaderboard: tuple
    website_leaderboard: tuple
    referral_totals: CombinedReferrerTotals
    referral_overview: ReferralOverview
    summary: exports.ReportSummary
    overview: FinancialOverview
    expenses: ExpenseSummary
    expense_criteria: ExpenseCriteria
    expense_rows: tuple
    expense_breakdown: ExpenseSummary

    @property
    def net_income(self):
        return net_income(self.overview, self.expenses)

    @property
    def unavailable_sources(self):
        return self.collected.unavailable_sources

    def filename(self, prefix='students', extension='csv', today=None):
        return exports.export_filename(prefix, year=self.criteria.year, extension=extension, today=today)

    def to_csv(self, columns=None) -> str:
        return exports.to_csv(self.rows, columns=columns)

    def to_pdf(self, title='Student Revenue Report', generated_at=None, columns=None) -> bytes:
        return exports.to_pdf(
            self.rows,
            summary=self.summary,
            title=title,
            generated_at=generated_at,
            columns=columns,
        )

    def expenses_to_csv(self) -> str:
        return exports.expenses_to_csv(self.expense_rows)

    def expense_filename(self, today=None):
        return exports.export_filename('expenses', today=today, include_scope=False)


def build_revenue_report(
    collector=None,
    criteria=None,
    sort_key='total_revenue',
    direction='desc',
    month=None,
    expense_criteria=None,
    expense_sort_key='date',
    expense_direction='desc',
    today=None,
):
    """collect -> aggregate -> resolve -> filter/sort, rebuilt from scratch on every call.

    ``expenses`` summarizes every expense (net income uses it); the expense
    table, its breakdown and its CSV follow ``expense_criteria``.
    """
    collector = collector or Collector()
    criteria = as_criteria(criteria).validate()
    expense_criteria = as_expense_criteria(expense_criteria).validate()

    collected = collector.collect()
    students = collected.students.records
    payments = collected.payments.records

    metrics = aggregate(students, payments, collected.lessons.records)
    rows = tuple(apply_sort(apply_filters(metrics, criteria), sort_key, direction))

    expense_rows = tuple(
        apply_expense_sort(
            apply_expense_filters(collected.expenses.records, expense_criteria, today=today),
            expense_sort_key,
            expense_direction,
        )
    )

    app_referrers = resolve_app_referrals(students)
    website_referrers = resolve_website_referrals(collected.bookings.records)
    limit = getattr(settings, 'REPORTS_TOP_REFERRERS', 10)

    report = RevenueReport(
        collected=collected,
        criteria=criteria,
        sort_key=sort_key,
        direction=direction,
        metrics=metrics,
        rows=rows,
        app_referrers=app_referrers,
        website_referrers=website_referrers,
        app_leaderboard=tuple(rank_referrers(app_referrers, limit=limit)),
        website_leaderboard=tuple(rank_referrers(website_referrers, limit=limit)),
        referral_totals=combine(app_referrers, website_referrers),
        referral_overview=referral_overview(students, app_referrers),
        summary=exports.summarize(rows),
        overview=financial_overview(metrics, payments, month=month),
        expenses=expense_summary(collected.expenses.records),
        expense_criteria=expense_criteria,
        expense_rows=expense_rows,
        expense_breakdown=expense_summary(expense_rows),
    )
    logger.info(
        'Built revenue report: %d of %d students shown, %d app referrers, %d website codes.',
        len(rows),
        len(metrics),
        len(app_referrers),
        len(website_referrers),
    )
    return report
