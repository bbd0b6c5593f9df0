from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType

from django.utils import timezone

from .records import (
    LESSON_TAKEN,
    ZERO,
    AggregatedStudentMetrics,
    local_date,
    quantize,
    to_decimal,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED = 'Uncategorized'


def _lesson_dates_by_student(lesson_transactions):
    grouped = defaultdict(list)
    for lesson in lesson_transactions:
        if lesson.type != LESSON_TAKEN or lesson.occurred_at is None:
            continue
        grouped[lesson.student_id].append(lesson.occurred_at)
    for dates in grouped.values():
        dates.sort()
    return grouped


def _payments_by_student(payment_transactions):
    grouped = defaultdict(list)
    for payment in payment_transactions:
        grouped[payment.student_id].append(payment)
    return grouped


def _newest_first(payments):
    return tuple(
        sorted(
            payments,
            key=lambda payment: (payment.occurred_at is not None, payment.occurred_at or datetime.min),
            reverse=True,
        )
    )


def average_revenue_per_lesson(total_revenue, lessons_purchased) -> Decimal:
    if not lessons_purchased or lessons_purchased <= 0:
        return ZERO
    return quantize(to_decimal(total_revenue) / Decimal(lessons_purchased))


def build_student_metrics(student, lesson_dates=(), payments=()) -> AggregatedStudentMetrics:
    dates = tuple(sorted(lesson_dates))
    total_revenue = to_decimal(student.total_revenue)
    purchased = student.total_lessons_purchased or 0
    return AggregatedStudentMetrics(
        student_id=student.id,
        display_name=student.display_name,
        email=student.email,
        lead_source=student.lead_source,
        referred_by=student.referred_by,
        is_active=student.is_active,
        total_revenue=total_revenue,
        total_lessons_purchased=purchased,
        lesson_credits=student.lesson_credits or 0,
        lesson_dates=dates,
        first_lesson_date=dates[0] if dates else None,
        last_lesson_date=dates[-1] if dates else None,
        avg_revenue_per_lesson=average_revenue_per_lesson(total_revenue, purchased),
        transactions=_newest_first(payments),
    )


def aggregate(students, payment_transactions=(), lesson_transactions=()):
    """Build per-student metrics keyed by student id.

    Totals come from the ledger fields on each student. Payment transactions
    are attached for display only and are never summed into the totals.
    """
    lesson_dates = _lesson_dates_by_student(lesson_transactions)
    payments = _payments_by_student(payment_transactions)

    metrics = {}
    for student in students:
        if student.id in metrics:
            logger.warning('Duplicate student id %s ignored during aggregation.', student.id)
            continue
        try:
            metrics[student.id] = build_student_metrics(
                student,
                lesson_dates=lesson_dates.get(student.id, ()),
                payments=payments.get(student.id, ()),
            )
        except (TypeError, ValueError, ArithmeticError) as exc:
            logger.warning('Skipping metrics for student %s: %s', student.id, exc)

    orphaned = set(payments) - set(metrics)
    if orphaned:
        logger.debug('%d payment transaction owners not found among students.', len(orphaned))

    return MappingProxyType(metrics)


@dataclass(frozen=True)
class FinancialOverview:
    total_revenue: Decimal
    monthly_revenue: Decimal
    month: tuple
    total_lessons_sold: int
    active_students: int
    total_students: int
    avg_revenue_per_student: Decimal


def _in_month(moment, year, month):
    day = local_date(moment)
    return day is not None and day.year == year and day.month == month


def financial_overview(metrics, payment_transactions=(), month=None) -> FinancialOverview:
    """Dashboard totals. ``month`` is a ``(year, month)`` pair, defaulting to today's."""
    rows = list(metrics.values()) if hasattr(metrics, 'values') else list(metrics)
    if month is None:
        today = timezone.localdate()
        month = (today.year, today.month)
    year, month_number = month

    total_revenue = sum((row.total_revenue for row in rows), ZERO)
    monthly_revenue = sum(
        (
            payment.amount
            for payment in payment_transactions
            if payment.occurred_at is not None and _in_month(payment.occurred_at, year, month_number)
        ),
        ZERO,
    )
    avg_per_student = quantize(total_revenue / len(rows)) if rows else ZERO

    return FinancialOverview(
        total_revenue=total_revenue,
        monthly_revenue=monthly_revenue,
        month=(year, month_number),
        total_lessons_sold=sum(row.total_lessons_purchased for row in rows),
        # The dashboard counts a student as active while they hold credits.
        active_students=sum(1 for row in rows if row.lesson_credits > 0),
        total_students=len(rows),
        avg_revenue_per_student=avg_per_student,
    )


@dataclass(frozen=True)
class ExpenseSummary:
    total: Decimal
    count: int
    by_category: tuple


def expense_summary(expenses) -> ExpenseSummary:
    expenses = list(expenses)
    totals = defaultdict(lambda: ZERO)
    for expense in expenses:
        totals[expense.category or UNCATEGORIZED] += expense.amount

    by_category = tuple(sorted(totals.items(), key=lambda item: (-item[1], item[0].lower())))
    return ExpenseSummary(
        total=sum((expense.amount for expense in expenses), ZERO),
        count=len(expenses),
        by_category=by_category,
    )


def net_income(overview, expenses) -> Decimal:
    return overview.total_revenue - expenses.total
