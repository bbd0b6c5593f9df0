from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.utils import timezone

from .records import local_date, to_date, to_decimal

SORT_ASC = 'asc'
SORT_DESC = 'desc'
SORT_DIRECTIONS = (SORT_ASC, SORT_DESC)


@dataclass(frozen=True)
class FilterCriteria:
    year: int | None = None
    month: int | None = None
    text_query: str = ''
    revenue_min: Decimal | None = None
    revenue_max: Decimal | None = None
    active_date_from: date | None = None
    active_date_to: date | None = None
    lead_sources: frozenset | None = None
    active_only: bool = False

    def validate(self):
        if self.month is not None:
            if self.year is None:
                raise ValidationError('Month filter requires a year.')
            if not 1 <= self.month <= 12:
                raise ValidationError('Month must be between 1 and 12.')
        if self.revenue_min is not None and self.revenue_max is not None:
            if to_decimal(self.revenue_min) > to_decimal(self.revenue_max):
                raise ValidationError('Minimum revenue cannot exceed maximum revenue.')
        if self.active_date_from is not None and self.active_date_to is not None:
            if to_date(self.active_date_from) > to_date(self.active_date_to):
                raise ValidationError('Active date range start must be on or before its end.')
        return self

    @classmethod
    def from_query(cls, params):
        """Build criteria from string query parameters (blank values are ignored)."""

        def _get(name):
            value = params.get(name)
            if isinstance(value, str):
                value = value.strip()
            return value if value not in (None, '', 'all') else None

        def _int(name):
            value = _get(name)
            if value is None:
                return None
            try:
                return int(value)
            except (TypeError, ValueError):
                raise ValidationError(f'"{name}" must be a whole number.')

        def _decimal(name):
            value = _get(name)
            if value is None:
                return None
            try:
                parsed = Decimal(str(value))
            except InvalidOperation:
                raise ValidationError(f'"{name}" must be a number.')
            if not parsed.is_finite():
                raise ValidationError(f'"{name}" must be a number.')
            return parsed

        def _date(name):
            value = _get(name)
            if value is None:
                return None
            parsed = to_date(value)
            if parsed is None:
                raise ValidationError(f'"{name}" must be a date (YYYY-MM-DD).')
            return parsed

        lead_sources = None
        if hasattr(params, 'getlist'):
            raw_sources = params.getlist('lead_sources')
        else:
            raw_sources = params.get('lead_sources') or []
            if isinstance(raw_sources, str):
                raw_sources = raw_sources.split(',')
        cleaned = frozenset(source.strip() for source in raw_sources if source and source.strip())
        if cleaned:
            lead_sources = cleaned

        active_only = str(params.get('active_only') or '').strip().lower() in {'1', 'true', 'yes', 'on'}

        return cls(
            year=_int('year'),
            month=_int('month'),
            text_query=_get('text_query') or _get('q') or '',
            revenue_min=_decimal('revenue_min'),
            revenue_max=_decimal('revenue_max'),
            active_date_from=_date('active_date_from'),
            active_date_to=_date('active_date_to'),
            lead_sources=lead_sources,
            active_only=active_only,
        ).validate()


def as_criteria(criteria):
    if criteria is None:
        return FilterCriteria()
    if isinstance(criteria, FilterCriteria):
        return criteria
    known = {item.name for item in fields(FilterCriteria)}
    unknown = set(criteria) - known
    if unknown:
        raise ValidationError(f"Unknown filters: {', '.join(sorted(unknown))}")
    values = dict(criteria)
    if values.get('lead_sources') is not None:
        values['lead_sources'] = frozenset(values['lead_sources'])
    return FilterCriteria(**values)


def _rows(metrics):
    if hasattr(metrics, 'values'):
        return list(metrics.values())
    return list(metrics)


def _predicates(criteria):
    predicates = []

    if criteria.year is not None:
        year, month = criteria.year, criteria.month

        def in_period(row):
            for moment in row.lesson_dates:
                day = local_date(moment)
                if day.year == year and (month is None or day.month == month):
                    return True
            return False

        predicates.append(in_period)

    query = (criteria.text_query or '').strip().casefold()
    if query:
        predicates.append(
            lambda row: query in (row.display_name or '').casefold() or query in (row.email or '').casefold()
        )

    if criteria.revenue_min is not None:
        minimum = to_decimal(criteria.revenue_min)
        predicates.append(lambda row: row.total_revenue >= minimum)

    if criteria.revenue_max is not None:
        maximum = to_decimal(criteria.revenue_max)
        predicates.append(lambda row: row.total_revenue <= maximum)

    if criteria.active_date_from is not None:
        start = to_date(criteria.active_date_from)
        predicates.append(
            lambda row: row.first_lesson_date is not None and local_date(row.first_lesson_date) >= start
        )

    if criteria.active_date_to is not None:
        end = to_date(criteria.active_date_to)
        predicates.append(
            lambda row: row.last_lesson_date is not None and local_date(row.last_lesson_date) <= end
        )

    if criteria.lead_sources:
        sources = frozenset(criteria.lead_sources)
        predicates.append(lambda row: row.lead_source in sources)

    if criteria.active_only:
        predicates.append(lambda row: row.is_active)

    return predicates


def apply_filters(metrics, criteria=None) -> list:
    """Rows matching every supplied filter, in their original order.

    A row without lesson dates never matches a date-based filter.
    """
    criteria = as_criteria(criteria).validate()
    predicates = _predicates(criteria)
    return [row for row in _rows(metrics) if all(predicate(row) for predicate in predicates)]


def _casefolded(value):
    return value.casefold() if value else None


SORT_KEYS = {
    'name': lambda row: _casefolded(row.display_name),
    'email': lambda row: _casefolded(row.email),
    'lead_source': lambda row: _casefolded(row.lead_source),
    'total_revenue': lambda row: row.total_revenue,
    'total_lessons_purchased': lambda row: row.total_lessons_purchased,
    'lesson_credits': lambda row: row.lesson_credits,
    'lesson_count': lambda row: row.lesson_count,
    'avg_revenue_per_lesson': lambda row: row.avg_revenue_per_lesson,
    'first_lesson_date': lambda row: row.first_lesson_date,
    'last_lesson_date': lambda row: row.last_lesson_date,
}


def _sort_rows(rows, accessors, key, direction):
    accessor = accessors.get(key)
    if accessor is None:
        raise ValidationError(f'Unknown sort key "{key}".')
    if direction not in SORT_DIRECTIONS:
        raise ValidationError(f'Sort direction must be one of: {", ".join(SORT_DIRECTIONS)}.')

    def sort_key(row):
        value = accessor(row)
        if value is None:
            return (False, 0)
        return (True, value)

    return sorted(_rows(rows), key=sort_key, reverse=direction == SORT_DESC)


def apply_sort(rows, key, direction=SORT_ASC) -> list:
    """Stable single-key sort; missing values sort lowest."""
    return _sort_rows(rows, SORT_KEYS, key, direction)


def toggle_direction(current_key, current_direction, new_key):
    """Column-header toggle: the same column flips, a new column starts descending."""
    if new_key == current_key and current_direction == SORT_DESC:
        return new_key, SORT_ASC
    return new_key, SORT_DESC


PERIOD_THIS_MONTH = 'this_month'
PERIOD_THIS_YEAR = 'this_year'
PERIOD_LAST_30 = 'last_30'
PERIOD_LAST_90 = 'last_90'
EXPENSE_PERIODS = (PERIOD_THIS_MONTH, PERIOD_THIS_YEAR, PERIOD_LAST_30, PERIOD_LAST_90)


def period_start(period, today=None):
    """First day included by an expense date preset."""
    today = today or timezone.localdate()
    if period == PERIOD_THIS_MONTH:
        return today.replace(day=1)
    if period == PERIOD_THIS_YEAR:
        return date(today.year, 1, 1)
    if period == PERIOD_LAST_30:
        return today - timedelta(days=30)
    if period == PERIOD_LAST_90:
        return today - timedelta(days=90)
    raise ValidationError(f'Unknown expense period "{period}".')


@dataclass(frozen=True)
class ExpenseCriteria:
    text_query: str = ''
    category: str | None = None
    period: str | None = None

    def validate(self):
        if self.period is not None and self.period not in EXPENSE_PERIODS:
            raise ValidationError(f'Expense period must be one of: {", ".join(EXPENSE_PERIODS)}.')
        return self

    @classmethod
    def from_query(cls, params):
        def _get(name):
            value = params.get(name)
            if isinstance(value, str):
                value = value.strip()
            return value if value not in (None, '', 'all') else None

        return cls(
            text_query=_get('text_query') or _get('q') or '',
            category=_get('category'),
            period=_get('period'),
        ).validate()


def as_expense_criteria(criteria):
    if criteria is None:
        return ExpenseCriteria()
    if isinstance(criteria, ExpenseCriteria):
        return criteria
    known = {item.name for item in fields(ExpenseCriteria)}
    unknown = set(criteria) - known
    if unknown:
        raise ValidationError(f"Unknown expense filters: {', '.join(sorted(unknown))}")
    return ExpenseCriteria(**criteria)


def apply_expense_filters(expenses, criteria=None, today=None) -> list:
    """Expenses matching the search text, category and date preset, in input order.

    The search covers name, category and notes. An expense without a date
    never matches a date preset.
    """
    criteria = as_expense_criteria(criteria).validate()
    predicates = []

    query = (criteria.text_query or '').strip().casefold()
    if query:
        predicates.append(
            lambda expense: any(query in (value or '').casefold() for value in (expense.name, expense.category, expense.notes))
        )

    if criteria.category:
        predicates.append(lambda expense: expense.category == criteria.category)

    if criteria.period:
        start = period_start(criteria.period, today)
        predicates.append(lambda expense: expense.incurred_at is not None and expense.incurred_at >= start)

    return [expense for expense in _rows(expenses) if all(predicate(expense) for predicate in predicates)]


EXPENSE_SORT_KEYS = {
    'name': lambda expense: _casefolded(expense.name),
    'amount': lambda expense: expense.amount,
    'date': lambda expense: expense.incurred_at,
    'category': lambda expense: (expense.category or '').casefold(),
}


def apply_expense_sort(expenses, key='date', direction=SORT_DESC) -> list:
    return _sort_rows(expenses, EXPENSE_SORT_KEYS, key, direction)
