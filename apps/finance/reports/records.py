"""
Immutable engine records.

Source rows arrive as plain mappings (ORM ``.values()`` rows or rows handed
over by another fetcher). The ``*_from_row`` functions coerce one row at a
time: numeric and date garbage falls back to the documented default, and only
a row without an identity is rejected with ``MalformedRecord``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .exceptions import MalformedRecord

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
CENT = Decimal('0.01')

LESSON_TAKEN = 'lesson_taken'

SOURCE_STUDENTS = 'students'
SOURCE_PAYMENTS = 'payments'
SOURCE_LESSONS = 'lessons'
SOURCE_EXPENSES = 'expenses'
SOURCE_BOOKINGS = 'bookings'
SOURCE_NAMES = (
    SOURCE_STUDENTS,
    SOURCE_PAYMENTS,
    SOURCE_LESSONS,
    SOURCE_EXPENSES,
    SOURCE_BOOKINGS,
)

REFERRAL_SOURCE_APP = 'app'
REFERRAL_SOURCE_WEBSITE = 'website'


def to_decimal(value) -> Decimal:
    if value is None or value == '':
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not result.is_finite():
        return ZERO
    return result


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_int(value, minimum=None) -> int:
    result = 0
    if value is not None and value != '':
        try:
            parsed = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            parsed = None
        if parsed is not None and parsed.is_finite():
            result = int(parsed)
    if minimum is not None and result < minimum:
        return minimum
    return result


def to_datetime(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        try:
            result = parse_datetime(text)
        except ValueError:
            result = None
        if result is None:
            try:
                parsed_date = parse_date(text)
            except ValueError:
                parsed_date = None
            if parsed_date is None:
                return None
            result = datetime.combine(parsed_date, time.min)
    if settings.USE_TZ and timezone.is_naive(result):
        result = timezone.make_aware(result)
    return result


def to_date(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return local_date(value)
    if isinstance(value, date):
        return value
    try:
        parsed = parse_date(str(value).strip())
    except ValueError:
        parsed = None
    if parsed is None:
        moment = to_datetime(value)
        return local_date(moment) if moment else None
    return parsed


def local_date(moment):
    """Calendar day of ``moment`` in the portal's time zone."""
    if moment is None:
        return None
    if isinstance(moment, datetime):
        if timezone.is_aware(moment):
            return timezone.localtime(moment).date()
        return moment.date()
    return moment


def _text(value) -> str:
    if value is None:
        return ''
    return str(value).strip()


def _optional_text(value):
    text = _text(value)
    return text or None


def _bool(value, default=True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in {'0', 'false', 'no', 'f', ''}
    return bool(value)


def _optional_identity(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _identity(source, row, key='id'):
    value = row.get(key) if hasattr(row, 'get') else None
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MalformedRecord(source, row, f'missing "{key}"')
    return value


@dataclass(frozen=True)
class StudentAccount:
    id: object
    display_name: str
    email: str = ''
    lesson_credits: int = 0
    total_revenue: Decimal = ZERO
    total_lessons_purchased: int = 0
    lead_source: str | None = None
    referred_by: object = None
    is_active: bool = True


@dataclass(frozen=True)
class PaymentTransaction:
    id: object
    student_id: object
    amount: Decimal = ZERO
    credits_delta: int = 0
    method: str = ''
    occurred_at: datetime | None = None
    notes: str = ''


@dataclass(frozen=True)
class LessonTransaction:
    id: object
    student_id: object
    type: str = ''
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class Expense:
    id: object
    name: str
    amount: Decimal = ZERO
    incurred_at: date | None = None
    category: str | None = None
    notes: str = ''


@dataclass(frozen=True)
class WebsiteBooking:
    id: object
    customer_name: str = ''
    customer_email: str = ''
    referral_code: str | None = None
    package_name: str = ''
    price: Decimal = ZERO
    created_at: datetime | None = None


def student_from_row(row) -> StudentAccount:
    student_id = _identity(SOURCE_STUDENTS, row)
    return StudentAccount(
        id=student_id,
        display_name=_text(row.get('full_name', row.get('display_name'))) or 'Unknown',
        email=_text(row.get('email')),
        lesson_credits=to_int(row.get('lesson_credits'), minimum=0),
        total_revenue=max(to_decimal(row.get('total_revenue')), ZERO),
        total_lessons_purchased=to_int(row.get('total_lessons_purchased'), minimum=0),
        lead_source=_optional_text(row.get('lead_source')),
        referred_by=_optional_identity(row.get('referred_by_id', row.get('referred_by'))),
        is_active=_bool(row.get('is_active')),
    )


def payment_from_row(row) -> PaymentTransaction:
    return PaymentTransaction(
        id=_identity(SOURCE_PAYMENTS, row),
        student_id=row.get('student_id'),
        amount=to_decimal(row.get('amount')),
        credits_delta=to_int(row.get('credits_delta')),
        method=_text(row.get('method')),
        occurred_at=to_datetime(row.get('occurred_at')),
        notes=_text(row.get('notes')),
    )


def lesson_from_row(row) -> LessonTransaction:
    return LessonTransaction(
        id=_identity(SOURCE_LESSONS, row),
        student_id=row.get('student_id'),
        type=_text(row.get('transaction_type', row.get('type'))),
        occurred_at=to_datetime(row.get('occurred_at')),
    )


def expense_from_row(row) -> Expense:
    return Expense(
        id=_identity(SOURCE_EXPENSES, row),
        name=_text(row.get('name')),
        amount=to_decimal(row.get('amount')),
        incurred_at=to_date(row.get('incurred_at')),
        category=_optional_text(row.get('category')),
        notes=_text(row.get('notes')),
    )


def booking_from_row(row) -> WebsiteBooking:
    return WebsiteBooking(
        id=_identity(SOURCE_BOOKINGS, row),
        customer_name=_text(row.get('customer_name')),
        customer_email=_text(row.get('customer_email')),
        referral_code=_optional_text(row.get('referral_code')),
        package_name=_text(row.get('package_name')),
        price=to_decimal(row.get('price')),
        created_at=to_datetime(row.get('created_at')),
    )


ROW_BUILDERS = {
    SOURCE_STUDENTS: student_from_row,
    SOURCE_PAYMENTS: payment_from_row,
    SOURCE_LESSONS: lesson_from_row,
    SOURCE_EXPENSES: expense_from_row,
    SOURCE_BOOKINGS: booking_from_row,
}


@dataclass(frozen=True)
class SourceResult:
    name: str
    records: tuple = ()
    available: bool = True
    error: str = ''
    skipped: int = 0


@dataclass(frozen=True)
class CollectedData:
    students: SourceResult
    payments: SourceResult
    lessons: SourceResult
    expenses: SourceResult
    bookings: SourceResult

    def source(self, name) -> SourceResult:
        return getattr(self, name)

    @property
    def unavailable_sources(self) -> tuple:
        return tuple(name for name in SOURCE_NAMES if not self.source(name).available)

    @property
    def fully_available(self) -> bool:
        return not self.unavailable_sources


@dataclass(frozen=True)
class AggregatedStudentMetrics:
    student_id: object
    display_name: str
    email: str = ''
    lead_source: str | None = None
    referred_by: object = None
    is_active: bool = True
    total_revenue: Decimal = ZERO
    total_lessons_purchased: int = 0
    lesson_credits: int = 0
    lesson_dates: tuple = ()
    first_lesson_date: datetime | None = None
    last_lesson_date: datetime | None = None
    avg_revenue_per_lesson: Decimal = ZERO
    transactions: tuple = field(default=(), compare=False)

    @property
    def lesson_count(self) -> int:
        return len(self.lesson_dates)


@dataclass(frozen=True)
class ReferredStudent:
    referrer_id: object
    referrer_name: str
    student_id: object
    student_name: str
    student_email: str
    revenue: Decimal
    is_active: bool


@dataclass(frozen=True)
class ReferrerSummary:
    key: object
    display_name: str
    referral_count: int = 0
    referral_revenue: Decimal = ZERO
    source: str = REFERRAL_SOURCE_APP
    email: str = ''
    referred: tuple = field(default=(), compare=False)


@dataclass(frozen=True)
class ReferralTotals:
    total_referrals: int = 0
    total_revenue: Decimal = ZERO
    unique_referrers: int = 0


@dataclass(frozen=True)
class CombinedReferrerTotals:
    total_referrals: int
    total_revenue: Decimal
    unique_referrers: int
    app: ReferralTotals
    website: ReferralTotals
