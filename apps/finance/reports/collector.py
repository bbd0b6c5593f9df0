from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from django.conf import settings
from django.db import DatabaseError, connections

from apps.core.students.models import StudentAccount
from apps.finance.expenses.models import Expense
from apps.finance.payments.models import LessonTransaction, PaymentTransaction
from apps.operations.bookings.models import WebsiteBooking

from .exceptions import MalformedRecord, SourceUnavailable
from .records import (
    ROW_BUILDERS,
    SOURCE_BOOKINGS,
    SOURCE_EXPENSES,
    SOURCE_LESSONS,
    SOURCE_NAMES,
    SOURCE_PAYMENTS,
    SOURCE_STUDENTS,
    CollectedData,
    SourceResult,
)

logger = logging.getLogger(__name__)


def fetch_students():
    return StudentAccount.objects.order_by('full_name', 'id').values(
        'id',
        'full_name',
        'email',
        'lesson_credits',
        'total_revenue',
        'total_lessons_purchased',
        'lead_source',
        'referred_by_id',
        'is_active',
    )


def fetch_payment_transactions():
    return PaymentTransaction.objects.order_by('-occurred_at', '-id').values(
        'id',
        'student_id',
        'amount',
        'credits_delta',
        'method',
        'occurred_at',
        'notes',
    )


def fetch_lesson_transactions():
    return LessonTransaction.objects.order_by('occurred_at', 'id').values(
        'id',
        'student_id',
        'transaction_type',
        'occurred_at',
    )


def fetch_expenses():
    return Expense.objects.order_by('-incurred_at', '-id').values(
        'id',
        'name',
        'amount',
        'incurred_at',
        'category',
        'notes',
    )


def fetch_website_bookings():
    return WebsiteBooking.objects.order_by('-created_at', '-id').values(
        'id',
        'customer_name',
        'customer_email',
        'referral_code',
        'package_name',
        'price',
        'created_at',
    )


DEFAULT_FETCHERS = {
    SOURCE_STUDENTS: fetch_students,
    SOURCE_PAYMENTS: fetch_payment_transactions,
    SOURCE_LESSONS: fetch_lesson_transactions,
    SOURCE_EXPENSES: fetch_expenses,
    SOURCE_BOOKINGS: fetch_website_bookings,
}


class Collector:
    """Reads every record source independently.

    A source that cannot be read comes back empty with ``available=False``;
    it never stops the other sources from being read. ``fetchers`` overrides
    the ORM readers per source name with any callable returning an iterable
    of row mappings.
    """

    def __init__(self, fetchers=None, parallel=None):
        self.fetchers = dict(DEFAULT_FETCHERS)
        if fetchers:
            unknown = set(fetchers) - set(SOURCE_NAMES)
            if unknown:
                raise ValueError(f"Unknown record sources: {', '.join(sorted(unknown))}")
            self.fetchers.update(fetchers)
        if parallel is None:
            parallel = getattr(settings, 'REPORTS_COLLECT_PARALLEL', False)
        self.parallel = parallel

    def collect(self) -> CollectedData:
        if self.parallel:
            with ThreadPoolExecutor(max_workers=len(SOURCE_NAMES)) as executor:
                futures = {name: executor.submit(self._fetch_in_worker, name) for name in SOURCE_NAMES}
                results = {name: future.result() for name, future in futures.items()}
        else:
            results = {name: self.fetch_source(name) for name in SOURCE_NAMES}

        collected = CollectedData(**results)
        if collected.unavailable_sources:
            logger.info(
                'Collected records with unavailable sources: %s',
                ', '.join(collected.unavailable_sources),
            )
        return collected

    def _fetch_in_worker(self, name) -> SourceResult:
        try:
            return self.fetch_source(name)
        finally:
            # Worker threads own their DB connections.
            connections.close_all()

    def fetch_source(self, name) -> SourceResult:
        fetcher = self.fetchers.get(name)
        if fetcher is None:
            logger.warning('No fetcher configured for record source "%s".', name)
            return SourceResult(name=name, available=False, error='No fetcher configured.')

        try:
            rows = list(fetcher() or ())
        except SourceUnavailable as exc:
            logger.warning('Record source "%s" unavailable: %s', name, exc)
            return SourceResult(name=name, available=False, error=str(exc))
        except DatabaseError as exc:
            logger.warning('Record source "%s" could not be read: %s', name, exc)
            return SourceResult(name=name, available=False, error=str(exc))
        except Exception as exc:
            # Injected fetchers may front files or remote endpoints.
            logger.warning('Record source "%s" failed: %s', name, exc, exc_info=True)
            return SourceResult(name=name, available=False, error=str(exc) or exc.__class__.__name__)

        builder = ROW_BUILDERS[name]
        records = []
        skipped = 0
        for row in rows:
            try:
                records.append(builder(row))
            except MalformedRecord as exc:
                skipped += 1
                logger.warning('Skipping row from "%s": %s', name, exc.reason)
            except (AttributeError, TypeError, ValueError, ArithmeticError) as exc:
                skipped += 1
                logger.warning('Skipping unreadable row from "%s": %s', name, exc)

        return SourceResult(name=name, records=tuple(records), available=True, skipped=skipped)


def collect(fetchers=None, parallel=None) -> CollectedData:
    return Collector(fetchers=fetchers, parallel=parallel).collect()
