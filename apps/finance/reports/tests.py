import csv
import re
from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal
from io import StringIO

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings

from apps.core.students.models import StudentAccount as StudentAccountModel
from apps.finance.expenses.models import Expense as ExpenseModel
from apps.finance.payments.models import LessonTransaction as LessonTransactionModel
from apps.finance.payments.models import PaymentTransaction as PaymentTransactionModel
from apps.operations.bookings.models import WebsiteBooking as WebsiteBookingModel

from .collector import Collector
from .exceptions import ExportError, MalformedRecord, SourceUnavailable
from .exports import (
    STUDENT_COLUMNS,
    _PdfReport,
    _table,
    Column,
    export_filename,
    expenses_to_csv,
    summarize,
    to_csv,
    to_csv_bytes,
    to_pdf,
)
from .filters import (
    ExpenseCriteria,
    FilterCriteria,
    apply_expense_filters,
    apply_expense_sort,
    apply_filters,
    apply_sort,
    period_start,
    toggle_direction,
)
from .pipeline import build_revenue_report
from .records import (
    Expense,
    LessonTransaction,
    PaymentTransaction,
    StudentAccount,
    WebsiteBooking,
    student_from_row,
)
from .referrals import (
    combine,
    rank_referrers,
    referral_details,
    referral_overview,
    referral_totals,
    resolve_app_referrals,
    resolve_website_referrals,
)
from .services import aggregate, expense_summary, financial_overview


def _at(year, month, day, hour=12):
    return datetime(year, month, day, hour, tzinfo=dt_timezone.utc)


def _student(student_id, name, revenue='0', purchased=0, **extra):
    return StudentAccount(
        id=student_id,
        display_name=name,
        email=extra.pop('email', f'{name.lower()}@example.com'),
        total_revenue=Decimal(revenue),
        total_lessons_purchased=purchased,
        **extra,
    )


def _lesson(lesson_id, student_id, moment, kind='lesson_taken'):
    return LessonTransaction(id=lesson_id, student_id=student_id, type=kind, occurred_at=moment)


class ReportFixtureMixin:
    """Students A, B, C: B and C were referred by A."""

    def build_fixture(self):
        self.student_a = _student(1, 'Ava', '500', 5, lead_source='Google', lesson_credits=3)
        self.student_b = _student(2, 'Ben', '0', 0, referred_by=1, lead_source='Referral')
        self.student_c = _student(3, 'Cleo', '300', 4, referred_by=1, lead_source='Referral', is_active=False)
        self.students = [self.student_a, self.student_b, self.student_c]
        self.lessons = [
            _lesson(10, 1, _at(2024, 2, 1)),
            _lesson(11, 1, _at(2024, 1, 10)),
            _lesson(12, 3, _at(2023, 11, 5)),
            _lesson(13, 3, _at(2024, 3, 20)),
            _lesson(14, 2, _at(2024, 1, 15), kind='package_purchase'),
        ]
        self.payments = [
            PaymentTransaction(id=20, student_id=1, amount=Decimal('250.00'), occurred_at=_at(2024, 1, 2)),
            PaymentTransaction(id=21, student_id=1, amount=Decimal('250.00'), occurred_at=_at(2024, 2, 2)),
            PaymentTransaction(id=22, student_id=99, amount=Decimal('70.00'), occurred_at=_at(2024, 2, 3)),
        ]
        self.metrics = aggregate(self.students, self.payments, self.lessons)
        return self.metrics


class AggregateTests(ReportFixtureMixin, SimpleTestCase):
    def setUp(self):
        self.build_fixture()

    def test_lesson_dates_sorted_and_bounded(self):
        row = self.metrics[1]
        self.assertEqual(row.lesson_dates, (_at(2024, 1, 10), _at(2024, 2, 1)))
        self.assertEqual(row.first_lesson_date, _at(2024, 1, 10))
        self.assertEqual(row.last_lesson_date, _at(2024, 2, 1))

    def test_first_lesson_never_after_last(self):
        for row in self.metrics.values():
            if row.first_lesson_date is not None:
                self.assertLessEqual(row.first_lesson_date, row.last_lesson_date)

    def test_dates_are_none_without_lessons_taken(self):
        row = self.metrics[2]
        self.assertEqual(row.lesson_dates, ())
        self.assertIsNone(row.first_lesson_date)
        self.assertIsNone(row.last_lesson_date)

    def test_average_is_zero_without_purchased_lessons(self):
        self.assertEqual(self.metrics[2].avg_revenue_per_lesson, Decimal('0'))
        self.assertEqual(self.metrics[1].avg_revenue_per_lesson, Decimal('100.00'))
        self.assertEqual(self.metrics[3].avg_revenue_per_lesson, Decimal('75.00'))

    def test_ledger_totals_are_not_recomputed_from_transactions(self):
        row = self.metrics[1]
        self.assertEqual(row.total_revenue, Decimal('500'))
        self.assertEqual(len(row.transactions), 2)
        self.assertEqual(row.transactions[0].id, 21)

    def test_orphaned_transactions_are_tolerated(self):
        self.assertNotIn(99, self.metrics)
        self.assertEqual(len(self.metrics), 3)

    def test_metrics_mapping_is_read_only(self):
        with self.assertRaises(TypeError):
            self.metrics[4] = self.metrics[1]

    def test_missing_ledger_fields_default_to_zero(self):
        student = student_from_row(
            {'id': 7, 'full_name': 'Dee', 'total_revenue': None, 'total_lessons_purchased': 'n/a'}
        )
        metrics = aggregate([student])
        self.assertEqual(metrics[7].total_revenue, Decimal('0.00'))
        self.assertEqual(metrics[7].total_lessons_purchased, 0)
        self.assertEqual(metrics[7].avg_revenue_per_lesson, Decimal('0'))

    def test_row_without_id_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            student_from_row({'full_name': 'Nobody'})


class ReferralTests(ReportFixtureMixin, SimpleTestCase):
    def setUp(self):
        self.build_fixture()

    def test_referrer_counts_and_revenue(self):
        referrers = resolve_app_referrals(self.students)
        self.assertEqual(list(referrers), [1])
        self.assertEqual(referrers[1].referral_count, 2)
        self.assertEqual(referrers[1].referral_revenue, Decimal('300'))
        self.assertEqual(referrers[1].display_name, 'Ava')

    def test_self_referral_is_ignored(self):
        students = self.students + [_student(4, 'Dana', '900', 9, referred_by=4)]
        referrers = resolve_app_referrals(students)
        self.assertNotIn(4, referrers)
        self.assertEqual(referrers[1].referral_count, 2)
        self.assertEqual(referrers[1].referral_revenue, Decimal('300'))

    def test_referral_cycles_attribute_one_hop(self):
        students = [
            _student(1, 'Ava', '100', referred_by=2),
            _student(2, 'Ben', '200', referred_by=1),
        ]
        referrers = resolve_app_referrals(students)
        self.assertEqual(referrers[1].referral_revenue, Decimal('200'))
        self.assertEqual(referrers[2].referral_revenue, Decimal('100'))

    def test_referrer_ids_match_across_types(self):
        students = [
            _student(1, 'Ava', '0'),
            _student(2, 'Ben', '40', referred_by='1'),
            _student(3, 'Cleo', '60', referred_by=1),
        ]
        referrers = resolve_app_referrals(students)
        self.assertEqual(list(referrers), [1])
        self.assertEqual(referrers[1].display_name, 'Ava')
        self.assertEqual(referrers[1].referral_count, 2)
        self.assertEqual(referrers[1].referral_revenue, Decimal('100'))

        students.append(_student(4, 'Dana', '10', referred_by='4'))
        self.assertNotIn(4, resolve_app_referrals(students))

    def test_unknown_referrer_is_still_attributed(self):
        referrers = resolve_app_referrals([_student(5, 'Eli', '80', referred_by=404)])
        self.assertEqual(referrers[404].display_name, 'Unknown')
        self.assertEqual(referrers[404].referral_count, 1)

    def test_website_referrals_grouped_by_code(self):
        bookings = [
            WebsiteBooking(id=1, referral_code='X', price=Decimal('50')),
            WebsiteBooking(id=2, referral_code='X', price=Decimal('70')),
            WebsiteBooking(id=3, referral_code=None, price=Decimal('90')),
        ]
        referrers = resolve_website_referrals(bookings)
        self.assertEqual(list(referrers), ['X'])
        self.assertEqual(referrers['X'].referral_count, 2)
        self.assertEqual(referrers['X'].referral_revenue, Decimal('120'))
        self.assertEqual(referrers['X'].source, 'website')

    def test_ranking_is_deterministic_with_tie_breaks(self):
        students = [
            _student(1, 'zoe', '0'),
            _student(2, 'Adam', '0'),
            _student(3, 'Mia', '0'),
            _student(10, 'r1', '100', referred_by=1),
            _student(11, 'r2', '100', referred_by=2),
            _student(12, 'r3', '60', referred_by=3),
            _student(13, 'r4', '40', referred_by=3),
        ]
        first = [summary.key for summary in rank_referrers(resolve_app_referrals(students))]
        second = [summary.key for summary in rank_referrers(resolve_app_referrals(list(reversed(students))))]
        self.assertEqual(first, [3, 2, 1])
        self.assertEqual(first, second)

    def test_rank_limit(self):
        referrers = resolve_app_referrals(self.students)
        self.assertEqual(len(rank_referrers(referrers, limit=0)), 0)
        self.assertEqual(len(rank_referrers(referrers, limit=10)), 1)

    def test_combine_sums_independent_totals(self):
        app = resolve_app_referrals(self.students)
        website = resolve_website_referrals(
            [
                WebsiteBooking(id=1, referral_code='X', price=Decimal('50.10')),
                WebsiteBooking(id=2, referral_code='Y', price=Decimal('70.25')),
            ]
        )
        combined = combine(app, website)
        self.assertEqual(combined.total_revenue, referral_totals(app).total_revenue + referral_totals(website).total_revenue)
        self.assertEqual(combined.total_revenue, Decimal('420.35'))
        self.assertEqual(combined.total_referrals, 4)
        self.assertEqual(combined.unique_referrers, 3)

    def test_combine_does_not_merge_identity_spaces(self):
        app = resolve_app_referrals([_student(1, 'Ava'), _student(2, 'Ben', '10', referred_by=1)])
        website = resolve_website_referrals([WebsiteBooking(id=1, referral_code='1', price=Decimal('5'))])
        self.assertEqual(combine(app, website).unique_referrers, 2)

    def test_referral_details_and_overview(self):
        app = resolve_app_referrals(self.students)
        details = referral_details(app)
        self.assertEqual([detail.student_name for detail in details], ['Cleo', 'Ben'])

        overview = referral_overview(self.students, app)
        self.assertEqual(overview.total_referrals, 2)
        self.assertEqual(overview.total_referral_revenue, Decimal('300'))
        self.assertEqual(overview.active_referrers, 1)
        self.assertEqual(overview.avg_revenue_per_referral, Decimal('150.00'))


class FilterTests(ReportFixtureMixin, SimpleTestCase):
    def setUp(self):
        self.build_fixture()

    def _ids(self, rows):
        return [row.student_id for row in rows]

    def test_revenue_bounds_are_inclusive(self):
        self.assertEqual(self._ids(apply_filters(self.metrics, {'revenue_min': 100, 'revenue_max': 400})), [3])
        self.assertEqual(self._ids(apply_filters(self.metrics, {'revenue_min': 300, 'revenue_max': 500})), [1, 3])

    def test_year_and_month(self):
        self.assertEqual(self._ids(apply_filters(self.metrics, {'year': 2024})), [1, 3])
        self.assertEqual(self._ids(apply_filters(self.metrics, {'year': 2023})), [3])
        self.assertEqual(self._ids(apply_filters(self.metrics, {'year': 2024, 'month': 2})), [1])

    def test_month_requires_year(self):
        with self.assertRaises(ValidationError):
            apply_filters(self.metrics, {'month': 2})

    def test_rows_without_lessons_fail_every_date_filter(self):
        for criteria in (
            {'year': 2024},
            {'active_date_from': date(2000, 1, 1)},
            {'active_date_to': date(2100, 1, 1)},
        ):
            self.assertNotIn(2, self._ids(apply_filters(self.metrics, criteria)))

    def test_active_date_range_uses_day_boundaries(self):
        rows = apply_filters(
            self.metrics,
            {'active_date_from': date(2024, 1, 10), 'active_date_to': date(2024, 2, 1)},
        )
        self.assertEqual(self._ids(rows), [1])
        rows = apply_filters(self.metrics, {'active_date_to': date(2024, 1, 31)})
        self.assertEqual(rows, [])

    def test_text_query_matches_name_or_email(self):
        self.assertEqual(self._ids(apply_filters(self.metrics, {'text_query': 'CLE'})), [3])
        self.assertEqual(self._ids(apply_filters(self.metrics, {'text_query': 'ben@'})), [2])

    def test_lead_sources_and_active_only(self):
        self.assertEqual(self._ids(apply_filters(self.metrics, {'lead_sources': ['Referral']})), [2, 3])
        self.assertEqual(self._ids(apply_filters(self.metrics, {'active_only': True})), [1, 2])

    def test_filters_commute(self):
        year_then_active = apply_filters(apply_filters(self.metrics, {'year': 2024}), {'active_only': True})
        active_then_year = apply_filters(apply_filters(self.metrics, {'active_only': True}), {'year': 2024})
        self.assertEqual(year_then_active, active_then_year)
        self.assertEqual(apply_filters(year_then_active, {'year': 2024}), year_then_active)

    def test_filtering_does_not_touch_aggregation(self):
        apply_filters(self.metrics, {'year': 2030})
        self.assertEqual(len(self.metrics), 3)

    def test_sort_is_stable_with_missing_values_lowest(self):
        rows = apply_sort(self.metrics, 'first_lesson_date', 'asc')
        self.assertEqual(self._ids(rows), [2, 3, 1])
        rows = apply_sort(self.metrics, 'first_lesson_date', 'desc')
        self.assertEqual(self._ids(rows), [1, 3, 2])

        tied = [self.metrics[3], self.metrics[1], self.metrics[2]]
        self.assertEqual(self._ids(apply_sort(tied, 'lesson_count', 'asc')), [2, 3, 1])
        self.assertEqual(self._ids(apply_sort(tied, 'lesson_count', 'desc')), [3, 1, 2])

    def test_sort_rejects_unknown_key(self):
        with self.assertRaises(ValidationError):
            apply_sort(self.metrics, 'shoe_size')
        with self.assertRaises(ValidationError):
            apply_sort(self.metrics, 'name', 'sideways')

    def test_toggle_direction(self):
        self.assertEqual(toggle_direction('name', 'desc', 'name'), ('name', 'asc'))
        self.assertEqual(toggle_direction('name', 'asc', 'name'), ('name', 'desc'))
        self.assertEqual(toggle_direction('name', 'asc', 'total_revenue'), ('total_revenue', 'desc'))

    def test_criteria_from_query(self):
        criteria = FilterCriteria.from_query(
            {'year': '2024', 'month': '', 'revenue_min': '100', 'lead_sources': 'Google, Referral', 'active_only': 'on'}
        )
        self.assertEqual(criteria.year, 2024)
        self.assertIsNone(criteria.month)
        self.assertEqual(criteria.revenue_min, Decimal('100'))
        self.assertEqual(criteria.lead_sources, frozenset({'Google', 'Referral'}))
        self.assertTrue(criteria.active_only)

        with self.assertRaises(ValidationError):
            FilterCriteria.from_query({'revenue_min': 'lots'})
        with self.assertRaises(ValidationError):
            FilterCriteria.from_query({'revenue_min': '500', 'revenue_max': '100'})


class ExportTests(ReportFixtureMixin, SimpleTestCase):
    def setUp(self):
        self.build_fixture()

    def test_csv_round_trip(self):
        rows = apply_sort(self.metrics, 'total_revenue', 'desc')
        parsed = list(csv.reader(StringIO(to_csv(rows))))
        self.assertEqual(parsed[0][0], 'Name')
        self.assertEqual(len(parsed), len(rows) + 1)
        self.assertEqual([line[0] for line in parsed[1:]], ['Ava', 'Cleo', 'Ben'])
        header = parsed[0]
        ava = dict(zip(header, parsed[1]))
        self.assertEqual(ava['Total Revenue'], '500.00')
        self.assertEqual(ava['Avg / Lesson'], '100.00')
        self.assertEqual(ava['First Lesson'], '01/10/2024')
        self.assertEqual(ava['Last Lesson'], '02/01/2024')
        ben = dict(zip(header, parsed[3]))
        self.assertEqual(ben['First Lesson'], '')

    def test_csv_quotes_every_field_and_doubles_quotes(self):
        metrics = aggregate([_student(1, 'Smith, "Jr"', '12.5', 1, email='jr@example.com')])
        text = to_csv(metrics.values(), columns=['name', 'total_revenue'])
        self.assertEqual(text, '"Name","Total Revenue"\n"Smith, ""Jr""","12.50"\n')
        self.assertEqual(list(csv.reader(StringIO(text)))[1], ['Smith, "Jr"', '12.50'])

    def test_export_failure_raises_instead_of_partial_output(self):
        broken = Column('broken', 'Broken', lambda row: 1 / 0)
        with self.assertRaises(ExportError):
            to_csv(self.metrics.values(), columns=[broken])
        with self.assertRaises(ExportError):
            to_pdf(self.metrics.values(), columns=[broken])
        with self.assertRaises(ExportError):
            to_csv(self.metrics.values(), columns=['shoe_size'])

    def test_csv_encoding_failure_is_reported(self):
        metrics = aggregate([_student(1, 'Bad \ud800 name', '1', 1)])
        with self.assertRaises(ExportError):
            to_csv_bytes(metrics.values())

    def test_summary_reflects_only_given_rows(self):
        filtered = apply_filters(self.metrics, {'year': 2024})
        summary = summarize(filtered)
        self.assertEqual(summary.total_students, 2)
        self.assertEqual(summary.active_students, 1)
        self.assertEqual(summary.total_revenue, Decimal('800'))
        self.assertEqual(summary.total_lessons_sold, 9)

    def test_pdf_is_complete_document(self):
        content = to_pdf(self.metrics.values(), generated_at=_at(2024, 5, 1))
        self.assertTrue(content.startswith(b'%PDF'))
        self.assertIn(b'%%EOF', content[-32:])

    @override_settings(REPORTS_PDF_ROWS_PER_PAGE=2)
    def test_pdf_paginates(self):
        students = [_student(index, f'Student {index}', '10', 1) for index in range(1, 6)]
        content = to_pdf(aggregate(students).values())
        self.assertEqual(len(re.findall(rb'/Type\s*/Page(?!s)', content)), 3)

    def test_tall_cells_continue_on_following_pages(self):
        email = 'x' * 3000 + '@example.com'
        metrics = aggregate([_student(1, 'Long', '10', 1, email=email)])
        report = _PdfReport(
            title='Report',
            headers=[column.label for column in STUDENT_COLUMNS],
            table=_table(metrics.values(), STUDENT_COLUMNS),
            summary=summarize(metrics.values()),
            generated_at=_at(2024, 5, 1),
            rows_per_page=25,
        )
        header_cells, header_height, pages = report.layout()
        first_capacity, capacity = report.capacities(header_height)

        self.assertGreater(len(pages), 1)
        for number, page in enumerate(pages):
            limit = first_capacity if number == 0 else capacity
            self.assertLessEqual(sum(height for _, height in page), limit)
        email_lines = [line for page in pages for cells, _ in page for line in cells[1]]
        self.assertEqual(''.join(email_lines), email)

        content = to_pdf(metrics.values())
        self.assertEqual(len(re.findall(rb'/Type\s*/Page(?!s)', content)), len(pages))

    def test_pdf_with_no_rows(self):
        self.assertTrue(to_pdf([]).startswith(b'%PDF'))

    def test_expenses_csv(self):
        text = expenses_to_csv([Expense(id=1, name='Balls', amount=Decimal('45.5'), incurred_at=date(2024, 4, 2))])
        self.assertEqual(list(csv.reader(StringIO(text)))[1], ['Balls', '45.50', '04/02/2024', '', ''])

    def test_export_filenames(self):
        today = date(2024, 3, 5)
        self.assertEqual(export_filename('students', today=today), 'students-all-time-2024-03-05.csv')
        self.assertEqual(export_filename('students', year=2024, extension='pdf', today=today), 'students-2024-2024-03-05.pdf')
        self.assertEqual(export_filename('expenses', today=today, include_scope=False), 'expenses-2024-03-05.csv')


class SummaryTests(ReportFixtureMixin, SimpleTestCase):
    def setUp(self):
        self.build_fixture()

    def test_financial_overview(self):
        overview = financial_overview(self.metrics, self.payments, month=(2024, 2))
        self.assertEqual(overview.total_revenue, Decimal('800'))
        self.assertEqual(overview.monthly_revenue, Decimal('320.00'))
        self.assertEqual(overview.total_lessons_sold, 9)
        self.assertEqual(overview.active_students, 1)
        self.assertEqual(overview.total_students, 3)
        self.assertEqual(overview.avg_revenue_per_student, Decimal('266.67'))

    def test_financial_overview_without_students(self):
        overview = financial_overview({}, [], month=(2024, 1))
        self.assertEqual(overview.avg_revenue_per_student, Decimal('0'))
        self.assertEqual(overview.monthly_revenue, Decimal('0'))

    def test_expense_summary_groups_by_category(self):
        summary = expense_summary(
            [
                Expense(id=1, name='Court', amount=Decimal('100'), category='Court Rental'),
                Expense(id=2, name='Ads', amount=Decimal('40'), category=None),
                Expense(id=3, name='Court 2', amount=Decimal('60'), category='Court Rental'),
            ]
        )
        self.assertEqual(summary.total, Decimal('200'))
        self.assertEqual(summary.count, 3)
        self.assertEqual(summary.by_category, (('Court Rental', Decimal('160')), ('Uncategorized', Decimal('40'))))


class ExpenseFilterTests(SimpleTestCase):
    today = date(2024, 3, 15)

    def setUp(self):
        self.expenses = [
            Expense(id=1, name='Court rental', amount=Decimal('120'), incurred_at=date(2024, 3, 2), category='Court Rental'),
            Expense(id=2, name='Ball machine', amount=Decimal('450'), incurred_at=date(2024, 2, 20), category='Equipment'),
            Expense(id=3, name='Flyers', amount=Decimal('45'), incurred_at=date(2024, 1, 5), category=None, notes='court-side ads'),
            Expense(id=4, name='USPTA dues', amount=Decimal('300'), incurred_at=date(2023, 11, 1), category='Certification/Training'),
            Expense(id=5, name='Undated', amount=Decimal('10'), incurred_at=None, category='Other'),
        ]

    def _ids(self, rows):
        return [expense.id for expense in rows]

    def test_text_search_covers_name_category_and_notes(self):
        rows = apply_expense_filters(self.expenses, {'text_query': 'COURT'})
        self.assertEqual(self._ids(rows), [1, 3])
        rows = apply_expense_filters(self.expenses, {'text_query': 'equip'})
        self.assertEqual(self._ids(rows), [2])

    def test_category_filter(self):
        rows = apply_expense_filters(self.expenses, {'category': 'Equipment'})
        self.assertEqual(self._ids(rows), [2])

    def test_period_presets(self):
        self.assertEqual(period_start('this_month', self.today), date(2024, 3, 1))
        self.assertEqual(period_start('this_year', self.today), date(2024, 1, 1))
        self.assertEqual(period_start('last_30', self.today), date(2024, 2, 14))
        self.assertEqual(period_start('last_90', self.today), date(2023, 12, 16))

        def ids_for(period):
            return self._ids(apply_expense_filters(self.expenses, {'period': period}, today=self.today))

        self.assertEqual(ids_for('this_month'), [1])
        self.assertEqual(ids_for('last_30'), [1, 2])
        self.assertEqual(ids_for('this_year'), [1, 2, 3])
        self.assertEqual(ids_for('last_90'), [1, 2, 3])

    def test_unknown_period_or_filter_rejected(self):
        with self.assertRaises(ValidationError):
            apply_expense_filters(self.expenses, {'period': 'fortnight'})
        with self.assertRaises(ValidationError):
            apply_expense_filters(self.expenses, {'vendor': 'Wilson'})

    def test_criteria_from_query_ignores_all(self):
        criteria = ExpenseCriteria.from_query({'q': ' ads ', 'category': 'all', 'period': 'last_90'})
        self.assertEqual(criteria, ExpenseCriteria(text_query='ads', category=None, period='last_90'))

    def test_sorting(self):
        self.assertEqual(self._ids(apply_expense_sort(self.expenses, 'amount', 'desc')), [2, 4, 1, 3, 5])
        self.assertEqual(self._ids(apply_expense_sort(self.expenses, 'date', 'desc')), [1, 2, 3, 4, 5])
        self.assertEqual(self._ids(apply_expense_sort(self.expenses, 'category', 'asc')), [3, 4, 1, 2, 5])
        self.assertEqual(self._ids(apply_expense_sort(self.expenses, 'name', 'asc')), [2, 1, 3, 5, 4])
        with self.assertRaises(ValidationError):
            apply_expense_sort(self.expenses, 'vendor')

    def test_breakdown_and_csv_follow_filtered_rows(self):
        rows = apply_expense_filters(self.expenses, {'period': 'this_year'}, today=self.today)
        summary = expense_summary(rows)
        self.assertEqual(summary.total, Decimal('615'))
        self.assertEqual(summary.by_category[0], ('Equipment', Decimal('450')))
        parsed = list(csv.reader(StringIO(expenses_to_csv(rows))))
        self.assertEqual([line[0] for line in parsed[1:]], ['Court rental', 'Ball machine', 'Flyers'])


class CollectorInjectedFetcherTests(SimpleTestCase):
    def _fetchers(self, **overrides):
        fetchers = {
            'students': lambda: [{'id': 1, 'full_name': 'Ava', 'total_revenue': '50'}],
            'payments': lambda: [],
            'lessons': lambda: [{'id': 1, 'student_id': 1, 'transaction_type': 'lesson_taken', 'occurred_at': '2024-01-10T09:00:00Z'}],
            'expenses': lambda: [],
            'bookings': lambda: [{'id': 1, 'referral_code': 'X', 'price': '70'}],
        }
        fetchers.update(overrides)
        return fetchers

    def test_unavailable_source_does_not_stop_others(self):
        def missing_table():
            raise DatabaseError('no such table: expenses')

        def not_provisioned():
            raise SourceUnavailable('bookings')

        collected = Collector(
            fetchers=self._fetchers(expenses=missing_table, bookings=not_provisioned),
            parallel=False,
        ).collect()
        self.assertEqual(collected.unavailable_sources, ('expenses', 'bookings'))
        self.assertFalse(collected.expenses.available)
        self.assertEqual(collected.expenses.records, ())
        self.assertIn('no such table', collected.expenses.error)
        self.assertTrue(collected.students.available)
        self.assertEqual(len(collected.students.records), 1)

    def test_available_but_empty_source_is_distinguished(self):
        collected = Collector(fetchers=self._fetchers(), parallel=False).collect()
        self.assertTrue(collected.expenses.available)
        self.assertEqual(collected.expenses.records, ())
        self.assertTrue(collected.fully_available)

    def test_malformed_rows_are_skipped_individually(self):
        collected = Collector(
            fetchers=self._fetchers(students=lambda: [{'full_name': 'No id'}, {'id': 2, 'full_name': 'Ben'}]),
            parallel=False,
        ).collect()
        self.assertEqual([student.id for student in collected.students.records], [2])
        self.assertEqual(collected.students.skipped, 1)

    def test_non_finite_numbers_fall_back_to_defaults(self):
        collected = Collector(
            fetchers=self._fetchers(
                students=lambda: [
                    {'id': 1, 'full_name': 'Ava', 'total_revenue': '50'},
                    {'id': 2, 'full_name': 'Ben', 'lesson_credits': 'Infinity'},
                    {'id': 3, 'full_name': 'Cleo', 'total_lessons_purchased': float('inf'), 'total_revenue': 'NaN'},
                ]
            ),
            parallel=False,
        ).collect()
        students = collected.students.records
        self.assertEqual([student.id for student in students], [1, 2, 3])
        self.assertEqual(students[1].lesson_credits, 0)
        self.assertEqual(students[2].total_lessons_purchased, 0)
        self.assertEqual(students[2].total_revenue, Decimal('0.00'))
        self.assertEqual(collected.students.skipped, 0)

    def test_unreadable_row_is_skipped_without_stopping_the_source(self):
        class Unprintable:
            def __str__(self):
                raise ValueError('unprintable')

        rows = [
            {'id': 1, 'student_id': 1, 'amount': '20'},
            ['not', 'a', 'row'],
            {'id': 3, 'student_id': 1, 'notes': Unprintable()},
        ]
        collected = Collector(fetchers=self._fetchers(payments=lambda: rows), parallel=False).collect()
        self.assertEqual([payment.id for payment in collected.payments.records], [1])
        self.assertEqual(collected.payments.skipped, 2)
        self.assertTrue(collected.payments.available)

    def test_unexpected_fetcher_errors_mark_source_unavailable(self):
        def missing_endpoint():
            raise ConnectionError('bookings endpoint missing')

        for parallel in (False, True):
            with self.subTest(parallel=parallel):
                collected = Collector(fetchers=self._fetchers(bookings=missing_endpoint), parallel=parallel).collect()
                self.assertEqual(collected.unavailable_sources, ('bookings',))
                self.assertIn('endpoint missing', collected.bookings.error)
                self.assertEqual(len(collected.students.records), 1)
                self.assertEqual(len(collected.lessons.records), 1)

    def test_parallel_collection_matches_sequential(self):
        sequential = Collector(fetchers=self._fetchers(), parallel=False).collect()
        parallel = Collector(fetchers=self._fetchers(), parallel=True).collect()
        self.assertEqual(sequential, parallel)

    def test_unknown_source_name_is_rejected(self):
        with self.assertRaises(ValueError):
            Collector(fetchers={'invoices': list})

    def test_string_timestamps_are_parsed(self):
        collected = Collector(fetchers=self._fetchers(), parallel=False).collect()
        self.assertEqual(collected.lessons.records[0].occurred_at, datetime(2024, 1, 10, 9, tzinfo=dt_timezone.utc))


class CollectorDatabaseTests(TestCase):
    def setUp(self):
        self.ava = StudentAccountModel.objects.create(
            full_name='Ava',
            email='ava@example.com',
            total_revenue=Decimal('500.00'),
            total_lessons_purchased=5,
            lesson_credits=3,
            lead_source=StudentAccountModel.LEAD_GOOGLE,
        )
        self.ben = StudentAccountModel.objects.create(
            full_name='Ben',
            email='ben@example.com',
            total_revenue=None,
            total_lessons_purchased=None,
            lead_source=StudentAccountModel.LEAD_REFERRAL,
            referred_by=self.ava,
        )
        self.cleo = StudentAccountModel.objects.create(
            full_name='Cleo',
            email='cleo@example.com',
            total_revenue=Decimal('300.00'),
            total_lessons_purchased=4,
            lead_source=StudentAccountModel.LEAD_REFERRAL,
            referred_by=self.ava,
            is_active=False,
        )
        PaymentTransactionModel.objects.create(student=self.ava, amount=Decimal('500.00'), credits_delta=5, occurred_at=_at(2024, 1, 2))
        PaymentTransactionModel.objects.create(student_id=9999, amount=Decimal('70.00'), credits_delta=1, occurred_at=_at(2024, 1, 3))
        LessonTransactionModel.objects.create(student=self.ava, occurred_at=_at(2024, 1, 10))
        LessonTransactionModel.objects.create(student=self.ava, occurred_at=_at(2024, 2, 1))
        LessonTransactionModel.objects.create(student=self.cleo, occurred_at=_at(2023, 6, 1))
        LessonTransactionModel.objects.create(
            student=self.cleo,
            transaction_type=LessonTransactionModel.TYPE_PACKAGE_PURCHASE,
            occurred_at=_at(2024, 6, 1),
        )
        ExpenseModel.objects.create(name='Court rental', amount=Decimal('120.00'), incurred_at=date(2024, 1, 5), category='Court Rental')
        WebsiteBookingModel.objects.create(customer_name='Web One', referral_code='X', price=Decimal('50.00'))
        WebsiteBookingModel.objects.create(customer_name='Web Two', referral_code='X', price=Decimal('70.00'))
        WebsiteBookingModel.objects.create(customer_name='Web Three', referral_code=None, price=Decimal('90.00'))

    def test_collects_every_store(self):
        collected = Collector(parallel=False).collect()
        self.assertTrue(collected.fully_available)
        self.assertEqual([student.display_name for student in collected.students.records], ['Ava', 'Ben', 'Cleo'])
        self.assertEqual(len(collected.payments.records), 2)
        self.assertEqual(len(collected.lessons.records), 4)
        self.assertEqual(len(collected.expenses.records), 1)
        self.assertEqual(len(collected.bookings.records), 3)
        ben = collected.students.records[1]
        self.assertEqual(ben.referred_by, self.ava.pk)
        self.assertEqual(ben.total_revenue, Decimal('0.00'))

    def test_revenue_report_end_to_end(self):
        report = build_revenue_report(
            collector=Collector(parallel=False),
            criteria={'year': 2024},
            sort_key='total_revenue',
            direction='desc',
            month=(2024, 1),
        )
        self.assertEqual([row.display_name for row in report.rows], ['Ava'])
        self.assertEqual(len(report.metrics), 3)
        self.assertEqual(report.summary, summarize(report.rows))

        self.assertEqual(report.app_referrers[self.ava.pk].referral_count, 2)
        self.assertEqual(report.app_referrers[self.ava.pk].referral_revenue, Decimal('300.00'))
        self.assertEqual(report.website_referrers['X'].referral_revenue, Decimal('120.00'))
        self.assertEqual(report.referral_totals.total_revenue, Decimal('420.00'))
        self.assertEqual(report.referral_totals.unique_referrers, 2)
        self.assertEqual([summary.key for summary in report.app_leaderboard], [self.ava.pk])

        self.assertEqual(report.overview.monthly_revenue, Decimal('570.00'))
        self.assertEqual(report.expenses.total, Decimal('120.00'))
        self.assertEqual(report.net_income, Decimal('680.00'))

        parsed = list(csv.reader(StringIO(report.to_csv())))
        self.assertEqual(len(parsed), 2)
        self.assertTrue(report.to_pdf(generated_at=_at(2024, 5, 1)).startswith(b'%PDF'))
        self.assertEqual(report.filename(extension='pdf', today=date(2024, 5, 1)), 'students-2024-2024-05-01.pdf')

    def test_expense_table_follows_its_own_filters(self):
        ExpenseModel.objects.create(name='Racquet strings', amount=Decimal('30.00'), incurred_at=date(2024, 1, 20), category='Equipment')
        ExpenseModel.objects.create(name='Ads', amount=Decimal('15.00'), incurred_at=date(2023, 12, 1))

        report = build_revenue_report(
            collector=Collector(parallel=False),
            expense_criteria={'period': 'this_year'},
            expense_sort_key='amount',
            expense_direction='desc',
            today=date(2024, 2, 1),
        )
        self.assertEqual([expense.name for expense in report.expense_rows], ['Court rental', 'Racquet strings'])
        self.assertEqual(report.expense_breakdown.total, Decimal('150.00'))
        self.assertEqual(report.expenses.total, Decimal('165.00'))
        self.assertEqual(report.net_income, Decimal('635.00'))
        self.assertEqual(len(list(csv.reader(StringIO(report.expenses_to_csv())))), 3)
        self.assertEqual(report.expense_filename(today=date(2024, 2, 1)), 'expenses-2024-02-01.csv')

    def test_report_degrades_when_a_store_is_missing(self):
        def missing_table():
            raise DatabaseError('relation "expenses" does not exist')

        report = build_revenue_report(collector=Collector(fetchers={'expenses': missing_table}, parallel=False))
        self.assertEqual(report.unavailable_sources, ('expenses',))
        self.assertEqual(report.expenses.total, Decimal('0.00'))
        self.assertEqual(len(report.rows), 3)
        self.assertEqual(report.filename(today=date(2024, 5, 1)), 'students-all-time-2024-05-01.csv')
