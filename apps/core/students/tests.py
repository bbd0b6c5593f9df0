from decimal import Decimal
from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.db.models import Sum
from django.test import TestCase

from apps.finance.expenses.models import Expense
from apps.finance.payments.models import LessonTransaction, PaymentTransaction
from apps.finance.reports.collector import Collector
from apps.finance.reports.pipeline import build_revenue_report
from apps.operations.bookings.models import WebsiteBooking

from .models import StudentAccount


class StudentAccountModelTests(TestCase):
    def setUp(self):
        self.referrer = StudentAccount.objects.create(full_name='Ava Stone', email='ava@example.com')

    def test_student_cannot_refer_themselves(self):
        self.referrer.referred_by = self.referrer
        with self.assertRaises(ValidationError) as ctx:
            self.referrer.full_clean()
        self.assertIn('referred_by', ctx.exception.message_dict)

    def test_referred_student_must_use_referral_lead_source(self):
        student = StudentAccount(
            full_name='Ben Lee',
            referred_by=self.referrer,
            lead_source=StudentAccount.LEAD_GOOGLE,
        )
        with self.assertRaises(ValidationError) as ctx:
            student.full_clean()
        self.assertIn('lead_source', ctx.exception.message_dict)

        student.lead_source = StudentAccount.LEAD_REFERRAL
        student.full_clean()

    def test_name_is_trimmed_and_required(self):
        student = StudentAccount(full_name='  Cleo Park  ')
        student.full_clean()
        self.assertEqual(student.full_name, 'Cleo Park')

        with self.assertRaises(ValidationError):
            StudentAccount(full_name='   ').full_clean()

    def test_ledger_fields_may_be_missing(self):
        student = StudentAccount.objects.create(full_name='Dee')
        self.assertIsNone(student.total_revenue)
        self.assertIsNone(student.total_lessons_purchased)
        self.assertEqual(student.lesson_credits, 0)

    def test_deleting_referrer_keeps_referred_student(self):
        student = StudentAccount.objects.create(
            full_name='Eli',
            lead_source=StudentAccount.LEAD_REFERRAL,
            referred_by=self.referrer,
        )
        self.referrer.delete()
        student.refresh_from_db()
        self.assertIsNone(student.referred_by_id)


class SeedCommandTests(TestCase):
    def test_seed_creates_consistent_ledger(self):
        out = StringIO()
        call_command('seed', students=8, bookings=4, seed=3, stdout=out)

        self.assertIn('Database seeding complete!', out.getvalue())
        self.assertEqual(StudentAccount.objects.count(), 8)
        self.assertEqual(WebsiteBooking.objects.count(), 4)
        self.assertEqual(Expense.objects.count(), 12)

        for student in StudentAccount.objects.all():
            payments = PaymentTransaction.objects.filter(student=student)
            purchased = payments.aggregate(total=Sum('credits_delta'))['total'] or 0
            revenue = payments.aggregate(total=Sum('amount'))['total'] or Decimal('0.00')
            taken = LessonTransaction.objects.filter(student=student).count()
            self.assertEqual(student.total_lessons_purchased, purchased)
            self.assertEqual(student.total_revenue, revenue)
            self.assertEqual(student.lesson_credits, purchased - taken)
            if student.referred_by_id:
                self.assertEqual(student.lead_source, StudentAccount.LEAD_REFERRAL)

    def test_seeded_data_builds_a_report(self):
        call_command('seed', students=6, bookings=5, seed=11, stdout=StringIO())
        report = build_revenue_report(collector=Collector(parallel=False))

        self.assertTrue(report.collected.fully_available)
        self.assertEqual(len(report.rows), 6)
        self.assertEqual(report.summary.total_students, 6)
        self.assertEqual(
            report.referral_totals.website.total_referrals,
            WebsiteBooking.objects.exclude(referral_code__isnull=True).count(),
        )
