from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import TestCase

from apps.core.students.models import StudentAccount

from .models import LessonTransaction, PaymentTransaction


class FinancialRecordTests(TestCase):
    def setUp(self):
        self.student = StudentAccount.objects.create(full_name='Ava Stone')

    def test_transactions_cannot_be_deleted(self):
        payment = PaymentTransaction.objects.create(student=self.student, amount=Decimal('70.00'), credits_delta=1)
        lesson = LessonTransaction.objects.create(student=self.student)
        with self.assertRaises(ValidationError):
            payment.delete()
        with self.assertRaises(ValidationError):
            lesson.delete()
        self.assertEqual(PaymentTransaction.objects.count(), 1)
        self.assertEqual(LessonTransaction.objects.count(), 1)

    def test_negative_amount_rejected(self):
        payment = PaymentTransaction(student=self.student, amount=Decimal('-5.00'))
        with self.assertRaises(ValidationError):
            payment.full_clean()

    def test_transactions_may_outlive_their_student(self):
        PaymentTransaction.objects.create(student_id=4242, amount=Decimal('10.00'))
        self.assertEqual(PaymentTransaction.objects.filter(student_id=4242).count(), 1)
