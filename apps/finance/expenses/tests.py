from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import TestCase
from django.utils import timezone

from .models import Expense


class ExpenseModelTests(TestCase):
    def test_defaults_to_today_without_category(self):
        expense = Expense.objects.create(name='Ball hopper', amount=Decimal('39.99'))
        self.assertEqual(expense.incurred_at, timezone.localdate())
        self.assertIsNone(expense.category)

    def test_name_and_amount_validated(self):
        with self.assertRaises(ValidationError):
            Expense(name='  ', amount=Decimal('5.00')).full_clean()
        with self.assertRaises(ValidationError):
            Expense(name='Refund', amount=Decimal('-5.00')).full_clean()
