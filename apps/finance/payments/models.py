from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from apps.core.students.models import StudentAccount


class FinancialRecordModel(models.Model):
    class Meta:
        abstract = True

    def delete(self, *args, **kwargs):
        raise ValidationError('Financial records cannot be deleted. Use a reversing transaction.')


class PaymentTransaction(FinancialRecordModel):
    METHOD_VENMO = 'Venmo'
    METHOD_ZELLE = 'Zelle'
    METHOD_CASH = 'Cash'
    METHOD_CHECK = 'Check'
    METHOD_CARD = 'Card'
    METHOD_GIFT_CARD = 'Gift Card'
    METHOD_OTHER = 'Other'
    METHOD_CHOICES = (
        (METHOD_VENMO, 'Venmo'),
        (METHOD_ZELLE, 'Zelle'),
        (METHOD_CASH, 'Cash'),
        (METHOD_CHECK, 'Check'),
        (METHOD_CARD, 'Credit/Debit Card'),
        (METHOD_GIFT_CARD, 'Gift Card'),
        (METHOD_OTHER, 'Other'),
    )

    # Student rows can be merged or removed independently of their history.
    student = models.ForeignKey(
        StudentAccount,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='payment_transactions',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    credits_delta = models.IntegerField(default=0)
    method = models.CharField(max_length=20, choices=METHOD_CHOICES, default=METHOD_VENMO)
    occurred_at = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True)

    class Meta:
        db_table = 'payment_transactions'
        ordering = ['-occurred_at', '-id']
        indexes = [
            models.Index(fields=['student', 'occurred_at'], name='payment_tx_student_idx'),
        ]

    def clean(self):
        super().clean()
        if self.amount is None or self.amount < 0:
            raise ValidationError({'amount': 'Amount must be zero or greater.'})

    def __str__(self):
        return f"{self.student_id} {self.amount} ({self.method})"


class LessonTransaction(FinancialRecordModel):
    TYPE_LESSON_TAKEN = 'lesson_taken'
    TYPE_PACKAGE_PURCHASE = 'package_purchase'
    TYPE_OTHER = 'other'
    TYPE_CHOICES = (
        (TYPE_LESSON_TAKEN, 'Lesson taken'),
        (TYPE_PACKAGE_PURCHASE, 'Package purchase'),
        (TYPE_OTHER, 'Other'),
    )

    student = models.ForeignKey(
        StudentAccount,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='lesson_transactions',
    )
    transaction_type = models.CharField(max_length=30, choices=TYPE_CHOICES, default=TYPE_LESSON_TAKEN)
    occurred_at = models.DateTimeField(default=timezone.now)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    package_size = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'lesson_transactions'
        ordering = ['-occurred_at', '-id']
        indexes = [
            models.Index(fields=['student', 'transaction_type', 'occurred_at'], name='lesson_tx_student_idx'),
        ]

    def __str__(self):
        return f"{self.student_id} {self.transaction_type} {self.occurred_at:%Y-%m-%d}"
