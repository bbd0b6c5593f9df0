from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class Expense(models.Model):
    CATEGORY_CHOICES = (
        ('Equipment', 'Equipment'),
        ('Court Rental', 'Court Rental'),
        ('Marketing', 'Marketing'),
        ('Travel', 'Travel'),
        ('Insurance', 'Insurance'),
        ('Software/Subscriptions', 'Software/Subscriptions'),
        ('Certification/Training', 'Certification/Training'),
        ('Supplies', 'Supplies'),
        ('Taxes', 'Taxes'),
        ('Other', 'Other'),
    )

    name = models.CharField(max_length=150)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    incurred_at = models.DateField(default=timezone.localdate)
    category = models.CharField(max_length=40, choices=CATEGORY_CHOICES, null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'expenses'
        ordering = ['-incurred_at', '-id']
        indexes = [
            models.Index(fields=['incurred_at'], name='expenses_incurred_idx'),
            models.Index(fields=['category'], name='expenses_category_idx'),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Expense name is required.'})
        if self.amount is None or self.amount < 0:
            raise ValidationError({'amount': 'Amount must be zero or greater.'})

    def __str__(self):
        return f"{self.name} ({self.amount})"
