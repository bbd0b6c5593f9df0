from decimal import Decimal

from django.db import models
from django.utils import timezone


class WebsiteBooking(models.Model):
    """A package booking made on the public website.

    Customers here are not portal students; the only link back to the portal
    is the ``referral_code`` a customer entered at checkout.
    """

    customer_name = models.CharField(max_length=150, blank=True)
    customer_email = models.EmailField(blank=True)
    referral_code = models.CharField(max_length=40, null=True, blank=True)
    package_name = models.CharField(max_length=120, blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'bookings'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['referral_code'], name='bookings_referral_code_idx'),
        ]

    def __str__(self):
        return f"{self.customer_name or self.customer_email} - {self.package_name}"
