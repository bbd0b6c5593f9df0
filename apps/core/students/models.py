from django.core.exceptions import ValidationError
from django.db import models


class StudentAccount(models.Model):
    LEAD_REFERRAL = 'Referral'
    LEAD_GROUPON = 'Groupon'
    LEAD_FINDTENNISLESSONS = 'Findtennislessons'
    LEAD_PLAYYOURCOURT = 'Playyourcourt'
    LEAD_IN_PERSON = 'In Person'
    LEAD_TEACHME = 'TeachMe'
    LEAD_THUMBTACK = 'Thumbtack'
    LEAD_FACEBOOK = 'Facebook'
    LEAD_INSTAGRAM = 'Instagram'
    LEAD_GOOGLE = 'Google'
    LEAD_WEBSITE = 'Website'
    LEAD_OTHER = 'Other'
    LEAD_SOURCE_CHOICES = (
        (LEAD_REFERRAL, 'Referral'),
        (LEAD_GROUPON, 'Groupon'),
        (LEAD_FINDTENNISLESSONS, 'Findtennislessons'),
        (LEAD_PLAYYOURCOURT, 'Playyourcourt'),
        (LEAD_IN_PERSON, 'In Person'),
        (LEAD_TEACHME, 'TeachMe'),
        (LEAD_THUMBTACK, 'Thumbtack'),
        (LEAD_FACEBOOK, 'Facebook'),
        (LEAD_INSTAGRAM, 'Instagram'),
        (LEAD_GOOGLE, 'Google'),
        (LEAD_WEBSITE, 'Website'),
        (LEAD_OTHER, 'Other'),
    )

    full_name = models.CharField(max_length=150)
    email = models.EmailField(blank=True)
    lesson_credits = models.PositiveIntegerField(default=0)
    # Ledger fields: authoritative totals, maintained by the package workflow.
    total_revenue = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    total_lessons_purchased = models.PositiveIntegerField(null=True, blank=True)
    lead_source = models.CharField(max_length=30, choices=LEAD_SOURCE_CHOICES, null=True, blank=True)
    referred_by = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='referrals',
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'students'
        ordering = ['full_name', 'id']
        indexes = [
            models.Index(fields=['is_active'], name='students_active_idx'),
            models.Index(fields=['lead_source'], name='students_lead_source_idx'),
        ]

    def clean(self):
        super().clean()
        if self.full_name:
            self.full_name = self.full_name.strip()
        if not self.full_name:
            raise ValidationError({'full_name': 'Student name is required.'})
        if self.pk and self.referred_by_id == self.pk:
            raise ValidationError({'referred_by': 'A student cannot refer themselves.'})
        if self.referred_by_id and self.lead_source not in (None, '', self.LEAD_REFERRAL):
            raise ValidationError({'lead_source': 'Referred students must use the Referral lead source.'})

    def __str__(self):
        return self.full_name
