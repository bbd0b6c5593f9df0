import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='StudentAccount',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('full_name', models.CharField(max_length=150)),
                ('email', models.EmailField(blank=True, max_length=254)),
                ('lesson_credits', models.PositiveIntegerField(default=0)),
                ('total_revenue', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('total_lessons_purchased', models.PositiveIntegerField(blank=True, null=True)),
                (
                    'lead_source',
                    models.CharField(
                        blank=True,
                        choices=[
                            ('Referral', 'Referral'),
                            ('Groupon', 'Groupon'),
                            ('Findtennislessons', 'Findtennislessons'),
                            ('Playyourcourt', 'Playyourcourt'),
                            ('In Person', 'In Person'),
                            ('TeachMe', 'TeachMe'),
                            ('Thumbtack', 'Thumbtack'),
                            ('Facebook', 'Facebook'),
                            ('Instagram', 'Instagram'),
                            ('Google', 'Google'),
                            ('Website', 'Website'),
                            ('Other', 'Other'),
                        ],
                        max_length=30,
                        null=True,
                    ),
                ),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                (
                    'referred_by',
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name='referrals',
                        to='core_students.studentaccount',
                    ),
                ),
            ],
            options={
                'db_table': 'students',
                'ordering': ['full_name', 'id'],
                'indexes': [
                    models.Index(fields=['is_active'], name='students_active_idx'),
                    models.Index(fields=['lead_source'], name='students_lead_source_idx'),
                ],
            },
        ),
    ]
