import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('core_students', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='PaymentTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('credits_delta', models.IntegerField(default=0)),
                (
                    'method',
                    models.CharField(
                        choices=[
                            ('Venmo', 'Venmo'),
                            ('Zelle', 'Zelle'),
                            ('Cash', 'Cash'),
                            ('Check', 'Check'),
                            ('Card', 'Credit/Debit Card'),
                            ('Gift Card', 'Gift Card'),
                            ('Other', 'Other'),
                        ],
                        default='Venmo',
                        max_length=20,
                    ),
                ),
                ('occurred_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('notes', models.TextField(blank=True)),
                (
                    'student',
                    models.ForeignKey(
                        db_constraint=False,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name='payment_transactions',
                        to='core_students.studentaccount',
                    ),
                ),
            ],
            options={
                'db_table': 'payment_transactions',
                'ordering': ['-occurred_at', '-id'],
                'abstract': False,
                'indexes': [
                    models.Index(fields=['student', 'occurred_at'], name='payment_tx_student_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LessonTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                (
                    'transaction_type',
                    models.CharField(
                        choices=[
                            ('lesson_taken', 'Lesson taken'),
                            ('package_purchase', 'Package purchase'),
                            ('other', 'Other'),
                        ],
                        default='lesson_taken',
                        max_length=30,
                    ),
                ),
                ('occurred_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('amount_paid', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('package_size', models.PositiveIntegerField(default=0)),
                (
                    'student',
                    models.ForeignKey(
                        db_constraint=False,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name='lesson_transactions',
                        to='core_students.studentaccount',
                    ),
                ),
            ],
            options={
                'db_table': 'lesson_transactions',
                'ordering': ['-occurred_at', '-id'],
                'abstract': False,
                'indexes': [
                    models.Index(
                        fields=['student', 'transaction_type', 'occurred_at'],
                        name='lesson_tx_student_idx',
                    ),
                ],
            },
        ),
    ]
