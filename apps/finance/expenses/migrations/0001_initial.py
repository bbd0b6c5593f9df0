import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Expense',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=150)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('incurred_at', models.DateField(default=django.utils.timezone.localdate)),
                (
                    'category',
                    models.CharField(
                        blank=True,
                        choices=[
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
                        ],
                        max_length=40,
                        null=True,
                    ),
                ),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'expenses',
                'ordering': ['-incurred_at', '-id'],
                'indexes': [
                    models.Index(fields=['incurred_at'], name='expenses_incurred_idx'),
                    models.Index(fields=['category'], name='expenses_category_idx'),
                ],
            },
        ),
    ]
