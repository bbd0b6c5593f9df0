import django.utils.timezone
from decimal import Decimal
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='WebsiteBooking',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('customer_name', models.CharField(blank=True, max_length=150)),
                ('customer_email', models.EmailField(blank=True, max_length=254)),
                ('referral_code', models.CharField(blank=True, max_length=40, null=True)),
                ('package_name', models.CharField(blank=True, max_length=120)),
                ('price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'bookings',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['referral_code'], name='bookings_referral_code_idx'),
                ],
            },
        ),
    ]
