import random
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from faker import Faker

from apps.core.students.models import StudentAccount
from apps.finance.expenses.models import Expense
from apps.finance.payments.models import LessonTransaction, PaymentTransaction
from apps.operations.bookings.models import WebsiteBooking

PACKAGE_SIZES = (1, 5, 10)
LESSON_RATE = Decimal('70.00')


class Command(BaseCommand):
    help = 'Seeds the studio stores with sample students, transactions, expenses and website bookings.'

    def add_arguments(self, parser):
        parser.add_argument('--students', type=int, default=25)
        parser.add_argument('--bookings', type=int, default=15)
        parser.add_argument('--seed', type=int, default=None, help='Random seed for repeatable data.')

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding studio data...')

        fake = Faker()
        if options['seed'] is not None:
            Faker.seed(options['seed'])
            random.seed(options['seed'])

        now = timezone.now()
        students = []
        for _ in range(options['students']):
            referrer = random.choice(students) if students and random.random() < 0.3 else None
            student = StudentAccount.objects.create(
                full_name=fake.name(),
                email=fake.unique.email(),
                lead_source=(
                    StudentAccount.LEAD_REFERRAL
                    if referrer
                    else random.choice([choice for choice, _ in StudentAccount.LEAD_SOURCE_CHOICES[1:]])
                ),
                referred_by=referrer,
                is_active=random.random() < 0.8,
            )

            purchased = 0
            revenue = Decimal('0.00')
            for _ in range(random.randint(0, 3)):
                size = random.choice(PACKAGE_SIZES)
                amount = LESSON_RATE * size
                PaymentTransaction.objects.create(
                    student=student,
                    amount=amount,
                    credits_delta=size,
                    method=random.choice([choice for choice, _ in PaymentTransaction.METHOD_CHOICES]),
                    occurred_at=now - timedelta(days=random.randint(0, 540)),
                    notes=f'{size}-lesson package',
                )
                purchased += size
                revenue += amount

            taken = random.randint(0, purchased)
            for _ in range(taken):
                LessonTransaction.objects.create(
                    student=student,
                    transaction_type=LessonTransaction.TYPE_LESSON_TAKEN,
                    occurred_at=now - timedelta(days=random.randint(0, 540)),
                )

            student.total_revenue = revenue
            student.total_lessons_purchased = purchased
            student.lesson_credits = purchased - taken
            student.save(update_fields=['total_revenue', 'total_lessons_purchased', 'lesson_credits'])
            students.append(student)

        self.stdout.write(self.style.SUCCESS(f'Created {len(students)} students.'))

        categories = [choice for choice, _ in Expense.CATEGORY_CHOICES]
        for _ in range(12):
            Expense.objects.create(
                name=fake.bs().title(),
                amount=Decimal(random.randint(20, 600)),
                incurred_at=fake.date_between(start_date='-1y', end_date='today'),
                category=random.choice(categories + [None]),
            )
        self.stdout.write(self.style.SUCCESS('Created 12 expenses.'))

        codes = [fake.lexify(text='????').upper() for _ in range(4)]
        for _ in range(options['bookings']):
            WebsiteBooking.objects.create(
                customer_name=fake.name(),
                customer_email=fake.email(),
                referral_code=random.choice(codes + [None]),
                package_name=random.choice(['Single Lesson', '5-Lesson Pack', '10-Lesson Pack']),
                price=Decimal(random.choice([70, 325, 600])),
                created_at=now - timedelta(days=random.randint(0, 365)),
            )
        self.stdout.write(self.style.SUCCESS(f"Created {options['bookings']} website bookings."))

        self.stdout.write(self.style.SUCCESS('Database seeding complete!'))
