import random
from datetime import date
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from faker import Faker

from apps.core.academic_years.models import AcademicYear
from apps.core.academic_years.services import activate_academic_year
from apps.core.academics.models import ClassLevel
from apps.core.fees.models import FeeComponent, FeeReceipt, FeeTemplate
from apps.core.fees.services import collect_payment, create_fee_template
from apps.core.students.services import admit_student
from apps.core.users.models import User

CLASS_NAMES = ['Nursery', 'LKG', 'UKG'] + [f'Class {number}' for number in range(1, 11)]


class Command(BaseCommand):
    help = 'Seeds the database with a demo academic year, fee templates, students and payments.'

    def add_arguments(self, parser):
        parser.add_argument('--students', type=int, default=5, help='Students admitted per class.')
        parser.add_argument('--year', type=int, default=date.today().year, help='Calendar year the session starts in.')

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding database...')

        fake = Faker('en_IN')
        start_year = options['year']

        academic_year, created = AcademicYear.objects.get_or_create(
            name=f'{start_year}-{str(start_year + 1)[-2:]}',
            defaults={
                'start_date': date(start_year, 4, 1),
                'end_date': date(start_year + 1, 3, 31),
            },
        )
        activate_academic_year(academic_year=academic_year)
        if created:
            self.stdout.write(self.style.SUCCESS(f'Created academic year: {academic_year.name}'))

        if not User.objects.filter(username='admin').exists():
            User.objects.create_superuser('admin', 'admin@example.com', 'password')
            self.stdout.write(self.style.SUCCESS('Created admin user.'))

        operator, created = User.objects.get_or_create(
            username='operator',
            defaults={'role': User.ROLE_OPERATOR},
        )
        if created:
            operator.set_password('password')
            operator.save()
            self.stdout.write(self.style.SUCCESS('Created operator user.'))

        for order, name in enumerate(CLASS_NAMES, start=1):
            class_level, created = ClassLevel.objects.get_or_create(
                name=name,
                defaults={'display_order': order},
            )
            if created:
                self.stdout.write(self.style.SUCCESS(f'Created class: {class_level.name}'))

            if FeeTemplate.objects.filter(academic_year=academic_year, class_level=class_level).exists():
                continue

            tuition = Decimal(1500 + order * 250)
            template = create_fee_template(
                name=f'{class_level.name} Fees',
                academic_year=academic_year,
                class_level=class_level,
                components=[
                    {'name': 'Admission Fee', 'amount': Decimal('5000'), 'frequency': FeeComponent.FREQUENCY_ONE_TIME},
                    {'name': 'Tuition Fee', 'amount': tuition, 'frequency': FeeComponent.FREQUENCY_MONTHLY},
                    {'name': 'Annual Charges', 'amount': Decimal('3000'), 'frequency': FeeComponent.FREQUENCY_YEARLY},
                ],
            )
            self.stdout.write(self.style.SUCCESS(
                f'  - Created fee template {template.name}: {template.total_yearly_amount}'
            ))

        payments = 0
        for class_level in ClassLevel.objects.filter(is_active=True):
            for _ in range(options['students']):
                student, ledger = admit_student(
                    first_name=fake.first_name(),
                    last_name=fake.last_name(),
                    date_of_birth=fake.date_of_birth(minimum_age=3, maximum_age=16),
                    gender=random.choice(['male', 'female']),
                    academic_year=academic_year,
                    class_level=class_level,
                    parent_phone=fake.unique.numerify('9#########'),
                    father_name=fake.name_male(),
                    mother_name=fake.name_female(),
                    address=fake.address(),
                )
                self.stdout.write(self.style.SUCCESS(f'Admitted student: {student}'))

                if ledger is None or random.random() < 0.3:
                    continue

                amount = min(ledger.due_amount, Decimal(random.choice([2000, 5000, 8000, 15000])))
                collect_payment(
                    ledger_id=ledger.pk,
                    amount_paid=amount,
                    payment_mode=random.choice([mode for mode, _ in FeeReceipt.PAYMENT_MODE_CHOICES]),
                    collected_by=operator,
                    reference_number=fake.bothify('REF-####-????'),
                )
                payments += 1

        self.stdout.write(self.style.SUCCESS(f'Recorded {payments} payments.'))
        self.stdout.write(self.style.SUCCESS('Database seeding complete!'))
