import json
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from apps.core.academic_years.models import AcademicYear
from apps.core.academics.models import ClassLevel
from apps.core.fees.models import StudentLedger
from apps.core.fees.services import create_fee_template

from .models import AdmissionCounter, Parent, Student, next_admission_number
from .services import admit_student


class StudentsBaseTestCase(TestCase):
    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2025-26',
            start_date=date(2025, 4, 1),
            end_date=date(2026, 3, 31),
            is_current=True,
        )
        self.class_level = ClassLevel.objects.create(name='Class 1', display_order=1)
        create_fee_template(
            name='Class 1 Fees',
            academic_year=self.year,
            class_level=self.class_level,
            components=[
                {'name': 'Tuition Fee', 'amount': Decimal('1000'), 'frequency': 'MONTHLY'},
                {'name': 'Admission Fee', 'amount': Decimal('5000'), 'frequency': 'ONE_TIME'},
            ],
        )

    def admit(self, first_name='Riya', phone='9876500001', **kwargs):
        kwargs.setdefault('class_level', self.class_level)
        return admit_student(
            first_name=first_name,
            last_name='Sharma',
            date_of_birth=date(2019, 5, 1),
            gender='female',
            academic_year=self.year,
            parent_phone=phone,
            father_name='Anil Sharma',
            **kwargs,
        )


class AdmissionNumberTests(TestCase):
    def test_numbers_are_sequential_per_year(self):
        self.assertEqual(next_admission_number(today=date(2025, 6, 1)), '125001')
        self.assertEqual(next_admission_number(today=date(2025, 7, 1)), '125002')
        self.assertEqual(next_admission_number(today=date(2026, 1, 5)), '126001')
        self.assertEqual(AdmissionCounter.objects.get(year_code='25').last_sequence, 2)


class AdmissionServiceTests(StudentsBaseTestCase):
    def test_admission_creates_student_and_ledger(self):
        student, ledger = self.admit()

        year_code = timezone.localdate().strftime('%y')
        self.assertEqual(student.admission_number, f'1{year_code}001')
        self.assertEqual(ledger.student, student)
        self.assertEqual(ledger.total_amount, Decimal('17000.00'))
        self.assertEqual(ledger.status, StudentLedger.STATUS_PENDING)
        self.assertEqual(ledger.installments.count(), 13)

    def test_siblings_share_parent(self):
        first, _ = self.admit('Riya')
        second, _ = self.admit('Kabir')

        self.assertEqual(first.parent_id, second.parent_id)
        self.assertEqual(Parent.objects.count(), 1)
        self.assertEqual(first.parent.children.count(), 2)
        self.assertNotEqual(first.admission_number, second.admission_number)

    def test_admission_without_fee_template_still_succeeds(self):
        class_two = ClassLevel.objects.create(name='Class 2', display_order=2)

        student, ledger = self.admit(class_level=class_two)

        self.assertIsNone(ledger)
        self.assertTrue(Student.objects.filter(pk=student.pk).exists())
        self.assertFalse(StudentLedger.objects.filter(student=student).exists())

    def test_ledger_failure_rolls_back_admission(self):
        with patch('apps.core.students.services.generate_ledger', side_effect=DatabaseError('disk full')):
            with self.assertRaises(DatabaseError):
                self.admit()

        self.assertFalse(Student.objects.exists())
        self.assertFalse(Parent.objects.exists())

    def test_future_date_of_birth_rejected(self):
        with self.assertRaises(ValidationError):
            admit_student(
                first_name='Riya',
                last_name='',
                date_of_birth=timezone.localdate() + timedelta(days=1),
                gender='female',
                academic_year=self.year,
                class_level=self.class_level,
                parent_phone='9876500001',
            )
        self.assertFalse(Student.objects.exists())


class AdmissionViewTests(StudentsBaseTestCase):
    def setUp(self):
        super().setUp()
        user_model = get_user_model()
        self.operator = user_model.objects.create_user(username='front_desk', password='pass12345', role='operator')
        self.teacher = user_model.objects.create_user(username='class_teacher', password='pass12345', role='teacher')
        self.payload = {
            'first_name': 'Riya',
            'last_name': 'Sharma',
            'date_of_birth': '2019-05-01',
            'gender': 'female',
            'academic_year': self.year.pk,
            'class_level': self.class_level.pk,
            'parent_phone': '9876500001',
            'father_name': 'Anil Sharma',
        }

    def post_json(self, payload):
        return self.client.post(reverse('student_admit'), data=json.dumps(payload), content_type='application/json')

    def test_operator_admits_student(self):
        self.client.force_login(self.operator)
        response = self.post_json(self.payload)

        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['ledger']['due_amount'], '17000.00')
        self.assertTrue(Student.objects.filter(admission_number=data['student']['admission_number']).exists())

    def test_teacher_cannot_admit(self):
        self.client.force_login(self.teacher)
        self.assertEqual(self.post_json(self.payload).status_code, 403)

    def test_invalid_phone_rejected(self):
        self.client.force_login(self.operator)
        response = self.post_json({**self.payload, 'parent_phone': 'call me'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('parent_phone', response.json()['errors'])

    def test_unknown_class_returns_404(self):
        self.client.force_login(self.operator)
        response = self.post_json({**self.payload, 'class_level': 999999})
        self.assertEqual(response.status_code, 404)
        self.assertFalse(Student.objects.exists())
