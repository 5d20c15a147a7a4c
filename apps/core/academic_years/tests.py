from datetime import date

from django.db import IntegrityError
from django.test import TestCase

from apps.core.academic_years.models import AcademicYear
from apps.core.academic_years.services import activate_academic_year, get_current_academic_year


class AcademicYearLifecycleTests(TestCase):
    def setUp(self):
        self.year_one = AcademicYear.objects.create(
            name='2025-26',
            start_date=date(2025, 4, 1),
            end_date=date(2026, 3, 31),
            is_current=True,
        )
        self.year_two = AcademicYear.objects.create(
            name='2026-27',
            start_date=date(2026, 4, 1),
            end_date=date(2027, 3, 31),
        )

    def test_activate_switches_current_year(self):
        activate_academic_year(academic_year=self.year_two)

        self.year_one.refresh_from_db()
        self.year_two.refresh_from_db()

        self.assertFalse(self.year_one.is_current)
        self.assertTrue(self.year_two.is_current)
        self.assertEqual(get_current_academic_year(), self.year_two)

    def test_only_one_current_year_allowed(self):
        with self.assertRaises(IntegrityError):
            AcademicYear.objects.create(
                name='2027-28',
                start_date=date(2027, 4, 1),
                end_date=date(2028, 3, 31),
                is_current=True,
            )

    def test_contains_checks_date_range(self):
        self.assertTrue(self.year_one.contains(date(2025, 12, 1)))
        self.assertFalse(self.year_one.contains(date(2026, 4, 1)))
