import json
import re
import threading
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase
from django.urls import reverse
from django.utils import timezone

from apps.core.academic_years.models import AcademicYear
from apps.core.academics.models import ClassLevel
from apps.core.students.models import Parent, Student
from apps.core.users.models import AuditLog

from .exceptions import AcademicYearLocked, InvalidAmount, NotFound, TransactionFailure
from .models import (
    FeeComponent,
    FeeReceipt,
    FeeTemplate,
    LedgerConcession,
    LedgerInstallment,
    StudentLedger,
)
from .receipts import balances_after_posting, build_fee_receipt_image, generate_fee_receipt_pdf
from .reports import (
    collection_summary,
    dashboard_stats,
    defaulters,
    get_student_ledger,
    payment_history,
    search_ledgers,
)
from .services import (
    apply_concession,
    build_installment_schedule,
    collect_payment,
    create_fee_template,
    generate_ledger,
    generate_receipt_number,
)


class FeeFixtureMixin:
    def setUp(self):
        cache.clear()
        user_model = get_user_model()
        self.today = timezone.localdate()

        self.year = AcademicYear.objects.create(
            name='2025-26',
            start_date=date(2025, 4, 1),
            end_date=date(2026, 3, 31),
            is_current=True,
        )
        self.class_level = ClassLevel.objects.create(name='Class 5', display_order=5)
        self.parent = Parent.objects.create(primary_phone='9876500001', father_name='Anil Sharma')

        self.admin = user_model.objects.create_user(username='fees_admin', password='pass12345', role='admin')
        self.operator = user_model.objects.create_user(username='fees_operator', password='pass12345', role='operator')
        self.teacher = user_model.objects.create_user(username='fees_teacher', password='pass12345', role='teacher')

        self.template = create_fee_template(
            name='Class 5 Fees',
            academic_year=self.year,
            class_level=self.class_level,
            components=[
                {'name': 'Admission Fee', 'amount': Decimal('40000'), 'frequency': FeeComponent.FREQUENCY_ONE_TIME},
                {'name': 'Annual Charges', 'amount': Decimal('5000'), 'frequency': FeeComponent.FREQUENCY_YEARLY},
                {'name': 'Activity Fee', 'amount': Decimal('5000'), 'frequency': FeeComponent.FREQUENCY_ONE_TIME},
            ],
        )
        self.student = self.make_student('Riya')
        self.ledger = generate_ledger(student=self.student, academic_year=self.year, class_level=self.class_level)

    def make_student(self, first_name, class_level=None):
        return Student.objects.create(
            first_name=first_name,
            last_name='Sharma',
            date_of_birth=date(2015, 6, 1),
            gender='female',
            parent=self.parent,
            academic_year=self.year,
            class_level=class_level or self.class_level,
        )

    def pay(self, amount, **kwargs):
        kwargs.setdefault('payment_mode', FeeReceipt.MODE_CASH)
        kwargs.setdefault('collected_by', self.operator)
        return collect_payment(ledger_id=self.ledger.pk, amount_paid=amount, **kwargs)

    def installments(self, ledger=None):
        return list(LedgerInstallment.objects.filter(ledger=ledger or self.ledger).order_by('position'))

    def assertBalances(self, ledger, final_amount, paid_amount, due_amount, status):
        ledger.refresh_from_db()
        self.assertEqual(ledger.final_amount, Decimal(final_amount))
        self.assertEqual(ledger.paid_amount, Decimal(paid_amount))
        self.assertEqual(ledger.due_amount, Decimal(due_amount))
        self.assertEqual(ledger.status, status)

    def assertInstallmentsMatchLedger(self, ledger):
        total_paid = sum((row.paid_amount for row in self.installments(ledger)), Decimal('0'))
        ledger.refresh_from_db()
        self.assertEqual(total_paid, ledger.paid_amount)


class FeesBaseTestCase(FeeFixtureMixin, TestCase):
    pass


class FeeTemplateTests(FeesBaseTestCase):
    def test_yearly_total_counts_monthly_components_twelve_times(self):
        template = create_fee_template(
            name='Class 6 Fees',
            academic_year=self.year,
            class_level=ClassLevel.objects.create(name='Class 6', display_order=6),
            components=[
                {'name': 'Tuition Fee', 'amount': Decimal('1500'), 'frequency': FeeComponent.FREQUENCY_MONTHLY},
                {'name': 'Exam Fee', 'amount': Decimal('2000'), 'frequency': FeeComponent.FREQUENCY_QUARTERLY},
            ],
        )
        self.assertEqual(template.total_yearly_amount, Decimal('20000.00'))
        self.assertEqual(template.components.count(), 2)
        self.assertEqual(template.components.first().due_day, 10)

    def test_second_template_for_same_class_and_year_rejected(self):
        with self.assertRaises(ValidationError):
            create_fee_template(
                name='Duplicate',
                academic_year=self.year,
                class_level=self.class_level,
                components=[{'name': 'Tuition Fee', 'amount': Decimal('100'), 'frequency': 'YEARLY'}],
            )

    def test_negative_component_amount_rejected(self):
        with self.assertRaises(ValidationError):
            create_fee_template(
                name='Class 7 Fees',
                academic_year=self.year,
                class_level=ClassLevel.objects.create(name='Class 7', display_order=7),
                components=[{'name': 'Tuition Fee', 'amount': Decimal('-1'), 'frequency': 'YEARLY'}],
            )
        self.assertFalse(FeeTemplate.objects.filter(name='Class 7 Fees').exists())


class LedgerGenerationTests(FeesBaseTestCase):
    def test_generated_ledger_starts_pending_with_full_due(self):
        self.assertBalances(self.ledger, '50000.00', '0.00', '50000.00', StudentLedger.STATUS_PENDING)
        self.assertEqual(self.ledger.total_amount, Decimal('50000.00'))
        self.assertEqual(self.ledger.concession_amount, Decimal('0.00'))
        self.assertEqual(
            [(row.name, row.amount, row.status) for row in self.installments()],
            [
                ('Admission Fee', Decimal('40000.00'), 'PENDING'),
                ('Annual Charges', Decimal('5000.00'), 'PENDING'),
                ('Activity Fee', Decimal('5000.00'), 'PENDING'),
            ],
        )

    def test_monthly_components_expand_from_year_start_with_clamped_due_day(self):
        class_six = ClassLevel.objects.create(name='Class 6', display_order=6)
        create_fee_template(
            name='Class 6 Fees',
            academic_year=self.year,
            class_level=class_six,
            components=[
                {'name': 'Tuition Fee', 'amount': Decimal('1000'), 'frequency': 'MONTHLY', 'due_day': 31},
                {'name': 'Exam Fee', 'amount': Decimal('2000'), 'frequency': 'QUARTERLY', 'due_day': 5},
            ],
        )
        ledger = generate_ledger(student=self.make_student('Aarav', class_six), academic_year=self.year, class_level=class_six)

        rows = self.installments(ledger)
        self.assertEqual(len(rows), 13)
        self.assertEqual(ledger.total_amount, Decimal('14000.00'))
        self.assertEqual(rows[0].name, 'Tuition Fee - April')
        self.assertEqual(rows[0].due_date, date(2025, 4, 30))
        self.assertEqual(rows[1].due_date, date(2025, 5, 31))
        self.assertEqual(rows[10].name, 'Tuition Fee - February')
        self.assertEqual(rows[10].due_date, date(2026, 2, 28))
        self.assertEqual(rows[11].due_date, date(2026, 3, 31))
        self.assertEqual(rows[12].name, 'Exam Fee')
        self.assertEqual(rows[12].due_date, date(2025, 4, 5))

    def test_schedule_follows_academic_year_start_month(self):
        component = FeeComponent(name='Tuition Fee', amount=Decimal('100'), frequency='MONTHLY', due_day=10)
        schedule = build_installment_schedule([component], date(2024, 6, 1))
        self.assertEqual(schedule[0]['due_date'], date(2024, 6, 10))
        self.assertEqual(schedule[-1]['due_date'], date(2025, 5, 10))

    def test_no_template_returns_none(self):
        class_nine = ClassLevel.objects.create(name='Class 9', display_order=9)
        student = self.make_student('Kabir', class_nine)

        with self.assertLogs('apps.core.fees.services', level='WARNING'):
            ledger = generate_ledger(student=student, academic_year=self.year, class_level=class_nine)

        self.assertIsNone(ledger)
        self.assertFalse(StudentLedger.objects.filter(student=student).exists())

    def test_duplicate_ledger_rejected(self):
        with self.assertRaises(ValidationError):
            generate_ledger(student=self.student, academic_year=self.year, class_level=self.class_level)

    def test_missing_class_raises_not_found(self):
        with self.assertRaises(NotFound):
            generate_ledger(student=self.student, academic_year=self.year, class_level=999999)

    def test_installments_are_snapshots_of_template(self):
        FeeComponent.objects.filter(template=self.template, name='Admission Fee').update(amount=Decimal('1.00'))
        self.assertEqual(self.installments()[0].amount, Decimal('40000.00'))

    def test_ledger_cannot_be_deleted(self):
        with self.assertRaises(ValidationError):
            self.ledger.delete()

    def test_zero_fee_template_generates_paid_ledger(self):
        class_ten = ClassLevel.objects.create(name='Class 10', display_order=10)
        create_fee_template(
            name='Class 10 Fees',
            academic_year=self.year,
            class_level=class_ten,
            components=[{'name': 'Annual Charges', 'amount': Decimal('0'), 'frequency': FeeComponent.FREQUENCY_YEARLY}],
        )
        ledger = generate_ledger(student=self.make_student('Ishaan', class_ten), academic_year=self.year, class_level=class_ten)

        self.assertBalances(ledger, '0.00', '0.00', '0.00', StudentLedger.STATUS_PAID)
        self.assertEqual([row.status for row in self.installments(ledger)], ['PAID'])
        self.assertEqual(defaulters(class_level=class_ten), [])
        with self.assertRaises(InvalidAmount):
            collect_payment(
                ledger_id=ledger.pk,
                amount_paid=Decimal('1'),
                payment_mode=FeeReceipt.MODE_CASH,
                collected_by=self.operator,
            )


class PaymentProcessorTests(FeesBaseTestCase):
    def test_partial_payment_scenario(self):
        receipt = self.pay(Decimal('42000'))

        self.assertEqual(receipt.amount_paid, Decimal('42000.00'))
        self.assertBalances(self.ledger, '50000.00', '42000.00', '8000.00', StudentLedger.STATUS_PARTIAL)
        first, second, third = self.installments()
        self.assertEqual((first.paid_amount, first.status), (Decimal('40000.00'), 'PAID'))
        self.assertEqual((second.paid_amount, second.status), (Decimal('2000.00'), 'PARTIAL'))
        self.assertEqual((third.paid_amount, third.status), (Decimal('0.00'), 'PENDING'))
        self.assertInstallmentsMatchLedger(self.ledger)

    def test_earlier_installments_are_paid_first(self):
        self.pay(Decimal('45000'))
        self.assertEqual([row.status for row in self.installments()], ['PAID', 'PAID', 'PENDING'])

        self.pay(Decimal('2500'))
        self.assertEqual([row.status for row in self.installments()], ['PAID', 'PAID', 'PARTIAL'])
        self.assertBalances(self.ledger, '50000.00', '47500.00', '2500.00', StudentLedger.STATUS_PARTIAL)
        self.assertInstallmentsMatchLedger(self.ledger)

    def test_payment_equal_to_due_clears_ledger(self):
        self.pay(Decimal('50000.00'))

        self.assertBalances(self.ledger, '50000.00', '50000.00', '0.00', StudentLedger.STATUS_PAID)
        self.assertTrue(all(row.status == 'PAID' for row in self.installments()))
        self.assertTrue(all(row.waived_amount == 0 for row in self.installments()))

    def test_overpayment_rejected_without_changes(self):
        self.pay(Decimal('1000'))
        before = [(row.paid_amount, row.status) for row in self.installments()]

        with self.assertRaises(InvalidAmount):
            self.pay(Decimal('49000.01'))

        self.assertBalances(self.ledger, '50000.00', '1000.00', '49000.00', StudentLedger.STATUS_PARTIAL)
        self.assertEqual([(row.paid_amount, row.status) for row in self.installments()], before)
        self.assertEqual(FeeReceipt.objects.filter(ledger=self.ledger).count(), 1)

    def test_zero_and_negative_amounts_rejected(self):
        for amount in ('0', '-10', 'abc'):
            with self.assertRaises(InvalidAmount):
                self.pay(amount)
        self.assertFalse(FeeReceipt.objects.exists())

    def test_unknown_ledger_raises_not_found(self):
        with self.assertRaises(NotFound):
            collect_payment(
                ledger_id=999999,
                amount_paid=Decimal('10'),
                payment_mode=FeeReceipt.MODE_CASH,
                collected_by=self.operator,
            )

    def test_locked_year_rejects_payment(self):
        self.year.is_locked = True
        self.year.save(update_fields=['is_locked'])

        with self.assertRaises(AcademicYearLocked):
            self.pay(Decimal('100'))
        self.assertBalances(self.ledger, '50000.00', '0.00', '50000.00', StudentLedger.STATUS_PENDING)

    def test_missing_final_amount_is_repaired_before_payment(self):
        other = generate_ledger(
            student=self.make_student('Meera'),
            academic_year=self.year,
            class_level=self.class_level,
        )
        StudentLedger.objects.filter(pk=self.ledger.pk).update(final_amount=None)

        with self.assertLogs('apps.core.fees.services', level='WARNING'):
            self.pay(Decimal('42000'))
        collect_payment(
            ledger_id=other.pk,
            amount_paid=Decimal('42000'),
            payment_mode=FeeReceipt.MODE_CASH,
            collected_by=self.operator,
        )

        self.ledger.refresh_from_db()
        other.refresh_from_db()
        self.assertEqual(
            (self.ledger.final_amount, self.ledger.paid_amount, self.ledger.due_amount, self.ledger.status),
            (other.final_amount, other.paid_amount, other.due_amount, other.status),
        )

    def test_repair_uses_existing_concession(self):
        StudentLedger.objects.filter(pk=self.ledger.pk).update(
            final_amount=None,
            concession_amount=Decimal('5000'),
        )
        self.pay(Decimal('1000'))
        self.assertBalances(self.ledger, '45000.00', '1000.00', '44000.00', StudentLedger.STATUS_PARTIAL)

    def test_retry_with_same_idempotency_key_returns_original_receipt(self):
        first = self.pay(Decimal('1000'), idempotency_key='counter-1-0001')
        second = self.pay(Decimal('1000'), idempotency_key='counter-1-0001')

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(FeeReceipt.objects.filter(ledger=self.ledger).count(), 1)
        self.assertBalances(self.ledger, '50000.00', '1000.00', '49000.00', StudentLedger.STATUS_PARTIAL)

    def test_reused_idempotency_key_with_different_amount_rejected(self):
        self.pay(Decimal('1000'), idempotency_key='counter-1-0002')

        with self.assertRaises(InvalidAmount):
            self.pay(Decimal('2000'), idempotency_key='counter-1-0002')

        self.assertEqual(FeeReceipt.objects.filter(ledger=self.ledger).count(), 1)
        self.assertBalances(self.ledger, '50000.00', '1000.00', '49000.00', StudentLedger.STATUS_PARTIAL)

    def test_receipt_keeps_balances_from_time_of_posting(self):
        first = self.pay(Decimal('1000'))
        self.pay(Decimal('2000'))

        first = FeeReceipt.objects.get(pk=first.pk)
        self.assertEqual((first.paid_after, first.due_after), (Decimal('1000.00'), Decimal('49000.00')))
        self.assertEqual(balances_after_posting(first), (Decimal('1000.00'), Decimal('49000.00')))

        drawn = MagicMock()
        with patch('apps.core.fees.receipts.ImageDraw.Draw', return_value=drawn):
            build_fee_receipt_image(first)
        lines = [call.args[1] for call in drawn.text.call_args_list]
        self.assertIn('Total Paid: 1000.00', lines)
        self.assertIn('Balance Due: 49000.00', lines)
        self.assertIn('Status: Partially paid', lines)

    def test_receipt_without_stored_balances_falls_back_to_earlier_receipts(self):
        first = self.pay(Decimal('1000'))
        second = self.pay(Decimal('2000'))
        self.pay(Decimal('500'))
        FeeReceipt.objects.filter(ledger=self.ledger).update(paid_after=None, due_after=None)

        self.assertEqual(
            balances_after_posting(FeeReceipt.objects.get(pk=first.pk)),
            (Decimal('1000.00'), Decimal('49000.00')),
        )
        self.assertEqual(
            balances_after_posting(FeeReceipt.objects.get(pk=second.pk)),
            (Decimal('3000.00'), Decimal('47000.00')),
        )

    def test_storage_failure_rolls_back_receipt_and_installments(self):
        with patch.object(StudentLedger, 'save', side_effect=DatabaseError('disk full')):
            with self.assertLogs('apps.core.fees.services', level='ERROR'):
                with self.assertRaises(TransactionFailure):
                    self.pay(Decimal('42000'))

        self.assertFalse(FeeReceipt.objects.exists())
        self.assertTrue(all(row.paid_amount == 0 for row in self.installments()))
        self.assertBalances(self.ledger, '50000.00', '0.00', '50000.00', StudentLedger.STATUS_PENDING)

    def test_receipt_number_format(self):
        number = generate_receipt_number(now=timezone.now())
        self.assertRegex(number, r'^REC-\d{20}-[0-9A-F]{4}$')
        self.assertNotEqual(number, generate_receipt_number())

    def test_receipts_are_immutable(self):
        receipt = self.pay(Decimal('500'))
        receipt.remarks = 'edited'
        with self.assertRaises(ValidationError):
            receipt.save()
        with self.assertRaises(ValidationError):
            receipt.delete()


class ConcessionTests(FeesBaseTestCase):
    def test_concession_covering_paid_amount_forces_installments_paid(self):
        self.pay(Decimal('42000'))

        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('10000'), reason='Sibling', applied_by=self.admin)

        self.assertBalances(self.ledger, '40000.00', '42000.00', '0.00', StudentLedger.STATUS_PAID)
        rows = self.installments()
        self.assertTrue(all(row.status == 'PAID' for row in rows))
        self.assertEqual([row.waived_amount for row in rows], [Decimal('0.00'), Decimal('3000.00'), Decimal('5000.00')])
        self.assertInstallmentsMatchLedger(self.ledger)

    def test_concession_replaces_previous_value(self):
        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('5000'), reason='Merit')
        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('2000'), reason='Revised')

        self.ledger.refresh_from_db()
        self.assertEqual(self.ledger.concession_amount, Decimal('2000.00'))
        self.assertBalances(self.ledger, '48000.00', '0.00', '48000.00', StudentLedger.STATUS_PENDING)
        self.assertIn('Revised', self.ledger.remarks)

    def test_reducing_concession_reopens_waived_installments(self):
        self.pay(Decimal('42000'))
        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('10000'), reason='Sibling')
        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('0'), reason='Withdrawn')

        self.assertBalances(self.ledger, '50000.00', '42000.00', '8000.00', StudentLedger.STATUS_PARTIAL)
        self.assertEqual([row.status for row in self.installments()], ['PAID', 'PARTIAL', 'PENDING'])
        self.assertTrue(all(row.waived_amount == 0 for row in self.installments()))

    def test_concession_history_is_kept(self):
        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('5000'), reason='Merit', applied_by=self.admin)
        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('7500'), reason='Staff ward', applied_by=self.admin)

        history = list(LedgerConcession.objects.filter(ledger=self.ledger).order_by('id'))
        self.assertEqual(len(history), 2)
        self.assertEqual(history[1].previous_amount, Decimal('5000.00'))
        self.assertEqual(history[1].amount, Decimal('7500.00'))
        self.assertEqual(history[0].reason, 'Merit')

    def test_concession_out_of_range_rejected(self):
        for amount in ('-1', '50000.01'):
            with self.assertRaises(InvalidAmount):
                apply_concession(ledger_id=self.ledger.pk, concession_amount=amount, reason='Bad')
        self.assertFalse(LedgerConcession.objects.exists())

    def test_concession_requires_reason(self):
        with self.assertRaises(ValidationError):
            apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('100'), reason='  ')

    def test_locked_year_rejects_concession(self):
        self.year.is_locked = True
        self.year.save(update_fields=['is_locked'])
        with self.assertRaises(AcademicYearLocked):
            apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('100'), reason='Merit')

    def test_payment_after_full_concession_is_rejected(self):
        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('50000'), reason='Full scholarship')
        self.assertBalances(self.ledger, '0.00', '0.00', '0.00', StudentLedger.STATUS_PAID)

        with self.assertRaises(InvalidAmount):
            self.pay(Decimal('1'))


class FeeReportTests(FeesBaseTestCase):
    def test_collection_summary_groups_by_mode(self):
        self.pay(Decimal('1000'), payment_mode=FeeReceipt.MODE_CASH)
        self.pay(Decimal('500'), payment_mode=FeeReceipt.MODE_UPI)
        self.pay(Decimal('250'), payment_mode=FeeReceipt.MODE_CASH)

        summary = collection_summary(start_date=self.today, end_date=self.today)

        self.assertEqual(summary['total_collection'], Decimal('1750.00'))
        by_mode = {row['payment_mode']: row for row in summary['breakdown']}
        self.assertEqual(by_mode['CASH']['total_amount'], Decimal('1250.00'))
        self.assertEqual(by_mode['CASH']['count'], 2)
        self.assertEqual(by_mode['UPI']['count'], 1)

    def test_collection_summary_excludes_dates_outside_range(self):
        self.pay(Decimal('1000'), payment_date=self.today - timedelta(days=10))
        summary = collection_summary(start_date=self.today, end_date=self.today)
        self.assertEqual(summary['total_collection'], Decimal('0.00'))
        self.assertEqual(summary['breakdown'], [])

    def test_defaulters_lists_open_ledgers_only(self):
        other = generate_ledger(student=self.make_student('Meera'), academic_year=self.year, class_level=self.class_level)
        collect_payment(
            ledger_id=other.pk,
            amount_paid=Decimal('50000'),
            payment_mode=FeeReceipt.MODE_UPI,
            collected_by=self.operator,
        )

        rows = defaulters(class_level=self.class_level)
        self.assertEqual([row['ledger_id'] for row in rows], [self.ledger.pk])
        self.assertEqual(rows[0]['due_amount'], Decimal('50000.00'))

    def test_defaulters_unknown_class_is_empty(self):
        self.assertEqual(defaulters(class_level=999999), [])
        self.assertEqual(defaulters(class_level='abc'), [])

    def test_dashboard_totals(self):
        self.pay(Decimal('1000'))
        self.pay(Decimal('500'), payment_date=self.today - timedelta(days=3))
        apply_concession(ledger_id=self.ledger.pk, concession_amount=Decimal('5000'), reason='Merit')

        stats = dashboard_stats(today=self.today)

        self.assertEqual(stats['today_collection'], Decimal('1000.00'))
        self.assertEqual(stats['total_collection'], Decimal('1500.00'))
        self.assertEqual(stats['pending_amount'], Decimal('43500.00'))
        self.assertEqual(stats['defaulters_count'], 1)
        self.assertEqual(stats['total_concession'], Decimal('5000.00'))

    def test_committed_payment_invalidates_cached_reports(self):
        self.assertEqual(dashboard_stats(today=self.today)['total_collection'], Decimal('0.00'))

        with self.captureOnCommitCallbacks(execute=True):
            self.pay(Decimal('1000'))

        self.assertEqual(dashboard_stats(today=self.today)['total_collection'], Decimal('1000.00'))

    def test_payment_history_newest_first(self):
        older = self.pay(Decimal('100'), payment_date=self.today - timedelta(days=5))
        newer = self.pay(Decimal('200'))

        receipts = list(payment_history(student=self.student, academic_year=self.year))
        self.assertEqual([receipt.pk for receipt in receipts], [newer.pk, older.pk])

    def test_student_ledger_missing_for_other_year(self):
        next_year = AcademicYear.objects.create(
            name='2026-27',
            start_date=date(2026, 4, 1),
            end_date=date(2027, 3, 31),
        )
        self.assertEqual(get_student_ledger(student=self.student, academic_year=self.year), self.ledger)
        with self.assertRaises(NotFound):
            get_student_ledger(student=self.student, academic_year=next_year)

    def test_search_ledgers_by_name_or_admission_number(self):
        meera = self.make_student('Meera')
        meera.last_name = 'Iyer'
        meera.save()
        other = generate_ledger(student=meera, academic_year=self.year, class_level=self.class_level)

        self.assertEqual(list(search_ledgers(query='riya')), [self.ledger])
        self.assertEqual(list(search_ledgers(query='meera iyer')), [other])
        self.assertEqual(list(search_ledgers(query='Meera Sharma')), [])
        self.assertEqual(list(search_ledgers(query=meera.admission_number)), [other])
        self.assertEqual(len(search_ledgers(query='sharma')), 1)
        self.assertEqual(list(search_ledgers(query='   ')), [])

    def test_search_ledgers_limited_to_year(self):
        next_year = AcademicYear.objects.create(
            name='2026-27',
            start_date=date(2026, 4, 1),
            end_date=date(2027, 3, 31),
        )
        self.assertEqual(list(search_ledgers(query='Riya', academic_year=self.year)), [self.ledger])
        self.assertEqual(list(search_ledgers(query='Riya', academic_year=next_year)), [])

    def test_receipt_pdf_is_generated(self):
        receipt = self.pay(Decimal('1000'), reference_number='UPI-123')
        pdf = generate_fee_receipt_pdf(FeeReceipt.objects.get(pk=receipt.pk))
        self.assertTrue(pdf.startswith(b'%PDF'))


class FeeViewTests(FeesBaseTestCase):
    def post_json(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def test_operator_collects_payment(self):
        self.client.force_login(self.operator)
        response = self.post_json(reverse('fee_collect'), {
            'ledger': self.ledger.pk,
            'amount_paid': '42000',
            'payment_mode': 'UPI',
            'reference_number': 'UPI-42',
        })

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['status'], 'success')
        self.assertEqual(body['data']['ledger_status'], 'PARTIAL')
        self.assertEqual(body['data']['due_amount'], '8000.00')
        self.assertTrue(re.match(r'^REC-', body['data']['receipt']['receipt_number']))
        self.assertTrue(AuditLog.objects.filter(action='fees.payment_collected', user=self.operator).exists())

    def test_overpayment_returns_fail(self):
        self.client.force_login(self.operator)
        response = self.post_json(reverse('fee_collect'), {
            'ledger': self.ledger.pk,
            'amount_paid': '60000',
            'payment_mode': 'CASH',
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['status'], 'fail')

    def test_invalid_payment_form_lists_errors(self):
        self.client.force_login(self.operator)
        response = self.post_json(reverse('fee_collect'), {'ledger': self.ledger.pk, 'payment_mode': 'BITCOIN'})
        self.assertEqual(response.status_code, 400)
        errors = response.json()['errors']
        self.assertIn('amount_paid', errors)
        self.assertIn('payment_mode', errors)

    def test_unknown_ledger_returns_404(self):
        self.client.force_login(self.operator)
        response = self.post_json(reverse('fee_collect'), {
            'ledger': 999999,
            'amount_paid': '10',
            'payment_mode': 'CASH',
        })
        self.assertEqual(response.status_code, 404)

    def test_locked_year_returns_409(self):
        self.year.is_locked = True
        self.year.save(update_fields=['is_locked'])
        self.client.force_login(self.operator)
        response = self.post_json(reverse('fee_collect'), {
            'ledger': self.ledger.pk,
            'amount_paid': '10',
            'payment_mode': 'CASH',
        })
        self.assertEqual(response.status_code, 409)

    def test_storage_failure_returns_error_status(self):
        self.client.force_login(self.operator)
        with patch.object(StudentLedger, 'save', side_effect=DatabaseError('disk full')):
            with self.assertLogs('apps.core.fees.services', level='ERROR'):
                response = self.post_json(reverse('fee_collect'), {
                    'ledger': self.ledger.pk,
                    'amount_paid': '10',
                    'payment_mode': 'CASH',
                })
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()['status'], 'error')

    def test_anonymous_and_teacher_are_blocked(self):
        payload = {'ledger': self.ledger.pk, 'amount_paid': '10', 'payment_mode': 'CASH'}
        self.assertEqual(self.post_json(reverse('fee_collect'), payload).status_code, 401)

        self.client.force_login(self.teacher)
        self.assertEqual(self.post_json(reverse('fee_collect'), payload).status_code, 403)

    def test_concession_is_admin_only(self):
        url = reverse('fee_ledger_concession', args=[self.ledger.pk])
        payload = {'concession_amount': '10000', 'reason': 'Sibling'}

        self.client.force_login(self.operator)
        self.assertEqual(self.post_json(url, payload).status_code, 403)

        self.client.force_login(self.admin)
        response = self.post_json(url, payload)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['ledger']['final_amount'], '40000.00')
        self.assertEqual(LedgerConcession.objects.get(ledger=self.ledger).applied_by, self.admin)

    def test_admin_creates_template(self):
        class_six = ClassLevel.objects.create(name='Class 6', display_order=6)
        self.client.force_login(self.admin)
        response = self.post_json(reverse('fee_templates'), {
            'name': 'Class 6 Fees',
            'academic_year': self.year.pk,
            'class_level': class_six.pk,
            'components': [
                {'name': 'Tuition Fee', 'amount': '1000', 'frequency': 'MONTHLY'},
                {'name': 'Lab Fee', 'amount': '1500', 'frequency': 'YEARLY', 'is_mandatory': False},
            ],
        })

        self.assertEqual(response.status_code, 201)
        template = response.json()['data']['template']
        self.assertEqual(template['total_yearly_amount'], '13500.00')
        self.assertEqual([row['is_mandatory'] for row in template['components']], [True, False])

    def test_template_with_bad_component_rejected(self):
        self.client.force_login(self.admin)
        response = self.post_json(reverse('fee_templates'), {
            'name': 'Class 6 Fees',
            'academic_year': self.year.pk,
            'class_level': ClassLevel.objects.create(name='Class 6', display_order=6).pk,
            'components': [{'name': 'Tuition Fee', 'amount': '1000', 'frequency': 'WEEKLY'}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn('components.0', response.json()['errors'])

    def test_operator_can_list_but_not_create_templates(self):
        self.client.force_login(self.operator)
        response = self.client.get(reverse('fee_templates'), {'class': self.class_level.pk})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()['data']['templates']), 1)

        response = self.post_json(reverse('fee_templates'), {'name': 'x', 'components': []})
        self.assertEqual(response.status_code, 403)

    def test_student_ledger_and_history(self):
        self.pay(Decimal('1000'))
        self.client.force_login(self.operator)

        response = self.client.get(reverse('fee_student_ledger', args=[self.student.pk]))
        self.assertEqual(response.status_code, 200)
        ledger = response.json()['data']['ledger']
        self.assertEqual(len(ledger['installments']), 3)
        self.assertEqual(ledger['installments'][0]['status'], 'PARTIAL')

        response = self.client.get(reverse('fee_payment_history', args=[self.student.pk]), {'year': self.year.pk})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()['data']['receipts']), 1)

        response = self.client.get(reverse('fee_student_ledger', args=[999999]))
        self.assertEqual(response.status_code, 404)

    def test_ledger_search(self):
        self.pay(Decimal('1000'))
        self.client.force_login(self.operator)

        response = self.client.get(reverse('fee_ledger_search'), {'q': 'riya'})
        self.assertEqual(response.status_code, 200)
        ledgers = response.json()['data']['ledgers']
        self.assertEqual(len(ledgers), 1)
        self.assertEqual(ledgers[0]['admission_number'], self.student.admission_number)
        self.assertEqual(ledgers[0]['student_name'], 'Riya Sharma')
        self.assertEqual(ledgers[0]['due_amount'], '49000.00')

        response = self.client.get(reverse('fee_ledger_search'), {'q': self.student.admission_number, 'year': self.year.pk})
        self.assertEqual(len(response.json()['data']['ledgers']), 1)

        self.assertEqual(self.client.get(reverse('fee_ledger_search'), {'q': 'nobody'}).json()['data']['ledgers'], [])
        self.assertEqual(self.client.get(reverse('fee_ledger_search')).status_code, 400)
        self.assertEqual(self.client.get(reverse('fee_ledger_search'), {'q': 'riya', 'year': 999999}).status_code, 404)

        self.client.force_login(self.teacher)
        self.assertEqual(self.client.get(reverse('fee_ledger_search'), {'q': 'riya'}).status_code, 403)

    def test_reports_are_admin_only(self):
        self.client.force_login(self.operator)
        self.assertEqual(self.client.get(reverse('fee_dashboard')).status_code, 403)

        self.client.force_login(self.admin)
        response = self.client.get(reverse('fee_dashboard'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['pending_amount'], '50000.00')

    def test_defaulters_report_tolerates_bad_class_filter(self):
        self.client.force_login(self.admin)
        response = self.client.get(reverse('fee_defaulters_report'), {'class': 'abc'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['defaulters'], [])

        response = self.client.get(reverse('fee_defaulters_report'), {'class': self.class_level.pk})
        self.assertEqual(len(response.json()['data']['defaulters']), 1)

    def test_collection_report_validates_dates(self):
        self.client.force_login(self.admin)
        response = self.client.get(reverse('fee_collection_report'), {'start': '2025-13-01'})
        self.assertEqual(response.status_code, 400)

        response = self.client.get(reverse('fee_collection_report'), {'start': '2025-04-01'})
        self.assertEqual(response.status_code, 200)

    def test_receipt_pdf_download(self):
        receipt = self.pay(Decimal('1000'))
        self.client.force_login(self.operator)

        response = self.client.get(reverse('fee_receipt_pdf', args=[receipt.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertTrue(response.content.startswith(b'%PDF'))

        self.assertEqual(self.client.get(reverse('fee_receipt_pdf', args=[999999])).status_code, 404)


class ConcurrentPaymentTests(FeeFixtureMixin, TransactionTestCase):
    workers = 8

    def test_parallel_payments_on_one_ledger_stay_consistent(self):
        barrier = threading.Barrier(self.workers)
        receipts = []
        errors = []
        lock = threading.Lock()

        def worker():
            try:
                barrier.wait()
                receipt = self.pay(Decimal('500'))
                with lock:
                    receipts.append(receipt)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(self.workers)]
        with self.assertLogs('apps.core.fees.services', level='INFO'):
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertTrue(all(isinstance(exc, TransactionFailure) for exc in errors), errors)
        self.assertEqual(len(receipts) + len(errors), self.workers)
        self.assertGreaterEqual(len(receipts), 1)

        stored = FeeReceipt.objects.filter(ledger=self.ledger)
        self.assertEqual(stored.count(), len(receipts))
        self.assertEqual(
            sum((receipt.amount_paid for receipt in stored), Decimal('0')),
            Decimal('500') * len(receipts),
        )
        paid = Decimal('500.00') * len(receipts)
        self.assertBalances(
            self.ledger,
            '50000.00',
            paid,
            Decimal('50000.00') - paid,
            StudentLedger.STATUS_PARTIAL,
        )
        self.assertInstallmentsMatchLedger(self.ledger)
        self.assertEqual(len({receipt.paid_after for receipt in stored}), len(receipts))
