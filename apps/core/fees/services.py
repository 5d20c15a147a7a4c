from __future__ import annotations

import calendar
import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from uuid import uuid4

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.utils import timezone

from apps.core.academic_years.models import AcademicYear
from apps.core.academics.models import ClassLevel
from apps.core.students.models import Student
from apps.core.utils.money import ZERO, parse_amount, quantize

from .exceptions import (
    AcademicYearLocked,
    InvalidAmount,
    NotFound,
    TransactionFailure,
    get_or_not_found,
)
from .models import (
    FeeComponent,
    FeeReceipt,
    FeeTemplate,
    LedgerConcession,
    LedgerInstallment,
    StudentLedger,
)
from .reports import invalidate_fee_reports

logger = logging.getLogger(__name__)

LEDGER_BALANCE_FIELDS = ['final_amount', 'paid_amount', 'due_amount', 'status', 'updated_at']
INSTALLMENT_FIELDS = ['paid_amount', 'waived_amount', 'status']


@contextmanager
def ledger_transaction():
    """Run a unit of work that commits entirely or not at all.

    Storage errors are re-raised as ``TransactionFailure`` after the rollback;
    every other exception propagates unchanged.
    """
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        logger.exception('Fee ledger transaction rolled back')
        raise TransactionFailure() from exc


def calculate_yearly_total(components) -> Decimal:
    return quantize(sum((component.yearly_amount for component in components), ZERO))


@transaction.atomic
def create_fee_template(*, name, academic_year, class_level, components):
    academic_year = get_or_not_found(AcademicYear, academic_year, 'Academic year')
    class_level = get_or_not_found(ClassLevel, class_level, 'Class')

    if not components:
        raise ValidationError('At least one fee component is required.')

    if FeeTemplate.objects.filter(academic_year=academic_year, class_level=class_level).exists():
        raise ValidationError('A fee template already exists for this class and academic year.')

    rows = []
    for position, data in enumerate(components):
        component = FeeComponent(
            position=position,
            name=(data.get('name') or '').strip(),
            amount=data.get('amount'),
            frequency=data.get('frequency'),
            due_day=data.get('due_day') or settings.FEES_DEFAULT_DUE_DAY,
            is_mandatory=data.get('is_mandatory', True),
        )
        component.full_clean(exclude=['template'])
        rows.append(component)

    template = FeeTemplate(
        name=name,
        academic_year=academic_year,
        class_level=class_level,
        total_yearly_amount=calculate_yearly_total(rows),
    )
    template.full_clean()
    template.save()

    for component in rows:
        component.template = template
    FeeComponent.objects.bulk_create(rows)

    logger.info(
        'Created fee template %s for %s (%s), yearly total %s',
        template.name,
        class_level.name,
        academic_year.name,
        template.total_yearly_amount,
    )
    return template


def _month_due_date(start_date: date, months_after: int, due_day: int) -> date:
    month_index = start_date.month - 1 + months_after
    year = start_date.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(due_day, last_day))


def build_installment_schedule(components, start_date: date):
    """Expand template components into ordered installment rows.

    Monthly components produce twelve rows, one per month from the academic
    year start; every other frequency produces a single row.
    """
    schedule = []
    for component in components:
        due_day = component.due_day or settings.FEES_DEFAULT_DUE_DAY
        amount = quantize(component.amount)

        if component.frequency == FeeComponent.FREQUENCY_MONTHLY:
            for offset in range(12):
                due_date = _month_due_date(start_date, offset, due_day)
                schedule.append({
                    'name': f"{component.name} - {calendar.month_name[due_date.month]}",
                    'amount': amount,
                    'due_date': due_date,
                })
        else:
            schedule.append({
                'name': component.name,
                'amount': amount,
                'due_date': _month_due_date(start_date, 0, due_day),
            })
    return schedule


@transaction.atomic
def generate_ledger(*, student, academic_year, class_level):
    """Create the fee ledger for a student, or return None when no fees are configured."""
    student = get_or_not_found(Student, student, 'Student')
    academic_year = get_or_not_found(AcademicYear, academic_year, 'Academic year')
    class_level = get_or_not_found(ClassLevel, class_level, 'Class')

    template = (
        FeeTemplate.objects.filter(
            academic_year=academic_year,
            class_level=class_level,
            is_active=True,
        )
        .prefetch_related('components')
        .first()
    )
    if template is None:
        logger.warning(
            'No fee template for %s in %s; ledger not generated for student %s',
            class_level.name,
            academic_year.name,
            student.admission_number,
        )
        return None

    if StudentLedger.objects.filter(student=student, academic_year=academic_year).exists():
        raise ValidationError('A fee ledger already exists for this student and academic year.')

    schedule = build_installment_schedule(template.components.all(), academic_year.start_date)
    total_amount = quantize(sum((row['amount'] for row in schedule), ZERO))

    ledger = StudentLedger(
        student=student,
        academic_year=academic_year,
        class_level=class_level,
        fee_template=template,
        total_amount=total_amount,
        concession_amount=ZERO,
        paid_amount=ZERO,
    )
    # A zero-fee template yields a ledger that is PAID from the start.
    ledger.apply_balance_rules()
    ledger.save()

    installments = []
    for position, row in enumerate(schedule):
        installment = LedgerInstallment(
            ledger=ledger,
            position=position,
            name=row['name'],
            amount=row['amount'],
            due_date=row['due_date'],
            paid_amount=ZERO,
            waived_amount=ZERO,
        )
        installment.refresh_status()
        installments.append(installment)
    LedgerInstallment.objects.bulk_create(installments)

    transaction.on_commit(invalidate_fee_reports)
    logger.info(
        'Generated ledger #%s for student %s: %s installments, total %s',
        ledger.pk,
        student.admission_number,
        len(schedule),
        total_amount,
    )
    return ledger


def generate_receipt_number(now=None) -> str:
    now = now or timezone.now()
    return f"{settings.FEES_RECEIPT_PREFIX}-{now:%Y%m%d%H%M%S%f}-{uuid4().hex[:4].upper()}"


def allocate_payment(installments, amount):
    """Apply ``amount`` to installments oldest first.

    Mutates the given installments in place and returns the amount left over
    once every installment is paid.
    """
    remaining = quantize(amount)
    for installment in installments:
        if remaining <= 0:
            break
        if installment.status == StudentLedger.STATUS_PAID:
            continue

        owed = installment.outstanding
        if remaining >= owed:
            installment.paid_amount = quantize(installment.paid_amount + owed)
            installment.status = StudentLedger.STATUS_PAID
            remaining = quantize(remaining - owed)
        else:
            installment.paid_amount = quantize(installment.paid_amount + remaining)
            installment.status = StudentLedger.STATUS_PARTIAL
            remaining = ZERO
    return remaining


def waive_open_installments(installments):
    """Mark every installment not yet paid as covered by concession."""
    for installment in installments:
        if installment.status == StudentLedger.STATUS_PAID:
            continue
        installment.waived_amount = quantize(installment.amount - installment.paid_amount)
        installment.status = StudentLedger.STATUS_PAID


def _lock_ledger(ledger_id) -> StudentLedger:
    """Load the ledger row locked for update and bring its balances in line."""
    if isinstance(ledger_id, StudentLedger):
        ledger_id = ledger_id.pk

    ledger = None
    if ledger_id not in (None, ''):
        try:
            ledger = (
                StudentLedger.objects.select_for_update(of=('self',))
                .select_related('academic_year', 'student')
                .filter(pk=ledger_id)
                .first()
            )
        except (TypeError, ValueError):
            ledger = None
    if ledger is None:
        raise NotFound('Fee ledger not found.')

    if ledger.repair_final_amount():
        logger.warning(
            'Ledger #%s had no final amount; derived %s from total %s and concession %s',
            ledger.pk,
            ledger.final_amount,
            ledger.total_amount,
            ledger.concession_amount,
        )
    ledger.apply_balance_rules()
    return ledger


def _ensure_year_unlocked(ledger: StudentLedger):
    if ledger.academic_year.is_locked:
        raise AcademicYearLocked(f"Academic year {ledger.academic_year.name} is locked for fee changes.")


def _ordered_installments(ledger: StudentLedger):
    return list(ledger.installments.order_by('position', 'id'))


def collect_payment(
    *,
    ledger_id,
    amount_paid,
    payment_mode,
    collected_by,
    reference_number='',
    remarks='',
    payment_date=None,
    idempotency_key='',
):
    amount = parse_amount(amount_paid)
    if amount is None:
        raise InvalidAmount('Payment amount must be a number.')

    if payment_mode not in dict(FeeReceipt.PAYMENT_MODE_CHOICES):
        raise ValidationError({'payment_mode': f"Unsupported payment mode: {payment_mode}."})

    idempotency_key = (idempotency_key or '').strip()

    with ledger_transaction():
        ledger = _lock_ledger(ledger_id)
        _ensure_year_unlocked(ledger)

        if idempotency_key:
            existing = ledger.receipts.filter(idempotency_key=idempotency_key).first()
            if existing:
                if existing.amount_paid != amount:
                    raise InvalidAmount(
                        f"Idempotency key {idempotency_key} was already used for a payment of {existing.amount_paid}."
                    )
                logger.info(
                    'Payment retry with key %s on ledger #%s returned receipt %s',
                    idempotency_key,
                    ledger.pk,
                    existing.receipt_number,
                )
                return existing

        if amount <= 0:
            raise InvalidAmount('Payment amount must be greater than zero.')
        if amount > ledger.due_amount:
            raise InvalidAmount(f"Payment amount {amount} exceeds due amount {ledger.due_amount}.")

        ledger.paid_amount = quantize(ledger.paid_amount + amount)
        ledger.apply_balance_rules()

        receipt = FeeReceipt.objects.create(
            receipt_number=generate_receipt_number(),
            student=ledger.student,
            ledger=ledger,
            academic_year=ledger.academic_year,
            amount_paid=amount,
            payment_date=payment_date or timezone.localdate(),
            payment_mode=payment_mode,
            reference_number=(reference_number or '')[:120],
            collected_by=collected_by,
            remarks=(remarks or '')[:255],
            idempotency_key=idempotency_key,
            paid_after=ledger.paid_amount,
            due_after=ledger.due_amount,
        )

        installments = _ordered_installments(ledger)
        advance = allocate_payment(installments, amount)
        if ledger.status == StudentLedger.STATUS_PAID:
            waive_open_installments(installments)
        if installments:
            LedgerInstallment.objects.bulk_update(installments, INSTALLMENT_FIELDS)

        ledger.save(update_fields=LEDGER_BALANCE_FIELDS)
        transaction.on_commit(invalidate_fee_reports)

    if advance > 0:
        logger.info('Receipt %s left an installment-level advance of %s', receipt.receipt_number, advance)
    logger.info(
        'Collected %s (%s) on ledger #%s as receipt %s; due now %s',
        amount,
        payment_mode,
        ledger.pk,
        receipt.receipt_number,
        ledger.due_amount,
    )
    return receipt


def apply_concession(*, ledger_id, concession_amount, reason, applied_by=None):
    amount = parse_amount(concession_amount)
    if amount is None:
        raise InvalidAmount('Concession amount must be a number.')

    reason = (reason or '').strip()
    if not reason:
        raise ValidationError({'reason': 'Concession reason is required.'})

    with ledger_transaction():
        ledger = _lock_ledger(ledger_id)
        _ensure_year_unlocked(ledger)

        if amount < 0:
            raise InvalidAmount('Concession amount cannot be negative.')
        if amount > ledger.total_amount:
            raise InvalidAmount(f"Concession amount {amount} exceeds total amount {ledger.total_amount}.")

        previous_amount = ledger.concession_amount
        ledger.concession_amount = amount
        ledger.apply_balance_rules()

        installments = _ordered_installments(ledger)
        for installment in installments:
            installment.waived_amount = ZERO
            installment.refresh_status()
        if ledger.due_amount == 0:
            waive_open_installments(installments)
        if installments:
            LedgerInstallment.objects.bulk_update(installments, INSTALLMENT_FIELDS)

        ledger.remarks = f"Concession of {amount} applied. Reason: {reason}"[:1000]
        ledger.save(update_fields=LEDGER_BALANCE_FIELDS + ['concession_amount', 'remarks'])

        LedgerConcession.objects.create(
            ledger=ledger,
            amount=amount,
            previous_amount=previous_amount,
            reason=reason[:255],
            applied_by=applied_by,
        )
        transaction.on_commit(invalidate_fee_reports)

    logger.info(
        'Concession on ledger #%s changed from %s to %s; due now %s (%s)',
        ledger.pk,
        previous_amount,
        amount,
        ledger.due_amount,
        ledger.status,
    )
    return ledger
