from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from apps.core.academic_years.models import AcademicYear
from apps.core.academics.models import ClassLevel
from apps.core.students.models import Student
from apps.core.utils.money import ZERO, quantize, to_decimal


class FinancialRecordModel(models.Model):
    class Meta:
        abstract = True

    def delete(self, *args, **kwargs):
        raise ValidationError('Financial records cannot be deleted.')


class ImmutableRecordModel(FinancialRecordModel):
    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError(f"{self._meta.verbose_name.title()} records are immutable once created.")
        super().save(*args, **kwargs)


class FeeTemplate(models.Model):
    name = models.CharField(max_length=150)
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='fee_templates',
    )
    class_level = models.ForeignKey(
        ClassLevel,
        on_delete=models.PROTECT,
        related_name='fee_templates',
    )
    total_yearly_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['academic_year__start_date', 'class_level__display_order', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['academic_year', 'class_level'],
                name='unique_fee_template_per_class_year',
            ),
            models.CheckConstraint(
                condition=Q(total_yearly_amount__gte=0),
                name='fee_template_total_non_negative',
            ),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Fee template name is required.'})

    def __str__(self):
        return f"{self.name} ({self.academic_year.name})"


class FeeComponent(models.Model):
    FREQUENCY_MONTHLY = 'MONTHLY'
    FREQUENCY_QUARTERLY = 'QUARTERLY'
    FREQUENCY_YEARLY = 'YEARLY'
    FREQUENCY_ONE_TIME = 'ONE_TIME'
    FREQUENCY_CHOICES = (
        (FREQUENCY_MONTHLY, 'Monthly'),
        (FREQUENCY_QUARTERLY, 'Quarterly'),
        (FREQUENCY_YEARLY, 'Yearly'),
        (FREQUENCY_ONE_TIME, 'One time'),
    )

    template = models.ForeignKey(
        FeeTemplate,
        on_delete=models.CASCADE,
        related_name='components',
    )
    position = models.PositiveSmallIntegerField(default=0)
    name = models.CharField(max_length=120)  # e.g. Tuition Fee
    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal('0.00'))])
    frequency = models.CharField(max_length=20, choices=FREQUENCY_CHOICES)
    due_day = models.PositiveSmallIntegerField(
        default=10,
        validators=[MinValueValidator(1), MaxValueValidator(31)],
    )
    is_mandatory = models.BooleanField(default=True)

    class Meta:
        ordering = ['position', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['template', 'position'],
                name='unique_fee_component_position',
            ),
            models.CheckConstraint(
                condition=Q(amount__gte=0),
                name='fee_component_amount_non_negative',
            ),
        ]

    @property
    def yearly_amount(self) -> Decimal:
        if self.frequency == self.FREQUENCY_MONTHLY:
            return quantize(to_decimal(self.amount) * 12)
        return quantize(self.amount)

    def __str__(self):
        return f"{self.name} ({self.get_frequency_display()})"


class StudentLedger(FinancialRecordModel):
    STATUS_PENDING = 'PENDING'
    STATUS_PARTIAL = 'PARTIAL'
    STATUS_PAID = 'PAID'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_PARTIAL, 'Partially paid'),
        (STATUS_PAID, 'Paid'),
    )
    OPEN_STATUSES = (STATUS_PENDING, STATUS_PARTIAL)

    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='ledgers',
    )
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='ledgers',
    )
    class_level = models.ForeignKey(
        ClassLevel,
        on_delete=models.PROTECT,
        related_name='ledgers',
    )
    fee_template = models.ForeignKey(
        FeeTemplate,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='ledgers',
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    concession_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    # Nullable for ledgers migrated from the old schema; repaired on read.
    final_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    due_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    remarks = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['academic_year__start_date', 'student__admission_number', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'academic_year'],
                name='unique_ledger_per_student_year',
            ),
            models.CheckConstraint(
                condition=(
                    Q(total_amount__gte=0)
                    & Q(concession_amount__gte=0)
                    & Q(paid_amount__gte=0)
                    & Q(due_amount__gte=0)
                ),
                name='ledger_non_negative_amounts',
            ),
            models.CheckConstraint(
                condition=Q(concession_amount__lte=F('total_amount')),
                name='ledger_concession_not_above_total',
            ),
        ]
        indexes = [
            models.Index(fields=['status'], name='ledger_status_idx'),
            models.Index(fields=['academic_year', 'class_level', 'status'], name='ledger_year_class_status_idx'),
        ]

    @staticmethod
    def derive_status(*, final_amount, paid_amount, due_amount) -> str:
        if due_amount <= 0:
            return StudentLedger.STATUS_PAID
        if 0 < paid_amount < final_amount:
            return StudentLedger.STATUS_PARTIAL
        return StudentLedger.STATUS_PENDING

    def repair_final_amount(self) -> bool:
        """Fill in a missing ``final_amount``; returns True when a repair happened."""
        if self.final_amount is not None:
            return False
        self.final_amount = quantize(to_decimal(self.total_amount) - to_decimal(self.concession_amount))
        return True

    def apply_balance_rules(self):
        """Re-derive final, due and status from total, concession and paid amounts."""
        self.final_amount = quantize(to_decimal(self.total_amount) - to_decimal(self.concession_amount))
        due = quantize(self.final_amount - to_decimal(self.paid_amount))
        self.due_amount = due if due > 0 else ZERO
        self.status = self.derive_status(
            final_amount=self.final_amount,
            paid_amount=quantize(self.paid_amount),
            due_amount=self.due_amount,
        )

    def clean(self):
        super().clean()
        if self.concession_amount is None or self.concession_amount < 0:
            raise ValidationError({'concession_amount': 'Concession amount cannot be negative.'})
        if self.total_amount is not None and self.concession_amount > self.total_amount:
            raise ValidationError({'concession_amount': 'Concession amount cannot exceed total amount.'})

    def __str__(self):
        return f"{self.student.admission_number} - {self.academic_year.name} ({self.status})"


class LedgerInstallment(models.Model):
    ledger = models.ForeignKey(
        StudentLedger,
        on_delete=models.PROTECT,
        related_name='installments',
    )
    position = models.PositiveSmallIntegerField()
    name = models.CharField(max_length=150)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    due_date = models.DateField()
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    # Portion covered by a concession rather than by a payment.
    waived_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(
        max_length=10,
        choices=StudentLedger.STATUS_CHOICES,
        default=StudentLedger.STATUS_PENDING,
    )

    class Meta:
        ordering = ['position', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['ledger', 'position'],
                name='unique_installment_position',
            ),
            models.CheckConstraint(
                condition=Q(amount__gte=0) & Q(paid_amount__gte=0) & Q(waived_amount__gte=0),
                name='installment_non_negative_amounts',
            ),
            models.CheckConstraint(
                condition=Q(paid_amount__lte=F('amount')),
                name='installment_paid_not_above_amount',
            ),
        ]
        indexes = [
            models.Index(fields=['due_date'], name='installment_due_date_idx'),
        ]

    @property
    def outstanding(self) -> Decimal:
        remaining = quantize(to_decimal(self.amount) - to_decimal(self.paid_amount) - to_decimal(self.waived_amount))
        return remaining if remaining > 0 else ZERO

    def refresh_status(self):
        covered = quantize(to_decimal(self.paid_amount) + to_decimal(self.waived_amount))
        if covered >= quantize(self.amount):
            self.status = StudentLedger.STATUS_PAID
        elif covered > 0:
            self.status = StudentLedger.STATUS_PARTIAL
        else:
            self.status = StudentLedger.STATUS_PENDING

    def __str__(self):
        return f"{self.name} ({self.status})"


class FeeReceipt(ImmutableRecordModel):
    MODE_CASH = 'CASH'
    MODE_UPI = 'UPI'
    MODE_CHEQUE = 'CHEQUE'
    MODE_BANK_TRANSFER = 'BANK_TRANSFER'
    PAYMENT_MODE_CHOICES = (
        (MODE_CASH, 'Cash'),
        (MODE_UPI, 'UPI'),
        (MODE_CHEQUE, 'Cheque'),
        (MODE_BANK_TRANSFER, 'Bank transfer'),
    )

    receipt_number = models.CharField(max_length=40, unique=True)
    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='fee_receipts',
    )
    ledger = models.ForeignKey(
        StudentLedger,
        on_delete=models.PROTECT,
        related_name='receipts',
    )
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='fee_receipts',
    )
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2)
    payment_date = models.DateField(default=timezone.localdate)
    payment_mode = models.CharField(max_length=20, choices=PAYMENT_MODE_CHOICES)
    reference_number = models.CharField(max_length=120, blank=True)  # UPI id, cheque number
    collected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='collected_fee_receipts',
    )
    remarks = models.CharField(max_length=255, blank=True)
    idempotency_key = models.CharField(max_length=64, blank=True)
    # Ledger balances right after this payment was posted; null on receipts
    # issued before they were recorded.
    paid_after = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    due_after = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-payment_date', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['ledger', 'idempotency_key'],
                condition=~Q(idempotency_key=''),
                name='unique_receipt_idempotency_key',
            ),
            models.CheckConstraint(
                condition=Q(amount_paid__gt=0),
                name='receipt_amount_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['student', 'academic_year'], name='receipt_student_year_idx'),
            models.Index(fields=['payment_date'], name='receipt_payment_date_idx'),
        ]

    def clean(self):
        super().clean()
        if self.amount_paid is None or self.amount_paid <= 0:
            raise ValidationError({'amount_paid': 'Payment amount must be greater than zero.'})

    def __str__(self):
        return f"{self.receipt_number} - {self.amount_paid}"


class LedgerConcession(ImmutableRecordModel):
    ledger = models.ForeignKey(
        StudentLedger,
        on_delete=models.PROTECT,
        related_name='concessions',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    previous_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    reason = models.CharField(max_length=255)
    applied_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='applied_fee_concessions',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"Concession {self.amount} on ledger #{self.ledger_id}"
