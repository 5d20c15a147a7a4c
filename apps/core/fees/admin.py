from django.contrib import admin

from .models import (
    FeeComponent,
    FeeReceipt,
    FeeTemplate,
    LedgerConcession,
    LedgerInstallment,
    StudentLedger,
)


class ReadOnlyFinancialAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class FeeComponentInline(admin.TabularInline):
    model = FeeComponent
    extra = 0


@admin.register(FeeTemplate)
class FeeTemplateAdmin(admin.ModelAdmin):
    list_display = ('name', 'class_level', 'academic_year', 'total_yearly_amount', 'is_active')
    list_filter = ('academic_year', 'class_level', 'is_active')
    search_fields = ('name',)
    readonly_fields = ('total_yearly_amount',)
    inlines = [FeeComponentInline]


class LedgerInstallmentInline(admin.TabularInline):
    model = LedgerInstallment
    extra = 0
    can_delete = False
    readonly_fields = ('position', 'name', 'amount', 'due_date', 'paid_amount', 'waived_amount', 'status')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(StudentLedger)
class StudentLedgerAdmin(admin.ModelAdmin):
    list_display = (
        'student',
        'academic_year',
        'class_level',
        'total_amount',
        'concession_amount',
        'final_amount',
        'paid_amount',
        'due_amount',
        'status',
    )
    list_filter = ('academic_year', 'class_level', 'status')
    search_fields = ('student__admission_number', 'student__first_name', 'student__last_name')
    # Balances only change through payments and concessions.
    readonly_fields = (
        'student',
        'academic_year',
        'class_level',
        'fee_template',
        'total_amount',
        'concession_amount',
        'final_amount',
        'paid_amount',
        'due_amount',
        'status',
        'remarks',
    )
    inlines = [LedgerInstallmentInline]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(FeeReceipt)
class FeeReceiptAdmin(ReadOnlyFinancialAdmin):
    list_display = ('receipt_number', 'student', 'academic_year', 'amount_paid', 'payment_mode', 'payment_date')
    list_filter = ('academic_year', 'payment_mode', 'payment_date')
    search_fields = ('receipt_number', 'student__admission_number', 'reference_number')


@admin.register(LedgerConcession)
class LedgerConcessionAdmin(ReadOnlyFinancialAdmin):
    list_display = ('ledger', 'previous_amount', 'amount', 'applied_by', 'created_at')
    search_fields = ('ledger__student__admission_number', 'reason')
