from django.core.exceptions import ValidationError
from django.http import HttpResponse
from django.utils import timezone
from django.utils.dateparse import parse_date
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.academic_years.models import AcademicYear
from apps.core.academic_years.services import get_current_academic_year
from apps.core.students.models import Student
from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import role_required
from apps.core.users.models import User
from apps.core.utils.http import (
    error_response,
    fail_response,
    form_errors,
    parse_json_body,
    success_response,
)

from .exceptions import LedgerError, NotFound, get_or_not_found
from .forms import ConcessionForm, FeeComponentForm, FeePaymentCollectionForm, FeeTemplateForm
from .models import FeeReceipt, FeeTemplate
from .receipts import generate_fee_receipt_pdf
from .reports import (
    collection_summary,
    dashboard_stats,
    defaulters,
    get_student_ledger,
    payment_history,
    search_ledgers,
)
from .services import apply_concession, collect_payment, create_fee_template

STAFF_ROLES = (User.ROLE_ADMIN, User.ROLE_OPERATOR)


def _template_payload(template):
    return {
        'id': template.pk,
        'name': template.name,
        'academic_year': template.academic_year_id,
        'class_level': template.class_level_id,
        'total_yearly_amount': template.total_yearly_amount,
        'is_active': template.is_active,
        'components': [
            {
                'name': component.name,
                'amount': component.amount,
                'frequency': component.frequency,
                'due_day': component.due_day,
                'is_mandatory': component.is_mandatory,
            }
            for component in template.components.all()
        ],
    }


def _ledger_payload(ledger, include_installments=False):
    payload = {
        'id': ledger.pk,
        'student_id': ledger.student_id,
        'academic_year': ledger.academic_year.name,
        'class_level': ledger.class_level.name,
        'total_amount': ledger.total_amount,
        'concession_amount': ledger.concession_amount,
        'final_amount': ledger.final_amount,
        'paid_amount': ledger.paid_amount,
        'due_amount': ledger.due_amount,
        'status': ledger.status,
        'remarks': ledger.remarks,
    }
    if include_installments:
        payload['installments'] = [
            {
                'name': installment.name,
                'amount': installment.amount,
                'due_date': installment.due_date,
                'paid_amount': installment.paid_amount,
                'waived_amount': installment.waived_amount,
                'status': installment.status,
            }
            for installment in ledger.installments.all()
        ]
    return payload


def _receipt_payload(receipt):
    return {
        'id': receipt.pk,
        'receipt_number': receipt.receipt_number,
        'ledger_id': receipt.ledger_id,
        'student_id': receipt.student_id,
        'academic_year': receipt.academic_year.name,
        'amount_paid': receipt.amount_paid,
        'payment_date': receipt.payment_date,
        'payment_mode': receipt.payment_mode,
        'reference_number': receipt.reference_number,
        'remarks': receipt.remarks,
        'paid_after': receipt.paid_after,
        'due_after': receipt.due_after,
        'collected_by': receipt.collected_by.get_username() if receipt.collected_by_id else None,
    }


def _resolve_year(request, student=None):
    """``?year=`` if given, else the student's year, else the current one."""
    year_id = request.GET.get('year')
    if year_id:
        return get_or_not_found(AcademicYear, year_id, 'Academic year')
    if student is not None:
        return student.academic_year
    year = get_current_academic_year()
    if year is None:
        raise NotFound('No current academic year is configured.')
    return year


def _create_template(request):
    if request.user.role != User.ROLE_ADMIN:
        return fail_response('Only administrators can create fee templates.', status=403)

    try:
        data = parse_json_body(request)
    except ValidationError as exc:
        return error_response(exc)

    form = FeeTemplateForm(data)
    raw_components = data.get('components') or []
    if not isinstance(raw_components, list):
        return fail_response('Fee components must be a list.')

    component_forms = [FeeComponentForm(row if isinstance(row, dict) else {}) for row in raw_components]

    errors = {}
    if not form.is_valid():
        errors.update(form_errors(form))
    if not component_forms:
        errors['components'] = ['At least one fee component is required.']
    for index, component_form in enumerate(component_forms):
        if not component_form.is_valid():
            errors[f'components.{index}'] = form_errors(component_form)
    if errors:
        return fail_response('Invalid fee template.', errors=errors)

    try:
        template = create_fee_template(
            name=form.cleaned_data['name'],
            academic_year=form.cleaned_data['academic_year'],
            class_level=form.cleaned_data['class_level'],
            components=[component_form.cleaned_data for component_form in component_forms],
        )
    except (LedgerError, ValidationError) as exc:
        return error_response(exc)

    log_audit_event(
        request,
        'fees.template_created',
        target=template,
        details=f"Total yearly amount {template.total_yearly_amount}",
    )
    return success_response({'template': _template_payload(template)}, status=201, message='Fee template created.')


@require_http_methods(['GET', 'POST'])
@role_required(STAFF_ROLES)
def fee_templates(request):
    if request.method == 'POST':
        return _create_template(request)

    templates = FeeTemplate.objects.prefetch_related('components')
    class_id = request.GET.get('class')
    year_id = request.GET.get('year')
    if class_id and class_id.isdigit():
        templates = templates.filter(class_level_id=int(class_id))
    if year_id and year_id.isdigit():
        templates = templates.filter(academic_year_id=int(year_id))

    return success_response({'templates': [_template_payload(template) for template in templates]})


@require_POST
@role_required(STAFF_ROLES)
def collect_fee(request):
    try:
        data = parse_json_body(request)
    except ValidationError as exc:
        return error_response(exc)

    form = FeePaymentCollectionForm(data)
    if not form.is_valid():
        return fail_response('Invalid payment details.', errors=form_errors(form))

    cleaned = form.cleaned_data
    try:
        receipt = collect_payment(
            ledger_id=cleaned['ledger'],
            amount_paid=cleaned['amount_paid'],
            payment_mode=cleaned['payment_mode'],
            collected_by=request.user,
            reference_number=cleaned['reference_number'],
            remarks=cleaned['remarks'],
            payment_date=cleaned['payment_date'],
            idempotency_key=cleaned['idempotency_key'],
        )
    except (LedgerError, ValidationError) as exc:
        return error_response(exc)

    ledger = receipt.ledger
    log_audit_event(
        request,
        'fees.payment_collected',
        target=receipt,
        details=f"Receipt {receipt.receipt_number} amount {receipt.amount_paid}",
    )
    return success_response(
        {
            'receipt': _receipt_payload(receipt),
            'ledger_status': ledger.status,
            'due_amount': ledger.due_amount,
        },
        status=201,
        message='Payment recorded successfully.',
    )


@require_GET
@role_required(STAFF_ROLES)
def student_payment_history(request, student_id):
    try:
        student = get_or_not_found(Student, student_id, 'Student')
        academic_year = None
        if request.GET.get('year'):
            academic_year = _resolve_year(request)
    except LedgerError as exc:
        return error_response(exc)

    receipts = payment_history(student=student, academic_year=academic_year)
    return success_response({
        'student_id': student.pk,
        'admission_number': student.admission_number,
        'receipts': [_receipt_payload(receipt) for receipt in receipts],
    })


@require_GET
@role_required(STAFF_ROLES)
def student_ledger(request, student_id):
    try:
        student = get_or_not_found(Student, student_id, 'Student')
        ledger = get_student_ledger(student=student, academic_year=_resolve_year(request, student))
    except LedgerError as exc:
        return error_response(exc)

    return success_response({'ledger': _ledger_payload(ledger, include_installments=True)})


@require_GET
@role_required(STAFF_ROLES)
def ledger_search(request):
    query = (request.GET.get('q') or '').strip()
    if not query:
        return fail_response('Enter a student name or admission number.')

    try:
        academic_year = _resolve_year(request) if request.GET.get('year') else None
    except LedgerError as exc:
        return error_response(exc)

    results = []
    for ledger in search_ledgers(query=query, academic_year=academic_year):
        payload = _ledger_payload(ledger)
        payload['admission_number'] = ledger.student.admission_number
        payload['student_name'] = ledger.student.full_name
        results.append(payload)
    return success_response({'ledgers': results})


@require_POST
@role_required(User.ROLE_ADMIN)
def ledger_concession(request, ledger_id):
    try:
        data = parse_json_body(request)
    except ValidationError as exc:
        return error_response(exc)

    form = ConcessionForm(data)
    if not form.is_valid():
        return fail_response('Invalid concession details.', errors=form_errors(form))

    try:
        ledger = apply_concession(
            ledger_id=ledger_id,
            concession_amount=form.cleaned_data['concession_amount'],
            reason=form.cleaned_data['reason'],
            applied_by=request.user,
        )
    except (LedgerError, ValidationError) as exc:
        return error_response(exc)

    log_audit_event(
        request,
        'fees.concession_applied',
        target=ledger,
        details=f"Concession {ledger.concession_amount}: {form.cleaned_data['reason']}",
    )
    return success_response({'ledger': _ledger_payload(ledger)}, message='Concession applied.')


@require_GET
@role_required(User.ROLE_ADMIN)
def collection_report(request):
    today = timezone.localdate()
    start_raw = request.GET.get('start')
    end_raw = request.GET.get('end')
    try:
        start_date = parse_date(start_raw) if start_raw else today
        end_date = parse_date(end_raw) if end_raw else today
    except ValueError:
        start_date = end_date = None
    if start_date is None or end_date is None:
        return fail_response('Dates must be in YYYY-MM-DD format.')
    if start_date > end_date:
        return fail_response('Start date cannot be after end date.')

    return success_response(collection_summary(start_date=start_date, end_date=end_date))


@require_GET
@role_required(User.ROLE_ADMIN)
def defaulters_report(request):
    class_id = request.GET.get('class') or None
    year_id = request.GET.get('year') or None
    if class_id is not None and not class_id.isdigit():
        return success_response({'defaulters': []})
    if year_id is not None and not year_id.isdigit():
        return success_response({'defaulters': []})

    rows = defaulters(class_level=class_id and int(class_id), academic_year=year_id and int(year_id))
    return success_response({'defaulters': rows})


@require_GET
@role_required(User.ROLE_ADMIN)
def dashboard_report(request):
    return success_response(dashboard_stats())


@require_GET
@role_required(STAFF_ROLES)
def fee_receipt_pdf(request, receipt_id):
    receipt = (
        FeeReceipt.objects.select_related(
            'student',
            'ledger__class_level',
            'academic_year',
            'collected_by',
        )
        .filter(pk=receipt_id)
        .first()
    )
    if receipt is None:
        return fail_response('Fee receipt not found.', status=404)

    response = HttpResponse(generate_fee_receipt_pdf(receipt), content_type='application/pdf')
    response['Content-Disposition'] = f'inline; filename="{receipt.receipt_number}.pdf"'
    return response
