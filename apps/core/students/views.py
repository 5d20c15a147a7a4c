from django.core.exceptions import ValidationError
from django.views.decorators.http import require_POST

from apps.core.fees.exceptions import LedgerError
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

from .forms import AdmissionForm
from .services import admit_student


@require_POST
@role_required((User.ROLE_ADMIN, User.ROLE_OPERATOR))
def admit(request):
    try:
        data = parse_json_body(request)
    except ValidationError as exc:
        return error_response(exc)

    form = AdmissionForm(data)
    if not form.is_valid():
        return fail_response('Invalid admission details.', errors=form_errors(form))

    try:
        student, ledger = admit_student(**form.cleaned_data)
    except (LedgerError, ValidationError) as exc:
        return error_response(exc)

    log_audit_event(
        request,
        'students.admitted',
        target=student,
        details=f"Admission {student.admission_number}",
    )
    return success_response(
        {
            'student': {
                'id': student.pk,
                'admission_number': student.admission_number,
                'full_name': student.full_name,
                'academic_year': student.academic_year_id,
                'class_level': student.class_level_id,
                'parent_id': student.parent_id,
            },
            'ledger': {
                'id': ledger.pk,
                'total_amount': ledger.total_amount,
                'due_amount': ledger.due_amount,
                'status': ledger.status,
            } if ledger else None,
        },
        status=201,
        message='Student admitted.',
    )
