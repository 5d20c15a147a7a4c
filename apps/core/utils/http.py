import json

from django.core.exceptions import ValidationError
from django.http import JsonResponse

from apps.core.fees.exceptions import LedgerError


def parse_json_body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError('Request body must be valid JSON.')
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object.')
    return data


def form_errors(form):
    return {field: list(errors) for field, errors in form.errors.items()}


def success_response(data, status=200, message=None):
    payload = {'status': 'success'}
    if message:
        payload['message'] = message
    payload['data'] = data
    return JsonResponse(payload, status=status)


def fail_response(message, status=400, errors=None):
    """Client-caused failures are reported as ``fail``; server-side ones as ``error``."""
    payload = {
        'status': 'fail' if status < 500 else 'error',
        'message': message,
    }
    if errors:
        payload['errors'] = errors
    return JsonResponse(payload, status=status)


def error_response(exc):
    if isinstance(exc, LedgerError):
        return fail_response(exc.message, status=exc.status_code)

    errors = None
    if hasattr(exc, 'error_dict'):
        errors = exc.message_dict
    return fail_response('; '.join(exc.messages), status=400, errors=errors)
