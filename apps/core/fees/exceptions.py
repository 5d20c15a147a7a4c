"""
Errors raised by the fee ledger services.

Client errors (``client_error = True``) are raised before anything is written.
``TransactionFailure`` means the whole unit of work was rolled back and the
caller may resubmit it unchanged.
"""


class LedgerError(Exception):
    status_code = 500
    client_error = False
    default_message = 'Fee ledger operation failed.'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(LedgerError):
    status_code = 404
    client_error = True
    default_message = 'Requested record was not found.'


class InvalidAmount(LedgerError):
    status_code = 400
    client_error = True
    default_message = 'Amount is not valid for this ledger.'


class AcademicYearLocked(LedgerError):
    status_code = 409
    client_error = True
    default_message = 'Academic year is locked for fee changes.'


class TransactionFailure(LedgerError):
    status_code = 503
    default_message = 'The fee transaction could not be committed. Nothing was saved; please retry.'


def get_or_not_found(model, value, label=None):
    """Return ``value`` if it already is a ``model`` instance, otherwise look it up by primary key."""
    if isinstance(value, model):
        return value

    instance = None
    if value not in (None, ''):
        try:
            instance = model.objects.filter(pk=value).first()
        except (TypeError, ValueError):
            instance = None

    if instance is None:
        raise NotFound(f"{label or model._meta.verbose_name.title()} not found.")
    return instance
