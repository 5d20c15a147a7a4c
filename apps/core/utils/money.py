from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal('0.00')


def to_decimal(value) -> Decimal:
    return Decimal(str(value or '0'))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def parse_amount(value):
    """Quantized Decimal for ``value``, or None when it is not a number."""
    if isinstance(value, bool):
        return None
    try:
        amount = quantize(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount
