from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")
# Stored amounts stay far below this; larger inputs are treated as malformed.
MAX_AMOUNT = Decimal("1e15")


def to_decimal(value):
    """Coerce a persisted amount to ``Decimal``.

    Amounts arrive from the database, from JSON payloads and from CSV imports,
    so they can be ``Decimal``, ``int``, ``float``, numeric strings or ``None``.
    Anything that is not a finite number, or is too large to store as an
    amount, contributes zero instead of raising.
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() and abs(value) < MAX_AMOUNT else Decimal("0")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")
    if not result.is_finite() or abs(result) >= MAX_AMOUNT:
        return Decimal("0")
    return result


def to_money(value):
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def stringify_amounts(payload):
    """Render every ``Decimal`` in a response payload as a fixed-point string.

    The JSON renderer would otherwise emit floats, which drop trailing zeros
    and can lose paise on large amounts.
    """
    if isinstance(payload, Decimal):
        return f"{payload:f}"
    if isinstance(payload, dict):
        return {key: stringify_amounts(value) for key, value in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [stringify_amounts(value) for value in payload]
    return payload
