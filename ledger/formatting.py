from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings

from common.money import MONEY_QUANT, to_decimal

ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
    "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
    "Seventeen", "Eighteen", "Nineteen",
]
TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]

CRORE = 10_000_000
LAKH = 100_000
THOUSAND = 1_000


def _group_digits(digits):
    """Indian grouping: the last three digits, then pairs (12,34,56,789)."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join([*pairs, tail])


def format_indian_number(value, places=None):
    """Group a number the Indian way.

    With ``places`` the fraction is fixed to that many digits; otherwise up to
    three significant fraction digits are kept and trailing zeros dropped.
    """
    amount = to_decimal(value)
    if places is None:
        amount = amount.quantize(Decimal("0.001"), rounding=ROUND_HALF_UP)
        text = f"{abs(amount):f}".rstrip("0").rstrip(".")
    else:
        amount = amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
        text = f"{abs(amount):f}"
    integer, _, fraction = text.partition(".")
    grouped = _group_digits(integer)
    if fraction:
        grouped = f"{grouped}.{fraction}"
    return f"-{grouped}" if amount < 0 else grouped


def format_currency(value, symbol=None):
    """``₹1,23,456.00``: symbol, Indian grouping and exactly two decimals."""
    if symbol is None:
        symbol = settings.LEDGER_CURRENCY_SYMBOL
    amount = to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    formatted = format_indian_number(abs(amount), places=2)
    return f"-{symbol}{formatted}" if amount < 0 else f"{symbol}{formatted}"


def format_indian_date(value):
    return value.strftime("%d/%m/%Y")


def _below_thousand(number):
    words = []
    if number >= 100:
        words += [ONES[number // 100], "Hundred"]
        number %= 100
    if number >= 20:
        words.append(TENS[number // 10])
        number %= 10
    if number:
        words.append(ONES[number])
    return words


def _integer_words(number):
    words = []
    crores, number = divmod(number, CRORE)
    lakhs, number = divmod(number, LAKH)
    thousands, hundreds = divmod(number, THOUSAND)
    if crores:
        # Crore counts above 99 are themselves written on the Indian scale.
        words += (_integer_words(crores) if crores >= 100 else _below_thousand(crores)) + ["Crore"]
    if lakhs:
        words += _below_thousand(lakhs) + ["Lakh"]
    if thousands:
        words += _below_thousand(thousands) + ["Thousand"]
    if hundreds:
        words += _below_thousand(hundreds)
    return words


def amount_in_words(value):
    """Spell out a rupee amount, e.g. ``One Hundred Fifty Rupees and Fifty Paise Only``.

    The amount is rounded to paise before conversion, so float noise such as
    ``0.1 + 0.2`` never leaks into the words.
    """
    amount = to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    if amount < 0:
        raise ValueError("Amount in words is only defined for non-negative amounts.")

    rupees = int(amount)
    paise = int((amount - rupees) * 100)
    if rupees == 0 and paise == 0:
        return "Zero Rupees Only"

    words = " ".join(_integer_words(rupees)) if rupees else "Zero"
    words += " Rupees"
    if paise:
        words += " and " + " ".join(_below_thousand(paise)) + " Paise"
    return words + " Only"
