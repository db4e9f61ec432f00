from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal

from common.money import ZERO, to_decimal, to_money


@dataclass
class LineItem:
    """One invoice row. ``amount`` is always derived from quantity and rate."""

    item_name: str
    quantity: Decimal
    rate: Decimal
    unit: str = ""

    def __post_init__(self):
        self.item_name = (self.item_name or "").strip()
        self.quantity = to_decimal(self.quantity)
        self.rate = to_decimal(self.rate)

    @property
    def amount(self):
        return to_money(self.quantity * self.rate)

    @classmethod
    def from_mapping(cls, data: Mapping):
        return cls(
            item_name=data.get("item_name") or "",
            quantity=data.get("quantity"),
            rate=data.get("rate_per_unit", data.get("rate")),
            unit=data.get("unit") or "",
        )


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    transport_charges: Decimal
    grand_total: Decimal

    def as_dict(self):
        return {
            "subtotal": self.subtotal,
            "tax_percentage": self.tax_rate,
            "tax_amount": self.tax_amount,
            "transport_charges": self.transport_charges,
            "total_amount": self.grand_total,
        }


@dataclass(frozen=True)
class ItemShare:
    line: LineItem
    tax_amount: Decimal
    transport_share: Decimal
    total: Decimal


def compute_totals(lines, tax_rate, transport_charges=0):
    subtotal = to_money(sum((line.amount for line in lines), ZERO))
    tax_rate = to_decimal(tax_rate)
    tax_amount = to_money(subtotal * tax_rate / 100)
    transport = to_money(transport_charges)
    return InvoiceTotals(
        subtotal=subtotal,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        transport_charges=transport,
        grand_total=subtotal + tax_amount + transport,
    )


def validate_invoice_draft(counterparty, lines, *, counterparty_field="customer"):
    """Field errors for a draft invoice; an empty dict means it can be saved.

    Line errors are reported positionally under ``items`` so the caller can show
    them next to the row that caused them.
    """
    errors = {}
    if not counterparty:
        errors[counterparty_field] = [f"Please select a {counterparty_field}."]

    if not lines:
        errors["items"] = ["Add at least one item."]
        return errors

    line_errors = []
    for line in lines:
        problems = {}
        if not line.item_name:
            problems["item_name"] = ["Item name is required."]
        if line.quantity <= 0:
            problems["quantity"] = ["Quantity must be greater than zero."]
        if line.rate < 0:
            problems["rate_per_unit"] = ["Rate cannot be negative."]
        line_errors.append(problems)

    if any(line_errors):
        errors["items"] = line_errors
    return errors


def _spread(total, parts):
    """Round each part to paise and give the rounding remainder to the last one."""
    if not parts:
        return []
    rounded = [to_money(part) for part in parts[:-1]]
    rounded.append(total - sum(rounded, ZERO))
    return rounded


def apportion_per_item(lines, tax_rate, transport_charges=0):
    """Split an invoice's tax and transport over its lines.

    Tax follows each line's amount; transport is shared equally. Per-line
    shares add up exactly to the invoice-level figures.
    """
    if not lines:
        return []
    totals = compute_totals(lines, tax_rate, transport_charges)
    taxes = _spread(totals.tax_amount, [line.amount * totals.tax_rate / 100 for line in lines])
    transport = _spread(totals.transport_charges, [totals.transport_charges / len(lines)] * len(lines))
    return [
        ItemShare(line=line, tax_amount=tax, transport_share=share, total=line.amount + tax + share)
        for line, tax, share in zip(lines, taxes, transport)
    ]
