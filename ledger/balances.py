from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal

from common.money import to_decimal, to_money

ZERO = Decimal("0")


@dataclass(frozen=True)
class BalanceSummary:
    total_billed: Decimal
    total_paid: Decimal
    pending: Decimal

    def as_dict(self):
        return {
            "total_billed": self.total_billed,
            "total_paid": self.total_paid,
            "pending": self.pending,
        }


def _field(record, name):
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _sum(records, field):
    return sum((to_decimal(_field(record, field)) for record in records), ZERO)


def summarize_balance(billed, payments, *, billed_field, paid_field, clamp):
    """Reduce one counterparty's billed rows and payment rows to a ``BalanceSummary``.

    Rows may be model instances or mappings. Amounts that are missing or not
    numeric count as zero. With ``clamp`` the pending amount never drops below
    zero, which is how receivables are reported; payables are left unclamped.
    """
    total_billed = _sum(billed, billed_field)
    total_paid = _sum(payments, paid_field)
    pending = total_billed - total_paid
    if clamp:
        pending = max(ZERO, pending)
    return BalanceSummary(
        total_billed=to_money(total_billed),
        total_paid=to_money(total_paid),
        pending=to_money(pending),
    )


def customer_balance(sales, payments):
    return summarize_balance(
        sales,
        payments,
        billed_field="total_amount",
        paid_field="amount_paid",
        clamp=True,
    )


def vendor_balance(purchases, payments_made):
    # Overpaid vendors show a negative pending amount (an advance), unlike customers.
    return summarize_balance(
        purchases,
        payments_made,
        billed_field="total_amount",
        paid_field="amount",
        clamp=False,
    )


def balances_by_counterparty(billed, payments, *, key, billed_field, paid_field, clamp, counterparty_ids=()):
    """Summaries for every counterparty in a tenant-wide batch of rows.

    ``key`` names the counterparty reference on each row (``customer_id`` or
    ``vendor_id``). Ids listed in ``counterparty_ids`` are reported even when
    they have no rows at all.
    """
    billed_by_id = defaultdict(list)
    paid_by_id = defaultdict(list)
    for record in billed:
        billed_by_id[_field(record, key)].append(record)
    for record in payments:
        paid_by_id[_field(record, key)].append(record)

    ids = list(dict.fromkeys([*counterparty_ids, *billed_by_id, *paid_by_id]))
    return {
        counterparty_id: summarize_balance(
            billed_by_id.get(counterparty_id, ()),
            paid_by_id.get(counterparty_id, ()),
            billed_field=billed_field,
            paid_field=paid_field,
            clamp=clamp,
        )
        for counterparty_id in ids
    }


def customer_balances(sales, payments, customer_ids=()):
    return balances_by_counterparty(
        sales,
        payments,
        key="customer_id",
        billed_field="total_amount",
        paid_field="amount_paid",
        clamp=True,
        counterparty_ids=customer_ids,
    )


def vendor_balances(purchases, payments_made, vendor_ids=()):
    return balances_by_counterparty(
        purchases,
        payments_made,
        key="vendor_id",
        billed_field="total_amount",
        paid_field="amount",
        clamp=False,
        counterparty_ids=vendor_ids,
    )
