import logging

from django.db import transaction
from django.db.models import Sum

from common.money import ZERO, to_money
from sales.models import Invoice, InvoiceCounter

logger = logging.getLogger(__name__)


def next_invoice_number(owner, invoice_date):
    """Allocate ``INV-YYYYMM-NNNN`` for the owner's month of ``invoice_date``.

    The counter row is locked for the rest of the surrounding transaction so
    two invoices created at once never share a number.
    """
    year_month = invoice_date.strftime("%Y%m")
    with transaction.atomic():
        counter, _ = InvoiceCounter.objects.get_or_create(owner=owner, year_month=year_month)
        counter = InvoiceCounter.objects.select_for_update().get(pk=counter.pk)
        counter.count += 1
        counter.save(update_fields=["count"])
    return f"INV-{year_month}-{counter.count:04d}"


def invoice_status_for(total_amount, paid_amount):
    if paid_amount >= total_amount and paid_amount > 0:
        return Invoice.Status.PAID
    if paid_amount > 0:
        return Invoice.Status.PARTIAL
    return Invoice.Status.UNPAID


def refresh_invoice_payment_status(invoice):
    """Recompute ``paid_amount`` and ``status`` from the payments linked to the invoice."""
    paid = to_money(invoice.payments.aggregate(total=Sum("amount_paid"))["total"] or ZERO)
    status = invoice_status_for(invoice.total_amount, paid)
    previous_status = invoice.status
    invoice.paid_amount = paid
    invoice.status = status
    invoice.save(update_fields=["paid_amount", "status", "updated_at"])
    if previous_status != status:
        logger.info(
            "invoice_status_changed",
            extra={
                "tenant_id": str(invoice.owner_id),
                "invoice_number": invoice.invoice_number,
                "previous_status": previous_status,
                "new_status": status,
            },
        )
    return invoice


def customer_dependents(customer):
    return {
        "invoices": customer.invoices.count(),
        "payments": customer.payments.count(),
    }
