import csv
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.cache import cache
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.http import HttpResponse
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.money import ZERO, stringify_amounts, to_money
from core.context import tenant_context_from_request
from ledger.balances import customer_balances, vendor_balances
from ledger.cache import report_cache_key
from ledger.formatting import format_currency
from ledger.series import Window, generate_period_series, period_buckets
from purchases.models import PaymentMade, Purchase, Vendor
from sales.models import Customer, Invoice, Payment

ACTIVITY_LIMIT = 10


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated]

    @property
    def cache_timeout(self):
        return settings.LEDGER_REPORT_CACHE_SECONDS

    def _owned(self, model, context):
        return model.objects.filter(owner_id=context.tenant_id)

    def _parse_limit(self, request, default=10, minimum=1, maximum=100):
        raw_limit = request.query_params.get("limit")
        if raw_limit is None:
            return default

        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            raise ValidationError({"limit": f"Limit must be an integer between {minimum} and {maximum}."})

        if not minimum <= limit <= maximum:
            raise ValidationError({"limit": f"Limit must be between {minimum} and {maximum}."})
        return limit

    def _csv_response(self, filename, rows):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        if not rows:
            return response

        writer = csv.DictWriter(response, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return response

    def _cached(self, request, context, key, callback):
        cache_key = report_cache_key(context.tenant_id, key, request.get_full_path())
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload

    def _respond(self, payload):
        response = Response(stringify_amounts(payload))
        response["Cache-Control"] = f"private, max-age={self.cache_timeout}"
        return response


def _sum(queryset, field):
    return to_money(queryset.aggregate(total=Coalesce(Sum(field), Decimal("0")))["total"])


class DashboardSummaryView(BaseReportView):
    def get(self, request):
        context = tenant_context_from_request(request)
        today = context.today()
        month_start = today.replace(day=1)

        def run():
            invoices = self._owned(Invoice, context)
            payments = self._owned(Payment, context)
            purchases = self._owned(Purchase, context)
            payments_made = self._owned(PaymentMade, context)

            month_invoices = invoices.filter(invoice_date__gte=month_start, invoice_date__lte=today)
            balances = customer_balances(
                invoices.values("customer_id", "total_amount"),
                payments.values("customer_id", "amount_paid"),
            )
            outstanding = sum((balance.pending for balance in balances.values()), ZERO)
            customer_count = self._owned(Customer, context).count()
            vendor_count = self._owned(Vendor, context).count()

            return {
                "timezone": str(context.timezone),
                "month": month_start.strftime("%Y-%m"),
                "sales_this_month": _sum(month_invoices, "total_amount"),
                "purchases_this_month": _sum(purchases.filter(date__gte=month_start, date__lte=today), "total_amount"),
                "payments_received_this_month": _sum(
                    payments.filter(payment_date__gte=month_start, payment_date__lte=today), "amount_paid"
                ),
                "payments_made_this_month": _sum(
                    payments_made.filter(date__gte=month_start, date__lte=today), "amount"
                ),
                "gst_payable": _sum(month_invoices, "tax_amount"),
                "outstanding_dues": to_money(outstanding),
                "total_customers": customer_count,
                "total_vendors": vendor_count,
                "has_data": bool(customer_count or vendor_count or invoices.exists() or purchases.exists()),
            }

        return self._respond(self._cached(request, context, "dashboard-summary", run))


class SalesTrendView(BaseReportView):
    """Sales per day or month next to either payments received or purchases."""

    compare_sources = {
        "payments": (Payment, "payment_date", "amount_paid"),
        "purchases": (Purchase, "date", "total_amount"),
    }

    def get(self, request):
        context = tenant_context_from_request(request)
        window_value = request.query_params.get("window", Window.LAST_30_DAYS)
        if window_value not in Window.values:
            raise ValidationError({"window": f"Window must be one of: {', '.join(Window.values)}."})
        compare = request.query_params.get("compare", "payments")
        if compare not in self.compare_sources:
            raise ValidationError({"compare": "Compare must be one of: payments, purchases."})
        window = Window(window_value)

        def run():
            now = timezone.now()
            first_day = period_buckets(window, now=now, tz=context.timezone)[0].start.date()
            sales = self._owned(Invoice, context).filter(invoice_date__gte=first_day)
            model, date_field, amount_field = self.compare_sources[compare]
            comparison = self._owned(model, context).filter(**{f"{date_field}__gte": first_day})

            points = generate_period_series(
                window,
                sales.values("id", "invoice_date", "total_amount"),
                comparison.values("id", date_field, amount_field),
                now=now,
                tz=context.timezone,
                comparison_date_field=date_field,
                comparison_amount_field=amount_field,
            )
            return {
                "window": window.value,
                "compare": compare,
                "timezone": str(context.timezone),
                "totals": {
                    "sales": sum((point.sales_total for point in points), ZERO),
                    compare: sum((point.comparison_total for point in points), ZERO),
                },
                "results": [point.as_dict() for point in points],
            }

        return self._respond(self._cached(request, context, "sales-trend", run))


def _customer_rows(context):
    customers = list(Customer.objects.filter(owner_id=context.tenant_id).order_by("name"))
    balances = customer_balances(
        Invoice.objects.filter(owner_id=context.tenant_id).values("customer_id", "total_amount"),
        Payment.objects.filter(owner_id=context.tenant_id).values("customer_id", "amount_paid"),
        [customer.id for customer in customers],
    )
    return [
        {
            "customer_id": str(customer.id),
            "name": customer.name,
            "phone": customer.phone or "",
            "total_sales": balances[customer.id].total_billed,
            "total_paid": balances[customer.id].total_paid,
            "pending": balances[customer.id].pending,
        }
        for customer in customers
    ]


class TopCustomersView(BaseReportView):
    def get(self, request):
        context = tenant_context_from_request(request)
        limit = self._parse_limit(request, default=5)

        def run():
            rows = [row for row in _customer_rows(context) if row["total_sales"] > 0]
            rows.sort(key=lambda row: (-row["total_sales"], row["name"]))
            return rows[:limit]

        return self._respond({"results": self._cached(request, context, "top-customers", run)})


class PaymentStatusView(BaseReportView):
    """Invoiced value split into collected, pending and overdue amounts."""

    def get(self, request):
        context = tenant_context_from_request(request)
        overdue_after = settings.LEDGER_OVERDUE_AFTER_DAYS
        cutoff = context.today() - timedelta(days=overdue_after)

        def run():
            paid = pending = overdue = ZERO
            for invoice in self._owned(Invoice, context).only("invoice_date", "total_amount", "paid_amount"):
                collected = min(invoice.paid_amount, invoice.total_amount)
                outstanding = invoice.total_amount - collected
                paid += collected
                if invoice.invoice_date < cutoff:
                    overdue += outstanding
                else:
                    pending += outstanding
            return {
                "overdue_after_days": overdue_after,
                "paid": to_money(paid),
                "pending": to_money(pending),
                "overdue": to_money(overdue),
            }

        return self._respond(self._cached(request, context, "payment-status", run))


class ActivityView(BaseReportView):
    def get(self, request):
        context = tenant_context_from_request(request)

        def run():
            events = []
            for invoice in self._owned(Invoice, context).select_related("customer").order_by("-created_at")[:ACTIVITY_LIMIT]:
                events.append(
                    {
                        "type": "invoice",
                        "title": f"Invoice #{invoice.invoice_number}",
                        "description": f"{invoice.customer.name} - {format_currency(invoice.total_amount)}",
                        "amount": invoice.total_amount,
                        "status": invoice.status,
                        "timestamp": invoice.created_at,
                    }
                )
            for payment in self._owned(Payment, context).select_related("customer").order_by("-created_at")[:ACTIVITY_LIMIT]:
                events.append(
                    {
                        "type": "payment_received",
                        "title": "Payment Received",
                        "description": f"{payment.customer.name} - {format_currency(payment.amount_paid)}",
                        "amount": payment.amount_paid,
                        "status": "completed",
                        "timestamp": payment.created_at,
                    }
                )
            for purchase in self._owned(Purchase, context).select_related("vendor").order_by("-created_at")[:ACTIVITY_LIMIT]:
                events.append(
                    {
                        "type": "purchase",
                        "title": f"Purchase from {purchase.vendor.name}",
                        "description": f"{purchase.item} - {format_currency(purchase.total_amount)}",
                        "amount": purchase.total_amount,
                        "status": purchase.status,
                        "timestamp": purchase.created_at,
                    }
                )
            for payment in self._owned(PaymentMade, context).select_related("vendor").order_by("-created_at")[:ACTIVITY_LIMIT]:
                events.append(
                    {
                        "type": "payment_made",
                        "title": "Payment Made",
                        "description": f"{payment.vendor.name} - {format_currency(payment.amount)}",
                        "amount": payment.amount,
                        "status": "completed",
                        "timestamp": payment.created_at,
                    }
                )
            for customer in self._owned(Customer, context).order_by("-created_at")[:ACTIVITY_LIMIT]:
                events.append(
                    {
                        "type": "customer",
                        "title": "New Customer Added",
                        "description": customer.name,
                        "amount": None,
                        "status": "completed",
                        "timestamp": customer.created_at,
                    }
                )

            events.sort(key=lambda event: event["timestamp"], reverse=True)
            return [{**event, "timestamp": event["timestamp"].isoformat()} for event in events[:ACTIVITY_LIMIT]]

        return self._respond({"results": self._cached(request, context, "activity", run)})


class CustomerBalancesView(BaseReportView):
    def get(self, request):
        context = tenant_context_from_request(request)
        rows = self._cached(request, context, "customer-balances", lambda: _customer_rows(context))
        if request.query_params.get("format") == "csv":
            return self._csv_response("customer_balances.csv", rows)
        return self._respond({"results": rows})


class VendorBalancesView(BaseReportView):
    def get(self, request):
        context = tenant_context_from_request(request)

        def run():
            vendors = list(self._owned(Vendor, context).order_by("name"))
            balances = vendor_balances(
                self._owned(Purchase, context).values("vendor_id", "total_amount"),
                self._owned(PaymentMade, context).values("vendor_id", "amount"),
                [vendor.id for vendor in vendors],
            )
            return [
                {
                    "vendor_id": str(vendor.id),
                    "name": vendor.name,
                    "contact": vendor.contact or "",
                    "total_purchases": balances[vendor.id].total_billed,
                    "total_paid": balances[vendor.id].total_paid,
                    "pending": balances[vendor.id].pending,
                }
                for vendor in vendors
            ]

        rows = self._cached(request, context, "vendor-balances", run)
        if request.query_params.get("format") == "csv":
            return self._csv_response("vendor_balances.csv", rows)
        return self._respond({"results": rows})
