from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import BusinessProfile
from ledger.balances import (
    balances_by_counterparty,
    customer_balance,
    customer_balances,
    vendor_balance,
)
from ledger.documents import gst_breakdown
from ledger.formatting import amount_in_words, format_currency, format_indian_number
from ledger.invoicing import LineItem, apportion_per_item, compute_totals, validate_invoice_draft
from ledger.series import Window, generate_period_series, period_buckets
from purchases.models import PaymentMade, Purchase, Vendor
from sales.models import Customer, Invoice, Payment

KOLKATA = ZoneInfo("Asia/Kolkata")


class BalanceAggregatorTests(SimpleTestCase):
    def test_customer_pending_is_billed_minus_paid(self):
        summary = customer_balance([{"total_amount": "10000"}], [{"amount_paid": 4000}])

        self.assertEqual(summary.total_billed, Decimal("10000.00"))
        self.assertEqual(summary.total_paid, Decimal("4000.00"))
        self.assertEqual(summary.pending, Decimal("6000.00"))

    def test_customer_overpayment_clamps_pending_to_zero(self):
        summary = customer_balance(
            [{"total_amount": "10000"}],
            [{"amount_paid": 4000}, {"amount_paid": "7000"}],
        )

        self.assertEqual(summary.total_paid, Decimal("11000.00"))
        self.assertEqual(summary.pending, Decimal("0.00"))

    def test_vendor_overpayment_stays_negative(self):
        # Payables are reported unclamped, unlike receivables.
        summary = vendor_balance([{"total_amount": "1000"}], [{"amount": "1500"}])

        self.assertEqual(summary.pending, Decimal("-500.00"))

    def test_non_numeric_amounts_count_as_zero(self):
        sales = [
            {"total_amount": "abc"},
            {"total_amount": None},
            {"total_amount": "1,500.50"},
            {"total_amount": float("nan")},
            {},
            SimpleNamespace(total_amount=Decimal("99.50")),
            {"total_amount": "1e30"},
            {"total_amount": Decimal("-1E+27")},
        ]

        summary = customer_balance(sales, [SimpleNamespace(amount_paid="")])

        self.assertEqual(summary.total_billed, Decimal("1600.00"))
        self.assertEqual(summary.total_paid, Decimal("0.00"))

    def test_summary_is_idempotent(self):
        sales = [{"total_amount": "250.25"}, {"total_amount": "100"}]
        payments = [{"amount_paid": "50.25"}]

        self.assertEqual(customer_balance(sales, payments), customer_balance(sales, payments))

    def test_pending_never_negative_for_customers(self):
        for billed, paid in [(0, 0), (0, 10), (5, 5), (5, 6), (1000, 1)]:
            summary = customer_balance([{"total_amount": billed}], [{"amount_paid": paid}])
            self.assertGreaterEqual(summary.pending, 0)
            self.assertEqual(summary.pending, max(Decimal(billed) - Decimal(paid), 0))

    def test_grouping_by_counterparty_includes_idle_counterparties(self):
        sales = [
            {"customer_id": "a", "total_amount": "100"},
            {"customer_id": "b", "total_amount": "40"},
            {"customer_id": "a", "total_amount": "50"},
        ]
        payments = [{"customer_id": "a", "amount_paid": "30"}, {"customer_id": "b", "amount_paid": "90"}]

        balances = customer_balances(sales, payments, ["a", "b", "c"])

        self.assertEqual(list(balances), ["a", "b", "c"])
        self.assertEqual(balances["a"].pending, Decimal("120.00"))
        self.assertEqual(balances["b"].pending, Decimal("0.00"))
        self.assertEqual(balances["c"].total_billed, Decimal("0.00"))

    def test_grouping_honours_clamp_flag(self):
        balances = balances_by_counterparty(
            [{"vendor_id": 1, "total_amount": "10"}],
            [{"vendor_id": 1, "amount": "25"}],
            key="vendor_id",
            billed_field="total_amount",
            paid_field="amount",
            clamp=False,
        )

        self.assertEqual(balances[1].pending, Decimal("-15.00"))


class PeriodSeriesTests(SimpleTestCase):
    now = datetime(2026, 10, 19, 10, 0, tzinfo=dt_timezone.utc)

    def test_bucket_counts_match_window(self):
        for window, expected in [("7d", 7), ("30d", 30), ("12m", 12)]:
            points = generate_period_series(window, [], [], now=self.now, tz=KOLKATA)
            self.assertEqual(len(points), expected)
            self.assertTrue(all(point.sales_total == 0 and point.comparison_total == 0 for point in points))

    def test_daily_buckets_are_contiguous_local_days(self):
        buckets = period_buckets(Window.LAST_7_DAYS, now=self.now, tz=KOLKATA)

        self.assertEqual(buckets[0].label, "13 Oct")
        self.assertEqual(buckets[-1].label, "19 Oct")
        self.assertEqual(buckets[-1].start, datetime(2026, 10, 19, tzinfo=KOLKATA))
        for previous, current in zip(buckets, buckets[1:]):
            self.assertEqual(previous.end, current.start)

    def test_monthly_buckets_span_year_boundary(self):
        buckets = period_buckets("12m", now=self.now, tz=KOLKATA)

        self.assertEqual(buckets[0].label, "Nov 2025")
        self.assertEqual(buckets[0].start, datetime(2025, 11, 1, tzinfo=KOLKATA))
        self.assertEqual(buckets[1].start, datetime(2025, 12, 1, tzinfo=KOLKATA))
        self.assertEqual(buckets[2].start, datetime(2026, 1, 1, tzinfo=KOLKATA))
        self.assertEqual(buckets[-1].label, "Oct 2026")
        self.assertEqual(buckets[-1].end, datetime(2026, 11, 1, tzinfo=KOLKATA))

    def test_sales_inside_window_are_summed_and_others_excluded(self):
        sales = [
            {"invoice_date": date(2026, 10, 19), "total_amount": "100"},
            {"invoice_date": "2026-10-13", "total_amount": "50"},
            {"invoice_date": "2026-10-12", "total_amount": "999"},
            {"invoice_date": "not-a-date", "total_amount": "5"},
            {"invoice_date": "2026-13-45", "total_amount": "5"},
            {"invoice_date": None, "total_amount": "5"},
            {"invoice_date": "2026-10-18T20:00:00Z", "total_amount": "30"},
        ]

        points = generate_period_series("7d", sales, [], now=self.now, tz=KOLKATA)

        self.assertEqual(points[0].sales_total, Decimal("50.00"))
        # 20:00 UTC on the 18th is already the 19th in Kolkata.
        self.assertEqual(points[-1].sales_total, Decimal("130.00"))
        self.assertEqual(sum(point.sales_total for point in points), Decimal("180.00"))

    def test_oversized_amounts_are_skipped_as_malformed(self):
        sales = [
            {"invoice_date": "2026-10-19", "total_amount": "1e27"},
            {"invoice_date": "2026-10-19", "total_amount": "12.50"},
        ]
        payments = [{"payment_date": "2026-10-19", "amount_paid": "9e40"}]

        points = generate_period_series("7d", sales, payments, now=self.now, tz=KOLKATA)

        self.assertEqual(points[-1].sales_total, Decimal("12.50"))
        self.assertEqual(points[-1].comparison_total, Decimal("0.00"))

    def test_comparison_stream_uses_its_own_fields(self):
        purchases = [
            {"date": "2026-10-02", "total_amount": "70"},
            {"date": "2025-11-30", "total_amount": "30"},
            {"date": "2025-10-31", "total_amount": "1000"},
        ]

        points = generate_period_series(
            "12m",
            [],
            purchases,
            now=self.now,
            tz=KOLKATA,
            comparison_date_field="date",
            comparison_amount_field="total_amount",
        )

        self.assertEqual(points[0].comparison_total, Decimal("30.00"))
        self.assertEqual(points[-1].comparison_total, Decimal("70.00"))
        self.assertEqual(sum(point.comparison_total for point in points), Decimal("100.00"))

    def test_unknown_window_is_rejected(self):
        with self.assertRaises(ValueError):
            period_buckets("90d", now=self.now, tz=KOLKATA)


class FormattingTests(SimpleTestCase):
    def test_indian_grouping(self):
        self.assertEqual(format_indian_number(100000), "1,00,000")
        self.assertEqual(format_indian_number(999), "999")
        self.assertEqual(format_indian_number("1234.5"), "1,234.5")
        self.assertEqual(format_indian_number(12345678, places=2), "1,23,45,678.00")

    def test_currency_has_symbol_and_two_decimals(self):
        self.assertEqual(format_currency(123456), "₹1,23,456.00")
        self.assertEqual(format_currency("1234567.891"), "₹12,34,567.89")
        self.assertEqual(format_currency(0), "₹0.00")
        self.assertEqual(format_currency(-500), "-₹500.00")
        self.assertEqual(format_currency(None), "₹0.00")
        self.assertEqual(format_currency(10, symbol="Rs. "), "Rs. 10.00")

    def test_amount_in_words_examples(self):
        self.assertEqual(amount_in_words(0), "Zero Rupees Only")
        self.assertEqual(amount_in_words(1), "One Rupees Only")
        self.assertEqual(amount_in_words(100000), "One Lakh Rupees Only")
        self.assertEqual(amount_in_words("150.50"), "One Hundred Fifty Rupees and Fifty Paise Only")
        self.assertEqual(
            amount_in_words(1234567),
            "Twelve Lakh Thirty Four Thousand Five Hundred Sixty Seven Rupees Only",
        )

    def test_paise_only_and_float_noise(self):
        self.assertEqual(amount_in_words(0.5), "Zero Rupees and Fifty Paise Only")
        self.assertEqual(amount_in_words(0.1 + 0.2), "Zero Rupees and Thirty Paise Only")
        self.assertEqual(amount_in_words(0.004), "Zero Rupees Only")

    def test_largest_supported_amount(self):
        self.assertEqual(
            amount_in_words("99999999999.99"),
            "Nine Thousand Nine Hundred Ninety Nine Crore Ninety Nine Lakh Ninety Nine Thousand "
            "Nine Hundred Ninety Nine Rupees and Ninety Nine Paise Only",
        )

    def test_negative_amounts_are_rejected(self):
        with self.assertRaises(ValueError):
            amount_in_words(-1)


class InvoiceCalculatorTests(SimpleTestCase):
    def test_two_line_invoice_totals(self):
        lines = [LineItem("Item A", 3, 100), LineItem("Item B", 1, 50)]

        totals = compute_totals(lines, 18, 20)

        self.assertEqual([line.amount for line in lines], [Decimal("300.00"), Decimal("50.00")])
        self.assertEqual(totals.subtotal, Decimal("350.00"))
        self.assertEqual(totals.tax_amount, Decimal("63.00"))
        self.assertEqual(totals.grand_total, Decimal("433.00"))
        self.assertEqual(totals.grand_total, totals.subtotal + totals.tax_amount + totals.transport_charges)

    def test_line_amount_follows_quantity_and_rate_edits(self):
        line = LineItem("Rice", "2", "45")
        for quantity, rate in [("3", "45"), ("3", "47.50"), ("0.5", "47.50")]:
            line.quantity = Decimal(quantity)
            line.rate = Decimal(rate)
            self.assertEqual(line.amount, (Decimal(quantity) * Decimal(rate)).quantize(Decimal("0.01")))

    def test_tax_is_rounded_to_paise(self):
        totals = compute_totals([LineItem("Salt", 3, "33.33")], 5)

        self.assertEqual(totals.subtotal, Decimal("99.99"))
        self.assertEqual(totals.tax_amount, Decimal("5.00"))

    def test_draft_validation_reports_line_errors(self):
        lines = [LineItem("", 0, -1), LineItem("Sugar", 2, 40)]

        errors = validate_invoice_draft(None, lines)

        self.assertEqual(errors["customer"], ["Please select a customer."])
        self.assertEqual(set(errors["items"][0]), {"item_name", "quantity", "rate_per_unit"})
        self.assertEqual(errors["items"][1], {})

    def test_draft_requires_items(self):
        self.assertEqual(validate_invoice_draft("customer-id", []), {"items": ["Add at least one item."]})
        self.assertEqual(validate_invoice_draft("customer-id", [LineItem("Tea", 1, 0)]), {})

    def test_apportioned_shares_add_up_to_invoice_totals(self):
        lines = [LineItem(name, 1, "33.33") for name in ("A", "B", "C")]

        shares = apportion_per_item(lines, 5, 10)

        self.assertEqual([share.tax_amount for share in shares], [Decimal("1.67"), Decimal("1.67"), Decimal("1.66")])
        self.assertEqual([share.transport_share for share in shares], [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")])
        totals = compute_totals(lines, 5, 10)
        self.assertEqual(sum(share.total for share in shares), totals.grand_total)

    def test_gst_breakdown_splits_or_charges_igst(self):
        intra = gst_breakdown(1000, 18)
        inter = gst_breakdown(1000, 18, inter_state=True)
        odd = gst_breakdown("33.33", 5)

        self.assertEqual((intra["cgst"], intra["sgst"], intra["igst"]), (Decimal("90.00"), Decimal("90.00"), Decimal("0.00")))
        self.assertEqual((inter["igst"], inter["total"]), (Decimal("180.00"), Decimal("180.00")))
        self.assertEqual(odd["cgst"] + odd["sgst"], odd["total"])


class ReportEndpointTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        user_model = get_user_model()
        self.user = user_model.objects.create_user(username="reports-owner", password="pass1234")
        self.other = user_model.objects.create_user(username="reports-other", password="pass1234")
        BusinessProfile.objects.create(user=self.user, organization_name="Org", full_name="Owner", timezone="UTC")
        self.client.force_authenticate(user=self.user)

        self.today = timezone.now().date()
        self.old_date = self.today.replace(day=1) - timedelta(days=40)

        self.customer_a = Customer.objects.create(owner=self.user, name="Anand Stores")
        self.customer_b = Customer.objects.create(owner=self.user, name="Bharat Mills")
        self.vendor = Vendor.objects.create(owner=self.user, name="Deccan Supplies")

        self.recent_invoice = self._invoice(self.customer_a, self.today, "350.00", "63.00", "20.00", "INV-T-1")
        self._invoice(self.customer_a, self.old_date, "1000.00", "0.00", "0.00", "INV-T-2")
        Payment.objects.create(
            owner=self.user, customer=self.customer_a, invoice=self.recent_invoice, amount_paid="100.00", payment_date=self.today
        )
        self.recent_invoice.paid_amount = Decimal("100.00")
        self.recent_invoice.status = Invoice.Status.PARTIAL
        self.recent_invoice.save()
        Payment.objects.create(owner=self.user, customer=self.customer_b, amount_paid="500.00", payment_date=self.today)
        Purchase.objects.create(
            owner=self.user, vendor=self.vendor, item="Bags", quantity=10, rate=20, total_amount="200.00", date=self.today
        )
        PaymentMade.objects.create(owner=self.user, vendor=self.vendor, amount="250.00", date=self.today)

        foreign_customer = Customer.objects.create(owner=self.other, name="Elsewhere Ltd")
        Invoice.objects.create(
            owner=self.other,
            customer=foreign_customer,
            invoice_number="INV-X-1",
            invoice_date=self.today,
            subtotal="5000.00",
            total_amount="5000.00",
        )

    def _invoice(self, customer, invoice_date, subtotal, tax, transport, number):
        total = Decimal(subtotal) + Decimal(tax) + Decimal(transport)
        return Invoice.objects.create(
            owner=self.user,
            customer=customer,
            invoice_number=number,
            invoice_date=invoice_date,
            subtotal=subtotal,
            tax_percentage="18.00",
            tax_amount=tax,
            transport_charges=transport,
            total_amount=total,
        )

    def test_dashboard_summary(self):
        response = self.client.get("/api/v1/reports/dashboard-summary/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["sales_this_month"], "433.00")
        self.assertEqual(payload["gst_payable"], "63.00")
        self.assertEqual(payload["purchases_this_month"], "200.00")
        self.assertEqual(payload["payments_received_this_month"], "600.00")
        self.assertEqual(payload["payments_made_this_month"], "250.00")
        # Bharat Mills paid without being billed; that credit does not offset Anand's dues.
        self.assertEqual(payload["outstanding_dues"], "1333.00")
        self.assertEqual(payload["total_customers"], 2)
        self.assertEqual(payload["total_vendors"], 1)
        self.assertTrue(payload["has_data"])

    def test_summary_cache_is_dropped_after_a_mutation(self):
        first = self.client.get("/api/v1/reports/dashboard-summary/").json()

        created = self.client.post(
            "/api/v1/invoices/",
            {
                "customer": str(self.customer_b.id),
                "tax_percentage": "0",
                "items": [{"item_name": "Wheat", "quantity": "1", "rate_per_unit": "67"}],
            },
            format="json",
        )
        second = self.client.get("/api/v1/reports/dashboard-summary/").json()

        self.assertEqual(created.status_code, 201)
        self.assertEqual(first["sales_this_month"], "433.00")
        self.assertEqual(second["sales_this_month"], "500.00")

    def test_sales_trend_against_payments_and_purchases(self):
        payments = self.client.get("/api/v1/reports/sales-trend/?window=7d")
        purchases = self.client.get("/api/v1/reports/sales-trend/?window=12m&compare=purchases")

        self.assertEqual(payments.status_code, 200)
        results = payments.json()["results"]
        self.assertEqual(len(results), 7)
        self.assertEqual(results[-1]["sales_total"], "433.00")
        self.assertEqual(results[-1]["comparison_total"], "600.00")

        monthly = purchases.json()
        self.assertEqual(len(monthly["results"]), 12)
        self.assertEqual(monthly["compare"], "purchases")
        self.assertEqual(monthly["results"][-1]["comparison_total"], "200.00")
        self.assertEqual(Decimal(monthly["totals"]["sales"]), Decimal("1433.00"))

    def test_sales_trend_rejects_unknown_parameters(self):
        bad_window = self.client.get("/api/v1/reports/sales-trend/?window=90d")
        bad_compare = self.client.get("/api/v1/reports/sales-trend/?compare=returns")

        self.assertEqual(bad_window.status_code, 400)
        self.assertIn("window", bad_window.json()["errors"])
        self.assertEqual(bad_compare.status_code, 400)

    def test_top_customers_and_limit_validation(self):
        response = self.client.get("/api/v1/reports/top-customers/?limit=1")
        invalid = self.client.get("/api/v1/reports/top-customers/?limit=abc")

        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["name"], "Anand Stores")
        self.assertEqual(results[0]["total_sales"], "1433.00")
        self.assertEqual(invalid.status_code, 400)

    def test_payment_status_split(self):
        payload = self.client.get("/api/v1/reports/payment-status/").json()

        self.assertEqual(payload["paid"], "100.00")
        self.assertEqual(payload["pending"], "333.00")
        self.assertEqual(payload["overdue"], "1000.00")

    def test_activity_feed_is_limited_and_newest_first(self):
        for index in range(12):
            Customer.objects.create(owner=self.user, name=f"Walk-in {index}")

        results = self.client.get("/api/v1/reports/activity/").json()["results"]

        self.assertEqual(len(results), 10)
        timestamps = [row["timestamp"] for row in results]
        self.assertEqual(timestamps, sorted(timestamps, reverse=True))
        self.assertEqual(results[0]["title"], "New Customer Added")
        self.assertNotIn("Elsewhere Ltd", {row["description"] for row in results})

    def test_customer_balances_csv_export(self):
        response = self.client.get("/api/v1/reports/customer-balances/?format=csv")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = response.content.decode().strip().splitlines()
        self.assertEqual(lines[0], "customer_id,name,phone,total_sales,total_paid,pending")
        self.assertEqual(len(lines), 3)

    def test_vendor_balances_are_unclamped(self):
        results = self.client.get("/api/v1/reports/vendor-balances/").json()["results"]

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["pending"], "-50.00")

    def test_reports_require_authentication(self):
        self.client.force_authenticate(user=None)

        response = self.client.get("/api/v1/reports/dashboard-summary/")

        self.assertEqual(response.status_code, 401)
