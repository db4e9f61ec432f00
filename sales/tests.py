from datetime import datetime, timezone as dt_timezone
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db.models import ProtectedError
from django.test import TestCase
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.request import Request
from rest_framework.test import APIClient, APIRequestFactory

from common.exceptions import custom_exception_handler
from core.models import BusinessProfile
from sales.models import Customer, Invoice, Payment
from sales.serializers import PaymentSerializer
from sales.services import invoice_status_for, next_invoice_number


class SalesApiTestCase(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        user_model = get_user_model()
        self.user = user_model.objects.create_user(username="seller", password="pass1234")
        self.other_user = user_model.objects.create_user(username="rival", password="pass1234")
        BusinessProfile.objects.create(
            user=self.user,
            organization_name="Sharma Traders",
            full_name="R. Sharma",
            gst_number="27ABCDE1234F1Z5",
            timezone="UTC",
        )
        self.client.force_authenticate(user=self.user)
        self.customer = Customer.objects.create(owner=self.user, name="Anand Stores", preferred_unit="bag")
        self.foreign_customer = Customer.objects.create(owner=self.other_user, name="Elsewhere Ltd")

    def create_invoice(self, customer=None, **overrides):
        payload = {
            "customer": str((customer or self.customer).id),
            "tax_percentage": "18",
            "transport_charges": "20",
            "items": [
                {"item_name": "Item A", "quantity": "3", "rate_per_unit": "100", "amount": "999"},
                {"item_name": "Item B", "quantity": "1", "rate_per_unit": "50", "unit": "kg"},
            ],
        }
        payload.update(overrides)
        return self.client.post("/api/v1/invoices/", payload, format="json")

    def pay(self, amount, invoice_id=None, customer=None):
        payload = {"customer": str((customer or self.customer).id), "amount_paid": amount}
        if invoice_id:
            payload["invoice"] = invoice_id
        return self.client.post("/api/v1/payments/", payload, format="json")


class CustomerApiTests(SalesApiTestCase):
    def test_create_customer_uses_default_unit(self):
        response = self.client.post(
            "/api/v1/customers/",
            {"name": "  Bharat Mills ", "email": "Accounts@Bharat.example", "gst_number": "29abcde1234f1z5"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["name"], "Bharat Mills")
        self.assertEqual(payload["email"], "accounts@bharat.example")
        self.assertEqual(payload["gst_number"], "29ABCDE1234F1Z5")
        self.assertEqual(payload["preferred_unit"], "kg")
        self.assertEqual(Customer.objects.get(id=payload["id"]).owner, self.user)

    def test_blank_name_is_rejected(self):
        response = self.client.post("/api/v1/customers/", {"name": "   "}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["errors"])

    def test_list_is_scoped_to_owner_and_carries_balances(self):
        invoice_id = self.create_invoice().json()["id"]
        self.pay("100", invoice_id)

        response = self.client.get("/api/v1/customers/")

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual([row["name"] for row in results], ["Anand Stores"])
        self.assertEqual(results[0]["total_sales"], "433.00")
        self.assertEqual(results[0]["total_paid"], "100.00")
        self.assertEqual(results[0]["pending"], "333.00")

    def test_search_filters_by_name(self):
        Customer.objects.create(owner=self.user, name="Chandra Foods")

        response = self.client.get("/api/v1/customers/?search=chandra")

        self.assertEqual([row["name"] for row in response.json()["results"]], ["Chandra Foods"])

    def test_foreign_customer_is_not_found(self):
        response = self.client.get(f"/api/v1/customers/{self.foreign_customer.id}/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_retrieve_reports_this_month_sales(self):
        self.create_invoice()

        response = self.client.get(f"/api/v1/customers/{self.customer.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["this_month_sales"], "433.00")

    def test_pending_is_clamped_once_customer_overpays(self):
        Payment.objects.create(owner=self.user, customer=self.customer, amount_paid="500.00")
        self.create_invoice(transport_charges="0", tax_percentage="0", items=[
            {"item_name": "Rice", "quantity": "1", "rate_per_unit": "400"},
        ])

        row = self.client.get(f"/api/v1/customers/{self.customer.id}/").json()

        self.assertEqual(row["total_sales"], "400.00")
        self.assertEqual(row["total_paid"], "500.00")
        self.assertEqual(row["pending"], "0.00")

    def test_customer_without_records_can_be_deleted(self):
        check = self.client.get(f"/api/v1/customers/{self.customer.id}/delete-check/")
        response = self.client.delete(f"/api/v1/customers/{self.customer.id}/")

        self.assertEqual(check.json(), {"can_delete": True, "dependents": {"invoices": 0, "payments": 0}})
        self.assertEqual(response.status_code, 204)
        self.assertFalse(Customer.objects.filter(id=self.customer.id).exists())

    def test_customer_with_invoices_cannot_be_deleted(self):
        self.create_invoice()

        with self.assertLogs("core.views", level="WARNING") as logs:
            response = self.client.delete(f"/api/v1/customers/{self.customer.id}/")

        self.assertEqual(response.status_code, 409)
        payload = response.json()
        self.assertEqual(payload["code"], "dependent_records_exist")
        self.assertEqual(payload["errors"], {"invoices": 1})
        self.assertIn("invoices: 1", payload["message"])
        self.assertTrue(any("counterparty_delete_blocked" in entry for entry in logs.output))
        self.assertTrue(Customer.objects.filter(id=self.customer.id).exists())

    def test_statement_lists_invoices_and_payments(self):
        invoice_id = self.create_invoice().json()["id"]
        self.pay("33", invoice_id)

        response = self.client.get(f"/api/v1/customers/{self.customer.id}/statement/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["balance"], {"total_billed": "433.00", "total_paid": "33.00", "pending": "400.00"})
        self.assertEqual(len(payload["invoices"]), 1)
        self.assertEqual(payload["payments"][0]["amount_paid"], "33.00")


class InvoiceApiTests(SalesApiTestCase):
    def test_invoice_totals_are_computed_server_side(self):
        response = self.create_invoice()

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["subtotal"], "350.00")
        self.assertEqual(payload["tax_percentage"], "18.00")
        self.assertEqual(payload["tax_amount"], "63.00")
        self.assertEqual(payload["transport_charges"], "20.00")
        self.assertEqual(payload["total_amount"], "433.00")
        self.assertEqual(payload["status"], "unpaid")
        self.assertEqual(payload["balance_due"], "433.00")
        self.assertEqual([item["amount"] for item in payload["items"]], ["300.00", "50.00"])
        self.assertEqual([item["unit"] for item in payload["items"]], ["bag", "kg"])

    def test_invoice_numbers_are_sequential_per_month(self):
        prefix = f"INV-{timezone.localdate():%Y%m}"

        first = self.create_invoice().json()
        second = self.create_invoice().json()

        self.assertEqual(first["invoice_number"], f"{prefix}-0001")
        self.assertEqual(second["invoice_number"], f"{prefix}-0002")

    def test_invoice_counters_are_per_owner(self):
        today = timezone.localdate()

        self.assertEqual(next_invoice_number(self.other_user, today), f"INV-{today:%Y%m}-0001")
        self.assertEqual(self.create_invoice().json()["invoice_number"], f"INV-{today:%Y%m}-0001")

    def test_default_tax_rate_applies_when_omitted(self):
        response = self.client.post(
            "/api/v1/invoices/",
            {
                "customer": str(self.customer.id),
                "items": [{"item_name": "Wheat", "quantity": "2", "rate_per_unit": "50"}],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["tax_percentage"], "18.00")
        self.assertEqual(response.json()["total_amount"], "118.00")

    def test_default_invoice_date_is_tenant_local_today(self):
        profile = self.user.business_profile
        profile.timezone = "Pacific/Kiritimati"
        profile.save()
        server_now = datetime(2026, 10, 19, 20, 0, tzinfo=dt_timezone.utc)

        with patch("django.utils.timezone.now", return_value=server_now):
            response = self.create_invoice()
            payment = self.pay("10", response.json()["id"])

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["invoice_date"], "2026-10-20")
        self.assertEqual(response.json()["invoice_number"], "INV-202610-0001")
        self.assertEqual(payment.json()["payment_date"], "2026-10-20")

    def test_line_errors_are_reported_per_item(self):
        response = self.create_invoice(
            items=[
                {"item_name": "", "quantity": "0", "rate_per_unit": "-1"},
                {"item_name": "Sugar", "quantity": "1", "rate_per_unit": "40"},
            ]
        )

        self.assertEqual(response.status_code, 400)
        item_errors = response.json()["errors"]["items"]
        self.assertEqual(set(item_errors[0]), {"item_name", "quantity", "rate_per_unit"})
        self.assertEqual(item_errors[1], {})
        self.assertFalse(Invoice.objects.exists())

    def test_customer_and_items_are_required(self):
        response = self.client.post(
            "/api/v1/invoices/",
            {"customer": None, "items": []},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        errors = response.json()["errors"]
        self.assertEqual(errors["customer"], ["Please select a customer."])
        self.assertEqual(errors["items"], ["Add at least one item."])

    def test_foreign_customer_is_rejected(self):
        response = self.create_invoice(customer=self.foreign_customer)

        self.assertEqual(response.status_code, 400)
        self.assertIn("customer", response.json()["errors"])

    def test_list_filters_by_customer_and_status(self):
        other_customer = Customer.objects.create(owner=self.user, name="Bharat Mills")
        self.create_invoice()
        paid_id = self.create_invoice(customer=other_customer).json()["id"]
        self.pay("433", paid_id, customer=other_customer)

        by_customer = self.client.get(f"/api/v1/invoices/?customer={other_customer.id}").json()["results"]
        by_status = self.client.get("/api/v1/invoices/?status=unpaid").json()["results"]
        bad_reference = self.client.get("/api/v1/invoices/?customer=not-a-uuid")

        self.assertEqual([row["id"] for row in by_customer], [paid_id])
        self.assertEqual([row["customer_name"] for row in by_status], ["Anand Stores"])
        self.assertEqual(bad_reference.status_code, 400)

    def test_invoice_without_payments_can_be_deleted(self):
        invoice_id = self.create_invoice().json()["id"]

        response = self.client.delete(f"/api/v1/invoices/{invoice_id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Invoice.objects.filter(id=invoice_id).exists())

    def test_invoice_with_payments_cannot_be_deleted(self):
        invoice_id = self.create_invoice().json()["id"]
        self.pay("10", invoice_id)

        response = self.client.delete(f"/api/v1/invoices/{invoice_id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["errors"], {"payments": 1})

    def test_invoice_document(self):
        invoice_id = self.create_invoice().json()["id"]

        response = self.client.get(f"/api/v1/invoices/{invoice_id}/document/")

        self.assertEqual(response.status_code, 200)
        document = response.json()
        self.assertEqual(document["seller"]["organization_name"], "Sharma Traders")
        self.assertEqual(document["customer"]["name"], "Anand Stores")
        self.assertEqual(document["invoice_date"], f"{timezone.localdate():%d/%m/%Y}")
        self.assertEqual(document["amount_in_words"], "Four Hundred Thirty Three Rupees Only")
        self.assertEqual(document["display"]["total_amount"], "₹433.00")
        self.assertEqual(document["totals"]["total_amount"], "433.00")
        self.assertEqual([item["tax_amount"] for item in document["items"]], ["54.00", "9.00"])
        self.assertEqual([item["transport_share"] for item in document["items"]], ["10.00", "10.00"])
        self.assertEqual(document["items"][0]["total"], "364.00")

    def test_eway_bill_payload(self):
        invoice = self.create_invoice().json()

        intra = self.client.get(f"/api/v1/invoices/{invoice['id']}/eway-bill/").json()["billLists"][0]
        inter = self.client.get(f"/api/v1/invoices/{invoice['id']}/eway-bill/?inter_state=true&download=1")

        self.assertEqual(intra["docNo"], invoice["invoice_number"])
        self.assertEqual(intra["fromGstin"], "27ABCDE1234F1Z5")
        self.assertEqual(intra["toGstin"], "URP")
        self.assertEqual(intra["cgstValue"], 31.5)
        self.assertEqual(intra["sgstValue"], 31.5)
        self.assertEqual(intra["totInvValue"], 433.0)
        self.assertEqual(len(intra["itemList"]), 2)

        self.assertIn("attachment", inter["Content-Disposition"])
        inter_bill = inter.json()["billLists"][0]
        self.assertEqual(inter_bill["igstValue"], 63.0)
        self.assertEqual(inter_bill["cgstValue"], 0.0)


class PaymentApiTests(SalesApiTestCase):
    def setUp(self):
        super().setUp()
        self.invoice_id = self.create_invoice().json()["id"]

    def test_invoice_status_follows_payments(self):
        first = self.pay("100", self.invoice_id)
        invoice = Invoice.objects.get(id=self.invoice_id)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(invoice.status, Invoice.Status.PARTIAL)

        with self.assertLogs("sales.services", level="INFO") as logs:
            second = self.pay("333", self.invoice_id)
        invoice.refresh_from_db()

        self.assertEqual(second.status_code, 201)
        self.assertEqual(invoice.status, Invoice.Status.PAID)
        self.assertEqual(str(invoice.paid_amount), "433.00")
        self.assertTrue(any("invoice_status_changed" in entry for entry in logs.output))

    def test_overpayment_is_rejected(self):
        self.pay("400", self.invoice_id)

        response = self.pay("33.01", self.invoice_id)

        self.assertEqual(response.status_code, 400)
        self.assertIn("amount_paid", response.json()["errors"])

    def test_payments_validated_together_cannot_overpay(self):
        request = Request(APIRequestFactory().post("/api/v1/payments/"))
        request.user = self.user
        payload = {"customer": str(self.customer.id), "invoice": self.invoice_id, "amount_paid": "433"}
        first = PaymentSerializer(data=payload, context={"request": request})
        second = PaymentSerializer(data=payload, context={"request": request})
        self.assertTrue(first.is_valid(), first.errors)
        self.assertTrue(second.is_valid(), second.errors)

        first.save(owner=self.user)
        with self.assertRaises(ValidationError) as raised:
            second.save(owner=self.user)

        self.assertIn("amount_paid", raised.exception.detail)
        invoice = Invoice.objects.get(id=self.invoice_id)
        self.assertEqual(str(invoice.paid_amount), "433.00")
        self.assertEqual(invoice.payments.count(), 1)

    def test_non_positive_amount_is_rejected(self):
        response = self.pay("0", self.invoice_id)

        self.assertEqual(response.status_code, 400)

    def test_invoice_must_belong_to_customer(self):
        other_customer = Customer.objects.create(owner=self.user, name="Bharat Mills")

        response = self.pay("10", self.invoice_id, customer=other_customer)

        self.assertEqual(response.status_code, 400)
        self.assertIn("invoice", response.json()["errors"])

    def test_payment_without_invoice_is_on_account(self):
        response = self.pay("250")

        self.assertEqual(response.status_code, 201)
        self.assertIsNone(response.json()["invoice"])
        self.assertEqual(Invoice.objects.get(id=self.invoice_id).status, Invoice.Status.UNPAID)

    def test_deleting_payment_recomputes_invoice(self):
        self.pay("100", self.invoice_id)
        payment_id = self.pay("333", self.invoice_id).json()["id"]

        response = self.client.delete(f"/api/v1/payments/{payment_id}/")

        self.assertEqual(response.status_code, 204)
        invoice = Invoice.objects.get(id=self.invoice_id)
        self.assertEqual(invoice.status, Invoice.Status.PARTIAL)
        self.assertEqual(str(invoice.paid_amount), "100.00")

    def test_list_filters_by_invoice(self):
        self.pay("100", self.invoice_id)
        self.pay("50")

        results = self.client.get(f"/api/v1/payments/?invoice={self.invoice_id}").json()["results"]

        self.assertEqual([row["amount_paid"] for row in results], ["100.00"])

    def test_status_rules(self):
        self.assertEqual(invoice_status_for(100, 0), Invoice.Status.UNPAID)
        self.assertEqual(invoice_status_for(100, 40), Invoice.Status.PARTIAL)
        self.assertEqual(invoice_status_for(100, 100), Invoice.Status.PAID)
        self.assertEqual(invoice_status_for(0, 0), Invoice.Status.UNPAID)


class ProtectedDeleteTests(SalesApiTestCase):
    def test_protected_error_is_reported_as_conflict(self):
        invoice = Invoice.objects.get(id=self.create_invoice().json()["id"])

        response = custom_exception_handler(ProtectedError("protected", {invoice}), {})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "dependent_records_exist")
        self.assertEqual(response.data["errors"], {"invoices": 1})
