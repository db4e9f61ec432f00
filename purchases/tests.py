from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from purchases.models import PaymentMade, Purchase, Vendor


class PurchasesApiTestCase(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        user_model = get_user_model()
        self.user = user_model.objects.create_user(username="buyer", password="pass1234")
        self.other_user = user_model.objects.create_user(username="rival-buyer", password="pass1234")
        self.client.force_authenticate(user=self.user)
        self.vendor = Vendor.objects.create(owner=self.user, name="Deccan Supplies", contact="9800000000")
        self.foreign_vendor = Vendor.objects.create(owner=self.other_user, name="Elsewhere Traders")

    def buy(self, quantity="10", rate="12.50", vendor=None, **extra):
        payload = {"vendor": str((vendor or self.vendor).id), "item": "Jute bags", "quantity": quantity, "rate": rate}
        payload.update(extra)
        return self.client.post("/api/v1/purchases/", payload, format="json")

    def pay_vendor(self, amount, vendor=None):
        return self.client.post(
            "/api/v1/payments-made/",
            {"vendor": str((vendor or self.vendor).id), "amount": amount, "mode": "upi"},
            format="json",
        )


class VendorApiTests(PurchasesApiTestCase):
    def test_create_vendor(self):
        response = self.client.post(
            "/api/v1/vendors/",
            {"name": " Kaveri Packaging ", "gstin": "29aaaaa0000a1z5"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["name"], "Kaveri Packaging")
        self.assertEqual(response.json()["gstin"], "29AAAAA0000A1Z5")
        self.assertEqual(response.json()["pending"], "0.00")

    def test_list_is_scoped_to_owner(self):
        names = [row["name"] for row in self.client.get("/api/v1/vendors/").json()["results"]]

        self.assertEqual(names, ["Deccan Supplies"])
        self.assertEqual(self.client.get(f"/api/v1/vendors/{self.foreign_vendor.id}/").status_code, 404)

    def test_overpaid_vendor_shows_negative_pending(self):
        self.buy(quantity="40", rate="25")
        self.pay_vendor("1500")

        row = self.client.get("/api/v1/vendors/").json()["results"][0]

        self.assertEqual(row["total_purchases"], "1000.00")
        self.assertEqual(row["total_paid"], "1500.00")
        self.assertEqual(row["pending"], "-500.00")

    def test_retrieve_includes_recent_activity(self):
        self.buy()
        self.buy(quantity="2", rate="100")
        self.pay_vendor("75")

        payload = self.client.get(f"/api/v1/vendors/{self.vendor.id}/").json()

        self.assertEqual(payload["recent_purchase_amount"], "325.00")
        self.assertEqual(payload["recent_purchase_count"], 2)
        self.assertEqual(payload["recent_payment_amount"], "75.00")

    def test_vendor_with_transactions_cannot_be_deleted(self):
        self.buy()
        self.pay_vendor("10")

        check = self.client.get(f"/api/v1/vendors/{self.vendor.id}/delete-check/").json()
        with self.assertLogs("core.views", level="WARNING"):
            response = self.client.delete(f"/api/v1/vendors/{self.vendor.id}/")

        self.assertFalse(check["can_delete"])
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["errors"], {"purchases": 1, "payments": 1})
        self.assertTrue(Vendor.objects.filter(id=self.vendor.id).exists())

    def test_idle_vendor_can_be_deleted(self):
        response = self.client.delete(f"/api/v1/vendors/{self.vendor.id}/")

        self.assertEqual(response.status_code, 204)

    def test_statement(self):
        self.buy()
        self.pay_vendor("25")

        payload = self.client.get(f"/api/v1/vendors/{self.vendor.id}/statement/").json()

        self.assertEqual(payload["balance"]["pending"], "100.00")
        self.assertEqual(len(payload["purchases"]), 1)
        self.assertEqual(payload["payments"][0]["amount"], "25.00")


class PurchaseApiTests(PurchasesApiTestCase):
    def test_total_is_quantity_times_rate(self):
        response = self.buy(total_amount="1")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["total_amount"], "125.00")
        self.assertEqual(response.json()["status"], "Unpaid")

    def test_update_recomputes_total(self):
        purchase_id = self.buy().json()["id"]

        response = self.client.patch(f"/api/v1/purchases/{purchase_id}/", {"rate": "20"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_amount"], "200.00")

    def test_invalid_lines_are_rejected(self):
        zero_quantity = self.buy(quantity="0")
        negative_rate = self.buy(rate="-1")
        blank_item = self.buy(item=" ")

        self.assertIn("quantity", zero_quantity.json()["errors"])
        self.assertIn("rate", negative_rate.json()["errors"])
        self.assertIn("item", blank_item.json()["errors"])
        self.assertFalse(Purchase.objects.exists())

    def test_foreign_vendor_is_rejected(self):
        response = self.buy(vendor=self.foreign_vendor)

        self.assertEqual(response.status_code, 400)
        self.assertIn("vendor", response.json()["errors"])

    def test_status_action(self):
        purchase_id = self.buy().json()["id"]

        marked = self.client.post(f"/api/v1/purchases/{purchase_id}/status/", {"status": "Paid"}, format="json")
        invalid = self.client.post(f"/api/v1/purchases/{purchase_id}/status/", {"status": "Lost"}, format="json")

        self.assertEqual(marked.status_code, 200)
        self.assertEqual(marked.json()["status"], "Paid")
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(Purchase.objects.get(id=purchase_id).status, Purchase.Status.PAID)

    def test_list_filters_by_status(self):
        self.buy()
        paid_id = self.buy(status="Paid").json()["id"]

        results = self.client.get("/api/v1/purchases/?status=Paid").json()["results"]

        self.assertEqual([row["id"] for row in results], [paid_id])


class PaymentMadeApiTests(PurchasesApiTestCase):
    def test_amount_must_be_positive(self):
        response = self.pay_vendor("0")

        self.assertEqual(response.status_code, 400)
        self.assertIn("amount", response.json()["errors"])
        self.assertFalse(PaymentMade.objects.exists())

    def test_filter_by_vendor(self):
        second_vendor = Vendor.objects.create(owner=self.user, name="Kaveri Packaging")
        self.pay_vendor("10")
        self.pay_vendor("20", vendor=second_vendor)

        results = self.client.get(f"/api/v1/payments-made/?vendor={second_vendor.id}").json()["results"]

        self.assertEqual([row["amount"] for row in results], ["20.00"])

    def test_summary_covers_all_vendors(self):
        second_vendor = Vendor.objects.create(owner=self.user, name="Kaveri Packaging")
        self.buy()
        self.buy(quantity="1", rate="75", vendor=second_vendor)
        self.pay_vendor("50")
        Purchase.objects.create(
            owner=self.other_user, vendor=self.foreign_vendor, item="Twine", quantity=1, rate=999, total_amount=999
        )

        response = self.client.get("/api/v1/purchases/summary/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"total_purchases": "200.00", "total_paid": "50.00", "total_pending": "150.00"},
        )
