from datetime import date, datetime, timezone as dt_timezone
from io import StringIO
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.contrib.auth.tokens import default_token_generator
from django.core import mail
from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils.encoding import force_bytes
from django.utils.http import urlsafe_base64_encode
from rest_framework.request import Request
from rest_framework.test import APIClient, APIRequestFactory

from common.permissions import IsOwner
from core.context import tenant_context_from_request
from core.models import BusinessProfile
from purchases.models import Purchase
from sales.models import Customer, Invoice


class RegistrationTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user_model = get_user_model()
        self.user_model.objects.create_user(
            username="existing-user",
            email="existing@example.com",
            password="pass1234",
        )

    def test_registration_creates_user_with_normalized_email(self):
        response = self.client.post(
            "/api/v1/register/",
            {
                "username": "new-user",
                "email": "  New.User@Example.com ",
                "password": "pass12345",
                "first_name": "New",
                "last_name": "User",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertNotIn("password", response.json())
        user = self.user_model.objects.get(username="new-user")
        self.assertEqual(user.email, "new.user@example.com")
        self.assertTrue(user.check_password("pass12345"))

    def test_registration_rejects_case_insensitive_duplicate_email(self):
        response = self.client.post(
            "/api/v1/register/",
            {
                "username": "new-user",
                "email": "EXISTING@example.com",
                "password": "pass12345",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertEqual(payload["errors"], {"email": ["A user with this email already exists."]})


class TokenSessionTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="session-user",
            email="session@example.com",
            password="pass1234",
        )

    def _obtain(self, username):
        return self.client.post(
            "/api/v1/token/",
            {"username": username, "password": "pass1234"},
            format="json",
        )

    def test_token_can_be_obtained_with_email_or_username(self):
        by_email = self._obtain("SESSION@example.com")
        by_username = self._obtain("session-user")

        self.assertEqual(by_email.status_code, 200)
        self.assertEqual(by_username.status_code, 200)
        self.assertIn("access", by_email.json())
        self.assertIn("refresh", by_email.json())

    def test_sign_out_blacklists_refresh_token(self):
        tokens = self._obtain("session-user").json()
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")

        response = self.client.post("/api/v1/token/revoke/", {"refresh": tokens["refresh"]}, format="json")
        self.assertEqual(response.status_code, 205)

        self.client.credentials()
        refresh_response = self.client.post("/api/v1/token/refresh/", {"refresh": tokens["refresh"]}, format="json")
        self.assertEqual(refresh_response.status_code, 401)

    def test_sign_out_rejects_another_users_refresh_token(self):
        get_user_model().objects.create_user(username="other", password="pass1234")
        other_tokens = self._obtain("other").json()
        self.client.force_authenticate(user=self.user)

        response = self.client.post("/api/v1/token/revoke/", {"refresh": other_tokens["refresh"]}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("refresh", response.json()["errors"])

    def test_sign_out_requires_authentication(self):
        response = self.client.post("/api/v1/token/revoke/", {"refresh": "anything"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")


class BusinessProfileTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="owner",
            email="owner@example.com",
            password="pass1234",
        )
        self.client.force_authenticate(user=self.user)

    def test_profile_is_missing_until_created(self):
        response = self.client.get("/api/v1/profile/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_create_then_update_profile(self):
        created = self.client.post(
            "/api/v1/profile/",
            {
                "organization_name": " Sharma Traders ",
                "full_name": "R. Sharma",
                "gst_number": "27abcde1234f1z5",
                "business_type": "Wholesale",
            },
            format="json",
        )

        self.assertEqual(created.status_code, 201)
        payload = created.json()
        self.assertEqual(payload["organization_name"], "Sharma Traders")
        self.assertEqual(payload["gst_number"], "27ABCDE1234F1Z5")
        self.assertEqual(payload["email"], "owner@example.com")
        self.assertEqual(payload["timezone"], "Asia/Kolkata")

        updated = self.client.patch("/api/v1/profile/", {"phone": "9876543210"}, format="json")
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(BusinessProfile.objects.get(user=self.user).phone, "9876543210")

    def test_second_create_is_rejected(self):
        BusinessProfile.objects.create(user=self.user, organization_name="Org", full_name="Owner")

        response = self.client.post(
            "/api/v1/profile/",
            {"organization_name": "Again", "full_name": "Owner"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    def test_invalid_timezone_is_rejected(self):
        response = self.client.post(
            "/api/v1/profile/",
            {"organization_name": "Org", "full_name": "Owner", "timezone": "Mars/Olympus"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("timezone", response.json()["errors"])


class TenantContextTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.user = get_user_model().objects.create_user(username="ctx", password="pass1234")

    def _request(self, path="/api/v1/reports/activity/"):
        request = Request(self.factory.get(path))
        request.user = self.user
        return request

    def test_timezone_falls_back_to_settings_without_profile(self):
        context = tenant_context_from_request(self._request())

        self.assertEqual(context.tenant_id, self.user.id)
        self.assertIsNone(context.profile)
        self.assertEqual(str(context.timezone), "Asia/Kolkata")

    def test_today_is_local_to_the_tenant_timezone(self):
        context = tenant_context_from_request(self._request("/x/?timezone=America/Los_Angeles"))
        server_now = datetime(2026, 10, 19, 3, 0, tzinfo=dt_timezone.utc)

        with patch("django.utils.timezone.now", return_value=server_now):
            self.assertEqual(context.today(), date(2026, 10, 18))

    def test_profile_timezone_and_query_override(self):
        BusinessProfile.objects.create(user=self.user, organization_name="Org", full_name="Ctx", timezone="Europe/London")
        self.user.refresh_from_db()

        from_profile = tenant_context_from_request(self._request())
        from_query = tenant_context_from_request(self._request("/x/?timezone=UTC"))

        self.assertEqual(str(from_profile.timezone), "Europe/London")
        self.assertEqual(str(from_query.timezone), "UTC")


class IsOwnerPermissionTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.owner = get_user_model().objects.create_user(username="owner-a", password="pass1234")
        self.stranger = get_user_model().objects.create_user(username="owner-b", password="pass1234")
        self.record = SimpleNamespace(pk="rec-1", owner_id=self.owner.id)

    def test_owner_is_allowed(self):
        request = self.factory.get("/api/v1/customers/rec-1/")
        request.user = self.owner

        self.assertTrue(IsOwner().has_object_permission(request, SimpleNamespace(), self.record))

    def test_denial_is_logged(self):
        request = self.factory.delete("/api/v1/customers/rec-1/")
        request.user = self.stranger

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            allowed = IsOwner().has_object_permission(request, SimpleNamespace(), self.record)

        self.assertFalse(allowed)
        self.assertTrue(any("permission_denied" in message and "owner-b" in message for message in cm.output))


class PasswordResetTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="reset-user",
            email="reset@example.com",
            password="old-pass-123",
        )

    def test_password_reset_request_returns_generic_message_for_known_and_unknown_email(self):
        known_response = self.client.post(
            "/api/v1/password-reset/request/",
            {"email": self.user.email},
            format="json",
        )
        unknown_response = self.client.post(
            "/api/v1/password-reset/request/",
            {"email": "missing@example.com"},
            format="json",
        )

        self.assertEqual(known_response.status_code, 200)
        self.assertEqual(unknown_response.status_code, 200)
        self.assertEqual(known_response.json()["detail"], unknown_response.json()["detail"])

    @override_settings(
        PASSWORD_RESET_FRONTEND_URL="https://app.example.com/reset-password",
        PASSWORD_RESET_FROM_EMAIL="support@example.com",
    )
    def test_password_reset_request_sends_link(self):
        response = self.client.post(
            "/api/v1/password-reset/request/",
            {"email": self.user.email},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.from_email, "support@example.com")
        uid = urlsafe_base64_encode(force_bytes(self.user.pk))
        self.assertIn(f"https://app.example.com/reset-password/{uid}/", message.body)

    def test_password_reset_request_logs_mail_send_failures(self):
        with patch("core.views.send_mail", side_effect=RuntimeError("mail down")):
            with self.assertLogs("core.views", level="ERROR") as logs:
                response = self.client.post(
                    "/api/v1/password-reset/request/",
                    {"email": self.user.email},
                    format="json",
                )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(any("password_reset_email_send_failed" in entry for entry in logs.output))

    def test_password_reset_confirm_updates_password(self):
        token = default_token_generator.make_token(self.user)
        uid = urlsafe_base64_encode(force_bytes(self.user.pk))

        response = self.client.post(
            "/api/v1/password-reset/confirm/",
            {"uid": uid, "token": token, "new_password": "new-safe-pass-123"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("new-safe-pass-123"))

    def test_password_reset_confirm_rejects_invalid_token_and_garbage_uid(self):
        uid = urlsafe_base64_encode(force_bytes(self.user.pk))
        bad_token = self.client.post(
            "/api/v1/password-reset/confirm/",
            {"uid": uid, "token": "invalid-token", "new_password": "new-safe-pass-123"},
            format="json",
        )
        bad_uid = self.client.post(
            "/api/v1/password-reset/confirm/",
            {"uid": "not-a-uid", "token": "invalid-token", "new_password": "new-safe-pass-123"},
            format="json",
        )

        self.assertEqual(bad_token.status_code, 400)
        self.assertEqual(bad_uid.status_code, 400)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("old-pass-123"))


class HealthCheckTests(TestCase):
    def test_health_and_readiness(self):
        client = APIClient()

        health = client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="req-42")
        ready = client.get("/api/v1/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json()["request_id"], "req-42")
        self.assertEqual(health["X-Request-ID"], "req-42")
        self.assertEqual(ready.json()["status"], "ready")


class SeedDemoDataTests(TestCase):
    def test_seed_creates_a_demo_tenant_once(self):
        call_command("seed_demo_data", username="demo-seed", password="demo-pass-123", stdout=StringIO())
        call_command("seed_demo_data", username="demo-seed", stdout=StringIO())

        user = get_user_model().objects.get(username="demo-seed")
        self.assertTrue(user.check_password("demo-pass-123"))
        self.assertEqual(user.business_profile.organization_name, "Demo Wholesale Co.")
        self.assertEqual(Customer.objects.filter(owner=user).count(), 3)
        self.assertEqual(Purchase.objects.filter(owner=user).count(), 3)
        invoices = Invoice.objects.filter(owner=user)
        self.assertEqual(invoices.count(), 4)
        self.assertEqual(invoices.filter(status=Invoice.Status.PAID).count(), 1)
        self.assertEqual(invoices.filter(status=Invoice.Status.PARTIAL).count(), 2)
        for invoice in invoices:
            self.assertEqual(invoice.total_amount, invoice.subtotal + invoice.tax_amount + invoice.transport_charges)
