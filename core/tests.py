import json
import logging
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db.models import ProtectedError
from django.test import TestCase
from rest_framework.test import APIClient

from common.exceptions import custom_exception_handler
from common.logging import JsonFormatter
from core.models import AuditLog
from inventory.models import PLATE_SIZES, StockItem
from rentals.models import Client


class RolePermissionCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.operator = self.user_model.objects.create_user(
            username="operator-core",
            password="pass1234",
            role="operator",
        )
        self.admin = self.user_model.objects.create_user(
            username="admin-core",
            password="pass1234",
            role="admin",
        )

    def test_operator_cannot_read_audit_logs_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.operator)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_can_read_audit_logs(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(sorted(response.json().keys()), ["count", "next", "previous", "results"])

    def test_anonymous_request_is_rejected_with_envelope(self):
        response = self.client.get("/api/v1/clients/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(payload["code"], "not_authenticated")
        self.assertEqual(payload["status"], 401)
        self.assertIsNone(payload["errors"])


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="token-user", password="pass1234", role="admin")

    def test_token_obtain_returns_access_and_refresh(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())

    def test_token_can_authenticate_api_requests(self):
        access = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "pass1234"},
            format="json",
        ).json()["access"]

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
        response = self.client.get("/api/v1/stock/")

        self.assertEqual(response.status_code, 200)

    def test_wrong_password_is_rejected(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "wrong"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.admin = get_user_model().objects.create_user(
            username="audit-admin",
            password="pass1234",
            role="admin",
        )

    def test_client_create_writes_audit_log(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.post(
            "/api/v1/clients/",
            {"id": "C-100", "name": "Audit Client", "site": "Ring Road", "mobile_number": "9999999999"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(res.status_code, 201)
        log = AuditLog.objects.get(action="client.create", entity="client", request_id="req-123")
        self.assertEqual(log.entity_id, "C-100")
        self.assertEqual(log.actor, self.admin)
        self.assertEqual(log.after_snapshot["name"], "Audit Client")
        self.assertEqual(log.client_id, "C-100")

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_logs_filter_by_entity(self):
        self.client.force_authenticate(user=self.admin)
        AuditLog.objects.create(action="challan.create", entity="challan", entity_id="1", actor=self.admin)
        AuditLog.objects.create(action="return.create", entity="return", entity_id="1", actor=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"entity": "challan"})

        self.assertEqual(response.status_code, 200)
        actions = [item["action"] for item in response.json()["results"]]
        self.assertEqual(actions, ["challan.create"])

    def test_audit_logs_filter_by_client_and_plain_dates(self):
        self.client.force_authenticate(user=self.admin)
        AuditLog.objects.create(action="challan.create", entity="challan", entity_id="1", client_id="C-1")
        AuditLog.objects.create(action="challan.create", entity="challan", entity_id="2", client_id="C-2")

        response = self.client.get("/api/v1/admin/audit-logs/", {"client_id": "C-2", "start_date": "2000-01-01"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["entity_id"] for item in response.json()["results"]], ["2"])

    def test_audit_logs_reject_malformed_dates(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"end_date": "yesterday"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")


class HealthAndErrorEnvelopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.admin = get_user_model().objects.create_user(username="health-admin", password="pass1234", role="admin")

    def test_healthz_is_public_and_echoes_request_id(self):
        response = self.client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="health-1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "request_id": "health-1"})
        self.assertEqual(response["X-Request-ID"], "health-1")

    def test_readyz_reports_ready(self):
        response = self.client.get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")

    def test_not_found_uses_error_envelope(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/clients/missing/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")
        self.assertEqual(response.json()["status"], 404)

    def test_unhandled_exception_is_logged_and_returned_as_500(self):
        self.client.force_authenticate(user=self.admin)
        Client.objects.create(id="C-1", name="Boom")

        with patch("rentals.views.build_client_ledger", side_effect=RuntimeError("boom")):
            with self.assertLogs("common.exceptions", level="ERROR"):
                response = self.client.get("/api/v1/clients/C-1/ledger/")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.json(),
            {
                "code": "internal_server_error",
                "message": "An unexpected error occurred.",
                "errors": None,
                "status": 500,
            },
        )


class JsonFormatterTests(TestCase):
    def test_structured_fields_are_lifted_to_top_level(self):
        record = logging.LogRecord("rentals.services", logging.INFO, __file__, 1, "challan_created", None, None)
        record.client_id = "C-1"
        record.transaction_id = 7

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "challan_created")
        self.assertEqual(payload["logger"], "rentals.services")
        self.assertEqual(payload["client_id"], "C-1")
        self.assertEqual(payload["transaction_id"], 7)
        self.assertNotIn("plate_size", payload)


class SeedPlateStockCommandTests(TestCase):
    def test_creates_one_row_per_plate_size_and_is_idempotent(self):
        out = StringIO()
        call_command("seed_plate_stock", "--total", "100", stdout=out)
        call_command("seed_plate_stock", "--total", "5", stdout=out)

        self.assertEqual(StockItem.objects.count(), len(PLATE_SIZES))
        row = StockItem.objects.get(plate_size="2 X 3")
        self.assertEqual(row.total_quantity, 100)
        self.assertEqual(row.available_quantity, 100)
        self.assertEqual(row.on_rent_quantity, 0)

    def test_with_users_creates_admin_and_operator(self):
        call_command("seed_plate_stock", "--with-users", stdout=StringIO())

        user_model = get_user_model()
        self.assertEqual(user_model.objects.get(username="admin").role, "admin")
        self.assertEqual(user_model.objects.get(username="operator").role, "operator")


class ErrorHandlerTests(TestCase):
    def test_protected_delete_is_reported_as_conflict(self):
        response = custom_exception_handler(ProtectedError("referenced", set()), {})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "protected_record")
        self.assertIsNone(response.data["errors"])

    def test_client_errors_are_logged_as_warnings(self):
        with self.assertLogs("api.request", level="WARNING") as logs:
            APIClient().get("/api/v1/clients/")

        self.assertTrue(any("request_completed" in entry for entry in logs.output))


class CurrentUserTests(TestCase):
    def test_me_reports_role_and_capabilities(self):
        client = APIClient()
        operator = get_user_model().objects.create_user(username="me-operator", password="pass1234", role="operator")
        client.force_authenticate(user=operator)

        payload = client.get("/api/v1/me/").json()

        self.assertEqual(payload["username"], "me-operator")
        self.assertEqual(payload["role"], "operator")
        self.assertIn("challan.create", payload["capabilities"])
        self.assertNotIn("challan.manage", payload["capabilities"])

    def test_superuser_gets_every_admin_capability(self):
        client = APIClient()
        root = get_user_model().objects.create_superuser(username="root", password="pass1234", email="root@example.com")
        client.force_authenticate(user=root)

        payload = client.get("/api/v1/me/").json()

        self.assertEqual(payload["role"], "admin")
        self.assertIn("audit.view", payload["capabilities"])
