import math
from decimal import Decimal
from unittest import mock

import requests
from django.core.cache import cache
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from core.aggregate import StockStatus
from core.errors import SyncError
from core.models import AuditLog
from core.store import apply_command, load_aggregate
from core.tests import FULL_DOCUMENT, create_shop_user
from inventory.services import add_model
from sync import services

MIRROR = {
    "URL": "https://mirror.example.com",
    "TOKEN": "secret-token",
    "DEBOUNCE_SECONDS": 60,
    "TIMEOUT_SECONDS": 5,
}
NO_MIRROR = {**MIRROR, "URL": ""}


def remote_response(status_code=200, payload=None):
    response = mock.Mock(status_code=status_code, ok=200 <= status_code < 300)
    response.json.return_value = payload
    return response


class SanitizeDocumentTests(TestCase):
    def test_non_finite_numbers_become_null(self):
        document = {"a": math.nan, "b": [math.inf, 1.5], "c": {"d": -math.inf}, 4: "x"}

        self.assertEqual(services.sanitize_document(document), {"a": None, "b": [None, 1.5], "c": {"d": None}, "4": "x"})

    def test_decimals_are_converted(self):
        cleaned = services.sanitize_document({"price": Decimal("19990.00"), "tags": ("a", "b")})

        self.assertEqual(cleaned["tags"], ["a", "b"])
        self.assertIsInstance(cleaned["price"], (str, int, float))


@override_settings(REMOTE_MIRROR=MIRROR)
class MirrorServiceTests(TestCase):
    def setUp(self):
        self.shop, _ = create_shop_user()
        self.addCleanup(services.cancel_pending)

    def test_push_sends_profile_and_ledgers(self):
        with mock.patch("sync.services.requests.put", return_value=remote_response()) as put:
            payload = services.push_document(self.shop)

        args, kwargs = put.call_args
        self.assertEqual(args[0], f"https://mirror.example.com/shops/{self.shop.id}")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret-token")
        self.assertEqual(kwargs["timeout"], 5)
        self.assertEqual(kwargs["json"], payload)
        self.assertEqual(payload["shop"]["name"], "Rahman Telecom")
        self.assertEqual(payload["stocks"], [])

    def test_mirror_shop_logs_and_swallows_failures(self):
        with mock.patch("sync.services.requests.put", side_effect=requests.ConnectionError("offline")):
            with self.assertLogs("sync.mirror", level="WARNING") as logs:
                self.assertFalse(services.mirror_shop(self.shop.id))

        self.assertIn("mirror_failed", logs.output[0])

    def test_mirror_shop_reports_rejections(self):
        with mock.patch("sync.services.requests.put", return_value=remote_response(503)):
            with self.assertLogs("sync.mirror", level="WARNING") as logs:
                self.assertFalse(services.mirror_shop(self.shop.id))

        self.assertIn("status=503", logs.output[0])

    def test_mirror_shop_success(self):
        with mock.patch("sync.services.requests.put", return_value=remote_response()):
            self.assertTrue(services.mirror_shop(self.shop.id))

    def test_schedule_debounces_per_shop(self):
        first = services.schedule_mirror(self.shop)
        second = services.schedule_mirror(self.shop)

        self.assertIsNot(first, second)
        self.assertTrue(first.finished.is_set())
        self.assertFalse(second.finished.is_set())
        self.assertEqual(services.cancel_pending(), 1)
        self.assertTrue(second.finished.is_set())

    def test_committed_command_schedules_mirror(self):
        with mock.patch("core.store.schedule_mirror") as schedule:
            with self.captureOnCommitCallbacks(execute=True):
                apply_command(
                    self.shop,
                    add_model,
                    brand="Samsung",
                    model_name="Galaxy A15",
                    purchase_price=17500,
                    selling_price=19990,
                )

        schedule.assert_called_once_with(self.shop)

    def test_fetch_remote_document_errors(self):
        cases = [
            (remote_response(404), "remote_document_missing"),
            (remote_response(500), "remote_rejected"),
            (remote_response(200, ["not", "a", "document"]), "remote_document_invalid"),
        ]
        for response, reason in cases:
            with self.subTest(reason=reason):
                with mock.patch("sync.services.requests.get", return_value=response):
                    with self.assertRaises(SyncError) as ctx:
                        services.fetch_remote_document(self.shop)
                self.assertEqual(ctx.exception.reason, reason)


@override_settings(REMOTE_MIRROR=NO_MIRROR)
class MirrorDisabledTests(TestCase):
    def test_nothing_is_scheduled_without_url(self):
        shop, _ = create_shop_user()

        self.assertFalse(services.mirror_enabled())
        self.assertIsNone(services.schedule_mirror(shop))
        with self.assertRaises(SyncError) as ctx:
            services.push_document(shop)
        self.assertEqual(ctx.exception.reason, "mirror_not_configured")


@override_settings(REMOTE_MIRROR=MIRROR)
class SyncApiTests(TestCase):
    def setUp(self):
        cache.clear()
        self.shop, self.user = create_shop_user()
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def test_requires_authentication(self):
        response = APIClient().post("/api/v1/sync/push/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")

    def test_push_endpoint(self):
        with mock.patch("sync.services.requests.put", return_value=remote_response()):
            response = self.client.post("/api/v1/sync/push/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "pushed", "shop_id": str(self.shop.id)})
        self.assertTrue(AuditLog.objects.filter(shop=self.shop, action="sync.push").exists())

    def test_push_failure_is_reported(self):
        with mock.patch("sync.services.requests.put", side_effect=requests.Timeout("slow")):
            response = self.client.post("/api/v1/sync/push/")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["code"], "sync_failed")
        self.assertTrue(response.json()["errors"]["reason"].startswith("request_failed"))

    def test_pull_replaces_local_ledger(self):
        with mock.patch("sync.services.requests.get", return_value=remote_response(200, FULL_DOCUMENT)):
            response = self.client.post("/api/v1/sync/pull/")

        self.assertEqual(response.status_code, 200)
        data = load_aggregate(self.shop)
        self.assertEqual(data.find_stock("356000000000001").status, StockStatus.SOLD)
        self.assertEqual(len(data.invoices), 1)
        self.assertTrue(AuditLog.objects.filter(shop=self.shop, action="sync.pull").exists())

    def test_pull_failure_leaves_ledger_untouched(self):
        with mock.patch("sync.services.requests.get", return_value=remote_response(404)):
            response = self.client.post("/api/v1/sync/pull/")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["errors"]["remote_status"], 404)
        self.assertEqual(load_aggregate(self.shop).stocks, ())

    def test_pull_rejects_malformed_document(self):
        broken = {**FULL_DOCUMENT, "stocks": [{"imei": "X", "status": "Lost"}]}
        with mock.patch("sync.services.requests.get", return_value=remote_response(200, broken)):
            response = self.client.post("/api/v1/sync/pull/")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["code"], "sync_failed")
