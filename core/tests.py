from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.management import CommandError, call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.aggregate import AppData, StockStatus
from core.errors import LedgerValidationError
from core.integrity import check_ledger
from core.models import AuditLog, Shop, ShopDocument
from core.store import apply_command, load_aggregate
from inventory.services import add_model

User = get_user_model()


def create_shop_user(username="owner", shop_name="Rahman Telecom", password="pass1234"):
    shop = Shop.objects.create(name=shop_name, owner_username=username, prepared_by=username)
    ShopDocument.objects.create(shop=shop, data=AppData.empty(shop.to_profile()).ledgers_document())
    user = User.objects.create_user(username=username, password=password, shop=shop)
    return shop, user


FULL_DOCUMENT = {
    "shop": {
        "name": "Rahman Telecom",
        "address": "Mirpur 10, Dhaka",
        "phone": "01711111111",
        "email": None,
        "logoUrl": None,
        "isRegistered": True,
        "preparedBy": "owner",
        "ownerUsername": "owner",
        "inactivityTimeout": 30,
    },
    "models": [
        {"id": "m1", "brand": "Samsung", "modelName": "Galaxy A15", "purchasePrice": 17500, "sellingPrice": 19990}
    ],
    "stocks": [
        {
            "imei": "356000000000001",
            "modelId": "m1",
            "status": "Sold",
            "dateAdded": "2024-05-01T10:00:00+00:00",
            "purchaseId": "p1",
            "invoiceId": "i1",
            "purchasePrice": 17500,
            "sellingPrice": 19990,
        }
    ],
    "invoices": [
        {
            "id": "i1",
            "invoiceNumber": "RT-123456",
            "date": "2024-05-02T09:30:00+00:00",
            "customerName": "Karim",
            "customerPhone": "01900000000",
            "customerAddress": None,
            "narration": None,
            "items": [{"imei": "356000000000001", "modelName": "Galaxy A15", "brand": "Samsung", "price": 19990}],
            "subtotal": 19990,
            "discount": 0,
            "vat": 0,
            "total": 19990,
            "payments": [
                {
                    "method": "bKash",
                    "bankName": None,
                    "paymentPhone": "01900000000",
                    "cardType": None,
                    "transactionId": "TXN-ABCDE12345",
                    "amount": 19990,
                }
            ],
            "paidAmount": 19990,
            "dueAmount": 0,
        }
    ],
    "purchases": [
        {
            "id": "p1",
            "purchaseNumber": "PUR-12345678",
            "date": "2024-05-01T10:00:00+00:00",
            "supplierName": "Dhaka Wholesale",
            "supplierPhone": "01800000000",
            "supplierAddress": None,
            "items": [
                {
                    "modelId": "m1",
                    "brand": "Samsung",
                    "modelName": "Galaxy A15",
                    "imeis": ["356000000000001"],
                    "costPrice": 17500,
                    "sellingPrice": 19990,
                }
            ],
            "subtotal": 17500,
            "vat": 0,
            "discount": 0,
            "total": 17500,
            "paidAmount": 17500,
            "dueAmount": 0,
            "note": None,
        }
    ],
    "suppliers": [{"id": "s1", "name": "Dhaka Wholesale", "phone": "01800000000", "address": None}],
}


class DocumentCodecTests(TestCase):
    def test_document_round_trip_is_lossless(self):
        data = AppData.from_document(FULL_DOCUMENT)

        self.assertEqual(data.to_document(), FULL_DOCUMENT)
        self.assertEqual(data.stocks[0].status, StockStatus.SOLD)
        self.assertEqual(data.invoices[0].total, Decimal("19990.00"))

    def test_missing_optionals_are_written_as_null(self):
        data = AppData.from_document(
            {
                "shop": {"name": "Rahman Telecom"},
                "stocks": [
                    {
                        "imei": "356000000000009",
                        "modelId": "m1",
                        "status": "Available",
                        "dateAdded": "2024-05-01T10:00:00",
                        "purchasePrice": 100,
                        "sellingPrice": "120.5",
                    }
                ],
                "invoices": [
                    {
                        "id": "i9",
                        "invoiceNumber": "RT-1",
                        "date": "2024-05-02T09:30:00Z",
                        "customerName": "Karim",
                        "customerPhone": "019",
                        "attention": "Deliver after Jummah",
                        "items": [],
                    }
                ],
            }
        )
        document = data.to_document()

        stock = document["stocks"][0]
        self.assertIsNone(stock["purchaseId"])
        self.assertIsNone(stock["invoiceId"])
        self.assertEqual(stock["purchasePrice"], 100)
        self.assertEqual(stock["sellingPrice"], 120.5)
        self.assertTrue(stock["dateAdded"].endswith("+00:00"))
        invoice = document["invoices"][0]
        self.assertIsNone(invoice["customerAddress"])
        self.assertEqual(invoice["narration"], "Deliver after Jummah")
        self.assertEqual(document["purchases"], [])
        self.assertIsNone(document["shop"]["email"])

    def test_invalid_stock_status_is_rejected(self):
        bad = {"stocks": [{"imei": "1", "modelId": "m1", "status": "Lost", "dateAdded": "2024-05-01T10:00:00Z"}]}
        with self.assertRaises(ValueError):
            AppData.from_document(bad)


class LedgerStoreTests(TestCase):
    def setUp(self):
        self.shop, self.user = create_shop_user()

    def test_apply_command_persists_and_bumps_revision(self):
        with self.assertLogs("ledger", level="INFO") as cm:
            _, model = apply_command(
                self.shop,
                add_model,
                brand="Samsung",
                model_name="Galaxy A15",
                purchase_price=Decimal("17500"),
                selling_price=Decimal("19990"),
            )

        document = ShopDocument.objects.get(shop=self.shop)
        self.assertEqual(document.revision, 1)
        self.assertEqual(document.data["models"][0]["id"], model.id)
        self.assertNotIn("shop", document.data)
        self.assertTrue(any("ledger_command_applied" in line for line in cm.output))

    def test_failed_command_leaves_document_untouched(self):
        def explode(data):
            raise LedgerValidationError("nope")

        with self.assertRaises(LedgerValidationError):
            apply_command(self.shop, explode)

        document = ShopDocument.objects.get(shop=self.shop)
        self.assertEqual(document.revision, 0)
        self.assertEqual(load_aggregate(self.shop).models, ())

    def test_profile_comes_from_the_shop_row(self):
        self.shop.name = "Renamed Telecom"
        self.shop.save()

        self.assertEqual(load_aggregate(self.shop).shop.name, "Renamed Telecom")


class AuthenticationTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()

    def _register(self, **overrides):
        payload = {"shop_name": "Bismillah Mobile House", "username": "bismillah", "password": "Str0ng-pass-123"}
        payload.update(overrides)
        return self.client.post("/api/v1/auth/register/", payload, format="json")

    def test_register_creates_shop_document_and_owner(self):
        response = self._register(email="Owner@Example.com")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertIn("access", payload)
        self.assertIn("refresh", payload)
        shop = Shop.objects.get(id=payload["account_id"])
        self.assertEqual(shop.name, "Bismillah Mobile House")
        self.assertEqual(shop.owner_username, "bismillah")
        self.assertEqual(ShopDocument.objects.get(shop=shop).data["stocks"], [])
        user = User.objects.get(username="bismillah")
        self.assertEqual(user.shop_id, shop.id)
        self.assertEqual(user.email, "owner@example.com")
        self.assertIsNotNone(user.last_activity_at)
        self.assertTrue(AuditLog.objects.filter(action="shop.register", shop=shop).exists())

    def test_register_rejects_taken_username(self):
        self._register()
        response = self._register(shop_name="Other Shop")

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "validation_error")
        self.assertIn("username", body["errors"])

    def test_login_with_email_returns_account_id(self):
        self._register(email="owner@example.com")

        response = self.client.post(
            "/api/v1/auth/login/",
            {"username": "OWNER@example.com", "password": "Str0ng-pass-123"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertIn("access", payload)
        self.assertEqual(payload["shop_name"], "Bismillah Mobile House")
        self.assertEqual(payload["account_id"], str(User.objects.get(username="bismillah").shop_id))

    def test_session_reports_identity_and_remaining_minutes(self):
        access = self._register().json()["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

        response = self.client.get("/api/v1/auth/session/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["username"], "bismillah")
        self.assertEqual(payload["inactivity_timeout_minutes"], 30)
        self.assertIn(payload["remaining_minutes"], {29, 30})

    def test_idle_session_expires(self):
        access = self._register().json()["access"]
        User.objects.filter(username="bismillah").update(last_activity_at=timezone.now() - timedelta(minutes=31))
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

        with self.assertLogs("security.authentication", level="INFO"):
            response = self.client.get("/api/v1/shop/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "session_expired")

    def test_activity_inside_the_window_extends_the_session(self):
        access = self._register().json()["access"]
        earlier = timezone.now() - timedelta(minutes=20)
        User.objects.filter(username="bismillah").update(last_activity_at=earlier)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

        response = self.client.get("/api/v1/shop/")

        self.assertEqual(response.status_code, 200)
        self.assertGreater(User.objects.get(username="bismillah").last_activity_at, earlier)

    def test_shop_specific_timeout_applies(self):
        access = self._register().json()["access"]
        Shop.objects.update(inactivity_timeout=5)
        User.objects.filter(username="bismillah").update(last_activity_at=timezone.now() - timedelta(minutes=6))
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

        response = self.client.get("/api/v1/shop/")

        self.assertEqual(response.status_code, 401)

    def test_user_without_shop_is_refused_and_logged(self):
        user = User.objects.create_user(username="loose", password="pass1234")
        self.client.force_authenticate(user=user)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/stock/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))


class ShopSettingsTests(TestCase):
    def setUp(self):
        cache.clear()
        self.shop, self.user = create_shop_user()
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def test_profile_update_is_audited(self):
        response = self.client.patch(
            "/api/v1/shop/",
            {"phone": "01722222222", "inactivity_timeout": 45, "prepared_by": "Manager"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.shop.refresh_from_db()
        self.assertEqual(self.shop.inactivity_timeout, 45)
        self.assertEqual(load_aggregate(self.shop).shop.prepared_by, "Manager")
        log = AuditLog.objects.get(action="shop.update")
        self.assertEqual(log.before_snapshot["phone"], "")
        self.assertEqual(log.after_snapshot["phone"], "01722222222")

    def test_profile_rejects_out_of_range_timeout(self):
        response = self.client.patch("/api/v1/shop/", {"inactivity_timeout": 0}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("inactivity_timeout", response.json()["errors"])

    def test_restore_then_backup_returns_the_same_document(self):
        response = self.client.post("/api/v1/shop/restore/", FULL_DOCUMENT, format="json")

        self.assertEqual(response.status_code, 200)
        backup = self.client.get("/api/v1/shop/backup/").json()
        self.assertEqual(backup["stocks"], FULL_DOCUMENT["stocks"])
        self.assertEqual(backup["invoices"], FULL_DOCUMENT["invoices"])
        self.assertEqual(backup["shop"]["address"], "Mirpur 10, Dhaka")
        self.shop.refresh_from_db()
        self.assertEqual(self.shop.phone, "01711111111")

    def test_restore_rejects_invalid_document(self):
        response = self.client.post(
            "/api/v1/shop/restore/",
            {"document": {"stocks": [{"imei": "1", "status": "Sold", "dateAdded": "yesterday"}]}},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertEqual(ShopDocument.objects.get(shop=self.shop).revision, 0)

    def test_backup_download_sets_attachment_header(self):
        response = self.client.get("/api/v1/shop/backup/?download=1")

        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment", response["Content-Disposition"])

    def test_reset_clears_ledgers_and_keeps_profile(self):
        self.client.post("/api/v1/shop/restore/", FULL_DOCUMENT, format="json")

        response = self.client.post("/api/v1/shop/reset/")

        self.assertEqual(response.status_code, 204)
        data = load_aggregate(self.shop)
        self.assertEqual((data.models, data.stocks, data.invoices, data.purchases), ((), (), (), ()))
        self.assertEqual(data.shop.name, "Rahman Telecom")

    def test_ledger_errors_use_the_error_envelope(self):
        response = self.client.delete("/api/v1/catalog/models/missing/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(set(response.json()), {"code", "message", "errors", "status"})
        self.assertEqual(response.json()["code"], "not_found")
        self.assertEqual(response.json()["status"], 404)

    def test_audit_logs_are_scoped_to_the_shop(self):
        other_shop, other_user = create_shop_user(username="other", shop_name="Other")
        AuditLog.objects.create(shop=other_shop, actor=other_user, action="shop.update", entity="shop")
        self.client.patch("/api/v1/shop/", {"phone": "017"}, format="json")

        response = self.client.get("/api/v1/audit-logs/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(self.client.post("/api/v1/audit-logs/", {}, format="json").status_code, 405)


class HealthTests(TestCase):
    def test_healthz_is_public(self):
        response = APIClient().get("/healthz")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")


class LedgerIntegrityTests(TestCase):
    def test_consistent_document_has_no_violations(self):
        violations, warnings = check_ledger(AppData.from_document(FULL_DOCUMENT))

        self.assertEqual(violations, [])
        self.assertEqual(warnings, [])

    def test_orphans_are_warnings_and_duplicates_are_violations(self):
        document = {**FULL_DOCUMENT, "models": [], "purchases": []}
        document["stocks"] = FULL_DOCUMENT["stocks"] * 2

        violations, warnings = check_ledger(AppData.from_document(document))

        self.assertTrue(any("appears 2 times" in message for message in violations))
        self.assertTrue(any("missing model" in message for message in warnings))
        self.assertTrue(any("missing purchase" in message for message in warnings))

    def test_verify_ledger_command_exits_non_zero_on_violation(self):
        shop, _ = create_shop_user()
        document = dict(FULL_DOCUMENT)
        document["stocks"] = [{**FULL_DOCUMENT["stocks"][0], "invoiceId": None}]
        ShopDocument.objects.filter(shop=shop).update(data=document)

        with self.assertRaises(CommandError):
            call_command("verify_ledger", stdout=StringIO())

    def test_seed_demo_shop_produces_a_clean_ledger(self):
        out = StringIO()
        call_command("seed_demo_shop", stdout=out)

        shop = User.objects.get(username="demo").shop
        data = load_aggregate(shop)
        self.assertEqual(len(data.models), 3)
        self.assertEqual(len(data.stocks), 9)
        self.assertEqual(len(data.invoices), 1)
        self.assertEqual(check_ledger(data)[0], [])
        call_command("verify_ledger", shop=str(shop.id), stdout=StringIO())
