from dataclasses import replace
from decimal import Decimal

from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase
from rest_framework.test import APIClient

from core.aggregate import AppData, PurchaseItem, ShopProfile, StockStatus
from core.errors import DuplicateError, DuplicateModel, LedgerValidationError, NotFoundError
from core.store import load_aggregate
from core.tests import create_shop_user
from inventory.services import (
    add_model,
    commit_purchase,
    delete_purchase,
    delete_stock,
    filter_stock,
    import_catalog_rows,
    import_purchase_rows,
    remove_model,
    stage_purchase_item,
    update_model,
    update_stock_pricing,
)
from inventory.spreadsheets import CATALOG_COLUMNS, build_workbook
from sales.reports import stock_report


def empty_data():
    return AppData.empty(ShopProfile(name="Rahman Telecom"))


def with_iphone(data=None):
    return add_model(
        data or empty_data(),
        brand="Apple",
        model_name="iPhone 15",
        purchase_price=Decimal("120000"),
        selling_price=Decimal("135000"),
    )


def purchase_item(model, *imeis, cost="118000", sale="134000"):
    return PurchaseItem(
        model_id=model.id,
        brand=model.brand,
        model_name=model.model_name,
        imeis=tuple(imeis),
        cost_price=Decimal(cost),
        selling_price=Decimal(sale),
    )


class CatalogServiceTests(TestCase):
    def test_duplicate_model_is_rejected_case_insensitively(self):
        data, _ = with_iphone()

        with self.assertRaises(DuplicateModel) as ctx:
            add_model(data, brand="apple", model_name="IPHONE 15", purchase_price=1, selling_price=2)

        self.assertEqual(ctx.exception.details["duplicates"], ["apple IPHONE 15"])
        self.assertEqual(len(data.models), 1)

    def test_non_positive_price_is_a_validation_error(self):
        with self.assertRaises(LedgerValidationError) as ctx:
            add_model(empty_data(), brand="Nokia", model_name="105", purchase_price=0, selling_price=1500)

        self.assertIn("purchase_price", ctx.exception.details)

    def test_update_replaces_by_id(self):
        data, model = with_iphone()

        data, updated = update_model(data, model.id, selling_price=Decimal("133000"))

        self.assertEqual(updated.selling_price, Decimal("133000.00"))
        self.assertEqual(updated.brand, "Apple")
        self.assertEqual(data.find_model(model.id), updated)

    def test_remove_model_leaves_stock_as_orphans(self):
        data, model = with_iphone()
        data, _, _ = commit_purchase(data, items=[purchase_item(model, "A1")], supplier_name="Dhaka Wholesale")

        data = remove_model(data, model.id)

        self.assertEqual(data.models, ())
        self.assertEqual(len(data.stocks), 1)
        self.assertEqual(data.model_label(model.id), ("N/A", "N/A"))
        row = stock_report(data)[0]
        self.assertEqual((row["Brand Name"], row["Model Name"]), ("N/A", "N/A"))
        self.assertEqual([stock.imei for stock in filter_stock(data, query="a1")], ["A1"])

    def test_remove_unknown_model_is_not_found(self):
        with self.assertRaises(NotFoundError):
            remove_model(empty_data(), "missing")

    def test_catalog_import_counts_added_and_skipped_rows(self):
        data, _ = with_iphone()
        rows = [
            {"brand": "Apple", "model name": "iPhone 15", "cost price": "120000", "sale price": "135000"},
            {"brand": "Samsung", "model name": "Galaxy S24", "cost price": "95,000", "sale price": 105000},
            {"brand": "Xiaomi", "model name": "Redmi 13", "cost price": "abc", "sale price": "18000"},
        ]

        data, result = import_catalog_rows(data, rows)

        self.assertEqual(result.added_count, 1)
        self.assertEqual(result.skipped_count, 2)
        self.assertEqual([entry["status"] for entry in result.rows], ["skipped", "added", "skipped"])
        self.assertEqual(result.rows[0]["reason"], "duplicate")
        self.assertEqual(result.rows[2]["reason"], "invalid")
        samsung = next(model for model in data.models if model.brand == "Samsung")
        self.assertEqual(samsung.purchase_price, Decimal("95000.00"))

    def test_catalog_import_skips_non_finite_prices(self):
        rows = [
            {"brand": "Xiaomi", "model name": "Redmi 13", "cost price": "nan", "sale price": "Infinity"},
            {"brand": "Samsung", "model name": "Galaxy S24", "cost price": "95000", "sale price": "105000"},
        ]

        data, result = import_catalog_rows(empty_data(), rows)

        self.assertEqual((result.added_count, result.skipped_count), (1, 1))
        self.assertEqual(result.rows[0]["reason"], "invalid")
        self.assertEqual(set(result.rows[0]["errors"]), {"purchase_price", "selling_price"})
        self.assertEqual([model.model_name for model in data.models], ["Galaxy S24"])

    def test_purchase_import_skips_non_finite_prices(self):
        rows = [
            {"supplier": "Dhaka Wholesale", "brand": "Apple", "model": "iPhone 15", "cost price": "NaN", "sale price": "134000", "imeis": "B1"},
            {"supplier": "Dhaka Wholesale", "brand": "Apple", "model": "iPhone 15", "cost price": "118000", "sale price": "134000", "imeis": "B2"},
        ]

        data, summary = import_purchase_rows(empty_data(), rows)

        self.assertEqual([entry["status"] for entry in summary["rows"]], ["skipped", "added"])
        self.assertIn("cost_price", summary["rows"][0]["errors"])
        self.assertEqual([unit.imei for unit in data.stocks], ["B2"])


class PurchaseIntakeTests(TestCase):
    def setUp(self):
        self.data, self.model = with_iphone()

    def test_commit_receives_every_serial_as_available_stock(self):
        item = purchase_item(self.model, "A1", "A2")

        data, purchase, skipped = commit_purchase(self.data, items=[item], supplier_name="Dhaka Wholesale")

        self.assertEqual(skipped, [])
        self.assertEqual(len(data.stocks), 2)
        for unit in data.stocks:
            self.assertEqual(unit.status, StockStatus.AVAILABLE)
            self.assertEqual(unit.purchase_price, Decimal("118000"))
            self.assertEqual(unit.selling_price, Decimal("134000"))
            self.assertEqual(unit.purchase_id, purchase.id)
            self.assertEqual(unit.date_added, purchase.date)
        self.assertEqual(purchase.subtotal, Decimal("236000.00"))
        self.assertEqual(purchase.total, Decimal("236000.00"))
        self.assertEqual(purchase.due_amount, Decimal("236000.00"))
        self.assertTrue(purchase.purchase_number.startswith("PUR-"))
        self.assertEqual([supplier.name for supplier in data.suppliers], ["Dhaka Wholesale"])

    def test_second_purchase_of_the_same_serial_is_rejected(self):
        data, _, _ = commit_purchase(self.data, items=[purchase_item(self.model, "A1")], supplier_name="Dhaka Wholesale")

        with self.assertRaises(DuplicateError) as ctx:
            commit_purchase(data, items=[purchase_item(self.model, "A1")], supplier_name="Dhaka Wholesale")

        self.assertEqual(ctx.exception.identifiers, ["A1"])
        self.assertEqual([unit.imei for unit in data.stocks].count("A1"), 1)

    def test_duplicates_are_dropped_and_the_rest_proceeds(self):
        data, _, _ = commit_purchase(self.data, items=[purchase_item(self.model, "A1")], supplier_name="Dhaka Wholesale")

        data, purchase, skipped = commit_purchase(
            data,
            items=[purchase_item(self.model, "A1", "A3", cost="100")],
            supplier_name="Dhaka Wholesale",
        )

        self.assertEqual(skipped, ["A1"])
        self.assertEqual(purchase.imeis, ["A3"])
        self.assertEqual(purchase.subtotal, Decimal("100.00"))
        self.assertEqual(sorted(unit.imei for unit in data.stocks), ["A1", "A3"])

    def test_totals_apply_vat_percent_and_discount(self):
        item = purchase_item(self.model, "V1", "V2", cost="500")

        _, purchase, _ = commit_purchase(
            self.data,
            items=[item],
            supplier_name="Dhaka Wholesale",
            vat_percent=Decimal("5"),
            discount=Decimal("25"),
            paid_amount=Decimal("1000"),
        )

        self.assertEqual(purchase.vat, Decimal("50.00"))
        self.assertEqual(purchase.total, Decimal("1025.00"))
        self.assertEqual(purchase.due_amount, Decimal("25.00"))

    def test_missing_supplier_or_items_is_rejected_before_any_change(self):
        with self.assertRaises(LedgerValidationError) as ctx:
            commit_purchase(self.data, items=[purchase_item(self.model, "A1")], supplier_name="  ")
        self.assertIn("supplier_name", ctx.exception.details)

        with self.assertRaises(LedgerValidationError) as ctx:
            commit_purchase(self.data, items=[], supplier_name="Dhaka Wholesale")
        self.assertIn("items", ctx.exception.details)
        self.assertEqual(self.data.stocks, ())

    def test_suppliers_are_matched_case_insensitively(self):
        data, _, _ = commit_purchase(self.data, items=[purchase_item(self.model, "A1")], supplier_name="Dhaka Wholesale")
        data, _, _ = commit_purchase(data, items=[purchase_item(self.model, "A2")], supplier_name="dhaka wholesale")
        data, _, _ = commit_purchase(data, items=[purchase_item(self.model, "A3")], supplier_name="Dhaka  Wholesale")

        self.assertEqual([supplier.name for supplier in data.suppliers], ["Dhaka Wholesale", "Dhaka  Wholesale"])

    def test_stage_partitions_serials_three_ways(self):
        data, _, _ = commit_purchase(self.data, items=[purchase_item(self.model, "A1")], supplier_name="Dhaka Wholesale")
        staged = [purchase_item(self.model, "B1")]

        result = stage_purchase_item(data, staged, model_id=self.model.id, raw_serials="A1, B1\nC1\nC1\n\nC2")

        self.assertEqual(result.in_stock, ["A1"])
        self.assertEqual(result.in_draft, ["B1"])
        self.assertEqual(result.repeated, ["C1"])
        self.assertEqual(result.item.imeis, ("C1", "C2"))
        self.assertEqual(result.item.cost_price, Decimal("120000"))
        self.assertEqual(result.skipped, ["A1", "B1", "C1"])

    def test_stage_with_only_duplicates_stages_nothing(self):
        staged = [purchase_item(self.model, "B1")]

        result = stage_purchase_item(self.data, staged, model_id=self.model.id, raw_serials="B1")

        self.assertIsNone(result.item)
        self.assertEqual(result.in_draft, ["B1"])

    def test_stage_requires_serials(self):
        with self.assertRaises(LedgerValidationError):
            stage_purchase_item(self.data, [], model_id=self.model.id, raw_serials=" \n ")


class StockMaintenanceTests(TestCase):
    def setUp(self):
        data, model = with_iphone()
        self.data, self.purchase, _ = commit_purchase(
            data, items=[purchase_item(model, "A1", "A2")], supplier_name="Dhaka Wholesale"
        )

    def test_pricing_update_touches_only_the_unit(self):
        data, unit = update_stock_pricing(self.data, "A1", selling_price=Decimal("130000"))

        self.assertEqual(unit.selling_price, Decimal("130000.00"))
        self.assertEqual(unit.purchase_price, Decimal("118000"))
        self.assertEqual(data.find_stock("A2").selling_price, Decimal("134000"))
        self.assertEqual(data.purchases, self.data.purchases)

    def test_pricing_update_rejects_non_positive_values(self):
        with self.assertRaises(LedgerValidationError):
            update_stock_pricing(self.data, "A1", purchase_price=Decimal("0"))

    def test_delete_purchase_keeps_its_stock(self):
        data = delete_purchase(self.data, self.purchase.id)

        self.assertEqual(data.purchases, ())
        self.assertEqual(len(data.stocks), 2)
        self.assertEqual(data.find_stock("A1").purchase_id, self.purchase.id)

    def test_delete_stock_is_unconditional(self):
        sold = replace(self.data.find_stock("A1"), status=StockStatus.SOLD, invoice_id="i1")
        data = AppData(shop=self.data.shop, stocks=(sold, self.data.find_stock("A2")))

        data = delete_stock(data, "A1")

        self.assertIsNone(data.find_stock("A1"))
        with self.assertRaises(NotFoundError):
            delete_stock(data, "A1")


class InventoryApiTests(TestCase):
    def setUp(self):
        cache.clear()
        self.shop, self.user = create_shop_user()
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def _create_model(self, brand="Apple", model_name="iPhone 15", purchase_price="120000", selling_price="135000"):
        return self.client.post(
            "/api/v1/catalog/models/",
            {"brand": brand, "model_name": model_name, "purchase_price": purchase_price, "selling_price": selling_price},
            format="json",
        )

    def test_catalog_crud_and_duplicate_error(self):
        created = self._create_model()
        self.assertEqual(created.status_code, 201)
        model_id = created.json()["id"]

        duplicate = self._create_model(brand="APPLE")
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["code"], "duplicate_model")
        self.assertEqual(duplicate.json()["errors"]["duplicates"], ["APPLE iPhone 15"])

        patched = self.client.patch(f"/api/v1/catalog/models/{model_id}/", {"selling_price": "133000"}, format="json")
        self.assertEqual(patched.status_code, 200)
        self.assertEqual(patched.json()["selling_price"], "133000.00")

        listed = self.client.get("/api/v1/catalog/models/?search=iphone")
        self.assertEqual(listed.json()["count"], 1)

        self.assertEqual(self.client.delete(f"/api/v1/catalog/models/{model_id}/").status_code, 204)
        self.assertEqual(load_aggregate(self.shop).models, ())

    def test_catalog_spreadsheet_import_and_export(self):
        self._create_model()
        workbook = build_workbook(
            "Catalog",
            CATALOG_COLUMNS,
            [
                {"Brand": "Apple", "Model Name": "iPhone 15", "Cost Price": 120000, "Sale Price": 135000},
                {"Brand": "Samsung", "Model Name": "Galaxy S24", "Cost Price": 95000, "Sale Price": 105000},
            ],
        )
        upload = SimpleUploadedFile("catalog.xlsx", workbook)

        response = self.client.post("/api/v1/catalog/models/import/", {"file": upload}, format="multipart")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["added_count"], 1)
        self.assertEqual(response.json()["skipped_count"], 1)

        exported = self.client.get("/api/v1/catalog/models/export/?export=csv")
        self.assertEqual(exported.status_code, 200)
        self.assertEqual(exported["Content-Type"], "text/csv")
        lines = exported.content.decode().splitlines()
        self.assertEqual(lines[0], "Brand,Model Name,Cost Price,Sale Price")
        self.assertEqual(len(lines), 3)

    def test_catalog_import_rejects_unknown_file_type(self):
        upload = SimpleUploadedFile("catalog.txt", b"hello")

        response = self.client.post("/api/v1/catalog/models/import/", {"file": upload}, format="multipart")

        self.assertEqual(response.status_code, 400)
        self.assertIn("file", response.json()["errors"])

    def test_stage_then_commit_purchase(self):
        model_id = self._create_model().json()["id"]

        staged = self.client.post(
            "/api/v1/purchases/stage/",
            {"model_id": model_id, "cost_price": "118000", "selling_price": "134000", "imeis": "A1\nA2\nA2"},
            format="json",
        )
        self.assertEqual(staged.status_code, 200)
        self.assertEqual(staged.json()["repeated"], ["A2"])
        item = staged.json()["item"]
        self.assertEqual(item["imeis"], ["A1", "A2"])

        committed = self.client.post(
            "/api/v1/purchases/",
            {"items": [item], "supplier_name": "Dhaka Wholesale", "paid_amount": "200000"},
            format="json",
        )
        self.assertEqual(committed.status_code, 201)
        purchase = committed.json()["purchase"]
        self.assertEqual(purchase["subtotal"], "236000.00")
        self.assertEqual(purchase["due_amount"], "36000.00")
        self.assertEqual(committed.json()["skipped_imeis"], [])

        stock = self.client.get("/api/v1/stock/?status=Available").json()
        self.assertEqual(stock["count"], 2)
        self.assertEqual({row["brand"] for row in stock["results"]}, {"Apple"})

        again = self.client.post(
            "/api/v1/purchases/",
            {"items": [item], "supplier_name": "Dhaka Wholesale"},
            format="json",
        )
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["code"], "duplicate")
        self.assertEqual(sorted(again.json()["errors"]["duplicates"]), ["A1", "A2"])

        pdf = self.client.get(f"/api/v1/purchases/{purchase['id']}/pdf/")
        self.assertEqual(pdf.status_code, 200)
        self.assertEqual(pdf["Content-Type"], "application/pdf")
        self.assertTrue(pdf.content.startswith(b"%PDF"))

    def test_purchase_requires_supplier_name(self):
        model_id = self._create_model().json()["id"]

        response = self.client.post(
            "/api/v1/purchases/",
            {
                "items": [{"model_id": model_id, "imeis": ["A1"], "cost_price": "1", "selling_price": "2"}],
                "supplier_name": "",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertEqual(load_aggregate(self.shop).stocks, ())

    def test_purchase_spreadsheet_import_groups_by_supplier(self):
        content = (
            "Supplier,Phone,Brand,Model,Cost Price,Sale Price,IMEIs\n"
            'Dhaka Wholesale,01800000000,Apple,iPhone 15,118000,134000,"P1,P2"\n'
            "Dhaka Wholesale,,Samsung,Galaxy S24,95000,105000,P3\n"
            "Chittagong Traders,01900000000,Apple,iPhone 15,118000,134000,P4\n"
            ",,Apple,iPhone 15,118000,134000,P5\n"
        ).encode()
        upload = SimpleUploadedFile("purchases.csv", content, content_type="text/csv")

        response = self.client.post("/api/v1/purchases/import/", {"file": upload}, format="multipart")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(len(payload["purchases"]), 2)
        self.assertEqual(payload["models_created"], 2)
        self.assertEqual(payload["rows"][-1]["status"], "skipped")
        data = load_aggregate(self.shop)
        self.assertEqual(sorted(unit.imei for unit in data.stocks), ["P1", "P2", "P3", "P4"])
        self.assertEqual(len(data.suppliers), 2)

    def test_stock_pricing_and_delete(self):
        model_id = self._create_model().json()["id"]
        self.client.post(
            "/api/v1/purchases/",
            {
                "items": [{"model_id": model_id, "imeis": ["A1"], "cost_price": "118000", "selling_price": "134000"}],
                "supplier_name": "Dhaka Wholesale",
            },
            format="json",
        )

        patched = self.client.patch("/api/v1/stock/A1/", {"selling_price": "130000"}, format="json")
        self.assertEqual(patched.status_code, 200)
        self.assertEqual(patched.json()["selling_price"], "130000.00")
        self.assertEqual(patched.json()["model_name"], "iPhone 15")

        self.assertEqual(self.client.delete("/api/v1/stock/A1/").status_code, 204)
        self.assertEqual(self.client.get("/api/v1/stock/A1/").status_code, 404)
