import re
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.aggregate import PaymentMethod, StockStatus
from core.errors import AlreadyInCart, AlreadySold, LedgerValidationError, NotFoundError
from core.store import apply_command, load_aggregate
from core.tests import create_shop_user
from inventory.services import add_model, commit_purchase, delete_stock, remove_model
from inventory.tests import purchase_item, with_iphone
from sales.reports import (
    dashboard_stats,
    payments_report,
    period_bounds,
    profit_loss_report,
    sales_report,
    track_lifecycle,
)
from sales.services import (
    add_invoice_item,
    amount_in_words,
    build_payment,
    commit_invoice,
    delete_invoice,
    find_customer_by_phone,
    generate_invoice_number,
    invoice_summary,
)


def stocked_data():
    data, model = with_iphone()
    data, purchase, _ = commit_purchase(data, items=[purchase_item(model, "A1", "A2")], supplier_name="Dhaka Wholesale")
    return data, model, purchase


def sell(data, *serials, price="134000", discount="4000", paid="100000", **kwargs):
    return commit_invoice(
        data,
        customer_name=kwargs.pop("customer_name", "Karim"),
        customer_phone=kwargs.pop("customer_phone", "01900000000"),
        items=[(serial, Decimal(price) if price else None) for serial in serials],
        discount=Decimal(discount),
        paid_amount=Decimal(paid),
        **kwargs,
    )


class InvoiceCommitTests(TestCase):
    def setUp(self):
        self.data, self.model, self.purchase = stocked_data()

    def test_invoice_marks_units_sold_and_computes_totals(self):
        data, invoice = sell(self.data, "A1")

        self.assertEqual(invoice.subtotal, Decimal("134000.00"))
        self.assertEqual(invoice.total, Decimal("130000.00"))
        self.assertEqual(invoice.due_amount, Decimal("30000.00"))
        self.assertEqual(invoice.due_amount, invoice.total - invoice.paid_amount)
        self.assertEqual(invoice.vat, Decimal("0.00"))
        self.assertEqual(invoice.status_label, "DUE")
        unit = data.find_stock("A1")
        self.assertEqual(unit.status, StockStatus.SOLD)
        self.assertEqual(unit.invoice_id, invoice.id)
        self.assertEqual(data.find_stock("A2").status, StockStatus.AVAILABLE)
        self.assertEqual(invoice.payments[0].method, PaymentMethod.CASH)
        self.assertEqual(invoice.payments[0].amount, Decimal("100000.00"))

    def test_sold_serial_cannot_go_on_a_second_invoice(self):
        data, _ = sell(self.data, "A1")

        with self.assertRaises(AlreadySold):
            add_invoice_item(data, "A1")
        with self.assertRaises(AlreadySold):
            sell(data, "A1", customer_name="Someone Else")

    def test_add_item_checks_ledger_and_cart(self):
        with self.assertRaises(NotFoundError):
            add_invoice_item(self.data, "ZZZ")
        with self.assertRaises(AlreadyInCart):
            add_invoice_item(self.data, "A1", cart=["A1"])

        item = add_invoice_item(self.data, " A1 ", cart=["A2"])

        self.assertEqual(item.imei, "A1")
        self.assertEqual(item.price, Decimal("134000.00"))
        self.assertEqual((item.brand, item.model_name), ("Apple", "iPhone 15"))

    def test_item_price_falls_back_to_the_catalog(self):
        data = replace(
            self.data,
            stocks=tuple(replace(unit, selling_price=Decimal("0.00")) for unit in self.data.stocks),
        )

        item = add_invoice_item(data, "A1")

        self.assertEqual(item.price, Decimal("135000.00"))

    def test_orphaned_unit_sells_with_unknown_labels(self):
        data = replace(self.data, models=())

        item = add_invoice_item(data, "A1")

        self.assertEqual((item.brand, item.model_name), ("Unknown", "Unknown"))

    def test_editing_invoice_may_re_add_its_own_serial(self):
        data, invoice = sell(self.data, "A1")

        item = add_invoice_item(data, "A1", editing_invoice_id=invoice.id)

        self.assertEqual(item.imei, "A1")

    def test_saving_an_unchanged_edit_is_idempotent(self):
        data, invoice = sell(self.data, "A1")

        edited_data, edited = sell(data, "A1", invoice_id=invoice.id)

        self.assertEqual(edited.id, invoice.id)
        self.assertEqual(edited.invoice_number, invoice.invoice_number)
        self.assertEqual(edited.date, invoice.date)
        self.assertEqual((edited.subtotal, edited.total, edited.due_amount), (invoice.subtotal, invoice.total, invoice.due_amount))
        self.assertEqual(edited_data.stocks, data.stocks)
        self.assertEqual(len(edited_data.invoices), 1)

    def test_edit_keeps_items_whose_unit_was_deleted(self):
        data, invoice = sell(self.data, "A1")
        data = delete_stock(data, "A1")

        data, edited = sell(data, "A1", invoice_id=invoice.id, customer_name="Karim Uddin")

        self.assertEqual(edited.items, invoice.items)
        self.assertEqual(edited.customer_name, "Karim Uddin")
        self.assertIsNone(data.find_stock("A1"))

    def test_edit_keeps_item_labels_after_model_removed(self):
        data, invoice = sell(self.data, "A1")
        data = remove_model(data, self.model.id)

        _, edited = sell(data, "A1", price="133000", invoice_id=invoice.id)

        item = edited.items[0]
        self.assertEqual((item.brand, item.model_name), ("Apple", "iPhone 15"))
        self.assertEqual(item.price, Decimal("133000.00"))

    def test_edit_still_checks_newly_added_serials(self):
        data, first = sell(self.data, "A1")
        data, _ = sell(data, "A2", customer_name="Rahim")

        with self.assertRaises(AlreadySold):
            sell(data, "A1", "A2", invoice_id=first.id)
        with self.assertRaises(NotFoundError):
            sell(data, "A1", "ZZZ", invoice_id=first.id)

    def test_edit_without_payment_keeps_stored_payment(self):
        wallet = build_payment("bKash", amount=0, payment_phone="01900000000", transaction_id="8N7A6B5C")
        data, invoice = sell(self.data, "A1", payment=wallet)

        _, edited = sell(data, "A1", paid="120000", invoice_id=invoice.id)

        payment = edited.payments[0]
        self.assertEqual(payment.method, PaymentMethod.BKASH)
        self.assertEqual(payment.transaction_id, "8N7A6B5C")
        self.assertEqual(payment.reference, "01900000000")
        self.assertEqual(payment.amount, Decimal("120000.00"))

    def test_explicit_zero_price_is_kept(self):
        data, invoice = sell(self.data, "A1", price="0", discount="0", paid="0")

        self.assertEqual(invoice.items[0].price, Decimal("0.00"))
        self.assertEqual(invoice.total, Decimal("0.00"))
        self.assertEqual(data.find_stock("A1").status, StockStatus.SOLD)

    def test_edit_adds_new_serials_and_keeps_removed_ones_sold(self):
        data, invoice = sell(self.data, "A1")

        data, edited = sell(data, "A2", invoice_id=invoice.id)

        self.assertEqual(edited.imeis, ["A2"])
        self.assertEqual(data.find_stock("A2").status, StockStatus.SOLD)
        self.assertEqual(data.find_stock("A2").invoice_id, invoice.id)
        self.assertEqual(data.find_stock("A1").status, StockStatus.SOLD)

    def test_edit_restores_removed_serials_when_policy_enabled(self):
        data, invoice = sell(self.data, "A1")

        data, _ = sell(data, "A2", invoice_id=invoice.id, restore_removed=True)

        unit = data.find_stock("A1")
        self.assertEqual(unit.status, StockStatus.AVAILABLE)
        self.assertIsNone(unit.invoice_id)

    def test_delete_invoice_follows_restore_policy(self):
        data, invoice = sell(self.data, "A1")

        kept, _ = delete_invoice(data, invoice.id)
        restored, _ = delete_invoice(data, invoice.id, restore_removed=True)

        self.assertEqual(kept.invoices, ())
        self.assertEqual(kept.find_stock("A1").status, StockStatus.SOLD)
        self.assertEqual(restored.find_stock("A1").status, StockStatus.AVAILABLE)
        with self.assertRaises(NotFoundError):
            delete_invoice(kept, invoice.id)

    def test_customer_and_items_are_required(self):
        with self.assertRaises(LedgerValidationError) as ctx:
            commit_invoice(self.data, customer_name="", customer_phone=" ", items=[])

        self.assertEqual(set(ctx.exception.details), {"customer_name", "customer_phone", "items"})

    def test_unknown_invoice_id_on_edit(self):
        with self.assertRaises(NotFoundError):
            sell(self.data, "A1", invoice_id="missing")

    def test_duplicate_serial_within_one_invoice(self):
        with self.assertRaises(AlreadyInCart):
            sell(self.data, "A1", "A1")

    def test_customer_lookup_uses_latest_invoice(self):
        data, _ = sell(self.data, "A1", customer_name="Karim", customer_address="Mirpur")
        later = timezone.now() + timedelta(minutes=5)
        data, _ = sell(data, "A2", customer_name="Karim Uddin", now=later)

        customer = find_customer_by_phone(data, "01900000000")

        self.assertEqual(customer["customer_name"], "Karim Uddin")
        self.assertIsNone(find_customer_by_phone(data, "017"))

    def test_invoice_summary(self):
        data, _ = sell(self.data, "A1")
        data, _ = sell(data, "A2", discount="0", paid="134000")

        summary = invoice_summary(list(data.invoices))

        self.assertEqual(summary["count"], 2)
        self.assertEqual(summary["total"], Decimal("264000.00"))
        self.assertEqual(summary["paid"], Decimal("234000.00"))
        self.assertEqual(summary["due"], Decimal("30000.00"))


class PaymentAndNumberingTests(TestCase):
    def test_card_requires_bank_name(self):
        with self.assertRaises(LedgerValidationError) as ctx:
            build_payment("Card", amount=100)

        self.assertIn("bank_name", ctx.exception.details)

    def test_mobile_wallets_require_sender_phone(self):
        for method in ("bKash", "Nagad", "Rocket"):
            with self.subTest(method=method):
                with self.assertRaises(LedgerValidationError):
                    build_payment(method, amount=100)

    def test_unknown_method_is_rejected(self):
        with self.assertRaises(LedgerValidationError):
            build_payment("Cheque", amount=100)

    def test_transaction_id_is_generated_for_non_cash(self):
        payment = build_payment("Card", amount="1500.5", bank_name="City Bank", card_type="Visa")

        self.assertRegex(payment.transaction_id, r"^TXN-[0-9A-F]{10}$")
        self.assertEqual(payment.reference, "City Bank")
        self.assertEqual(payment.amount, Decimal("1500.50"))

    def test_operator_transaction_id_and_cash_defaults(self):
        wallet = build_payment("Nagad", amount=10, payment_phone="01811111111", transaction_id="8N7A6B5C")
        cash = build_payment("Cash", amount=10, payment_phone="01811111111")

        self.assertEqual(wallet.transaction_id, "8N7A6B5C")
        self.assertEqual(wallet.reference, "01811111111")
        self.assertEqual(cash.transaction_id, "")
        self.assertIsNone(cash.payment_phone)
        self.assertEqual(cash.reference, "N/A")

    def test_invoice_number_uses_shop_initials(self):
        now = timezone.now()

        number = generate_invoice_number("Rahman Telecom House Ltd", now)

        self.assertTrue(re.fullmatch(r"RTH-\d{6}", number))
        self.assertTrue(generate_invoice_number("", now).startswith("INV-"))

    def test_amount_in_words(self):
        cases = {
            Decimal("0"): "Zero",
            Decimal("101"): "One Hundred and One Only",
            Decimal("1250.75"): "One Thousand Two Hundred and Fifty Only",
            Decimal("130000"): "One Lakh Thirty Thousand Only",
            Decimal("25000000"): "Two Crore Fifty Lakh Only",
        }
        for amount, words in cases.items():
            with self.subTest(amount=amount):
                self.assertEqual(amount_in_words(amount), words)


class ReportTests(TestCase):
    def setUp(self):
        data, _, self.purchase = stocked_data()
        self.data, self.invoice = sell(
            data,
            "A1",
            payment=build_payment("bKash", amount=0, payment_phone="01900000000"),
        )

    def test_sales_and_payments_rows(self):
        sales = sales_report(self.data)
        payments = payments_report(self.data)

        self.assertEqual(len(sales), 1)
        self.assertEqual(sales[0]["Model Name"], "Apple iPhone 15")
        self.assertEqual(sales[0]["Due Amount"], Decimal("30000.00"))
        self.assertEqual(payments[0]["Payment Method"], "bKash")
        self.assertEqual(payments[0]["Bank / Phone Ref"], "01900000000")
        self.assertEqual(payments[0]["Amount"], Decimal("100000.00"))

    def test_profit_loss_buckets_by_month(self):
        rows = profit_loss_report(self.data)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["Total Purchase Amount"], Decimal("236000.00"))
        self.assertEqual(rows[0]["Total Sales Amount"], Decimal("130000.00"))
        self.assertEqual(rows[0]["Profit"], Decimal("0.00"))
        self.assertEqual(rows[0]["Loss"], Decimal("106000.00"))

    def test_period_filter_excludes_older_records(self):
        start, end = period_bounds("today")
        old = replace(self.invoice, date=timezone.now() - timedelta(days=40))
        data = replace(self.data, invoices=(old,))

        self.assertEqual(sales_report(data, start, end), [])
        self.assertEqual(len(sales_report(data)), 1)

    def test_custom_period_needs_both_dates(self):
        with self.assertRaises(ValidationError):
            period_bounds("custom", date_from="2024-05-01")
        with self.assertRaises(ValidationError):
            period_bounds("custom", date_from="2024-05-10", date_to="2024-05-01")
        with self.assertRaises(ValidationError):
            period_bounds("yearly")

    def test_dashboard_stats(self):
        stats = dashboard_stats(self.data)

        self.assertEqual(stats["today_sales"], Decimal("130000.00"))
        self.assertEqual(stats["today_profit"], Decimal("12000.00"))
        self.assertEqual(stats["stock_quantity"], 1)
        self.assertEqual(stats["stock_value"], Decimal("118000.00"))
        self.assertEqual(stats["today_invoice_count"], 1)

    def test_lifecycle_by_serial_and_customer(self):
        rows = track_lifecycle(self.data, "a1")

        self.assertEqual([row["type"] for row in rows], ["PURCHASE", "SALE"])
        self.assertEqual([row["sl"] for row in rows], [1, 2])
        self.assertEqual(rows[0]["reference_number"], self.purchase.purchase_number)
        self.assertEqual(rows[0]["name"], "Dhaka Wholesale")
        self.assertEqual(rows[1]["invoice_id"], self.invoice.id)

        by_customer = track_lifecycle(self.data, "karim")
        self.assertEqual([(row["type"], row["serial"]) for row in by_customer], [("SALE", "A1")])
        self.assertEqual(track_lifecycle(self.data, "  "), [])

    def test_lifecycle_tolerates_deleted_purchase(self):
        data = replace(self.data, purchases=())

        rows = track_lifecycle(data, "A2")

        self.assertEqual(rows[0]["reference_number"], "N/A")
        self.assertEqual(rows[0]["name"], "N/A")


class SalesApiTests(TestCase):
    def setUp(self):
        cache.clear()
        self.shop, self.user = create_shop_user()
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)
        _, model = apply_command(
            self.shop,
            add_model,
            brand="Apple",
            model_name="iPhone 15",
            purchase_price=Decimal("120000"),
            selling_price=Decimal("135000"),
        )
        apply_command(
            self.shop,
            commit_purchase,
            items=[purchase_item(model, "A1", "A2")],
            supplier_name="Dhaka Wholesale",
        )

    def _invoice_payload(self, *serials, **overrides):
        payload = {
            "customer_name": "Karim",
            "customer_phone": "01900000000",
            "items": [{"imei": serial, "price": "134000"} for serial in serials],
            "discount": "4000",
            "paid_amount": "100000",
            "payment": {"method": "bKash", "payment_phone": "01900000000"},
        }
        payload.update(overrides)
        return payload

    def test_cart_endpoint(self):
        added = self.client.post("/api/v1/invoices/cart/", {"imei": "A2"}, format="json")
        self.assertEqual(added.status_code, 200)
        self.assertEqual(added.json()["price"], "134000.00")
        self.assertEqual(added.json()["brand"], "Apple")

        in_cart = self.client.post("/api/v1/invoices/cart/", {"imei": "A2", "cart": ["A2"]}, format="json")
        self.assertEqual(in_cart.status_code, 409)
        self.assertEqual(in_cart.json()["code"], "already_in_cart")

        missing = self.client.post("/api/v1/invoices/cart/", {"imei": "ZZZ"}, format="json")
        self.assertEqual(missing.status_code, 404)

    def test_create_list_edit_and_delete_invoice(self):
        created = self.client.post("/api/v1/invoices/", self._invoice_payload("A1"), format="json")
        self.assertEqual(created.status_code, 201)
        invoice = created.json()
        self.assertEqual(invoice["total"], "130000.00")
        self.assertEqual(invoice["due_amount"], "30000.00")
        self.assertEqual(invoice["status"], "DUE")
        self.assertRegex(invoice["payments"][0]["transaction_id"], r"^TXN-[0-9A-F]{10}$")
        self.assertEqual(load_aggregate(self.shop).find_stock("A1").status, StockStatus.SOLD)

        again = self.client.post("/api/v1/invoices/", self._invoice_payload("A1"), format="json")
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["code"], "already_sold")

        listed = self.client.get("/api/v1/invoices/?search=karim&period=today")
        self.assertEqual(listed.json()["count"], 1)
        self.assertEqual(Decimal(str(listed.json()["summary"]["due"])), Decimal("30000"))

        edited = self.client.put(f"/api/v1/invoices/{invoice['id']}/", self._invoice_payload("A1"), format="json")
        self.assertEqual(edited.status_code, 200)
        self.assertEqual(edited.json()["invoice_number"], invoice["invoice_number"])
        self.assertEqual(edited.json()["total"], invoice["total"])

        self.assertEqual(self.client.delete(f"/api/v1/invoices/{invoice['id']}/").status_code, 204)
        self.assertEqual(load_aggregate(self.shop).invoices, ())
        self.assertEqual(load_aggregate(self.shop).find_stock("A1").status, StockStatus.SOLD)

    @override_settings(LEDGER={"INACTIVITY_TIMEOUT_MINUTES": 30, "RESTORE_STOCK_ON_INVOICE_CHANGE": True})
    def test_delete_restores_stock_when_policy_enabled(self):
        invoice = self.client.post("/api/v1/invoices/", self._invoice_payload("A1"), format="json").json()

        self.client.delete(f"/api/v1/invoices/{invoice['id']}/")

        unit = load_aggregate(self.shop).find_stock("A1")
        self.assertEqual(unit.status, StockStatus.AVAILABLE)
        self.assertIsNone(unit.invoice_id)

    def test_wallet_payment_without_phone_is_rejected(self):
        response = self.client.post(
            "/api/v1/invoices/",
            self._invoice_payload("A1", payment={"method": "Rocket"}),
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("payment_phone", response.json()["errors"])
        self.assertEqual(load_aggregate(self.shop).invoices, ())

    def test_invoice_pdf_and_customer_lookup(self):
        invoice = self.client.post("/api/v1/invoices/", self._invoice_payload("A1"), format="json").json()

        pdf = self.client.get(f"/api/v1/invoices/{invoice['id']}/pdf/")
        self.assertEqual(pdf.status_code, 200)
        self.assertTrue(pdf.content.startswith(b"%PDF"))

        customer = self.client.get("/api/v1/invoices/customer-lookup/?phone=01900000000")
        self.assertEqual(customer.status_code, 200)
        self.assertEqual(customer.json()["customer_name"], "Karim")
        self.assertEqual(self.client.get("/api/v1/invoices/customer-lookup/?phone=000").status_code, 404)

    def test_reports_dashboard_and_search(self):
        self.client.post("/api/v1/invoices/", self._invoice_payload("A1"), format="json")

        report = self.client.get("/api/v1/reports/payments/?period=month")
        self.assertEqual(report.status_code, 200)
        self.assertEqual(report.json()["count"], 1)
        self.assertEqual(Decimal(str(report.json()["total_collection"])), Decimal("100000"))

        exported = self.client.get("/api/v1/reports/stock/?export=xlsx")
        self.assertEqual(exported.status_code, 200)
        self.assertIn("spreadsheetml", exported["Content-Type"])
        self.assertTrue(exported.content.startswith(b"PK"))

        self.assertEqual(self.client.get("/api/v1/reports/unknown/").status_code, 404)
        self.assertEqual(self.client.get("/api/v1/reports/sales/?period=custom").status_code, 400)
        self.assertEqual(self.client.get("/api/v1/reports/sales/?export=pdf").status_code, 400)

        dashboard = self.client.get("/api/v1/dashboard/").json()
        self.assertEqual(dashboard["today_invoice_count"], 1)
        self.assertEqual(dashboard["stock_quantity"], 1)

        search = self.client.get("/api/v1/search/?q=A1").json()
        self.assertEqual([row["type"] for row in search["results"]], ["PURCHASE", "SALE"])
