"""In-memory shop ledger aggregate.

``AppData`` is the single aggregate root for one shop account: the catalog,
the stock ledger, invoices, purchases and suppliers. Values are frozen
dataclasses; command handlers build a new aggregate with ``dataclasses.replace``
instead of mutating the current one.

References between collections (model id, purchase id, invoice id, serial)
are plain values with no referential integrity. Lookups return ``None`` for
orphans and display helpers fall back to ``"N/A"``.

The ``to_document``/``from_document`` pair converts to and from the persisted
JSON document, whose keys use the camelCase names shared with the remote
document store. Optional fields without a value are written as ``null``;
money is written as a JSON number and read back as a 2-place ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from typing import Any

from django.db import models
from django.utils.dateparse import parse_datetime

from common.utils import ZERO, to_money

MISSING_LABEL = "N/A"
DEFAULT_INACTIVITY_TIMEOUT = 30


class StockStatus(models.TextChoices):
    AVAILABLE = "Available", "Available"
    SOLD = "Sold", "Sold"


class PaymentMethod(models.TextChoices):
    CASH = "Cash", "Cash"
    BKASH = "bKash", "bKash"
    NAGAD = "Nagad", "Nagad"
    ROCKET = "Rocket", "Rocket"
    CARD = "Card", "Card"


MOBILE_WALLET_METHODS = {PaymentMethod.BKASH, PaymentMethod.NAGAD, PaymentMethod.ROCKET}


def parse_moment(value) -> datetime:
    if isinstance(value, datetime):
        moment = value
    else:
        moment = parse_datetime(str(value or "")) if value else None
        if moment is None:
            raise ValueError(f"Invalid date value: {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt_timezone.utc)
    return moment


def _optional(value):
    if value is None or value == "":
        return None
    return value


def _number(value: Decimal) -> int | float:
    """Money goes into the document as a JSON number; whole amounts stay integers."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True)
class ShopProfile:
    name: str
    address: str = ""
    phone: str = ""
    email: str | None = None
    logo_url: str | None = None
    is_registered: bool = True
    prepared_by: str | None = None
    owner_username: str | None = None
    inactivity_timeout: int = DEFAULT_INACTIVITY_TIMEOUT

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "email": _optional(self.email),
            "logoUrl": _optional(self.logo_url),
            "isRegistered": self.is_registered,
            "preparedBy": _optional(self.prepared_by),
            "ownerUsername": _optional(self.owner_username),
            "inactivityTimeout": self.inactivity_timeout,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "ShopProfile":
        return cls(
            name=doc.get("name") or "",
            address=doc.get("address") or "",
            phone=doc.get("phone") or "",
            email=_optional(doc.get("email")),
            logo_url=_optional(doc.get("logoUrl")),
            is_registered=bool(doc.get("isRegistered", True)),
            prepared_by=_optional(doc.get("preparedBy")),
            owner_username=_optional(doc.get("ownerUsername")),
            inactivity_timeout=int(doc.get("inactivityTimeout") or DEFAULT_INACTIVITY_TIMEOUT),
        )


@dataclass(frozen=True)
class MobileModel:
    id: str
    brand: str
    model_name: str
    purchase_price: Decimal
    selling_price: Decimal

    @property
    def label(self) -> str:
        return f"{self.brand} {self.model_name}"

    def matches(self, brand: str, model_name: str) -> bool:
        return self.brand.lower() == brand.lower() and self.model_name.lower() == model_name.lower()

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "brand": self.brand,
            "modelName": self.model_name,
            "purchasePrice": _number(self.purchase_price),
            "sellingPrice": _number(self.selling_price),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "MobileModel":
        return cls(
            id=str(doc["id"]),
            brand=doc.get("brand") or "",
            model_name=doc.get("modelName") or "",
            purchase_price=to_money(doc.get("purchasePrice")),
            selling_price=to_money(doc.get("sellingPrice")),
        )


@dataclass(frozen=True)
class Supplier:
    id: str
    name: str
    phone: str = ""
    address: str | None = None

    def to_document(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "phone": self.phone, "address": _optional(self.address)}

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Supplier":
        return cls(
            id=str(doc["id"]),
            name=doc.get("name") or "",
            phone=doc.get("phone") or "",
            address=_optional(doc.get("address")),
        )


@dataclass(frozen=True)
class PurchaseItem:
    model_id: str
    brand: str
    model_name: str
    imeis: tuple[str, ...]
    cost_price: Decimal
    selling_price: Decimal

    @property
    def quantity(self) -> int:
        return len(self.imeis)

    @property
    def line_total(self) -> Decimal:
        return to_money(self.cost_price * self.quantity)

    def to_document(self) -> dict[str, Any]:
        return {
            "modelId": self.model_id,
            "brand": self.brand,
            "modelName": self.model_name,
            "imeis": list(self.imeis),
            "costPrice": _number(self.cost_price),
            "sellingPrice": _number(self.selling_price),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "PurchaseItem":
        return cls(
            model_id=str(doc.get("modelId") or ""),
            brand=doc.get("brand") or "",
            model_name=doc.get("modelName") or "",
            imeis=tuple(str(imei) for imei in doc.get("imeis") or ()),
            cost_price=to_money(doc.get("costPrice")),
            selling_price=to_money(doc.get("sellingPrice")),
        )


@dataclass(frozen=True)
class Purchase:
    id: str
    purchase_number: str
    date: datetime
    supplier_name: str
    supplier_phone: str
    items: tuple[PurchaseItem, ...]
    subtotal: Decimal
    vat: Decimal
    discount: Decimal
    total: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    supplier_address: str | None = None
    note: str | None = None

    @property
    def imeis(self) -> list[str]:
        return [imei for item in self.items for imei in item.imeis]

    @property
    def quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "purchaseNumber": self.purchase_number,
            "date": self.date.isoformat(),
            "supplierName": self.supplier_name,
            "supplierPhone": self.supplier_phone,
            "supplierAddress": _optional(self.supplier_address),
            "items": [item.to_document() for item in self.items],
            "subtotal": _number(self.subtotal),
            "vat": _number(self.vat),
            "discount": _number(self.discount),
            "total": _number(self.total),
            "paidAmount": _number(self.paid_amount),
            "dueAmount": _number(self.due_amount),
            "note": _optional(self.note),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Purchase":
        return cls(
            id=str(doc["id"]),
            purchase_number=doc.get("purchaseNumber") or "",
            date=parse_moment(doc.get("date")),
            supplier_name=doc.get("supplierName") or "",
            supplier_phone=doc.get("supplierPhone") or "",
            supplier_address=_optional(doc.get("supplierAddress")),
            items=tuple(PurchaseItem.from_document(item) for item in doc.get("items") or ()),
            subtotal=to_money(doc.get("subtotal")),
            vat=to_money(doc.get("vat")),
            discount=to_money(doc.get("discount")),
            total=to_money(doc.get("total")),
            paid_amount=to_money(doc.get("paidAmount")),
            due_amount=to_money(doc.get("dueAmount")),
            note=_optional(doc.get("note")),
        )


@dataclass(frozen=True)
class StockUnit:
    imei: str
    model_id: str
    status: str
    date_added: datetime
    purchase_price: Decimal
    selling_price: Decimal
    purchase_id: str | None = None
    invoice_id: str | None = None

    @property
    def is_available(self) -> bool:
        return self.status == StockStatus.AVAILABLE

    def to_document(self) -> dict[str, Any]:
        return {
            "imei": self.imei,
            "modelId": self.model_id,
            "status": str(self.status),
            "dateAdded": self.date_added.isoformat(),
            "purchaseId": _optional(self.purchase_id),
            "invoiceId": _optional(self.invoice_id),
            "purchasePrice": _number(self.purchase_price),
            "sellingPrice": _number(self.selling_price),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "StockUnit":
        status = doc.get("status") or StockStatus.AVAILABLE
        if status not in StockStatus.values:
            raise ValueError(f"Invalid stock status: {status!r}")
        return cls(
            imei=str(doc["imei"]),
            model_id=str(doc.get("modelId") or ""),
            status=StockStatus(status),
            date_added=parse_moment(doc.get("dateAdded")),
            purchase_id=_optional(doc.get("purchaseId")),
            invoice_id=_optional(doc.get("invoiceId")),
            purchase_price=to_money(doc.get("purchasePrice")),
            selling_price=to_money(doc.get("sellingPrice")),
        )


@dataclass(frozen=True)
class InvoiceItem:
    imei: str
    model_name: str
    brand: str
    price: Decimal

    def to_document(self) -> dict[str, Any]:
        return {"imei": self.imei, "modelName": self.model_name, "brand": self.brand, "price": _number(self.price)}

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "InvoiceItem":
        return cls(
            imei=str(doc["imei"]),
            model_name=doc.get("modelName") or "",
            brand=doc.get("brand") or "",
            price=to_money(doc.get("price")),
        )


@dataclass(frozen=True)
class PaymentDetails:
    method: str
    transaction_id: str
    amount: Decimal
    bank_name: str | None = None
    payment_phone: str | None = None
    card_type: str | None = None

    @property
    def reference(self) -> str:
        return self.bank_name or self.payment_phone or MISSING_LABEL

    def to_document(self) -> dict[str, Any]:
        return {
            "method": str(self.method),
            "bankName": _optional(self.bank_name),
            "paymentPhone": _optional(self.payment_phone),
            "cardType": _optional(self.card_type),
            "transactionId": self.transaction_id,
            "amount": _number(self.amount),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "PaymentDetails":
        method = doc.get("method") or PaymentMethod.CASH
        if method not in PaymentMethod.values:
            raise ValueError(f"Invalid payment method: {method!r}")
        return cls(
            method=PaymentMethod(method),
            bank_name=_optional(doc.get("bankName")),
            payment_phone=_optional(doc.get("paymentPhone")),
            card_type=_optional(doc.get("cardType")),
            transaction_id=doc.get("transactionId") or "",
            amount=to_money(doc.get("amount")),
        )


@dataclass(frozen=True)
class Invoice:
    id: str
    invoice_number: str
    date: datetime
    customer_name: str
    customer_phone: str
    items: tuple[InvoiceItem, ...]
    subtotal: Decimal
    discount: Decimal
    vat: Decimal
    total: Decimal
    payments: tuple[PaymentDetails, ...]
    paid_amount: Decimal
    due_amount: Decimal
    customer_address: str | None = None
    narration: str | None = None

    @property
    def imeis(self) -> list[str]:
        return [item.imei for item in self.items]

    def contains(self, imei: str) -> bool:
        return any(item.imei == imei for item in self.items)

    @property
    def status_label(self) -> str:
        return "DUE" if self.due_amount > ZERO else "PAID"

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "date": self.date.isoformat(),
            "customerName": self.customer_name,
            "customerPhone": self.customer_phone,
            "customerAddress": _optional(self.customer_address),
            "narration": _optional(self.narration),
            "items": [item.to_document() for item in self.items],
            "subtotal": _number(self.subtotal),
            "discount": _number(self.discount),
            "vat": _number(self.vat),
            "total": _number(self.total),
            "payments": [payment.to_document() for payment in self.payments],
            "paidAmount": _number(self.paid_amount),
            "dueAmount": _number(self.due_amount),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Invoice":
        return cls(
            id=str(doc["id"]),
            invoice_number=doc.get("invoiceNumber") or "",
            date=parse_moment(doc.get("date")),
            customer_name=doc.get("customerName") or "",
            customer_phone=doc.get("customerPhone") or "",
            # Older documents stored the narration under "attention".
            customer_address=_optional(doc.get("customerAddress")),
            narration=_optional(doc.get("narration") or doc.get("attention")),
            items=tuple(InvoiceItem.from_document(item) for item in doc.get("items") or ()),
            subtotal=to_money(doc.get("subtotal")),
            discount=to_money(doc.get("discount")),
            vat=to_money(doc.get("vat")),
            total=to_money(doc.get("total")),
            payments=tuple(PaymentDetails.from_document(payment) for payment in doc.get("payments") or ()),
            paid_amount=to_money(doc.get("paidAmount")),
            due_amount=to_money(doc.get("dueAmount")),
        )


@dataclass(frozen=True)
class AppData:
    shop: ShopProfile
    models: tuple[MobileModel, ...] = field(default_factory=tuple)
    stocks: tuple[StockUnit, ...] = field(default_factory=tuple)
    invoices: tuple[Invoice, ...] = field(default_factory=tuple)
    purchases: tuple[Purchase, ...] = field(default_factory=tuple)
    suppliers: tuple[Supplier, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls, shop: ShopProfile) -> "AppData":
        return cls(shop=shop)

    def find_model(self, model_id) -> MobileModel | None:
        return next((model for model in self.models if model.id == model_id), None)

    def find_stock(self, imei) -> StockUnit | None:
        return next((stock for stock in self.stocks if stock.imei == imei), None)

    def find_purchase(self, purchase_id) -> Purchase | None:
        return next((purchase for purchase in self.purchases if purchase.id == purchase_id), None)

    def find_invoice(self, invoice_id) -> Invoice | None:
        return next((invoice for invoice in self.invoices if invoice.id == invoice_id), None)

    def find_invoice_for_serial(self, imei) -> Invoice | None:
        return next((invoice for invoice in self.invoices if invoice.contains(imei)), None)

    def find_supplier(self, name: str) -> Supplier | None:
        lowered = name.lower()
        return next((supplier for supplier in self.suppliers if supplier.name.lower() == lowered), None)

    def stock_serials(self) -> set[str]:
        return {stock.imei for stock in self.stocks}

    def model_label(self, model_id) -> tuple[str, str]:
        model = self.find_model(model_id)
        if model is None:
            return MISSING_LABEL, MISSING_LABEL
        return model.brand, model.model_name

    def with_shop(self, shop: ShopProfile) -> "AppData":
        return replace(self, shop=shop)

    def ledgers_document(self) -> dict[str, Any]:
        return {
            "models": [model.to_document() for model in self.models],
            "stocks": [stock.to_document() for stock in self.stocks],
            "invoices": [invoice.to_document() for invoice in self.invoices],
            "purchases": [purchase.to_document() for purchase in self.purchases],
            "suppliers": [supplier.to_document() for supplier in self.suppliers],
        }

    def to_document(self) -> dict[str, Any]:
        return {"shop": self.shop.to_document(), **self.ledgers_document()}

    @classmethod
    def from_document(cls, doc: dict[str, Any], shop: ShopProfile | None = None) -> "AppData":
        if not isinstance(doc, dict):
            raise ValueError("Document must be a JSON object.")
        if shop is None:
            shop = ShopProfile.from_document(doc.get("shop") or {})
        return cls(
            shop=shop,
            models=tuple(MobileModel.from_document(item) for item in doc.get("models") or ()),
            stocks=tuple(StockUnit.from_document(item) for item in doc.get("stocks") or ()),
            invoices=tuple(Invoice.from_document(item) for item in doc.get("invoices") or ()),
            purchases=tuple(Purchase.from_document(item) for item in doc.get("purchases") or ()),
            suppliers=tuple(Supplier.from_document(item) for item in doc.get("suppliers") or ()),
        )
