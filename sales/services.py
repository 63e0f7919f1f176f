"""Invoice command handlers and the helpers the point-of-sale screen relies on."""

import logging
import secrets
from dataclasses import replace

from django.utils import timezone

from common.utils import ZERO, epoch_millis, new_id, to_money
from core.aggregate import (
    MOBILE_WALLET_METHODS,
    Invoice,
    InvoiceItem,
    PaymentDetails,
    PaymentMethod,
    StockStatus,
)
from core.errors import AlreadyInCart, AlreadySold, LedgerValidationError, NotFoundError

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"

_ONES = [
    "",
    "One",
    "Two",
    "Three",
    "Four",
    "Five",
    "Six",
    "Seven",
    "Eight",
    "Nine",
    "Ten",
    "Eleven",
    "Twelve",
    "Thirteen",
    "Fourteen",
    "Fifteen",
    "Sixteen",
    "Seventeen",
    "Eighteen",
    "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def _words(value):
    if value <= 0:
        return []
    if value < 20:
        return [_ONES[value]]
    if value < 100:
        return [_TENS[value // 10], *_words(value % 10)]
    if value < 1000:
        rest = value % 100
        return [*_words(value // 100), "Hundred", *(["and", *_words(rest)] if rest else [])]
    if value < 100_000:
        return [*_words(value // 1000), "Thousand", *_words(value % 1000)]
    if value < 10_000_000:
        return [*_words(value // 100_000), "Lakh", *_words(value % 100_000)]
    return [*_words(value // 10_000_000), "Crore", *_words(value % 10_000_000)]


def amount_in_words(value):
    """Render the whole-taka part of an amount using the Hundred/Thousand/Lakh/Crore scale."""
    whole = int(to_money(value))
    if whole <= 0:
        return "Zero"
    return " ".join(_words(whole)) + " Only"


def generate_invoice_number(shop_name, now):
    initials = "".join(word[0] for word in (shop_name or "").split() if word[0].isalnum())[:3].upper()
    return f"{initials or 'INV'}-{str(epoch_millis(now))[-6:]}"


def generate_transaction_id():
    return f"TXN-{secrets.token_hex(5).upper()}"


def build_payment(method, *, amount, bank_name=None, payment_phone=None, card_type=None, transaction_id=None):
    if method not in PaymentMethod.values:
        raise LedgerValidationError(details={"method": f"Unsupported payment method {method!r}."})
    method = PaymentMethod(method)
    bank_name = (bank_name or "").strip() or None
    payment_phone = (payment_phone or "").strip() or None
    transaction_id = (transaction_id or "").strip()

    if method == PaymentMethod.CARD and not bank_name:
        raise LedgerValidationError("Card payments need the bank name.", details={"bank_name": "This field is required."})
    if method in MOBILE_WALLET_METHODS and not payment_phone:
        raise LedgerValidationError(
            f"{method.label} payments need the sender phone number.",
            details={"payment_phone": "This field is required."},
        )
    if method != PaymentMethod.CASH and not transaction_id:
        transaction_id = generate_transaction_id()

    return PaymentDetails(
        method=method,
        bank_name=bank_name if method == PaymentMethod.CARD else None,
        payment_phone=payment_phone if method in MOBILE_WALLET_METHODS else None,
        card_type=(card_type or None) if method == PaymentMethod.CARD else None,
        transaction_id=transaction_id,
        amount=to_money(amount),
    )


def _kept_item(editing, imei):
    if editing is None:
        return None
    return next((item for item in editing.items if item.imei == imei), None)


def _item_for_unit(data, unit, price=None):
    model = data.find_model(unit.model_id)
    if price is None:
        price = unit.selling_price
        if price <= ZERO and model is not None:
            price = model.selling_price
    return InvoiceItem(
        imei=unit.imei,
        model_name=model.model_name if model else UNKNOWN_LABEL,
        brand=model.brand if model else UNKNOWN_LABEL,
        price=to_money(price),
    )


def _sellable_unit(data, imei, editing):
    unit = data.find_stock(imei)
    if unit is None:
        raise NotFoundError("Invalid or unavailable IMEI.", details={"imei": imei})
    if unit.status == StockStatus.SOLD and not (editing is not None and editing.contains(imei)):
        raise AlreadySold(f"IMEI {imei} has already been sold.", details={"imei": imei, "invoice_id": unit.invoice_id})
    return unit


def add_invoice_item(data, imei, *, cart=(), editing_invoice_id=None):
    """Validate one serial for the draft cart and return the item to add.

    ``cart`` holds the serials already in the draft.
    """
    imei = (imei or "").strip()
    if not imei:
        raise LedgerValidationError(details={"imei": "Enter an IMEI."})
    if imei in {serial.strip() for serial in cart}:
        raise AlreadyInCart(f"IMEI {imei} is already in the cart.", details={"imei": imei})
    editing = data.find_invoice(editing_invoice_id) if editing_invoice_id else None
    unit = _sellable_unit(data, imei, editing)
    return _item_for_unit(data, unit)


def _release_serials(stocks, serials):
    return tuple(
        replace(stock, status=StockStatus.AVAILABLE, invoice_id=None) if stock.imei in serials else stock
        for stock in stocks
    )


def commit_invoice(
    data,
    *,
    customer_name,
    customer_phone,
    items,
    customer_address=None,
    narration=None,
    discount=ZERO,
    paid_amount=ZERO,
    payment=None,
    invoice_id=None,
    now=None,
    restore_removed=False,
):
    """Create or edit an invoice and mark every referenced unit as SOLD.

    ``items`` is a sequence of ``(imei, price)`` pairs; a missing price falls
    back to the unit's selling price.

    On edit, serials already on the invoice keep their stored item snapshot
    (only the price may change) and are not checked against the stock ledger
    again; only newly added serials must exist and be AVAILABLE. Without a
    new ``payment`` the stored one is kept. Serials dropped from the invoice
    stay SOLD unless ``restore_removed`` is set.
    """
    customer_name = (customer_name or "").strip()
    customer_phone = (customer_phone or "").strip()
    errors = {}
    if not customer_name:
        errors["customer_name"] = "Customer name is required."
    if not customer_phone:
        errors["customer_phone"] = "Customer phone is required."
    if not items:
        errors["items"] = "Add at least one item."
    if errors:
        raise LedgerValidationError("Fill customer details and add items.", details=errors)

    editing = None
    if invoice_id:
        editing = data.find_invoice(invoice_id)
        if editing is None:
            raise NotFoundError(f"Invoice {invoice_id} was not found.")

    seen = set()
    invoice_items = []
    for imei, price in items:
        imei = imei.strip()
        if imei in seen:
            raise AlreadyInCart(f"IMEI {imei} is already in the cart.", details={"imei": imei})
        seen.add(imei)
        kept = _kept_item(editing, imei)
        if kept is not None:
            invoice_items.append(kept if price is None else replace(kept, price=to_money(price)))
            continue
        unit = _sellable_unit(data, imei, None)
        invoice_items.append(_item_for_unit(data, unit, price))

    now = now or timezone.now()
    subtotal = to_money(sum((item.price for item in invoice_items), ZERO))
    discount = to_money(discount)
    paid_amount = to_money(paid_amount)
    total = to_money(subtotal - discount)
    if payment is None and editing is not None and editing.payments:
        payment = editing.payments[0]
    if payment is None:
        payment = build_payment(PaymentMethod.CASH, amount=paid_amount)
    elif payment.amount != paid_amount:
        payment = replace(payment, amount=paid_amount)

    invoice = Invoice(
        id=editing.id if editing else new_id(),
        invoice_number=editing.invoice_number if editing else generate_invoice_number(data.shop.name, now),
        date=editing.date if editing else now,
        customer_name=customer_name,
        customer_phone=customer_phone,
        customer_address=customer_address or None,
        narration=narration or None,
        items=tuple(invoice_items),
        subtotal=subtotal,
        discount=discount,
        vat=ZERO,
        total=total,
        payments=(payment,),
        paid_amount=paid_amount,
        due_amount=to_money(total - paid_amount),
    )

    if editing:
        invoices = tuple(invoice if existing.id == invoice.id else existing for existing in data.invoices)
    else:
        invoices = (*data.invoices, invoice)

    stocks = data.stocks
    if editing and restore_removed:
        removed = set(editing.imeis) - seen
        stocks = _release_serials(stocks, removed)
        if removed:
            logger.info("invoice_serials_released invoice=%s serials=%s", invoice.invoice_number, sorted(removed))
    stocks = tuple(
        replace(stock, status=StockStatus.SOLD, invoice_id=invoice.id) if stock.imei in seen else stock
        for stock in stocks
    )
    return replace(data, invoices=invoices, stocks=stocks), invoice


def delete_invoice(data, invoice_id, *, restore_removed=False):
    invoice = data.find_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} was not found.")

    stocks = data.stocks
    if restore_removed:
        released = {stock.imei for stock in stocks if stock.invoice_id == invoice.id and invoice.contains(stock.imei)}
        stocks = _release_serials(stocks, released)
    invoices = tuple(existing for existing in data.invoices if existing.id != invoice_id)
    return replace(data, invoices=invoices, stocks=stocks), invoice


def find_customer_by_phone(data, phone):
    phone = (phone or "").strip()
    if not phone:
        return None
    matches = [invoice for invoice in data.invoices if invoice.customer_phone == phone]
    if not matches:
        return None
    latest = max(matches, key=lambda invoice: invoice.date)
    return {
        "customer_name": latest.customer_name,
        "customer_phone": latest.customer_phone,
        "customer_address": latest.customer_address,
        "narration": latest.narration,
    }


def filter_invoices(data, *, query=None, start=None, end=None):
    invoices = list(data.invoices)
    if query:
        needle = query.strip().lower()
        invoices = [
            invoice
            for invoice in invoices
            if needle in invoice.invoice_number.lower()
            or needle in invoice.customer_name.lower()
            or needle in invoice.customer_phone.lower()
        ]
    if start is not None:
        invoices = [invoice for invoice in invoices if invoice.date >= start]
    if end is not None:
        invoices = [invoice for invoice in invoices if invoice.date <= end]
    return sorted(invoices, key=lambda invoice: invoice.date, reverse=True)


def invoice_summary(invoices):
    return {
        "count": len(invoices),
        "total": to_money(sum((invoice.total for invoice in invoices), ZERO)),
        "paid": to_money(sum((invoice.paid_amount for invoice in invoices), ZERO)),
        "due": to_money(sum((invoice.due_amount for invoice in invoices), ZERO)),
    }
