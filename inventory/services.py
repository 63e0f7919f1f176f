"""Command handlers for the catalog, supplier directory, purchase intake and stock ledger.

Every handler takes the current ``AppData`` as its first argument and returns
a new aggregate (usually together with the record it created or touched).
Validation runs before anything is built, so a rejected command leaves the
aggregate exactly as it was.
"""

from collections import OrderedDict
from dataclasses import dataclass, field, replace

from django.utils import timezone

from common.utils import ZERO, epoch_millis, new_id, to_money
from core.aggregate import MobileModel, Purchase, PurchaseItem, StockStatus, StockUnit, Supplier
from core.errors import DuplicateError, DuplicateModel, LedgerValidationError, NotFoundError
from inventory.spreadsheets import CatalogRow, PurchaseRow


@dataclass(frozen=True)
class ImportResult:
    added_count: int = 0
    skipped_count: int = 0
    rows: list = field(default_factory=list)


@dataclass(frozen=True)
class StageResult:
    item: PurchaseItem | None
    in_stock: list
    in_draft: list
    repeated: list

    @property
    def skipped(self):
        return [*self.in_stock, *self.in_draft, *self.repeated]


def _money_or_error(value, label, errors, key):
    try:
        amount = to_money(value)
    except (ArithmeticError, TypeError, ValueError):
        errors[key] = f"{label} must be a number."
        return None
    if amount <= ZERO:
        errors[key] = f"{label} must be greater than zero."
    return amount


def _clean_model_fields(brand, model_name, purchase_price, selling_price):
    errors = {}
    brand = (brand or "").strip()
    model_name = (model_name or "").strip()
    if not brand:
        errors["brand"] = "Brand is required."
    if not model_name:
        errors["model_name"] = "Model name is required."
    purchase_price = _money_or_error(purchase_price, "Purchase price", errors, "purchase_price")
    selling_price = _money_or_error(selling_price, "Selling price", errors, "selling_price")
    if errors:
        raise LedgerValidationError("Please fill all details correctly.", details=errors)
    return brand, model_name, purchase_price, selling_price


def _find_catalog_match(models, brand, model_name):
    return next((model for model in models if model.matches(brand, model_name)), None)


# Catalog


def add_model(data, *, brand, model_name, purchase_price, selling_price):
    brand, model_name, purchase_price, selling_price = _clean_model_fields(brand, model_name, purchase_price, selling_price)
    if _find_catalog_match(data.models, brand, model_name):
        raise DuplicateModel(identifiers=[f"{brand} {model_name}"])

    model = MobileModel(
        id=new_id(),
        brand=brand,
        model_name=model_name,
        purchase_price=purchase_price,
        selling_price=selling_price,
    )
    return replace(data, models=(*data.models, model)), model


def update_model(data, model_id, **fields):
    current = data.find_model(model_id)
    if current is None:
        raise NotFoundError(f"Model {model_id} was not found.")

    brand, model_name, purchase_price, selling_price = _clean_model_fields(
        fields.get("brand", current.brand),
        fields.get("model_name", current.model_name),
        fields.get("purchase_price", current.purchase_price),
        fields.get("selling_price", current.selling_price),
    )
    updated = replace(
        current,
        brand=brand,
        model_name=model_name,
        purchase_price=purchase_price,
        selling_price=selling_price,
    )
    models = tuple(updated if model.id == model_id else model for model in data.models)
    return replace(data, models=models), updated


def remove_model(data, model_id):
    """Drop a catalog template; stock units that reference it are left as orphans."""
    if data.find_model(model_id) is None:
        raise NotFoundError(f"Model {model_id} was not found.")
    return replace(data, models=tuple(model for model in data.models if model.id != model_id))


def import_catalog_rows(data, rows):
    models = list(data.models)
    report = []
    added = skipped = 0

    for number, raw in enumerate(rows, start=2):
        row, errors = CatalogRow.parse(raw)
        if row is None:
            skipped += 1
            report.append({"row": number, "status": "skipped", "reason": "invalid", "errors": errors})
            continue
        if _find_catalog_match(models, row.brand, row.model_name):
            skipped += 1
            report.append({"row": number, "status": "skipped", "reason": "duplicate", "errors": {}})
            continue

        models.append(
            MobileModel(
                id=new_id(),
                brand=row.brand,
                model_name=row.model_name,
                purchase_price=row.purchase_price,
                selling_price=row.selling_price,
            )
        )
        added += 1
        report.append({"row": number, "status": "added", "reason": None, "errors": {}})

    result = ImportResult(added_count=added, skipped_count=skipped, rows=report)
    return replace(data, models=tuple(models)), result


def export_catalog_rows(data):
    return [
        {
            "Brand": model.brand,
            "Model Name": model.model_name,
            "Cost Price": model.purchase_price,
            "Sale Price": model.selling_price,
        }
        for model in data.models
    ]


# Supplier directory


def upsert_supplier(data, *, name, phone="", address=None):
    """Create the supplier unless one with the same name (case-insensitive) already exists."""
    name = (name or "").strip()
    if not name:
        raise LedgerValidationError("Supplier name is required.", details={"supplier_name": "This field is required."})
    existing = data.find_supplier(name)
    if existing is not None:
        return data, existing

    supplier = Supplier(id=new_id(), name=name, phone=phone or "", address=address or None)
    return replace(data, suppliers=(*data.suppliers, supplier)), supplier


# Purchase intake


def parse_serials(raw):
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        raw = "\n".join(str(part) for part in raw)
    return [part.strip() for part in str(raw).replace(",", "\n").splitlines() if part.strip()]


def stage_purchase_item(data, staged_items, *, model_id, cost_price=None, selling_price=None, raw_serials=""):
    """Partition the entered serials against the stock ledger and the draft.

    Serials already in stock, already staged in this draft, or repeated within
    the same entry are reported separately; only the net-new ones form the
    staged item.
    """
    model = data.find_model(model_id)
    if model is None:
        raise NotFoundError(f"Model {model_id} was not found.")
    serials = parse_serials(raw_serials)
    if not serials:
        raise LedgerValidationError("Please select a model and enter IMEIs.", details={"imeis": "Enter at least one IMEI."})

    in_ledger = data.stock_serials()
    in_queue = {imei for item in staged_items for imei in item.imeis}

    in_stock, in_draft, repeated, fresh = [], [], [], []
    seen = set()
    for imei in serials:
        if imei in in_ledger:
            in_stock.append(imei)
        elif imei in in_queue:
            in_draft.append(imei)
        elif imei in seen:
            repeated.append(imei)
        else:
            fresh.append(imei)
            seen.add(imei)

    item = None
    if fresh:
        cost = to_money(cost_price) if cost_price else ZERO
        sale = to_money(selling_price) if selling_price else ZERO
        item = PurchaseItem(
            model_id=model.id,
            brand=model.brand,
            model_name=model.model_name,
            imeis=tuple(fresh),
            cost_price=cost if cost > ZERO else model.purchase_price,
            selling_price=sale if sale > ZERO else model.selling_price,
        )
    return StageResult(item=item, in_stock=in_stock, in_draft=in_draft, repeated=repeated)


def generate_purchase_number(now):
    return f"PUR-{str(epoch_millis(now))[-8:]}"


def _filter_duplicate_serials(data, items):
    known = data.stock_serials()
    kept_items, skipped = [], []
    for item in items:
        kept = []
        for imei in item.imeis:
            if imei in known:
                skipped.append(imei)
            else:
                kept.append(imei)
                known.add(imei)
        if kept:
            kept_items.append(replace(item, imeis=tuple(kept)))
    return kept_items, skipped


def commit_purchase(
    data,
    *,
    items,
    supplier_name,
    supplier_phone="",
    supplier_address=None,
    vat=None,
    vat_percent=None,
    discount=ZERO,
    paid_amount=ZERO,
    note=None,
    now=None,
):
    """Append a purchase and receive every serial into stock as AVAILABLE.

    Returns ``(data, purchase, skipped_imeis)``. Serials that are already in
    stock (or repeated across items) are dropped from the purchase and
    reported; when nothing is left the whole commit is rejected.
    """
    supplier_name = (supplier_name or "").strip()
    errors = {}
    if not items:
        errors["items"] = "Add at least one item."
    if not supplier_name:
        errors["supplier_name"] = "Supplier name is required."
    if errors:
        raise LedgerValidationError("Missing required data: Supplier Name is required.", details=errors)

    kept_items, skipped = _filter_duplicate_serials(data, items)
    if not kept_items:
        raise DuplicateError("Every IMEI in this purchase is already in stock.", identifiers=skipped)

    now = now or timezone.now()
    subtotal = to_money(sum((item.cost_price * item.quantity for item in kept_items), ZERO))
    if vat_percent not in (None, ""):
        vat_amount = to_money(subtotal * to_money(vat_percent) / 100)
    else:
        vat_amount = to_money(vat)
    discount = to_money(discount)
    paid_amount = to_money(paid_amount)
    total = to_money(subtotal + vat_amount - discount)

    purchase = Purchase(
        id=new_id(),
        purchase_number=generate_purchase_number(now),
        date=now,
        supplier_name=supplier_name,
        supplier_phone=supplier_phone or "",
        supplier_address=supplier_address or None,
        items=tuple(kept_items),
        subtotal=subtotal,
        vat=vat_amount,
        discount=discount,
        total=total,
        paid_amount=paid_amount,
        due_amount=to_money(total - paid_amount),
        note=note or None,
    )
    received = tuple(
        StockUnit(
            imei=imei,
            model_id=item.model_id,
            status=StockStatus.AVAILABLE,
            date_added=purchase.date,
            purchase_id=purchase.id,
            purchase_price=item.cost_price,
            selling_price=item.selling_price,
        )
        for item in purchase.items
        for imei in item.imeis
    )

    data = replace(data, purchases=(*data.purchases, purchase), stocks=(*data.stocks, *received))
    data, _ = upsert_supplier(data, name=supplier_name, phone=supplier_phone, address=supplier_address)
    return data, purchase, skipped


def import_purchase_rows(data, rows, *, now=None):
    """Spreadsheet purchase intake: one purchase per supplier, models created on demand."""
    now = now or timezone.now()
    report = []
    groups = OrderedDict()
    models_created = 0

    for number, raw in enumerate(rows, start=2):
        row, errors = PurchaseRow.parse(raw)
        if row is None:
            report.append({"row": number, "status": "skipped", "reason": "invalid", "errors": errors})
            continue

        model = _find_catalog_match(data.models, row.brand, row.model_name)
        if model is None:
            data, model = add_model(
                data,
                brand=row.brand,
                model_name=row.model_name,
                purchase_price=row.cost_price,
                selling_price=row.selling_price,
            )
            models_created += 1

        key = row.supplier.lower()
        group = groups.setdefault(key, {"name": row.supplier, "phone": row.phone, "items": [], "rows": []})
        if not group["phone"] and row.phone:
            group["phone"] = row.phone
        group["items"].append(
            PurchaseItem(
                model_id=model.id,
                brand=model.brand,
                model_name=model.model_name,
                imeis=row.imeis,
                cost_price=row.cost_price,
                selling_price=row.selling_price,
            )
        )
        group["rows"].append(number)

    purchases = []
    skipped_imeis = []
    for group in groups.values():
        try:
            data, purchase, skipped = commit_purchase(
                data,
                items=group["items"],
                supplier_name=group["name"],
                supplier_phone=group["phone"],
                paid_amount=ZERO,
                now=now,
            )
        except DuplicateError as exc:
            skipped_imeis.extend(exc.identifiers)
            report.extend(
                {"row": number, "status": "skipped", "reason": "duplicate", "errors": {}} for number in group["rows"]
            )
            continue
        purchases.append(purchase)
        skipped_imeis.extend(skipped)
        report.extend({"row": number, "status": "added", "reason": None, "errors": {}} for number in group["rows"])

    report.sort(key=lambda entry: entry["row"])
    summary = {
        "purchases": purchases,
        "models_created": models_created,
        "skipped_imeis": skipped_imeis,
        "rows": report,
    }
    return data, summary


# Stock and purchase maintenance


def update_stock_pricing(data, imei, *, purchase_price=None, selling_price=None):
    unit = data.find_stock(imei)
    if unit is None:
        raise NotFoundError(f"IMEI {imei} was not found in stock.", details={"imei": imei})

    errors = {}
    changes = {}
    if purchase_price is not None:
        changes["purchase_price"] = _money_or_error(purchase_price, "Purchase price", errors, "purchase_price")
    if selling_price is not None:
        changes["selling_price"] = _money_or_error(selling_price, "Selling price", errors, "selling_price")
    if errors:
        raise LedgerValidationError(details=errors)

    updated = replace(unit, **changes)
    stocks = tuple(updated if stock.imei == imei else stock for stock in data.stocks)
    return replace(data, stocks=stocks), updated


def delete_stock(data, imei):
    """Remove a unit unconditionally; invoices keep their own item snapshot."""
    if data.find_stock(imei) is None:
        raise NotFoundError(f"IMEI {imei} was not found in stock.", details={"imei": imei})
    return replace(data, stocks=tuple(stock for stock in data.stocks if stock.imei != imei))


def delete_purchase(data, purchase_id):
    """Remove the purchase record only; its stock units keep their purchase_id."""
    if data.find_purchase(purchase_id) is None:
        raise NotFoundError(f"Purchase {purchase_id} was not found.")
    return replace(data, purchases=tuple(purchase for purchase in data.purchases if purchase.id != purchase_id))


def update_purchase(data, purchase_id, *, supplier_name=None, due_amount=None):
    """Administrative override of supplier name and due amount; totals are not recomputed."""
    purchase = data.find_purchase(purchase_id)
    if purchase is None:
        raise NotFoundError(f"Purchase {purchase_id} was not found.")

    changes = {}
    if supplier_name is not None:
        supplier_name = supplier_name.strip()
        if not supplier_name:
            raise LedgerValidationError(details={"supplier_name": "Supplier name cannot be blank."})
        changes["supplier_name"] = supplier_name
    if due_amount is not None:
        changes["due_amount"] = to_money(due_amount)

    updated = replace(purchase, **changes)
    purchases = tuple(updated if item.id == purchase_id else item for item in data.purchases)
    return replace(data, purchases=purchases), updated


def filter_stock(data, *, status=None, model_id=None, query=None):
    stocks = list(data.stocks)
    if status:
        stocks = [stock for stock in stocks if stock.status.lower() == status.lower()]
    if model_id:
        stocks = [stock for stock in stocks if stock.model_id == model_id]
    if query:
        needle = query.strip().lower()

        def matches(stock):
            brand, model_name = data.model_label(stock.model_id)
            return needle in stock.imei.lower() or needle in brand.lower() or needle in model_name.lower()

        stocks = [stock for stock in stocks if matches(stock)]
    return sorted(stocks, key=lambda stock: stock.date_added, reverse=True)
