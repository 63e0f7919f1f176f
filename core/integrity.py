from collections import Counter

from core.aggregate import StockStatus


def check_ledger(data):
    """Return ``(violations, warnings)`` for one shop's aggregate.

    Violations break the stock ledger rules; warnings are tolerated orphans
    such as units whose model or purchase has been deleted.
    """
    violations = []
    warnings = []

    for imei, count in Counter(stock.imei for stock in data.stocks).items():
        if count > 1:
            violations.append(f"IMEI {imei} appears {count} times in stock.")

    invoiced = Counter(imei for invoice in data.invoices for imei in invoice.imeis)
    for imei, count in invoiced.items():
        if count > 1:
            violations.append(f"IMEI {imei} is listed on {count} invoices.")

    model_ids = {model.id for model in data.models}
    purchase_ids = {purchase.id for purchase in data.purchases}
    for stock in data.stocks:
        if stock.status == StockStatus.SOLD:
            invoice = data.find_invoice(stock.invoice_id) if stock.invoice_id else None
            if not stock.invoice_id:
                violations.append(f"IMEI {stock.imei} is SOLD without an invoice reference.")
            elif invoice is None or not invoice.contains(stock.imei):
                warnings.append(f"IMEI {stock.imei} stayed SOLD after invoice {stock.invoice_id} dropped it.")
        elif stock.invoice_id:
            violations.append(f"IMEI {stock.imei} is AVAILABLE but still references invoice {stock.invoice_id}.")
        if stock.model_id not in model_ids:
            warnings.append(f"IMEI {stock.imei} references missing model {stock.model_id}.")
        if stock.purchase_id and stock.purchase_id not in purchase_ids:
            warnings.append(f"IMEI {stock.imei} references missing purchase {stock.purchase_id}.")

    for invoice in data.invoices:
        for imei in invoice.imeis:
            unit = data.find_stock(imei)
            if unit is not None and (unit.status != StockStatus.SOLD or unit.invoice_id != invoice.id):
                violations.append(f"Invoice {invoice.invoice_number} lists {imei}, but the unit is not sold on it.")

    stocked = {stock.imei for stock in data.stocks}
    for purchase in data.purchases:
        for imei in purchase.imeis:
            if imei not in stocked:
                warnings.append(f"Purchase {purchase.purchase_number} lists {imei}, which is no longer in stock.")

    return violations, warnings
