from collections import OrderedDict
from datetime import datetime, time, timedelta

from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from common.utils import ZERO, to_money
from core.aggregate import MISSING_LABEL, StockStatus
from core.errors import NotFoundError
from core.views import ShopLedgerMixin
from inventory.spreadsheets import spreadsheet_response

PERIODS = {"all", "today", "week", "7days", "month", "custom"}
EXPORT_FORMATS = {"json", "csv", "xlsx"}

STOCK_COLUMNS = ("Added Date", "Brand Name", "Model Name", "IMEI", "Purchase Price", "Selling Price", "Stock Status")
SALES_COLUMNS = (
    "Invoice Number",
    "Date",
    "Customer Name",
    "Customer Phone",
    "IMEI",
    "Model Name",
    "Selling Price",
    "Paid Amount",
    "Due Amount",
)
PURCHASE_COLUMNS = ("Date", "Purchase Number", "Supplier", "Item", "IMEIs", "Qty", "Cost", "Subtotal", "Total Paid", "Total Due")
PROFIT_LOSS_COLUMNS = ("Month", "Total Purchase Amount", "Total Sales Amount", "Profit", "Loss")
PAYMENT_COLUMNS = ("Date", "Invoice Number", "Payment Method", "Bank / Phone Ref", "Transaction ID", "Amount")


def period_bounds(period, *, date_from=None, date_to=None, now=None):
    """Translate a report period into an inclusive ``(start, end)`` pair; ``None`` means unbounded."""
    period = (period or "all").lower()
    if period not in PERIODS:
        raise ValidationError({"period": f"Period must be one of: {', '.join(sorted(PERIODS))}."})

    now = timezone.localtime(now or timezone.now())
    tz = now.tzinfo
    if period == "all":
        return None, None
    if period == "today":
        return datetime.combine(now.date(), time.min, tzinfo=tz), datetime.combine(now.date(), time.max, tzinfo=tz)
    if period in {"week", "7days"}:
        return now - timedelta(days=7), None
    if period == "month":
        return datetime.combine(now.date().replace(day=1), time.min, tzinfo=tz), None

    start_date = parse_date(date_from or "") if isinstance(date_from, str) else date_from
    end_date = parse_date(date_to or "") if isinstance(date_to, str) else date_to
    if not start_date or not end_date:
        raise ValidationError({"date_range": "Both date_from and date_to are required."})
    if start_date > end_date:
        raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
    return datetime.combine(start_date, time.min, tzinfo=tz), datetime.combine(end_date, time.max, tzinfo=tz)


def _within(moment, start, end):
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def _local_date(moment):
    return timezone.localtime(moment).date()


def stock_report(data, start=None, end=None):
    rows = []
    for stock in data.stocks:
        if not _within(stock.date_added, start, end):
            continue
        brand, model_name = data.model_label(stock.model_id)
        rows.append(
            {
                "Added Date": _local_date(stock.date_added),
                "Brand Name": brand,
                "Model Name": model_name,
                "IMEI": stock.imei,
                "Purchase Price": stock.purchase_price,
                "Selling Price": stock.selling_price,
                "Stock Status": str(stock.status),
            }
        )
    return rows


def sales_report(data, start=None, end=None):
    return [
        {
            "Invoice Number": invoice.invoice_number,
            "Date": _local_date(invoice.date),
            "Customer Name": invoice.customer_name,
            "Customer Phone": invoice.customer_phone,
            "IMEI": item.imei,
            "Model Name": f"{item.brand} {item.model_name}",
            "Selling Price": item.price,
            "Paid Amount": invoice.paid_amount,
            "Due Amount": invoice.due_amount,
        }
        for invoice in data.invoices
        if _within(invoice.date, start, end)
        for item in invoice.items
    ]


def purchase_report(data, start=None, end=None):
    return [
        {
            "Date": _local_date(purchase.date),
            "Purchase Number": purchase.purchase_number,
            "Supplier": purchase.supplier_name,
            "Item": f"{item.brand} {item.model_name}",
            "IMEIs": ", ".join(item.imeis),
            "Qty": item.quantity,
            "Cost": item.cost_price,
            "Subtotal": item.line_total,
            "Total Paid": purchase.paid_amount,
            "Total Due": purchase.due_amount,
        }
        for purchase in data.purchases
        if _within(purchase.date, start, end)
        for item in purchase.items
    ]


def profit_loss_report(data, start=None, end=None):
    months = OrderedDict()

    def bucket(moment):
        key = timezone.localtime(moment).strftime("%Y-%m")
        return months.setdefault(key, {"purchase": ZERO, "sales": ZERO})

    for stock in data.stocks:
        if _within(stock.date_added, start, end):
            bucket(stock.date_added)["purchase"] += stock.purchase_price
    for invoice in data.invoices:
        if _within(invoice.date, start, end):
            bucket(invoice.date)["sales"] += invoice.total

    return [
        {
            "Month": month,
            "Total Purchase Amount": to_money(values["purchase"]),
            "Total Sales Amount": to_money(values["sales"]),
            "Profit": to_money(max(ZERO, values["sales"] - values["purchase"])),
            "Loss": to_money(max(ZERO, values["purchase"] - values["sales"])),
        }
        for month, values in sorted(months.items())
    ]


def payments_report(data, start=None, end=None):
    return [
        {
            "Date": _local_date(invoice.date),
            "Invoice Number": invoice.invoice_number,
            "Payment Method": str(payment.method),
            "Bank / Phone Ref": payment.reference,
            "Transaction ID": payment.transaction_id or MISSING_LABEL,
            "Amount": payment.amount,
        }
        for invoice in data.invoices
        if _within(invoice.date, start, end)
        for payment in invoice.payments
    ]


REPORTS = {
    "stock": ("Stock", STOCK_COLUMNS, stock_report),
    "sales": ("Sales", SALES_COLUMNS, sales_report),
    "purchase": ("Purchase", PURCHASE_COLUMNS, purchase_report),
    "profit-loss": ("ProfitLoss", PROFIT_LOSS_COLUMNS, profit_loss_report),
    "payments": ("Payments", PAYMENT_COLUMNS, payments_report),
}


def invoice_cost(data, invoice):
    total = ZERO
    for item in invoice.items:
        unit = data.find_stock(item.imei)
        if unit is not None:
            total += unit.purchase_price
    return total


def dashboard_stats(data, now=None):
    now = timezone.localtime(now or timezone.now())
    today = now.date()
    today_invoices = [invoice for invoice in data.invoices if _local_date(invoice.date) == today]
    month_invoices = [
        invoice
        for invoice in data.invoices
        if (_local_date(invoice.date).year, _local_date(invoice.date).month) == (today.year, today.month)
    ]
    available = [stock for stock in data.stocks if stock.status == StockStatus.AVAILABLE]

    def profit(invoices):
        return to_money(sum((invoice.total - invoice_cost(data, invoice) for invoice in invoices), ZERO))

    return {
        "today_sales": to_money(sum((invoice.total for invoice in today_invoices), ZERO)),
        "monthly_sales": to_money(sum((invoice.total for invoice in month_invoices), ZERO)),
        "today_profit": profit(today_invoices),
        "monthly_profit": profit(month_invoices),
        "stock_quantity": len(available),
        "stock_value": to_money(sum((stock.purchase_price for stock in available), ZERO)),
        "today_invoice_count": len(today_invoices),
    }


def track_lifecycle(data, query):
    """Purchase and sale history rows for serials, invoice numbers, customer names or phones matching ``query``."""
    needle = (query or "").strip().lower()
    if not needle:
        return []

    rows = []
    for stock in data.stocks:
        if needle not in stock.imei.lower():
            continue
        model = data.find_model(stock.model_id)
        model_label = model.label if model else MISSING_LABEL
        purchase = data.find_purchase(stock.purchase_id) if stock.purchase_id else None
        rows.append(
            {
                "reference_number": purchase.purchase_number if purchase else MISSING_LABEL,
                "shop_name": data.shop.name,
                "serial": stock.imei,
                "date": stock.date_added,
                "transaction": "Purchase",
                "name": purchase.supplier_name if purchase else MISSING_LABEL,
                "mobile": purchase.supplier_phone if purchase else "",
                "model": model_label,
                "type": "PURCHASE",
                "invoice_id": None,
            }
        )
        if stock.status == StockStatus.SOLD:
            invoice = data.find_invoice_for_serial(stock.imei)
            if invoice is not None:
                rows.append(_sale_row(data, invoice, stock.imei, model_label))

    for invoice in data.invoices:
        if not (
            needle in invoice.invoice_number.lower()
            or needle in invoice.customer_name.lower()
            or needle in invoice.customer_phone.lower()
        ):
            continue
        for item in invoice.items:
            listed = any(row["reference_number"] == invoice.invoice_number and row["serial"] == item.imei for row in rows)
            if not listed:
                rows.append(_sale_row(data, invoice, item.imei, f"{item.brand} {item.model_name}"))

    return [{"sl": index, **row} for index, row in enumerate(rows, start=1)]


def _sale_row(data, invoice, imei, model_label):
    return {
        "reference_number": invoice.invoice_number,
        "shop_name": data.shop.name,
        "serial": imei,
        "date": invoice.date,
        "transaction": "Sale",
        "name": invoice.customer_name,
        "mobile": invoice.customer_phone,
        "model": model_label,
        "type": "SALE",
        "invoice_id": invoice.id,
    }


class BaseReportView(ShopLedgerMixin, APIView):
    def _bounds(self, request):
        return period_bounds(
            request.query_params.get("period", "all"),
            date_from=request.query_params.get("date_from"),
            date_to=request.query_params.get("date_to"),
        )

    def _export_format(self, request):
        export_format = request.query_params.get("export", "json").lower()
        if export_format not in EXPORT_FORMATS:
            raise ValidationError({"export": f"Export must be one of: {', '.join(sorted(EXPORT_FORMATS))}."})
        return export_format


class ReportView(BaseReportView):
    def get(self, request, kind):
        if kind not in REPORTS:
            raise NotFoundError(f"Unknown report {kind!r}.")
        title, columns, build = REPORTS[kind]
        start, end = self._bounds(request)
        export_format = self._export_format(request)
        rows = build(self.load(), start, end)

        if export_format != "json":
            filename = f"{title}_Report_{timezone.localdate().isoformat()}"
            return spreadsheet_response(filename, columns, rows, export_format)

        payload = {"report": title, "columns": list(columns), "count": len(rows), "results": rows}
        if kind == "payments":
            payload["total_collection"] = to_money(sum((row["Amount"] for row in rows), ZERO))
        return Response(payload)


class DashboardView(BaseReportView):
    def get(self, request):
        return Response(dashboard_stats(self.load()))


class LifecycleSearchView(BaseReportView):
    def get(self, request):
        rows = track_lifecycle(self.load(), request.query_params.get("q", ""))
        return Response({"count": len(rows), "results": rows})
