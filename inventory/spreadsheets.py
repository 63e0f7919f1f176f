"""Spreadsheet row schemas for catalog and purchase intake.

Uploaded sheets are read into plain ``{header: value}`` dicts (xlsx through
openpyxl, csv through the csv module) and each row is parsed into a typed row
with a ``(row, errors)`` result, so one bad row never aborts the batch.
"""

import csv
import io
from dataclasses import dataclass

from django.http import HttpResponse
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font

from common.utils import parse_money

CATALOG_COLUMNS = ("Brand", "Model Name", "Cost Price", "Sale Price")
PURCHASE_COLUMNS = ("Supplier", "Phone", "Brand", "Model", "Cost Price", "Sale Price", "IMEIs")

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class SpreadsheetError(ValueError):
    pass


def _normalize_header(value):
    return " ".join(str(value or "").split()).lower()


def _cell_text(value):
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Serial numbers typed into a numeric cell come back as floats.
        return str(int(value))
    return str(value).strip()


def _rows_from_xlsx(content):
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise SpreadsheetError(f"Could not read workbook: {exc}") from exc
    try:
        sheet = workbook.worksheets[0]
        values = sheet.iter_rows(values_only=True)
        header = next(values, None)
        if header is None:
            return []
        keys = [_normalize_header(cell) for cell in header]
        rows = []
        for raw in values:
            if raw is None or all(cell in (None, "") for cell in raw):
                continue
            rows.append({key: raw[index] if index < len(raw) else None for index, key in enumerate(keys) if key})
        return rows
    finally:
        workbook.close()


def _rows_from_csv(content):
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise SpreadsheetError("CSV files must be UTF-8 encoded.") from exc
    reader = csv.DictReader(io.StringIO(text))
    rows = []
    for raw in reader:
        row = {_normalize_header(key): value for key, value in raw.items() if key}
        if any(str(value or "").strip() for value in row.values()):
            rows.append(row)
    return rows


def read_spreadsheet(uploaded_file):
    """Return the data rows of an uploaded ``.xlsx`` or ``.csv`` file keyed by lower-cased header."""
    name = (getattr(uploaded_file, "name", "") or "").lower()
    content = uploaded_file.read()
    if name.endswith(".csv"):
        return _rows_from_csv(content)
    if name.endswith(".xlsx") or content[:2] == b"PK":
        return _rows_from_xlsx(content)
    raise SpreadsheetError("Unsupported file type. Upload an .xlsx or .csv file.")


def build_workbook(title, columns, rows):
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = title[:31]
    sheet.append(list(columns))
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for row in rows:
        sheet.append([_excel_value(row.get(column)) for column in columns])
    for index, column in enumerate(columns, start=1):
        sheet.column_dimensions[sheet.cell(row=1, column=index).column_letter].width = max(12, len(column) + 4)

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def spreadsheet_response(filename, columns, rows, export_format="xlsx"):
    if export_format == "csv":
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}.csv"'
        writer = csv.DictWriter(response, fieldnames=list(columns))
        writer.writeheader()
        for row in rows:
            writer.writerow({column: row.get(column, "") for column in columns})
        return response

    response = HttpResponse(build_workbook(filename, columns, rows), content_type=XLSX_CONTENT_TYPE)
    response["Content-Disposition"] = f'attachment; filename="{filename}.xlsx"'
    return response


def _excel_value(value):
    if value is None:
        return ""
    if hasattr(value, "tzinfo") and getattr(value, "tzinfo", None) is not None:
        return value.replace(tzinfo=None)
    if hasattr(value, "quantize"):
        return float(value)
    return value


def _field(raw, *names):
    for name in names:
        value = raw.get(_normalize_header(name))
        if value not in (None, ""):
            return value
    return None


def split_serials(raw):
    text = _cell_text(raw)
    return [part.strip() for part in text.replace(",", "\n").splitlines() if part.strip()]


@dataclass(frozen=True)
class CatalogRow:
    brand: str
    model_name: str
    purchase_price: object
    selling_price: object

    @classmethod
    def parse(cls, raw):
        errors = {}
        brand = _cell_text(_field(raw, "Brand"))
        model_name = _cell_text(_field(raw, "Model Name", "Model"))
        purchase_price = parse_money(_field(raw, "Cost Price", "Purchase Price"))
        selling_price = parse_money(_field(raw, "Sale Price", "Selling Price"))

        if not brand:
            errors["brand"] = "Brand is required."
        if not model_name:
            errors["model_name"] = "Model name is required."
        if purchase_price is None or purchase_price <= 0:
            errors["purchase_price"] = "Cost price must be a positive number."
        if selling_price is None or selling_price <= 0:
            errors["selling_price"] = "Sale price must be a positive number."

        if errors:
            return None, errors
        return cls(brand, model_name, purchase_price, selling_price), {}


@dataclass(frozen=True)
class PurchaseRow:
    supplier: str
    phone: str
    brand: str
    model_name: str
    cost_price: object
    selling_price: object
    imeis: tuple

    @classmethod
    def parse(cls, raw):
        errors = {}
        supplier = _cell_text(_field(raw, "Supplier", "Supplier Name"))
        phone = _cell_text(_field(raw, "Phone", "Supplier Phone"))
        brand = _cell_text(_field(raw, "Brand"))
        model_name = _cell_text(_field(raw, "Model", "Model Name"))
        cost_price = parse_money(_field(raw, "Cost Price", "Purchase Price"))
        selling_price = parse_money(_field(raw, "Sale Price", "Selling Price"))
        imeis = split_serials(_field(raw, "IMEIs", "IMEI"))

        if not supplier:
            errors["supplier"] = "Supplier is required."
        if not brand:
            errors["brand"] = "Brand is required."
        if not model_name:
            errors["model"] = "Model is required."
        if cost_price is None or cost_price <= 0:
            errors["cost_price"] = "Cost price must be a positive number."
        if selling_price is None or selling_price <= 0:
            errors["selling_price"] = "Sale price must be a positive number."
        if not imeis:
            errors["imeis"] = "At least one IMEI is required."

        if errors:
            return None, errors
        return cls(supplier, phone, brand, model_name, cost_price, selling_price, tuple(imeis)), {}
