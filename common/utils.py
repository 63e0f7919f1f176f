import datetime
import decimal
import uuid
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value):
    if value in (None, ""):
        return ZERO
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def parse_money(value):
    """Lenient money parsing for spreadsheet cells; returns None when the cell is not a number."""
    if value is None:
        return None
    text = str(value).replace(",", "").strip()
    if not text:
        return None
    try:
        amount = Decimal(text)
    except (decimal.InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return to_money(amount)


def new_id():
    return uuid.uuid4().hex[:12]


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def epoch_millis(moment):
    return int(moment.timestamp() * 1000)


def ledger_setting(name, default=None):
    return getattr(settings, "LEDGER", {}).get(name, default)


def mirror_setting(name, default=None):
    return getattr(settings, "REMOTE_MIRROR", {}).get(name, default)
