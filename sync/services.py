"""Best-effort mirror of each shop's ledger document to a remote store."""

import logging
import math
import threading

import requests
from django.db import close_old_connections

from common.utils import mirror_setting, to_json_compatible
from core.errors import SyncError
from core.models import Shop, ShopDocument

logger = logging.getLogger("sync.mirror")

_timers = {}
_timers_lock = threading.Lock()


def mirror_enabled():
    return bool(mirror_setting("URL"))


def shop_url(shop_id):
    return f"{mirror_setting('URL')}/shops/{shop_id}"


def _headers():
    headers = {"Accept": "application/json"}
    token = mirror_setting("TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def sanitize_document(value):
    """Make ``value`` strictly JSON-serialisable; non-finite floats become ``None``."""
    if isinstance(value, dict):
        return {str(key): sanitize_document(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_document(item) for item in value]
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    converted = to_json_compatible(value)
    return converted if isinstance(converted, (str, int, float, bool)) else str(converted)


def mirror_document(shop):
    document = ShopDocument.objects.filter(shop=shop).first()
    ledgers = document.data if document is not None else {}
    return sanitize_document({"shop": shop.to_profile().to_document(), **ledgers})


def push_document(shop):
    """PUT the shop's current document to the mirror. Raises ``SyncError`` on failure."""
    if not mirror_enabled():
        raise SyncError("mirror_not_configured")

    payload = mirror_document(shop)
    try:
        response = requests.put(
            shop_url(shop.id),
            json=payload,
            headers=_headers(),
            timeout=mirror_setting("TIMEOUT_SECONDS", 10),
        )
    except requests.RequestException as exc:
        raise SyncError(f"request_failed: {exc}") from exc
    if not response.ok:
        raise SyncError("remote_rejected", status_code=response.status_code)

    logger.info("mirror_pushed", extra={"shop_id": str(shop.id)})
    return payload


def mirror_shop(shop_id):
    """Push the latest document for ``shop_id`` and log the outcome; never raises."""
    shop = Shop.objects.filter(id=shop_id).first()
    if shop is None:
        logger.warning("mirror_skipped reason=shop_missing shop_id=%s", shop_id)
        return False
    try:
        push_document(shop)
    except SyncError as exc:
        logger.warning(
            "mirror_failed reason=%s status=%s",
            exc.reason,
            exc.status_code,
            extra={"shop_id": str(shop_id)},
        )
        return False
    return True


def _fire(key):
    with _timers_lock:
        if _timers.get(key) is threading.current_thread():
            del _timers[key]
    close_old_connections()
    try:
        mirror_shop(key)
    finally:
        close_old_connections()


def schedule_mirror(shop):
    """(Re)start the per-shop debounce timer; only the last call in a burst pushes."""
    if not mirror_enabled():
        return None

    key = str(shop.id)
    delay = float(mirror_setting("DEBOUNCE_SECONDS", 2))
    timer = threading.Timer(delay, _fire, args=(key,))
    timer.daemon = True
    with _timers_lock:
        previous = _timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        _timers[key] = timer
    timer.start()
    return timer


def cancel_pending():
    with _timers_lock:
        pending = list(_timers.values())
        _timers.clear()
    for timer in pending:
        timer.cancel()
    return len(pending)


def fetch_remote_document(shop):
    """GET the mirrored document for ``shop``. Raises ``SyncError`` on any failure."""
    if not mirror_enabled():
        raise SyncError("mirror_not_configured")
    try:
        response = requests.get(shop_url(shop.id), headers=_headers(), timeout=mirror_setting("TIMEOUT_SECONDS", 10))
    except requests.RequestException as exc:
        raise SyncError(f"request_failed: {exc}") from exc
    if response.status_code == 404:
        raise SyncError("remote_document_missing", status_code=404)
    if not response.ok:
        raise SyncError("remote_rejected", status_code=response.status_code)
    try:
        document = response.json()
    except ValueError as exc:
        raise SyncError("remote_document_invalid") from exc
    if not isinstance(document, dict):
        raise SyncError("remote_document_invalid")
    return document
