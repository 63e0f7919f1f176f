import logging

from django.db import transaction

from core.aggregate import AppData
from core.models import ShopDocument
from sync.services import schedule_mirror

logger = logging.getLogger("ledger")


def _get_document(shop, *, for_update=False):
    queryset = ShopDocument.objects
    if for_update:
        queryset = queryset.select_for_update()
    document, _ = queryset.get_or_create(shop=shop)
    return document


def _to_aggregate(shop, document):
    return AppData.from_document(document.data or {}, shop=shop.to_profile())


def load_aggregate(shop):
    return _to_aggregate(shop, _get_document(shop))


def _write(shop, document, data):
    document.data = data.ledgers_document()
    document.revision += 1
    document.save(update_fields=["data", "revision", "updated_at"])
    transaction.on_commit(lambda: schedule_mirror(shop))
    return document


def save_aggregate(shop, data):
    """Replace the shop's whole ledger document with ``data``."""
    with transaction.atomic():
        document = _get_document(shop, for_update=True)
        return _write(shop, document, data)


def apply_command(shop, handler, *args, **kwargs):
    """Run ``handler(aggregate, *args, **kwargs)`` under the shop's document lock.

    The handler returns either the new aggregate or a tuple whose first item
    is the new aggregate; the whole result is returned to the caller. When the
    handler raises, the transaction rolls back and the stored document is left
    as it was.
    """
    with transaction.atomic():
        document = _get_document(shop, for_update=True)
        current = _to_aggregate(shop, document)
        result = handler(current, *args, **kwargs)
        updated = result[0] if isinstance(result, tuple) else result
        _write(shop, document, updated)

    logger.info(
        "ledger_command_applied",
        extra={"shop_id": str(shop.id), "command": handler.__name__, "revision": document.revision},
    )
    return result


def replace_aggregate(shop, data):
    """Restore path: the profile and every ledger are taken from ``data``."""
    with transaction.atomic():
        document = _get_document(shop, for_update=True)
        shop.apply_profile(data.shop)
        shop.save()
        _write(shop, document, data)
    logger.info("ledger_replaced", extra={"shop_id": str(shop.id), "revision": document.revision})
    return data
