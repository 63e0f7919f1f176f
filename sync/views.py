from rest_framework.response import Response
from rest_framework.views import APIView

from common.exceptions import sync_error_response
from core.errors import SyncError
from core.serializers import DocumentSerializer
from core.store import load_aggregate, replace_aggregate
from core.views import ShopLedgerMixin
from sync.services import fetch_remote_document, push_document


class SyncPushView(ShopLedgerMixin, APIView):
    """Push the shop's document to the mirror now instead of waiting for the debounce."""

    def post(self, request):
        push_document(self.shop)
        self.audit(action="sync.push", entity="shop", entity_ref=self.shop.id)
        return Response({"status": "pushed", "shop_id": str(self.shop.id)})


class SyncPullView(ShopLedgerMixin, APIView):
    """Replace the local ledger with the mirrored copy."""

    def post(self, request):
        document = fetch_remote_document(self.shop)
        serializer = DocumentSerializer(data={"document": document}, context={"shop": self.shop})
        if not serializer.is_valid():
            return sync_error_response(
                SyncError("remote_document_invalid"),
                message="The remote document is not a valid ledger document.",
                errors=serializer.errors,
            )

        data = serializer.validated_data["document"]
        replace_aggregate(self.shop, data)
        self.audit(
            action="sync.pull",
            entity="shop",
            entity_ref=self.shop.id,
            after_snapshot={"stocks": len(data.stocks), "invoices": len(data.invoices), "purchases": len(data.purchases)},
        )
        return Response(load_aggregate(self.shop).to_document())
