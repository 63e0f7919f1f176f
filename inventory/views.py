from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from core.aggregate import PurchaseItem
from core.errors import NotFoundError
from core.views import ShopLedgerMixin
from inventory.spreadsheets import CATALOG_COLUMNS, SpreadsheetError, read_spreadsheet, spreadsheet_response
from inventory.serializers import (
    MobileModelSerializer,
    PurchaseCommitSerializer,
    PurchaseItemSerializer,
    PurchaseSerializer,
    PurchaseUpdateSerializer,
    SpreadsheetUploadSerializer,
    StagePurchaseItemSerializer,
    StockPricingSerializer,
    StockUnitSerializer,
    SupplierSerializer,
)
from inventory.services import (
    add_model,
    commit_purchase,
    delete_purchase,
    delete_stock,
    export_catalog_rows,
    filter_stock,
    import_catalog_rows,
    import_purchase_rows,
    remove_model,
    stage_purchase_item,
    update_model,
    update_purchase,
    update_stock_pricing,
)
from sales.documents import purchase_note_pdf


def read_upload(request):
    serializer = SpreadsheetUploadSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    try:
        return read_spreadsheet(serializer.validated_data["file"])
    except SpreadsheetError as exc:
        raise ValidationError({"file": str(exc)})


def build_purchase_items(data, raw_items):
    items = []
    for raw in raw_items:
        model = data.find_model(raw["model_id"])
        if model is None and not raw.get("brand"):
            raise NotFoundError(f"Model {raw['model_id']} was not found.")
        items.append(
            PurchaseItem(
                model_id=raw["model_id"],
                brand=model.brand if model else raw["brand"],
                model_name=model.model_name if model else raw.get("model_name", ""),
                imeis=tuple(imei.strip() for imei in raw["imeis"] if imei.strip()),
                cost_price=raw["cost_price"],
                selling_price=raw["selling_price"],
            )
        )
    return items


def commit_purchase_payload(data, payload, now):
    items = build_purchase_items(data, payload.pop("items"))
    return commit_purchase(data, items=items, now=now, **payload)


class CatalogModelViewSet(ShopLedgerMixin, viewsets.GenericViewSet):
    serializer_class = MobileModelSerializer
    lookup_value_regex = "[^/]+"
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def list(self, request):
        models = list(self.load().models)
        query = request.query_params.get("search", "").strip().lower()
        if query:
            models = [model for model in models if query in model.label.lower()]
        page = self.paginate_queryset(models)
        return self.get_paginated_response(self.get_serializer(page, many=True).data)

    def retrieve(self, request, pk=None):
        model = self.load().find_model(pk)
        if model is None:
            raise NotFoundError(f"Model {pk} was not found.")
        return Response(self.get_serializer(model).data)

    def create(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, model = self.run(add_model, **serializer.validated_data)
        payload = self.get_serializer(model).data
        self.audit(action="catalog.create", entity="model", entity_ref=model.id, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None, partial=False):
        before = self.load().find_model(pk)
        if before is None:
            raise NotFoundError(f"Model {pk} was not found.")
        serializer = self.get_serializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        _, model = self.run(update_model, pk, **serializer.validated_data)
        payload = self.get_serializer(model).data
        self.audit(
            action="catalog.update",
            entity="model",
            entity_ref=model.id,
            before_snapshot=self.get_serializer(before).data,
            after_snapshot=payload,
        )
        return Response(payload)

    def partial_update(self, request, pk=None):
        return self.update(request, pk=pk, partial=True)

    def destroy(self, request, pk=None):
        before = self.load().find_model(pk)
        self.run(remove_model, pk)
        self.audit(
            action="catalog.delete",
            entity="model",
            entity_ref=pk,
            before_snapshot=self.get_serializer(before).data if before else None,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["post"], url_path="import")
    def import_rows(self, request):
        rows = read_upload(request)
        _, result = self.run(import_catalog_rows, rows)
        self.audit(
            action="catalog.import",
            entity="model",
            after_snapshot={"added_count": result.added_count, "skipped_count": result.skipped_count},
        )
        return Response(
            {"added_count": result.added_count, "skipped_count": result.skipped_count, "rows": result.rows},
            status=status.HTTP_201_CREATED if result.added_count else status.HTTP_200_OK,
        )

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        export_format = request.query_params.get("export", "xlsx")
        rows = export_catalog_rows(self.load())
        return spreadsheet_response(f"catalog-{timezone.localdate().isoformat()}", CATALOG_COLUMNS, rows, export_format)


class SupplierViewSet(ShopLedgerMixin, viewsets.GenericViewSet):
    serializer_class = SupplierSerializer

    def list(self, request):
        suppliers = sorted(self.load().suppliers, key=lambda supplier: supplier.name.lower())
        query = request.query_params.get("search", "").strip().lower()
        if query:
            suppliers = [supplier for supplier in suppliers if query in supplier.name.lower() or query in supplier.phone]
        page = self.paginate_queryset(suppliers)
        return self.get_paginated_response(self.get_serializer(page, many=True).data)


class PurchaseStageView(ShopLedgerMixin, APIView):
    def post(self, request):
        serializer = StagePurchaseItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payload = serializer.validated_data

        data = self.load()
        staged = build_purchase_items(data, payload.get("staged_items", []))
        result = stage_purchase_item(
            data,
            staged,
            model_id=payload["model_id"],
            cost_price=payload.get("cost_price"),
            selling_price=payload.get("selling_price"),
            raw_serials=payload["imeis"],
        )
        item = None
        if result.item is not None:
            item = PurchaseItemSerializer(result.item).data
        return Response(
            {
                "item": item,
                "in_stock": result.in_stock,
                "in_draft": result.in_draft,
                "repeated": result.repeated,
                "skipped": result.skipped,
            }
        )


class PurchaseViewSet(ShopLedgerMixin, viewsets.GenericViewSet):
    serializer_class = PurchaseSerializer
    lookup_value_regex = "[^/]+"
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def _get(self, data, pk):
        purchase = data.find_purchase(pk)
        if purchase is None:
            raise NotFoundError(f"Purchase {pk} was not found.")
        return purchase

    def list(self, request):
        purchases = sorted(self.load().purchases, key=lambda purchase: purchase.date, reverse=True)
        query = request.query_params.get("search", "").strip().lower()
        if query:
            purchases = [
                purchase
                for purchase in purchases
                if query in purchase.purchase_number.lower() or query in purchase.supplier_name.lower()
            ]
        page = self.paginate_queryset(purchases)
        return self.get_paginated_response(self.get_serializer(page, many=True).data)

    def retrieve(self, request, pk=None):
        return Response(self.get_serializer(self._get(self.load(), pk)).data)

    def create(self, request):
        serializer = PurchaseCommitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, purchase, skipped = self.run(commit_purchase_payload, dict(serializer.validated_data), timezone.now())
        payload = self.get_serializer(purchase).data
        self.audit(action="purchase.create", entity="purchase", entity_ref=purchase.purchase_number, after_snapshot=payload)
        return Response({"purchase": payload, "skipped_imeis": skipped}, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        before = self._get(self.load(), pk)
        serializer = PurchaseUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, purchase = self.run(update_purchase, pk, **serializer.validated_data)
        payload = self.get_serializer(purchase).data
        self.audit(
            action="purchase.update",
            entity="purchase",
            entity_ref=purchase.purchase_number,
            before_snapshot={"supplier_name": before.supplier_name, "due_amount": before.due_amount},
            after_snapshot={"supplier_name": purchase.supplier_name, "due_amount": purchase.due_amount},
        )
        return Response(payload)

    def destroy(self, request, pk=None):
        before = self._get(self.load(), pk)
        self.run(delete_purchase, pk)
        self.audit(
            action="purchase.delete",
            entity="purchase",
            entity_ref=before.purchase_number,
            before_snapshot=self.get_serializer(before).data,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["post"], url_path="import")
    def import_rows(self, request):
        rows = read_upload(request)
        _, summary = self.run(import_purchase_rows, rows, now=timezone.now())
        purchases = summary["purchases"]
        self.audit(
            action="purchase.import",
            entity="purchase",
            after_snapshot={
                "purchases": [purchase.purchase_number for purchase in purchases],
                "models_created": summary["models_created"],
                "skipped_imeis": summary["skipped_imeis"],
            },
        )
        return Response(
            {
                "purchases": self.get_serializer(purchases, many=True).data,
                "models_created": summary["models_created"],
                "skipped_imeis": summary["skipped_imeis"],
                "rows": summary["rows"],
            },
            status=status.HTTP_201_CREATED if purchases else status.HTTP_200_OK,
        )

    @action(detail=True, methods=["get"], url_path="pdf")
    def pdf(self, request, pk=None):
        data = self.load()
        purchase = self._get(data, pk)
        response = HttpResponse(purchase_note_pdf(data.shop, purchase), content_type="application/pdf")
        response["Content-Disposition"] = f'inline; filename="{purchase.purchase_number}.pdf"'
        return response


class StockViewSet(ShopLedgerMixin, viewsets.GenericViewSet):
    serializer_class = StockUnitSerializer
    lookup_field = "imei"
    lookup_value_regex = "[^/]+"

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context["data"] = getattr(self, "_data", None)
        return context

    def _load(self):
        self._data = self.load()
        return self._data

    def list(self, request):
        data = self._load()
        stocks = filter_stock(
            data,
            status=request.query_params.get("status"),
            model_id=request.query_params.get("model_id"),
            query=request.query_params.get("search"),
        )
        page = self.paginate_queryset(stocks)
        return self.get_paginated_response(self.get_serializer(page, many=True).data)

    def retrieve(self, request, imei=None):
        data = self._load()
        unit = data.find_stock(imei)
        if unit is None:
            raise NotFoundError(f"IMEI {imei} was not found in stock.", details={"imei": imei})
        return Response(self.get_serializer(unit).data)

    def partial_update(self, request, imei=None):
        serializer = StockPricingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before = self._load().find_stock(imei)
        self._data, unit = self.run(update_stock_pricing, imei, **serializer.validated_data)
        payload = self.get_serializer(unit).data
        self.audit(
            action="stock.update",
            entity="stock",
            entity_ref=imei,
            before_snapshot={"purchase_price": before.purchase_price, "selling_price": before.selling_price} if before else None,
            after_snapshot={"purchase_price": unit.purchase_price, "selling_price": unit.selling_price},
        )
        return Response(payload)

    def destroy(self, request, imei=None):
        before = self._load().find_stock(imei)
        self.run(delete_stock, imei)
        self.audit(
            action="stock.delete",
            entity="stock",
            entity_ref=imei,
            before_snapshot=self.get_serializer(before).data if before else None,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
