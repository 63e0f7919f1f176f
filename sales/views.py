from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from common.utils import ledger_setting
from core.errors import NotFoundError
from core.views import ShopLedgerMixin
from sales.documents import invoice_pdf
from sales.reports import period_bounds
from sales.serializers import CartItemSerializer, InvoiceCommitSerializer, InvoiceItemSerializer, InvoiceSerializer
from sales.services import (
    add_invoice_item,
    build_payment,
    commit_invoice,
    delete_invoice,
    filter_invoices,
    find_customer_by_phone,
    invoice_summary,
)


def restore_policy():
    return bool(ledger_setting("RESTORE_STOCK_ON_INVOICE_CHANGE", False))


def commit_invoice_payload(data, payload, *, invoice_id=None, now=None):
    payment_data = payload.pop("payment", None)
    payment = None
    if payment_data is not None:
        payment = build_payment(payment_data.pop("method"), amount=payload["paid_amount"], **payment_data)
    items = [(item["imei"], item.get("price")) for item in payload.pop("items")]
    return commit_invoice(
        data,
        items=items,
        payment=payment,
        invoice_id=invoice_id,
        now=now,
        restore_removed=restore_policy(),
        **payload,
    )


class InvoiceCartView(ShopLedgerMixin, APIView):
    def post(self, request):
        serializer = CartItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payload = serializer.validated_data
        item = add_invoice_item(
            self.load(),
            payload["imei"],
            cart=payload["cart"],
            editing_invoice_id=payload.get("editing_invoice_id"),
        )
        return Response(InvoiceItemSerializer(item).data)


class InvoiceViewSet(ShopLedgerMixin, viewsets.GenericViewSet):
    serializer_class = InvoiceSerializer
    lookup_value_regex = "[^/]+"

    def _get(self, data, pk):
        invoice = data.find_invoice(pk)
        if invoice is None:
            raise NotFoundError(f"Invoice {pk} was not found.")
        return invoice

    def list(self, request):
        params = request.query_params
        start, end = period_bounds(params.get("period", "all"), date_from=params.get("date_from"), date_to=params.get("date_to"))
        invoices = filter_invoices(self.load(), query=params.get("search"), start=start, end=end)
        page = self.paginate_queryset(invoices)
        response = self.get_paginated_response(self.get_serializer(page, many=True).data)
        response.data["summary"] = invoice_summary(invoices)
        return response

    def retrieve(self, request, pk=None):
        return Response(self.get_serializer(self._get(self.load(), pk)).data)

    def create(self, request):
        serializer = InvoiceCommitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, invoice = self.run(commit_invoice_payload, dict(serializer.validated_data), now=timezone.now())
        payload = self.get_serializer(invoice).data
        self.audit(action="invoice.create", entity="invoice", entity_ref=invoice.invoice_number, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None):
        before = self._get(self.load(), pk)
        serializer = InvoiceCommitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, invoice = self.run(commit_invoice_payload, dict(serializer.validated_data), invoice_id=pk, now=timezone.now())
        payload = self.get_serializer(invoice).data
        self.audit(
            action="invoice.update",
            entity="invoice",
            entity_ref=invoice.invoice_number,
            before_snapshot=self.get_serializer(before).data,
            after_snapshot=payload,
        )
        return Response(payload)

    def destroy(self, request, pk=None):
        _, invoice = self.run(delete_invoice, pk, restore_removed=restore_policy())
        self.audit(
            action="invoice.delete",
            entity="invoice",
            entity_ref=invoice.invoice_number,
            before_snapshot=self.get_serializer(invoice).data,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get"], url_path="pdf")
    def pdf(self, request, pk=None):
        data = self.load()
        invoice = self._get(data, pk)
        response = HttpResponse(invoice_pdf(data.shop, invoice), content_type="application/pdf")
        response["Content-Disposition"] = f'inline; filename="{invoice.invoice_number}.pdf"'
        return response

    @action(detail=False, methods=["get"], url_path="customer-lookup")
    def customer_lookup(self, request):
        customer = find_customer_by_phone(self.load(), request.query_params.get("phone"))
        if customer is None:
            raise NotFoundError("No previous invoice for this phone number.")
        return Response(customer)
