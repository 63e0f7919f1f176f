from rest_framework import serializers

from core.aggregate import PaymentMethod
from inventory.serializers import MONEY_FIELD


class InvoiceItemSerializer(serializers.Serializer):
    imei = serializers.CharField(max_length=64)
    brand = serializers.CharField(read_only=True)
    model_name = serializers.CharField(read_only=True)
    price = serializers.DecimalField(min_value=0, required=False, allow_null=True, **MONEY_FIELD)


class PaymentSerializer(serializers.Serializer):
    method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    bank_name = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=120)
    payment_phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    card_type = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    transaction_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
    amount = serializers.DecimalField(read_only=True, **MONEY_FIELD)
    reference = serializers.CharField(read_only=True)


class InvoiceSerializer(serializers.Serializer):
    id = serializers.CharField()
    invoice_number = serializers.CharField()
    date = serializers.DateTimeField()
    customer_name = serializers.CharField()
    customer_phone = serializers.CharField()
    customer_address = serializers.CharField(allow_null=True)
    narration = serializers.CharField(allow_null=True)
    items = InvoiceItemSerializer(many=True)
    subtotal = serializers.DecimalField(**MONEY_FIELD)
    discount = serializers.DecimalField(**MONEY_FIELD)
    vat = serializers.DecimalField(**MONEY_FIELD)
    total = serializers.DecimalField(**MONEY_FIELD)
    payments = PaymentSerializer(many=True)
    paid_amount = serializers.DecimalField(**MONEY_FIELD)
    due_amount = serializers.DecimalField(**MONEY_FIELD)
    status = serializers.CharField(source="status_label")


class CartItemSerializer(serializers.Serializer):
    imei = serializers.CharField(max_length=64)
    cart = serializers.ListField(child=serializers.CharField(max_length=64), required=False, default=list)
    editing_invoice_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class InvoiceCommitSerializer(serializers.Serializer):
    customer_name = serializers.CharField(allow_blank=True, max_length=255)
    customer_phone = serializers.CharField(allow_blank=True, max_length=32)
    customer_address = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=500)
    narration = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    items = InvoiceItemSerializer(many=True, allow_empty=True)
    discount = serializers.DecimalField(min_value=0, required=False, default=0, **MONEY_FIELD)
    paid_amount = serializers.DecimalField(min_value=0, required=False, default=0, **MONEY_FIELD)
    payment = PaymentSerializer(required=False)
