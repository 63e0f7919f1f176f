from rest_framework import serializers

from core.aggregate import MISSING_LABEL, StockStatus

MONEY_FIELD = {"max_digits": 14, "decimal_places": 2}


class MobileModelSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    brand = serializers.CharField(max_length=120)
    model_name = serializers.CharField(max_length=120)
    purchase_price = serializers.DecimalField(**MONEY_FIELD)
    selling_price = serializers.DecimalField(**MONEY_FIELD)


class SupplierSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    name = serializers.CharField(read_only=True)
    phone = serializers.CharField(read_only=True)
    address = serializers.CharField(read_only=True, allow_null=True)


class PurchaseItemSerializer(serializers.Serializer):
    model_id = serializers.CharField()
    brand = serializers.CharField(required=False, allow_blank=True)
    model_name = serializers.CharField(required=False, allow_blank=True)
    imeis = serializers.ListField(child=serializers.CharField(max_length=64), allow_empty=False)
    cost_price = serializers.DecimalField(min_value=0, **MONEY_FIELD)
    selling_price = serializers.DecimalField(min_value=0, **MONEY_FIELD)
    quantity = serializers.IntegerField(read_only=True)
    line_total = serializers.DecimalField(read_only=True, **MONEY_FIELD)


class StagePurchaseItemSerializer(serializers.Serializer):
    model_id = serializers.CharField()
    cost_price = serializers.DecimalField(min_value=0, required=False, allow_null=True, **MONEY_FIELD)
    selling_price = serializers.DecimalField(min_value=0, required=False, allow_null=True, **MONEY_FIELD)
    imeis = serializers.CharField(allow_blank=True, trim_whitespace=False)
    staged_items = PurchaseItemSerializer(many=True, required=False)


class PurchaseCommitSerializer(serializers.Serializer):
    items = PurchaseItemSerializer(many=True, allow_empty=True)
    supplier_name = serializers.CharField(allow_blank=True, max_length=255)
    supplier_phone = serializers.CharField(allow_blank=True, required=False, default="", max_length=32)
    supplier_address = serializers.CharField(allow_blank=True, required=False, allow_null=True, max_length=500)
    vat = serializers.DecimalField(min_value=0, required=False, default=0, **MONEY_FIELD)
    vat_percent = serializers.DecimalField(min_value=0, max_value=100, required=False, allow_null=True, max_digits=5, decimal_places=2)
    discount = serializers.DecimalField(min_value=0, required=False, default=0, **MONEY_FIELD)
    paid_amount = serializers.DecimalField(min_value=0, required=False, default=0, **MONEY_FIELD)
    note = serializers.CharField(allow_blank=True, required=False, allow_null=True)


class PurchaseSerializer(serializers.Serializer):
    id = serializers.CharField()
    purchase_number = serializers.CharField()
    date = serializers.DateTimeField()
    supplier_name = serializers.CharField()
    supplier_phone = serializers.CharField()
    supplier_address = serializers.CharField(allow_null=True)
    items = PurchaseItemSerializer(many=True)
    quantity = serializers.IntegerField()
    subtotal = serializers.DecimalField(**MONEY_FIELD)
    vat = serializers.DecimalField(**MONEY_FIELD)
    discount = serializers.DecimalField(**MONEY_FIELD)
    total = serializers.DecimalField(**MONEY_FIELD)
    paid_amount = serializers.DecimalField(**MONEY_FIELD)
    due_amount = serializers.DecimalField(**MONEY_FIELD)
    note = serializers.CharField(allow_null=True)


class PurchaseUpdateSerializer(serializers.Serializer):
    supplier_name = serializers.CharField(required=False, max_length=255)
    due_amount = serializers.DecimalField(required=False, **MONEY_FIELD)


class StockUnitSerializer(serializers.Serializer):
    imei = serializers.CharField()
    model_id = serializers.CharField()
    brand = serializers.SerializerMethodField()
    model_name = serializers.SerializerMethodField()
    status = serializers.ChoiceField(choices=StockStatus.choices)
    date_added = serializers.DateTimeField()
    purchase_id = serializers.CharField(allow_null=True)
    invoice_id = serializers.CharField(allow_null=True)
    purchase_price = serializers.DecimalField(**MONEY_FIELD)
    selling_price = serializers.DecimalField(**MONEY_FIELD)

    def _label(self, obj):
        data = self.context.get("data")
        if data is None:
            return MISSING_LABEL, MISSING_LABEL
        return data.model_label(obj.model_id)

    def get_brand(self, obj):
        return self._label(obj)[0]

    def get_model_name(self, obj):
        return self._label(obj)[1]


class StockPricingSerializer(serializers.Serializer):
    purchase_price = serializers.DecimalField(required=False, **MONEY_FIELD)
    selling_price = serializers.DecimalField(required=False, **MONEY_FIELD)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide purchase_price or selling_price.")
        return attrs


class SpreadsheetUploadSerializer(serializers.Serializer):
    file = serializers.FileField()
