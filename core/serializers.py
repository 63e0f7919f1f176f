import decimal

from django.contrib.auth import get_user_model, password_validation
from django.db import transaction
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.tokens import RefreshToken

from core.aggregate import AppData
from core.authentication import touch_activity
from core.models import AuditLog, Shop, ShopDocument

User = get_user_model()


def issue_tokens(user):
    refresh = RefreshToken.for_user(user)
    refresh["account_id"] = str(user.shop_id) if user.shop_id else None
    return {"refresh": str(refresh), "access": str(refresh.access_token)}


class ShopRegistrationSerializer(serializers.Serializer):
    shop_name = serializers.CharField(max_length=255)
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(write_only=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    address = serializers.CharField(max_length=500, required=False, allow_blank=True)

    def validate_shop_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Shop name is required.")
        return value

    def validate_username(self, value):
        if User.objects.filter(username__iexact=value).exists():
            raise serializers.ValidationError("A user with that username already exists.")
        return value

    def validate_email(self, value):
        normalized_email = value.strip().lower()
        if normalized_email and User.objects.filter(email__iexact=normalized_email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return normalized_email

    def validate(self, attrs):
        password_validation.validate_password(attrs["password"])
        return attrs

    @transaction.atomic
    def create(self, validated_data):
        shop = Shop.objects.create(
            name=validated_data["shop_name"],
            phone=validated_data.get("phone", ""),
            address=validated_data.get("address", ""),
            email=validated_data.get("email", ""),
            owner_username=validated_data["username"],
            prepared_by=validated_data["username"],
        )
        ShopDocument.objects.create(shop=shop, data=AppData.empty(shop.to_profile()).ledgers_document())
        user = User.objects.create_user(
            username=validated_data["username"],
            email=validated_data.get("email", ""),
            password=validated_data["password"],
            shop=shop,
        )
        touch_activity(user)
        return user


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["account_id"] = str(user.shop_id) if user.shop_id else None
        return token

    def validate(self, attrs):
        username = attrs.get("username", "")
        if username and "@" in username:
            try:
                user = User.objects.get(email__iexact=username)
                attrs["username"] = user.get_username()
            except User.DoesNotExist:
                pass
        data = super().validate(attrs)
        touch_activity(self.user)
        data["account_id"] = str(self.user.shop_id) if self.user.shop_id else None
        data["shop_name"] = self.user.shop.name if self.user.shop_id else None
        return data


class ShopProfileSerializer(serializers.ModelSerializer):
    inactivity_timeout = serializers.IntegerField(min_value=1, max_value=24 * 60, required=False)

    class Meta:
        model = Shop
        fields = ["id", *Shop.PROFILE_FIELDS, "updated_at"]
        read_only_fields = ["id", "owner_username", "updated_at"]


class DocumentSerializer(serializers.Serializer):
    document = serializers.JSONField()

    def validate_document(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("Document must be a JSON object.")
        shop = self.context.get("shop")
        profile = None if value.get("shop") else shop.to_profile()
        try:
            data = AppData.from_document(value, shop=profile)
        except (KeyError, TypeError, ValueError, decimal.InvalidOperation) as exc:
            raise serializers.ValidationError(f"Invalid ledger document: {exc}")
        if not data.shop.name:
            data = data.with_shop(shop.to_profile())
        return data


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "action",
            "entity",
            "entity_ref",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
