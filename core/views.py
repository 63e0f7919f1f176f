import csv
import logging

from django.db import connections
from django.http import HttpResponse
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework import generics, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from common.audit import create_audit_log_from_request
from common.permissions import HasShopAccount
from core.aggregate import AppData
from core.authentication import idle_timeout_minutes, session_expires_at
from core.models import AuditLog
from core.serializers import (
    AuditLogSerializer,
    DocumentSerializer,
    EmailOrUsernameTokenObtainPairSerializer,
    ShopProfileSerializer,
    ShopRegistrationSerializer,
    issue_tokens,
)
from core.store import apply_command, load_aggregate, replace_aggregate

logger = logging.getLogger(__name__)


class ShopLedgerMixin:
    """Shared plumbing for views that read or mutate the caller's shop ledger."""

    permission_classes = [IsAuthenticated, HasShopAccount]

    @property
    def shop(self):
        return self.request.user.shop

    def load(self):
        return load_aggregate(self.shop)

    def run(self, handler, *args, **kwargs):
        return apply_command(self.shop, handler, *args, **kwargs)

    def audit(self, *, action, entity, entity_ref="", before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=entity,
            entity_ref=entity_ref,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )


class RegisterView(generics.GenericAPIView):
    serializer_class = ShopRegistrationSerializer
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def post(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        create_audit_log_from_request(
            request,
            action="shop.register",
            entity="shop",
            entity_ref=user.shop_id,
            after_snapshot={"shop": user.shop.name, "username": user.username},
        )
        payload = {
            "account_id": str(user.shop_id),
            "username": user.username,
            "shop_name": user.shop.name,
            **issue_tokens(user),
        }
        return Response(payload, status=status.HTTP_201_CREATED)


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class SessionView(APIView):
    permission_classes = [IsAuthenticated, HasShopAccount]

    def get(self, request):
        user = request.user
        expires_at = session_expires_at(user)
        remaining = None
        if expires_at is not None:
            remaining = max(0, int((expires_at - timezone.now()).total_seconds() // 60))
        return Response(
            {
                "user_id": str(user.id),
                "username": user.username,
                "account_id": str(user.shop_id),
                "shop_name": user.shop.name,
                "inactivity_timeout_minutes": idle_timeout_minutes(user),
                "last_activity_at": user.last_activity_at,
                "expires_at": expires_at,
                "remaining_minutes": remaining,
            }
        )


class ShopProfileView(ShopLedgerMixin, generics.RetrieveUpdateAPIView):
    serializer_class = ShopProfileSerializer
    http_method_names = ["get", "patch", "head", "options"]

    def get_object(self):
        return self.shop

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self.audit(
            action="shop.update",
            entity="shop",
            entity_ref=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )


class ShopBackupView(ShopLedgerMixin, APIView):
    def get(self, request):
        document = self.load().to_document()
        if request.query_params.get("download") in {"1", "true"}:
            response = Response(document)
            response["Content-Disposition"] = f'attachment; filename="shop-backup-{timezone.localdate().isoformat()}.json"'
            return response
        return Response(document)


class ShopRestoreView(ShopLedgerMixin, APIView):
    def post(self, request):
        payload = request.data if "document" in request.data else {"document": request.data}
        serializer = DocumentSerializer(data=payload, context={"shop": self.shop})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data["document"]

        replace_aggregate(self.shop, data)
        self.audit(
            action="shop.restore",
            entity="shop",
            entity_ref=self.shop.id,
            after_snapshot={
                "models": len(data.models),
                "stocks": len(data.stocks),
                "invoices": len(data.invoices),
                "purchases": len(data.purchases),
                "suppliers": len(data.suppliers),
            },
        )
        return Response(load_aggregate(self.shop).to_document())


def clear_ledgers(data):
    return AppData.empty(data.shop)


class ShopResetView(ShopLedgerMixin, APIView):
    def post(self, request):
        before = self.load()
        self.run(clear_ledgers)
        self.audit(
            action="shop.reset",
            entity="shop",
            entity_ref=self.shop.id,
            before_snapshot={"stocks": len(before.stocks), "invoices": len(before.invoices), "purchases": len(before.purchases)},
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


class AuditLogViewSet(ShopLedgerMixin, viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor")
    serializer_class = AuditLogSerializer

    def get_queryset(self):
        qs = self.queryset.filter(shop_id=self.request.user.shop_id).order_by("-created_at")

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        action_name = self.request.query_params.get("action")
        entity = self.request.query_params.get("entity")

        if start_date:
            dt = parse_datetime(start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = parse_datetime(end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if action_name:
            qs = qs.filter(action=action_name)
        if entity:
            qs = qs.filter(entity=entity)

        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'

        writer = csv.writer(response)
        writer.writerow(["id", "created_at", "actor", "action", "entity", "entity_ref", "request_id"])
        for log in self.get_queryset():
            writer.writerow(
                [
                    log.id,
                    log.created_at.isoformat(),
                    getattr(log.actor, "username", ""),
                    log.action,
                    log.entity,
                    log.entity_ref,
                    log.request_id,
                ]
            )
        return response


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
