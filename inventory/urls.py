from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import CatalogModelViewSet, PurchaseStageView, PurchaseViewSet, StockViewSet, SupplierViewSet

router = DefaultRouter()
router.register(r"catalog/models", CatalogModelViewSet, basename="catalog-model")
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"purchases", PurchaseViewSet, basename="purchase")
router.register(r"stock", StockViewSet, basename="stock")

urlpatterns = [
    path("purchases/stage/", PurchaseStageView.as_view(), name="purchase-stage"),
] + router.urls
