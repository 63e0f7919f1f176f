from django.urls import path
from rest_framework.routers import DefaultRouter

from sales.reports import DashboardView, LifecycleSearchView, ReportView
from sales.views import InvoiceCartView, InvoiceViewSet

router = DefaultRouter()
router.register(r"invoices", InvoiceViewSet, basename="invoice")

urlpatterns = [
    path("invoices/cart/", InvoiceCartView.as_view(), name="invoice-cart"),
    path("search/", LifecycleSearchView.as_view(), name="lifecycle-search"),
    path("dashboard/", DashboardView.as_view(), name="dashboard"),
    path("reports/<str:kind>/", ReportView.as_view(), name="report"),
] + router.urls
