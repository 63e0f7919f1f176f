from django.urls import path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenBlacklistView, TokenRefreshView

from core.views import (
    AuditLogViewSet,
    EmailOrUsernameTokenObtainPairView,
    RegisterView,
    SessionView,
    ShopBackupView,
    ShopProfileView,
    ShopResetView,
    ShopRestoreView,
)

router = DefaultRouter()
router.register(r"audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("auth/register/", RegisterView.as_view(), name="register"),
    path("auth/login/", EmailOrUsernameTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("auth/logout/", TokenBlacklistView.as_view(), name="token_blacklist"),
    path("auth/session/", SessionView.as_view(), name="session"),
    path("shop/", ShopProfileView.as_view(), name="shop-profile"),
    path("shop/backup/", ShopBackupView.as_view(), name="shop-backup"),
    path("shop/restore/", ShopRestoreView.as_view(), name="shop-restore"),
    path("shop/reset/", ShopResetView.as_view(), name="shop-reset"),
]
