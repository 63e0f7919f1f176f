import logging

from rest_framework.permissions import BasePermission

logger = logging.getLogger("security.authorization")


class HasShopAccount(BasePermission):
    """Every ledger endpoint is scoped to the caller's shop; users without one are refused."""

    message = "Your user is not attached to a shop account."

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if getattr(user, "shop_id", None):
            return True

        logger.warning(
            "permission_denied reason=no_shop user=%s method=%s path=%s view=%s",
            getattr(user, "username", "anonymous"),
            request.method,
            request.path,
            view.__class__.__name__,
        )
        return False
