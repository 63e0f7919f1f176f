import logging
from datetime import timedelta

from django.utils import timezone
from rest_framework_simplejwt.authentication import JWTAuthentication

from common.utils import ledger_setting
from core.errors import SessionExpired

logger = logging.getLogger("security.authentication")


def idle_timeout_minutes(user):
    shop = getattr(user, "shop", None)
    if shop is not None and shop.inactivity_timeout:
        return shop.inactivity_timeout
    return int(ledger_setting("INACTIVITY_TIMEOUT_MINUTES", 30))


def session_expires_at(user):
    if user.last_activity_at is None:
        return None
    return user.last_activity_at + timedelta(minutes=idle_timeout_minutes(user))


def touch_activity(user, moment=None):
    user.last_activity_at = moment or timezone.now()
    type(user).objects.filter(pk=user.pk).update(last_activity_at=user.last_activity_at)


class ShopJWTAuthentication(JWTAuthentication):
    """JWT authentication that also enforces the shop's inactivity timeout.

    Each authenticated request refreshes ``last_activity_at``. A request that
    arrives after the idle window has elapsed is refused with
    ``session_expired`` and the user has to log in again, which resets the
    activity clock.
    """

    def authenticate(self, request):
        result = super().authenticate(request)
        if result is None:
            return None

        user, token = result
        now = timezone.now()
        expires_at = session_expires_at(user)
        if expires_at is not None and now > expires_at:
            logger.info(
                "session_expired",
                extra={"user_id": str(user.id), "shop_id": str(user.shop_id) if user.shop_id else None},
            )
            raise SessionExpired()

        touch_activity(user, now)
        return user, token
