import json

from django.core.serializers.json import DjangoJSONEncoder

from common.utils import to_json_compatible
from core.models import AuditLog


def get_request_id(request):
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID")


def _json_safe(value):
    if value is None:
        return None
    return json.loads(json.dumps(to_json_compatible(value), cls=DjangoJSONEncoder))


def create_audit_log(
    *,
    shop=None,
    actor=None,
    action,
    entity,
    entity_ref="",
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    return AuditLog.objects.create(
        shop=shop,
        actor=actor,
        action=action,
        entity=entity,
        entity_ref=str(entity_ref or "")[:128],
        before_snapshot=_json_safe(before_snapshot),
        after_snapshot=_json_safe(after_snapshot),
        request_id=request_id,
    )


def create_audit_log_from_request(
    request,
    *,
    action,
    entity,
    entity_ref="",
    before_snapshot=None,
    after_snapshot=None,
):
    user = getattr(request, "user", None)
    actor = user if user is not None and user.is_authenticated else None
    return create_audit_log(
        shop=getattr(actor, "shop", None),
        actor=actor,
        action=action,
        entity=entity,
        entity_ref=entity_ref,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=get_request_id(request),
    )
