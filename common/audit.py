import json
import logging

from django.core.serializers.json import DjangoJSONEncoder

from core.models import AuditLog

logger = logging.getLogger(__name__)


def _json_safe(snapshot):
    # Serializer output carries dates and Decimals; JSONField needs plain JSON.
    if snapshot is None:
        return None
    return json.loads(json.dumps(snapshot, cls=DjangoJSONEncoder))


def resolve_client_id(entity, entity_id, *snapshots):
    """The client a change belongs to, read from the record or its snapshots."""
    if entity == AuditLog.Entity.CLIENT:
        return str(entity_id) if entity_id is not None else None
    for snapshot in snapshots:
        if isinstance(snapshot, dict):
            value = snapshot.get("client_id") or snapshot.get("client")
            if isinstance(value, dict):
                value = value.get("id")
            if value:
                return str(value)
    return None


def get_request_id(request):
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID")


def record_change(
    *,
    action,
    entity,
    entity_id=None,
    actor=None,
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    before_snapshot = _json_safe(before_snapshot)
    after_snapshot = _json_safe(after_snapshot)
    entry = AuditLog.objects.create(
        actor=actor,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        client_id=resolve_client_id(entity, entity_id, after_snapshot, before_snapshot),
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=request_id,
    )
    logger.info(
        "audit_recorded",
        extra={
            "action": action,
            "entity": entity,
            "entity_id": entry.entity_id,
            "client_id": entry.client_id,
            "request_id": request_id,
        },
    )
    return entry


def create_audit_log_from_request(request, *, action, entity, entity_id=None, before_snapshot=None, after_snapshot=None):
    user = getattr(request, "user", None)
    return record_change(
        action=action,
        entity=entity,
        entity_id=entity_id,
        actor=user if user is not None and user.is_authenticated else None,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=get_request_id(request),
    )
