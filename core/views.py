import logging

from django.db import DatabaseError, connections
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import status, viewsets
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from common.permissions import RoleCapabilityPermission
from core.models import AuditLog
from core.serializers import AuditLogSerializer, CurrentUserSerializer, RoleTokenObtainPairSerializer

logger = logging.getLogger(__name__)


class ThrottledTokenObtainPairView(TokenObtainPairView):
    serializer_class = RoleTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class CurrentUserView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(CurrentUserSerializer(request.user).data)


def _parse_bound(name, value):
    """Accept either a full timestamp or a plain date for the audit-log window."""
    parsed = parse_datetime(value) or parse_date(value)
    if parsed is None:
        raise ValidationError({name: "Use YYYY-MM-DD or an ISO 8601 timestamp."})
    return parsed


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "audit.view", "retrieve": "audit.view"}
    exact_filters = ("entity", "entity_id", "client_id", "action")

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params

        for field in self.exact_filters:
            value = params.get(field)
            if value:
                qs = qs.filter(**{field: value})

        start = params.get("start_date")
        if start:
            bound = _parse_bound("start_date", start)
            qs = qs.filter(**{"created_at__gte" if hasattr(bound, "hour") else "created_at__date__gte": bound})
        end = params.get("end_date")
        if end:
            bound = _parse_bound("end_date", end)
            qs = qs.filter(**{"created_at__lte" if hasattr(bound, "hour") else "created_at__date__lte": bound})

        return qs


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    request_id = getattr(request, "request_id", None)
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError:
        logger.exception("readiness_check_failed", extra={"request_id": request_id})
        return Response(
            {"status": "unavailable", "request_id": request_id},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": request_id})
