from django.db.models import Q
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.exceptions import ProtectedRecordError
from common.permissions import RoleCapabilityPermission
from rentals.ledger import build_client_ledger, build_client_ledgers
from rentals.models import Challan, Client, Return
from rentals.serializers import (
    ChallanSerializer,
    ClientSerializer,
    LedgerQuerySerializer,
    ReturnSerializer,
    TransactionFilterSerializer,
)
from rentals.services import (
    dashboard_summary,
    delete_challan,
    delete_return,
    next_challan_number,
    next_return_number,
    previous_driver_names,
)
from rentals.transactions import fetch_transactions


class AuditedMutationMixin:
    audit_entity = None

    def _audit(self, *, action, entity_id, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=f"{self.audit_entity}.{action}",
            entity=self.audit_entity,
            entity_id=entity_id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def perform_create(self, serializer):
        instance = serializer.save()
        self._audit(action="create", entity_id=instance.pk, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(
            action="update",
            entity_id=instance.pk,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        entity_id = instance.pk
        self.delete_instance(instance)
        self._audit(action="delete", entity_id=entity_id, before_snapshot=before_snapshot)

    def delete_instance(self, instance):
        instance.delete()


def _filter_params(request):
    serializer = TransactionFilterSerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


class ClientViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Client.objects.all()
    serializer_class = ClientSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "clients.view",
        "retrieve": "clients.view",
        "ledger": "clients.view",
        "create": "clients.manage",
        "update": "clients.manage",
        "partial_update": "clients.manage",
        "destroy": "clients.manage",
    }
    audit_entity = "client"

    def get_queryset(self):
        queryset = super().get_queryset().order_by("name", "id")
        search = self.request.query_params.get("q", "").strip()
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(id__icontains=search) | Q(site__icontains=search))
        return queryset

    def delete_instance(self, instance):
        if instance.challans.exists() or instance.returns.exists() or instance.bills.exists():
            raise ProtectedRecordError("Client has challans, returns or bills and cannot be deleted.")
        instance.delete()

    @action(detail=True, methods=["get"], url_path="ledger")
    def ledger(self, request, pk=None):
        client = self.get_object()
        query = LedgerQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        challans, returns = fetch_transactions(client_id=client.id)
        return Response(
            build_client_ledger(client, challans, returns, active_only=query.validated_data["active_only"])
        )


class LedgerListView(APIView):
    """Ledgers for every client. Not paginated; the ledger screen shows all clients at once."""

    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "clients.view"}

    def get(self, request):
        query = LedgerQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        clients = Client.objects.order_by("name", "id")
        search = (params.get("q") or "").strip()
        if search:
            clients = clients.filter(Q(name__icontains=search) | Q(id__icontains=search) | Q(site__icontains=search))

        challans, returns = fetch_transactions()
        ledgers = build_client_ledgers(list(clients), challans, returns, active_only=params["active_only"])
        if params["with_activity"]:
            ledgers = [ledger for ledger in ledgers if ledger["has_activity"]]
        return Response(ledgers)


class DashboardView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "clients.view"}

    def get(self, request):
        return Response(dashboard_summary())


class ChallanViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Challan.objects.select_related("client")
    serializer_class = ChallanSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "challan.view",
        "retrieve": "challan.view",
        "next_number": "challan.view",
        "drivers": "challan.view",
        "create": "challan.create",
        "update": "challan.manage",
        "partial_update": "challan.manage",
        "destroy": "challan.manage",
    }
    audit_entity = "challan"

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action != "list":
            return queryset

        params = _filter_params(self.request)
        if params.get("client"):
            queryset = queryset.filter(client_id=params["client"])
        if params.get("start_date"):
            queryset = queryset.filter(challan_date__gte=params["start_date"])
        if params.get("end_date"):
            queryset = queryset.filter(challan_date__lte=params["end_date"])
        return queryset.prefetch_related("items").order_by("-challan_date", "-id")

    def delete_instance(self, instance):
        delete_challan(instance)

    @action(detail=False, methods=["get"], url_path="next-number")
    def next_number(self, request):
        return Response({"challan_number": next_challan_number()})

    @action(detail=False, methods=["get"], url_path="drivers", pagination_class=None)
    def drivers(self, request):
        return Response(previous_driver_names())


class ReturnViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Return.objects.select_related("client")
    serializer_class = ReturnSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "challan.view",
        "retrieve": "challan.view",
        "next_number": "challan.view",
        "create": "challan.create",
        "update": "challan.manage",
        "partial_update": "challan.manage",
        "destroy": "challan.manage",
    }
    audit_entity = "return"

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action != "list":
            return queryset

        params = _filter_params(self.request)
        if params.get("client"):
            queryset = queryset.filter(client_id=params["client"])
        if params.get("start_date"):
            queryset = queryset.filter(return_date__gte=params["start_date"])
        if params.get("end_date"):
            queryset = queryset.filter(return_date__lte=params["end_date"])
        return queryset.prefetch_related("items").order_by("-return_date", "-id")

    def delete_instance(self, instance):
        delete_return(instance)

    @action(detail=False, methods=["get"], url_path="next-number")
    def next_number(self, request):
        return Response({"return_challan_number": next_return_number()})
