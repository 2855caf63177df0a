from rest_framework import mixins, viewsets
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from inventory.models import PLATE_SIZES, StockItem, plate_size_sort_key
from inventory.serializers import StockItemSerializer
from inventory.services import set_total_quantity
from rentals.ledger import net_borrowed_stock
from rentals.transactions import fetch_transactions


class StockItemViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.UpdateModelMixin, viewsets.GenericViewSet):
    """Plate stock counters, one row per size. Only the total can be edited directly."""

    queryset = StockItem.objects.all()
    serializer_class = StockItemSerializer
    pagination_class = None
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "stock.view",
        "retrieve": "stock.view",
        "update": "stock.adjust",
        "partial_update": "stock.adjust",
    }

    def get_serializer_context(self):
        context = super().get_serializer_context()
        if self.action in ("list", "retrieve"):
            challans, returns = fetch_transactions()
            context["borrowed_stock_out"] = {
                size: net_borrowed_stock(challans, returns, plate_size=size) for size in PLATE_SIZES
            }
        return context

    def list(self, request, *args, **kwargs):
        rows = sorted(self.get_queryset(), key=lambda row: plate_size_sort_key(row.plate_size))
        return Response(self.get_serializer(rows, many=True).data)

    def perform_update(self, serializer):
        instance = serializer.instance
        before_snapshot = self.get_serializer(instance).data
        total_quantity = serializer.validated_data.get("total_quantity", instance.total_quantity)
        set_total_quantity(instance, total_quantity)
        create_audit_log_from_request(
            self.request,
            action="stock.update",
            entity="stock",
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )
