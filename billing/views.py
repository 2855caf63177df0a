from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import Bill
from billing.serializers import (
    BillCreateSerializer,
    BillRequestSerializer,
    BillSerializer,
    MatchedBillRequestSerializer,
    MatchedBillSerializer,
    SimpleBillSerializer,
)
from billing.services import calculate_bill, calculate_matched, create_bill, suggest_bill_number
from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission


class BillCalculateView(APIView):
    """Preview a day-based bill without saving it."""

    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "billing.view"}

    def post(self, request):
        serializer = BillRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        params = dict(serializer.validated_data)

        calculation = calculate_bill(params.pop("client"), **params)
        return Response(SimpleBillSerializer(calculation).data)


class MatchedBillCalculateView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "billing.view"}

    def post(self, request):
        serializer = MatchedBillRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        params = dict(serializer.validated_data)

        calculation = calculate_matched(params.pop("client"), **params)
        return Response(MatchedBillSerializer(calculation).data)


class BillViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Bill.objects.select_related("client")
    serializer_class = BillSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "billing.view",
        "retrieve": "billing.view",
        "next_number": "billing.view",
        "create": "billing.create",
        "update": "bills.manage",
        "partial_update": "bills.manage",
    }

    def get_queryset(self):
        queryset = super().get_queryset().order_by("-generated_at", "-id")
        client_id = self.request.query_params.get("client")
        if client_id:
            queryset = queryset.filter(client_id=client_id)
        payment_status = self.request.query_params.get("payment_status")
        if payment_status:
            queryset = queryset.filter(payment_status=payment_status)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = BillCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        params = dict(serializer.validated_data)

        bill, calculation = create_bill(params.pop("client"), **params)
        bill_payload = BillSerializer(bill).data
        create_audit_log_from_request(
            request,
            action="bill.create",
            entity="bill",
            entity_id=bill.id,
            after_snapshot=bill_payload,
        )
        return Response(
            {"bill": bill_payload, "calculation": SimpleBillSerializer(calculation).data},
            status=status.HTTP_201_CREATED,
        )

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="bill.update",
            entity="bill",
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    @action(detail=False, methods=["get"], url_path="next-number")
    def next_number(self, request):
        return Response({"bill_number": suggest_bill_number()})
