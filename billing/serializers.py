from decimal import ROUND_HALF_UP

from django.utils import timezone
from rest_framework import serializers

from billing.models import Bill
from inventory.models import PlateSize
from rentals.models import Client


def _money(**kwargs):
    return serializers.DecimalField(max_digits=14, decimal_places=2, rounding=ROUND_HALF_UP, **kwargs)


class ChargeSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255, allow_blank=True, required=False, default="")
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class BillRequestSerializer(serializers.Serializer):
    client = serializers.PrimaryKeyRelatedField(queryset=Client.objects.all(), required=False, allow_null=True)
    bill_date = serializers.DateField(required=False)
    start_date = serializers.DateField(required=False, allow_null=True)
    end_date = serializers.DateField(required=False, allow_null=True)
    rate_per_day = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    extra_charges = ChargeSerializer(many=True, required=False)
    discounts = ChargeSerializer(many=True, required=False)

    def validate(self, attrs):
        attrs.setdefault("client", None)
        attrs.setdefault("bill_date", timezone.localdate())
        attrs.setdefault("extra_charges", [])
        attrs.setdefault("discounts", [])
        start_date = attrs.get("start_date")
        end_date = attrs.get("end_date")
        if start_date and end_date and start_date > end_date:
            raise serializers.ValidationError({"end_date": "End date must be on or after the start date."})
        return attrs


class BillCreateSerializer(BillRequestSerializer):
    bill_number = serializers.CharField(max_length=32, required=False, allow_blank=True)


class MatchedBillRequestSerializer(BillRequestSerializer):
    rate_per_day = None
    default_rate = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    plate_rates = serializers.DictField(
        child=serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0),
        required=False,
    )

    def validate_plate_rates(self, value):
        unknown = sorted(set(value) - set(PlateSize.values))
        if unknown:
            raise serializers.ValidationError(f"Unknown plate sizes: {', '.join(unknown)}.")
        return value


class ClientSummarySerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    site = serializers.CharField()
    mobile_number = serializers.CharField()


class DailyBalanceSerializer(serializers.Serializer):
    date = serializers.DateField()
    plate_balance = serializers.IntegerField()
    days_count = serializers.IntegerField()
    rate_per_day = _money()
    amount = _money()


class ChargeLineSerializer(serializers.Serializer):
    description = serializers.CharField()
    amount = _money()


class SimpleBillSerializer(serializers.Serializer):
    client = ClientSummarySerializer()
    bill_number = serializers.CharField(allow_blank=True)
    bill_date = serializers.DateField()
    rate_per_day = _money()
    daily_balances = DailyBalanceSerializer(many=True)
    total_days = serializers.IntegerField()
    total_plates = serializers.IntegerField()
    subtotal = _money()
    extra_charges = ChargeLineSerializer(many=True)
    extra_charges_total = _money()
    discounts = ChargeLineSerializer(many=True)
    discounts_total = _money()
    grand_total = _money()


class MatchedChallanSerializer(serializers.Serializer):
    challan_id = serializers.IntegerField()
    challan_number = serializers.CharField()
    issue_date = serializers.DateField()
    return_date = serializers.DateField()
    return_challan_number = serializers.CharField(allow_null=True)
    plate_size = serializers.CharField()
    issued_quantity = serializers.IntegerField()
    returned_quantity = serializers.IntegerField()
    outstanding_quantity = serializers.IntegerField()
    days_used = serializers.IntegerField()
    rate_per_day = _money()
    service_charge = _money()
    is_fully_returned = serializers.BooleanField()
    is_partial_return = serializers.BooleanField()


class MatchedBillSerializer(serializers.Serializer):
    client = ClientSummarySerializer()
    bill_number = serializers.CharField(allow_blank=True)
    bill_date = serializers.DateField()
    default_rate = _money()
    matched_challans = MatchedChallanSerializer(many=True)
    total_plates = serializers.IntegerField()
    total_days = serializers.IntegerField()
    subtotal = _money()
    extra_charges = ChargeLineSerializer(many=True)
    extra_charges_total = _money()
    discounts = ChargeLineSerializer(many=True)
    discounts_total = _money()
    grand_total = _money()


class BillSerializer(serializers.ModelSerializer):
    client_name = serializers.CharField(source="client.name", read_only=True)

    class Meta:
        model = Bill
        fields = [
            "id",
            "bill_number",
            "client",
            "client_name",
            "bill_date",
            "period_start",
            "period_end",
            "rate_per_day",
            "total_days",
            "total_plates",
            "subtotal",
            "extra_charges_total",
            "discounts_total",
            "total_amount",
            "payment_status",
            "generated_at",
        ]
        read_only_fields = [
            "id",
            "bill_number",
            "client",
            "bill_date",
            "period_start",
            "period_end",
            "rate_per_day",
            "total_days",
            "total_plates",
            "subtotal",
            "extra_charges_total",
            "discounts_total",
            "total_amount",
            "generated_at",
        ]
