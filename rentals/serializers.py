from rest_framework import serializers

from rentals.models import Challan, ChallanItem, Client, Return, ReturnLineItem
from rentals.services import (
    create_challan,
    create_return,
    update_challan,
    update_return,
)


class ClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ["id", "name", "site", "mobile_number", "created_at"]
        read_only_fields = ["created_at"]

    def validate_id(self, value):
        if self.instance is not None and value != self.instance.id:
            raise serializers.ValidationError("Client id cannot be changed.")
        return value


def _validate_line_items(items, quantity_fields, empty_message):
    sizes = [item["plate_size"] for item in items]
    if len(sizes) != len(set(sizes)):
        raise serializers.ValidationError("Each plate size can appear only once.")

    kept = [item for item in items if any(item.get(field) for field in quantity_fields)]
    if not kept:
        raise serializers.ValidationError(empty_message)
    return kept


class ChallanItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = ChallanItem
        fields = ["plate_size", "borrowed_quantity", "borrowed_stock", "partner_stock_notes"]


class ChallanSerializer(serializers.ModelSerializer):
    items = ChallanItemSerializer(many=True)
    client_name = serializers.CharField(source="client.name", read_only=True)
    total_plates = serializers.SerializerMethodField()

    class Meta:
        model = Challan
        fields = [
            "id",
            "challan_number",
            "challan_date",
            "client",
            "client_name",
            "driver_name",
            "status",
            "items",
            "total_plates",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
        extra_kwargs = {"challan_number": {"validators": []}}

    def get_total_plates(self, obj):
        return sum(item.borrowed_quantity + item.borrowed_stock for item in obj.items.all())

    def validate_challan_number(self, value):
        queryset = Challan.objects.filter(challan_number=value)
        if self.instance is not None:
            queryset = queryset.exclude(id=self.instance.id)
        if queryset.exists():
            raise serializers.ValidationError("Challan number already exists. Use a different number.")
        return value

    def validate_items(self, items):
        return _validate_line_items(
            items,
            ("borrowed_quantity", "borrowed_stock"),
            "Enter a quantity for at least one plate size.",
        )

    def create(self, validated_data):
        items = validated_data.pop("items")
        return create_challan(items=items, **validated_data)

    def update(self, instance, validated_data):
        items = validated_data.pop("items", None)
        return update_challan(instance, items=items, **validated_data)


class ReturnLineItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = ReturnLineItem
        fields = [
            "plate_size",
            "returned_quantity",
            "returned_borrowed_stock",
            "damaged_quantity",
            "lost_quantity",
            "damage_notes",
        ]

    def validate(self, attrs):
        if attrs.get("damaged_quantity", 0) + attrs.get("lost_quantity", 0) > attrs.get("returned_quantity", 0):
            raise serializers.ValidationError(
                {"damaged_quantity": "Damaged and lost plates cannot exceed the returned quantity."}
            )
        return attrs


class ReturnSerializer(serializers.ModelSerializer):
    items = ReturnLineItemSerializer(many=True)
    client_name = serializers.CharField(source="client.name", read_only=True)
    total_plates = serializers.SerializerMethodField()

    class Meta:
        model = Return
        fields = [
            "id",
            "return_challan_number",
            "return_date",
            "client",
            "client_name",
            "driver_name",
            "items",
            "total_plates",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
        extra_kwargs = {"return_challan_number": {"validators": []}}

    def get_total_plates(self, obj):
        return sum(item.returned_quantity + item.returned_borrowed_stock for item in obj.items.all())

    def validate_return_challan_number(self, value):
        queryset = Return.objects.filter(return_challan_number=value)
        if self.instance is not None:
            queryset = queryset.exclude(id=self.instance.id)
        if queryset.exists():
            raise serializers.ValidationError("Return challan number already exists. Use a different number.")
        return value

    def validate_items(self, items):
        return _validate_line_items(
            items,
            ("returned_quantity", "returned_borrowed_stock"),
            "Enter a returned quantity for at least one plate size.",
        )

    def create(self, validated_data):
        items = validated_data.pop("items")
        return create_return(items=items, **validated_data)

    def update(self, instance, validated_data):
        items = validated_data.pop("items", None)
        return update_return(instance, items=items, **validated_data)


class TransactionFilterSerializer(serializers.Serializer):
    client = serializers.CharField(required=False)
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)

    def validate(self, attrs):
        start_date = attrs.get("start_date")
        end_date = attrs.get("end_date")
        if start_date and end_date and start_date > end_date:
            raise serializers.ValidationError({"end_date": "End date must be on or after the start date."})
        return attrs


class LedgerQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True)
    active_only = serializers.BooleanField(required=False, default=False)
    with_activity = serializers.BooleanField(required=False, default=False)
