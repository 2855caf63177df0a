from rest_framework import serializers

from inventory.models import StockItem
from inventory.services import stock_level


class StockItemSerializer(serializers.ModelSerializer):
    stock_level = serializers.SerializerMethodField()
    borrowed_stock_out = serializers.SerializerMethodField()

    class Meta:
        model = StockItem
        fields = [
            "id",
            "plate_size",
            "total_quantity",
            "available_quantity",
            "on_rent_quantity",
            "stock_level",
            "borrowed_stock_out",
            "updated_at",
        ]
        read_only_fields = ["id", "plate_size", "available_quantity", "on_rent_quantity", "updated_at"]

    def get_stock_level(self, obj):
        return stock_level(obj.available_quantity)

    def get_borrowed_stock_out(self, obj):
        """Depot plates of this size still at client sites, supplied by the view."""
        return self.context.get("borrowed_stock_out", {}).get(obj.plate_size, 0)
