from django.db import models

from inventory.models import PlateSize


class Client(models.Model):
    id = models.CharField(max_length=64, primary_key=True)
    name = models.CharField(max_length=255)
    site = models.CharField(max_length=255, blank=True, default="")
    mobile_number = models.CharField(max_length=32, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["name"], name="client_name_idx"),
        ]

    def __str__(self):
        return f"{self.id} - {self.name}"


class Challan(models.Model):
    """Udhar (issue) challan: plates sent out to a client's site."""

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"
        PARTIAL = "partial", "Partial"

    challan_number = models.CharField(max_length=64, unique=True)
    challan_date = models.DateField()
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="challans")
    driver_name = models.CharField(max_length=255, null=True, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["client", "challan_date"], name="challan_client_date_idx"),
        ]

    def __str__(self):
        return self.challan_number


class ChallanItem(models.Model):
    challan = models.ForeignKey(Challan, on_delete=models.CASCADE, related_name="items")
    plate_size = models.CharField(max_length=32, choices=PlateSize.choices)
    borrowed_quantity = models.PositiveIntegerField(default=0)
    borrowed_stock = models.PositiveIntegerField(default=0)
    partner_stock_notes = models.TextField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["challan", "plate_size"], name="challan_item_size_unique"),
        ]


class Return(models.Model):
    """Jama (return) challan: plates brought back from a client's site."""

    return_challan_number = models.CharField(max_length=64, unique=True)
    return_date = models.DateField()
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="returns")
    driver_name = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["client", "return_date"], name="return_client_date_idx"),
        ]

    def __str__(self):
        return self.return_challan_number


class ReturnLineItem(models.Model):
    return_txn = models.ForeignKey(Return, on_delete=models.CASCADE, related_name="items")
    plate_size = models.CharField(max_length=32, choices=PlateSize.choices)
    returned_quantity = models.PositiveIntegerField(default=0)
    returned_borrowed_stock = models.PositiveIntegerField(default=0)
    damaged_quantity = models.PositiveIntegerField(default=0)
    lost_quantity = models.PositiveIntegerField(default=0)
    damage_notes = models.TextField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["return_txn", "plate_size"], name="return_item_size_unique"),
        ]
