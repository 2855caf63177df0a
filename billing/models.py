from django.db import models

from rentals.models import Client


class Bill(models.Model):
    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        OVERDUE = "overdue", "Overdue"

    bill_number = models.CharField(max_length=32, unique=True)
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="bills")
    bill_date = models.DateField()
    period_start = models.DateField(null=True, blank=True)
    period_end = models.DateField(null=True, blank=True)
    rate_per_day = models.DecimalField(max_digits=12, decimal_places=2)
    total_days = models.PositiveIntegerField(default=0)
    total_plates = models.IntegerField(default=0)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    extra_charges_total = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    discounts_total = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    generated_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["client", "bill_date"], name="bill_client_date_idx"),
        ]

    def __str__(self):
        return self.bill_number
