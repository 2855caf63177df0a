from django.db import models


class PlateSize(models.TextChoices):
    SIZE_2X3 = "2 X 3", "2 X 3"
    SIZE_21X3 = "21 X 3", "21 X 3"
    SIZE_18X3 = "18 X 3", "18 X 3"
    SIZE_15X3 = "15 X 3", "15 X 3"
    SIZE_12X3 = "12 X 3", "12 X 3"
    SIZE_9X3 = "9 X 3", "9 X 3"
    PATRA = "પતરા", "Patra"
    SIZE_2X2 = "2 X 2", "2 X 2"
    TWO_FOOT = "2 ફુટ", "2 Foot"


# Display order for every balance table and stock listing.
PLATE_SIZES = [size.value for size in PlateSize]


def plate_size_sort_key(plate_size):
    try:
        return PLATE_SIZES.index(plate_size)
    except ValueError:
        return len(PLATE_SIZES)


class StockItem(models.Model):
    plate_size = models.CharField(max_length=32, choices=PlateSize.choices, unique=True)
    total_quantity = models.PositiveIntegerField(default=0)
    available_quantity = models.PositiveIntegerField(default=0)
    on_rent_quantity = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.plate_size}: {self.available_quantity}/{self.total_quantity}"


class TransactionType(models.TextChoices):
    UDHAR = "udhar", "Issue"
    JAMA = "jama", "Return"
