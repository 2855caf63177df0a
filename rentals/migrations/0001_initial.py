import django.db.models.deletion
from django.db import migrations, models

PLATE_SIZE_CHOICES = [
    ("2 X 3", "2 X 3"),
    ("21 X 3", "21 X 3"),
    ("18 X 3", "18 X 3"),
    ("15 X 3", "15 X 3"),
    ("12 X 3", "12 X 3"),
    ("9 X 3", "9 X 3"),
    ("પતરા", "Patra"),
    ("2 X 2", "2 X 2"),
    ("2 ફુટ", "2 Foot"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Client",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("site", models.CharField(blank=True, default="", max_length=255)),
                ("mobile_number", models.CharField(blank=True, default="", max_length=32)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "indexes": [models.Index(fields=["name"], name="client_name_idx")],
            },
        ),
        migrations.CreateModel(
            name="Challan",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("challan_number", models.CharField(max_length=64, unique=True)),
                ("challan_date", models.DateField()),
                ("driver_name", models.CharField(blank=True, max_length=255, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("completed", "Completed"), ("partial", "Partial")],
                        default="active",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="challans",
                        to="rentals.client",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["client", "challan_date"], name="challan_client_date_idx")],
            },
        ),
        migrations.CreateModel(
            name="ChallanItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("plate_size", models.CharField(choices=PLATE_SIZE_CHOICES, max_length=32)),
                ("borrowed_quantity", models.PositiveIntegerField(default=0)),
                ("borrowed_stock", models.PositiveIntegerField(default=0)),
                ("partner_stock_notes", models.TextField(blank=True, null=True)),
                (
                    "challan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="rentals.challan",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("challan", "plate_size"), name="challan_item_size_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Return",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("return_challan_number", models.CharField(max_length=64, unique=True)),
                ("return_date", models.DateField()),
                ("driver_name", models.CharField(blank=True, max_length=255, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="returns",
                        to="rentals.client",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["client", "return_date"], name="return_client_date_idx")],
            },
        ),
        migrations.CreateModel(
            name="ReturnLineItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("plate_size", models.CharField(choices=PLATE_SIZE_CHOICES, max_length=32)),
                ("returned_quantity", models.PositiveIntegerField(default=0)),
                ("returned_borrowed_stock", models.PositiveIntegerField(default=0)),
                ("damaged_quantity", models.PositiveIntegerField(default=0)),
                ("lost_quantity", models.PositiveIntegerField(default=0)),
                ("damage_notes", models.TextField(blank=True, null=True)),
                (
                    "return_txn",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="rentals.return",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("return_txn", "plate_size"), name="return_item_size_unique"),
                ],
            },
        ),
    ]
