import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("rentals", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Bill",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("bill_number", models.CharField(max_length=32, unique=True)),
                ("bill_date", models.DateField()),
                ("period_start", models.DateField(blank=True, null=True)),
                ("period_end", models.DateField(blank=True, null=True)),
                ("rate_per_day", models.DecimalField(decimal_places=2, max_digits=12)),
                ("total_days", models.PositiveIntegerField(default=0)),
                ("total_plates", models.IntegerField(default=0)),
                ("subtotal", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("extra_charges_total", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("discounts_total", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("paid", "Paid"), ("overdue", "Overdue")],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("generated_at", models.DateTimeField(auto_now_add=True)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bills",
                        to="rentals.client",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["client", "bill_date"], name="bill_client_date_idx")],
            },
        ),
    ]
