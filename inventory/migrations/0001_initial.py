from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="StockItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "plate_size",
                    models.CharField(
                        choices=[
                            ("2 X 3", "2 X 3"),
                            ("21 X 3", "21 X 3"),
                            ("18 X 3", "18 X 3"),
                            ("15 X 3", "15 X 3"),
                            ("12 X 3", "12 X 3"),
                            ("9 X 3", "9 X 3"),
                            ("પતરા", "Patra"),
                            ("2 X 2", "2 X 2"),
                            ("2 ફુટ", "2 Foot"),
                        ],
                        max_length=32,
                        unique=True,
                    ),
                ),
                ("total_quantity", models.PositiveIntegerField(default=0)),
                ("available_quantity", models.PositiveIntegerField(default=0)),
                ("on_rent_quantity", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
    ]
