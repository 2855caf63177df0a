from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from inventory.models import PLATE_SIZES, StockItem


class Command(BaseCommand):
    help = "Create one stock row per plate size and, optionally, local admin/operator accounts."

    def add_arguments(self, parser):
        parser.add_argument("--total", type=int, default=0, help="Total quantity for newly created stock rows.")
        parser.add_argument("--with-users", action="store_true", help="Also create admin and operator logins.")

    def handle(self, *args, **options):
        total = max(0, options["total"])
        created_sizes = []
        for plate_size in PLATE_SIZES:
            _, created = StockItem.objects.get_or_create(
                plate_size=plate_size,
                defaults={"total_quantity": total, "available_quantity": total, "on_rent_quantity": 0},
            )
            if created:
                created_sizes.append(plate_size)

        self.stdout.write(f"Stock rows created: {len(created_sizes)} of {len(PLATE_SIZES)}")

        if options["with_users"]:
            self._seed_users()

        self.stdout.write(self.style.SUCCESS("Plate stock seeded successfully."))

    def _seed_users(self):
        User = get_user_model()

        admin_user, admin_created = User.objects.get_or_create(
            username="admin",
            defaults={
                "email": "admin@example.com",
                "role": User.Role.ADMIN,
                "is_staff": True,
                "is_superuser": True,
                "is_active": True,
            },
        )
        if admin_created:
            admin_user.set_password("admin1234")
            admin_user.save(update_fields=["password"])

        operator_user, operator_created = User.objects.get_or_create(
            username="operator",
            defaults={
                "email": "operator@example.com",
                "role": User.Role.OPERATOR,
                "is_active": True,
            },
        )
        if operator_created:
            operator_user.set_password("operator1234")
            operator_user.save(update_fields=["password"])

        self.stdout.write("Users: admin/admin1234, operator/operator1234")
