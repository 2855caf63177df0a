from datetime import date, timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditLog
from inventory.models import PLATE_SIZES, StockItem
from rentals.ledger import (
    absolute_outstanding_total,
    build_client_ledger,
    build_client_ledgers,
    build_plate_balances,
    combined_outstanding_total,
    merge_transactions,
    net_borrowed_stock,
    signed_outstanding_total,
)
from rentals.models import Challan, Client, Return
from rentals.numbering import next_bill_number, suggest_next_number
from rentals.services import dashboard_summary


def issue_row(row_id, day, *items, client_id="C-1", number=None):
    return {
        "id": row_id,
        "challan_number": number or f"U{row_id}",
        "challan_date": day,
        "client_id": client_id,
        "driver_name": None,
        "items": [
            {"plate_size": size, "borrowed_quantity": own, "borrowed_stock": depot, "notes": None}
            for size, own, depot in items
        ],
    }


def return_row(row_id, day, *items, client_id="C-1", number=None):
    return {
        "id": row_id,
        "return_challan_number": number or f"J{row_id}",
        "return_date": day,
        "client_id": client_id,
        "driver_name": None,
        "items": [
            {
                "plate_size": size,
                "returned_quantity": own,
                "returned_borrowed_stock": depot,
                "damaged_quantity": 0,
                "lost_quantity": 0,
                "notes": None,
            }
            for size, own, depot in items
        ],
    }


CLIENT = {"id": "C-1", "name": "Shreeji Builders", "site": "Ring Road", "mobile_number": "9999999999"}


class LedgerTests(SimpleTestCase):
    def test_issue_then_partial_return_leaves_outstanding(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 0))]
        returns = [return_row(1, date(2024, 1, 10), ("2 X 3", 4, 0))]

        ledger = build_client_ledger(CLIENT, challans, returns)

        balance = next(row for row in ledger["plate_balances"] if row["plate_size"] == "2 X 3")
        self.assertEqual(balance, {"plate_size": "2 X 3", "total_borrowed": 10, "total_returned": 4, "outstanding": 6})
        self.assertEqual(ledger["total_outstanding"], 6)
        self.assertEqual(ledger["total_outstanding_absolute"], 6)
        self.assertTrue(ledger["has_activity"])
        self.assertEqual([entry["type"] for entry in ledger["all_transactions"]], ["jama", "udhar"])

    def test_client_without_transactions_has_zero_balances(self):
        ledger = build_client_ledger(CLIENT, [], [])

        self.assertEqual([row["plate_size"] for row in ledger["plate_balances"]], PLATE_SIZES)
        for row in ledger["plate_balances"]:
            self.assertEqual(row["total_borrowed"], 0)
            self.assertEqual(row["total_returned"], 0)
            self.assertEqual(row["outstanding"], 0)
        self.assertEqual(ledger["total_outstanding"], 0)
        self.assertFalse(ledger["has_activity"])
        self.assertEqual(ledger["all_transactions"], [])

    def test_over_return_goes_negative_and_totals_differ(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 5, 0), ("9 X 3", 8, 0))]
        returns = [return_row(1, date(2024, 1, 2), ("2 X 3", 7, 0))]

        balances = build_plate_balances(challans, returns)

        by_size = {row["plate_size"]: row for row in balances}
        self.assertEqual(by_size["2 X 3"]["outstanding"], -2)
        self.assertEqual(signed_outstanding_total(balances), 6)
        self.assertEqual(absolute_outstanding_total(balances), 10)

    def test_depot_stock_is_tracked_separately(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 5), ("પતરા", 0, 3))]
        returns = [return_row(1, date(2024, 1, 5), ("2 X 3", 2, 4))]

        balances = build_plate_balances(challans, returns)

        by_size = {row["plate_size"]: row for row in balances}
        self.assertEqual(by_size["2 X 3"]["total_borrowed"], 10)
        self.assertEqual(by_size["પતરા"]["total_borrowed"], 0)
        self.assertEqual(net_borrowed_stock(challans, returns), 4)
        self.assertEqual(net_borrowed_stock(challans, returns, plate_size="2 X 3"), 1)
        self.assertEqual(combined_outstanding_total(balances, challans, returns), 12)

        ledger = build_client_ledger(CLIENT, challans, returns)
        self.assertEqual(ledger["borrowed_stock_outstanding"], 4)
        self.assertEqual(ledger["total_outstanding_with_borrowed"], 12)

    def test_unknown_plate_sizes_are_ignored(self):
        challans = [issue_row(1, date(2024, 1, 1), ("3 X 3", 10, 0))]

        balances = build_plate_balances(challans, [])

        self.assertEqual(absolute_outstanding_total(balances), 0)
        self.assertNotIn("3 X 3", [row["plate_size"] for row in balances])

    def test_active_only_keeps_sizes_with_movement(self):
        challans = [issue_row(1, date(2024, 1, 1), ("12 X 3", 3, 0))]

        ledger = build_client_ledger(CLIENT, challans, [], active_only=True)

        self.assertEqual([row["plate_size"] for row in ledger["plate_balances"]], ["12 X 3"])

    def test_ledger_totals_match_helpers_with_and_without_active_only(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 4), ("9 X 3", 3, 0))]
        returns = [return_row(1, date(2024, 1, 5), ("2 X 3", 12, 1))]
        balances = build_plate_balances(challans, returns)

        full = build_client_ledger(CLIENT, challans, returns)
        active = build_client_ledger(CLIENT, challans, returns, active_only=True)

        self.assertEqual(active["plate_balances"], build_plate_balances(challans, returns, active_only=True))
        for ledger in (full, active):
            self.assertEqual(ledger["total_outstanding"], signed_outstanding_total(balances))
            self.assertEqual(ledger["total_outstanding_absolute"], absolute_outstanding_total(balances))
            self.assertEqual(
                ledger["total_outstanding_with_borrowed"],
                combined_outstanding_total(balances, challans, returns),
            )
        self.assertEqual(full["total_outstanding_with_borrowed"], 8)

    def test_same_day_issue_sorts_before_return_and_descending_is_exact_reverse(self):
        day = date(2024, 3, 1)
        challans = [issue_row(2, day, ("2 X 3", 5, 0)), issue_row(1, day, ("2 X 3", 1, 0))]
        returns = [return_row(1, day, ("2 X 3", 2, 0)), return_row(2, date(2024, 2, 1), ("2 X 3", 1, 0))]

        ascending = merge_transactions(challans, returns, descending=False)
        descending = merge_transactions(challans, returns)

        self.assertEqual(
            [(entry["type"], entry["id"]) for entry in ascending],
            [("jama", 2), ("udhar", 1), ("udhar", 2), ("jama", 1)],
        )
        self.assertEqual(descending, list(reversed(ascending)))

    def test_transaction_items_omit_all_zero_sizes(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 2), ("9 X 3", 0, 0))]

        entry = merge_transactions(challans, [])[0]

        self.assertEqual(entry["number"], "U1")
        self.assertEqual(entry["total_plates"], 12)
        self.assertEqual(
            entry["items"],
            [{"plate_size": "2 X 3", "quantity": 10, "borrowed_stock": 2, "notes": ""}],
        )

    def test_balances_are_additive_over_transaction_sets(self):
        first = ([issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 0))], [return_row(1, date(2024, 1, 4), ("2 X 3", 3, 0))])
        second = ([issue_row(2, date(2024, 2, 1), ("2 X 3", 6, 0), ("9 X 3", 2, 0))], [])

        combined = build_plate_balances(first[0] + second[0], first[1] + second[1])
        separate = zip(build_plate_balances(*first), build_plate_balances(*second))

        for total, (left, right) in zip(combined, separate):
            self.assertEqual(total["outstanding"], left["outstanding"] + right["outstanding"])

    def test_ledger_is_idempotent(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 1))]
        returns = [return_row(1, date(2024, 1, 10), ("2 X 3", 4, 1))]

        self.assertEqual(
            build_client_ledger(CLIENT, challans, returns),
            build_client_ledger(CLIENT, challans, returns),
        )

    def test_ledgers_include_clients_without_transactions(self):
        other = {"id": "C-2", "name": "Idle Client", "site": "", "mobile_number": ""}
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 0))]

        ledgers = build_client_ledgers([CLIENT, other], challans, [])

        self.assertEqual([ledger["client"]["id"] for ledger in ledgers], ["C-1", "C-2"])
        self.assertEqual(ledgers[0]["total_outstanding"], 10)
        self.assertFalse(ledgers[1]["has_activity"])


class NumberingTests(SimpleTestCase):
    def test_suggest_next_number(self):
        self.assertEqual(suggest_next_number("B007"), "B008")
        self.assertEqual(suggest_next_number("42"), "43")
        self.assertEqual(suggest_next_number("X"), "X1")
        self.assertEqual(suggest_next_number("A0041"), "A0042")
        self.assertEqual(suggest_next_number("A099"), "A100")
        self.assertEqual(suggest_next_number("9"), "10")
        self.assertEqual(suggest_next_number(None), "1")
        self.assertEqual(suggest_next_number(""), "1")

    def test_next_bill_number(self):
        self.assertEqual(next_bill_number("BILL-0007"), "BILL-0008")
        self.assertEqual(next_bill_number("BILL-9999"), "BILL-10000")
        self.assertEqual(next_bill_number("misc"), "BILL-0001")
        self.assertEqual(next_bill_number(None), "BILL-0001")


class RentalApiTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(username="rental-admin", password="pass1234", role="admin")
        self.operator = self.user_model.objects.create_user(
            username="rental-operator", password="pass1234", role="operator"
        )
        self.customer = Client.objects.create(id="C-1", name="Shreeji Builders", site="Ring Road")
        for plate_size in PLATE_SIZES:
            StockItem.objects.create(plate_size=plate_size, total_quantity=100, available_quantity=100)
        self.client.force_authenticate(user=self.admin)

    def stock(self, plate_size="2 X 3"):
        row = StockItem.objects.get(plate_size=plate_size)
        return row.available_quantity, row.on_rent_quantity

    def create_challan(self, number="B007", quantity=10, day="2024-01-01", **extra):
        payload = {
            "challan_number": number,
            "challan_date": day,
            "client": self.customer.id,
            "driver_name": "Ramesh",
            "items": [{"plate_size": "2 X 3", "borrowed_quantity": quantity, "borrowed_stock": 0}],
        }
        payload.update(extra)
        return self.client.post("/api/v1/challans/", payload, format="json")

    def create_return(self, number="J001", quantity=4, day="2024-01-10", damaged=0):
        return self.client.post(
            "/api/v1/returns/",
            {
                "return_challan_number": number,
                "return_date": day,
                "client": self.customer.id,
                "items": [{"plate_size": "2 X 3", "returned_quantity": quantity, "damaged_quantity": damaged}],
            },
            format="json",
        )


class ChallanLifecycleTests(RentalApiTestCase):
    def test_create_challan_moves_stock_on_rent_and_writes_audit(self):
        response = self.create_challan()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["total_plates"], 10)
        self.assertEqual(self.stock(), (90, 10))
        log = AuditLog.objects.get(action="challan.create", entity_id=str(response.json()["id"]))
        self.assertEqual(log.client_id, self.customer.id)

    def test_editing_issue_applies_only_the_difference(self):
        challan_id = self.create_challan(quantity=10).json()["id"]
        return_id = self.create_return(quantity=4).json()["id"]
        self.assertEqual(self.stock(), (94, 6))

        response = self.client.patch(
            f"/api/v1/challans/{challan_id}/",
            {"items": [{"plate_size": "2 X 3", "borrowed_quantity": 7}]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.stock(), (97, 3))
        challan = Challan.objects.get(id=challan_id)
        self.assertEqual([item.borrowed_quantity for item in challan.items.all()], [7])
        return_txn = Return.objects.get(id=return_id)
        self.assertEqual([item.returned_quantity for item in return_txn.items.all()], [4])

    def test_header_only_update_keeps_items_and_stock(self):
        challan_id = self.create_challan().json()["id"]

        response = self.client.patch(f"/api/v1/challans/{challan_id}/", {"driver_name": "Suresh"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["driver_name"], "Suresh")
        self.assertEqual(response.json()["total_plates"], 10)
        self.assertEqual(self.stock(), (90, 10))

    def test_challan_status_accepts_active_completed_and_partial(self):
        self.assertEqual(self.create_challan().json()["status"], "active")
        self.assertEqual(self.create_challan(number="B008", status="partial").json()["status"], "partial")
        self.assertEqual(self.create_challan(number="B009", status="completed").json()["status"], "completed")

        response = self.create_challan(number="B010", status="returned")

        self.assertEqual(response.status_code, 400)
        self.assertIn("status", response.json()["errors"])

    def test_deleting_challan_releases_stock(self):
        challan_id = self.create_challan().json()["id"]

        response = self.client.delete(f"/api/v1/challans/{challan_id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Challan.objects.filter(id=challan_id).exists())
        self.assertEqual(self.stock(), (100, 0))
        self.assertTrue(AuditLog.objects.filter(action="challan.delete", entity_id=str(challan_id)).exists())

    def test_failed_item_replace_reverts_stock(self):
        challan_id = self.create_challan(quantity=10).json()["id"]

        with patch("rentals.services._insert_challan_items", side_effect=DatabaseError("write failed")):
            with self.assertLogs("rentals.services", level="WARNING"):
                response = self.client.patch(
                    f"/api/v1/challans/{challan_id}/",
                    {"items": [{"plate_size": "2 X 3", "borrowed_quantity": 7}]},
                    format="json",
                )

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["code"], "internal_server_error")
        self.assertEqual(self.stock(), (90, 10))
        challan = Challan.objects.get(id=challan_id)
        self.assertEqual([item.borrowed_quantity for item in challan.items.all()], [10])

    def test_stock_write_failure_returns_conflict_and_saves_nothing(self):
        with patch("inventory.services._shift_counters", side_effect=DatabaseError("locked")):
            response = self.create_challan()

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "stock_update_error")
        self.assertFalse(Challan.objects.exists())
        self.assertEqual(self.stock(), (100, 0))

    def test_operator_can_create_but_not_edit(self):
        self.client.force_authenticate(user=self.operator)
        challan_id = self.create_challan().json()["id"]

        response = self.client.patch(f"/api/v1/challans/{challan_id}/", {"driver_name": "X"}, format="json")

        self.assertEqual(response.status_code, 403)


class ChallanValidationTests(RentalApiTestCase):
    def test_duplicate_number_is_rejected(self):
        self.create_challan(number="B007")

        response = self.create_challan(number="B007")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("challan_number", response.json()["errors"])
        self.assertEqual(self.stock(), (90, 10))

    def test_blank_number_is_rejected(self):
        response = self.create_challan(number="   ")

        self.assertEqual(response.status_code, 400)
        self.assertIn("challan_number", response.json()["errors"])

    def test_all_zero_quantities_are_rejected(self):
        response = self.create_challan(quantity=0)

        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.json()["errors"])
        self.assertEqual(self.stock(), (100, 0))

    def test_unknown_plate_size_is_rejected(self):
        response = self.create_challan(items=[{"plate_size": "3 X 3", "borrowed_quantity": 4}])

        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.json()["errors"])

    def test_missing_client_is_rejected(self):
        response = self.create_challan(client=None)

        self.assertEqual(response.status_code, 400)
        self.assertIn("client", response.json()["errors"])

    def test_zero_quantity_sizes_are_not_stored(self):
        response = self.create_challan(
            items=[
                {"plate_size": "2 X 3", "borrowed_quantity": 5},
                {"plate_size": "9 X 3", "borrowed_quantity": 0, "borrowed_stock": 0},
            ]
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual([item["plate_size"] for item in response.json()["items"]], ["2 X 3"])


class ReturnLifecycleTests(RentalApiTestCase):
    def test_damaged_plates_do_not_become_available(self):
        self.create_challan(quantity=10)

        response = self.create_return(quantity=6, damaged=2)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(self.stock(), (94, 4))

    def test_damage_cannot_exceed_returned(self):
        response = self.create_return(quantity=1, damaged=2)

        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.json()["errors"])

    def test_deleting_return_puts_plates_back_on_rent(self):
        self.create_challan(quantity=10)
        return_id = self.create_return(quantity=4).json()["id"]

        response = self.client.delete(f"/api/v1/returns/{return_id}/")

        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.stock(), (90, 10))


class NumberingApiTests(RentalApiTestCase):
    def test_next_challan_number_follows_latest(self):
        self.create_challan(number="B007")

        response = self.client.get("/api/v1/challans/next-number/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"challan_number": "B008"})

    def test_next_number_skips_numbers_already_taken(self):
        self.create_challan(number="B008", day="2024-01-01")
        self.create_challan(number="B007", day="2024-01-02")

        response = self.client.get("/api/v1/challans/next-number/")

        self.assertEqual(response.json(), {"challan_number": "B009"})

    def test_next_return_number_starts_at_one(self):
        response = self.client.get("/api/v1/returns/next-number/")

        self.assertEqual(response.json(), {"return_challan_number": "1"})

    def test_drivers_lists_distinct_previous_names(self):
        self.create_challan(number="1")
        self.create_challan(number="2", driver_name="Mahesh")
        self.create_challan(number="3")

        response = self.client.get("/api/v1/challans/drivers/")

        self.assertEqual(response.json(), ["Mahesh", "Ramesh"])


class LedgerApiTests(RentalApiTestCase):
    def test_client_ledger_reports_outstanding(self):
        self.create_challan(quantity=10)
        self.create_return(quantity=4)

        response = self.client.get(f"/api/v1/clients/{self.customer.id}/ledger/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["client"]["name"], "Shreeji Builders")
        self.assertEqual(payload["total_outstanding"], 6)
        self.assertEqual([entry["number"] for entry in payload["all_transactions"]], ["J001", "B007"])
        self.assertEqual(payload["all_transactions"][0]["date"], "2024-01-10")

    def test_ledger_fetch_failure_returns_fetch_error(self):
        with patch("rentals.transactions._challan_queryset", side_effect=DatabaseError("connection reset")):
            with self.assertLogs("rentals.transactions", level="ERROR"):
                response = self.client.get(f"/api/v1/clients/{self.customer.id}/ledger/")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["code"], "fetch_error")

    def test_all_ledgers_include_idle_clients_unless_filtered(self):
        Client.objects.create(id="C-2", name="Idle Client")
        self.create_challan(quantity=10)

        everyone = self.client.get("/api/v1/ledgers/").json()
        active = self.client.get("/api/v1/ledgers/", {"with_activity": "true"}).json()

        self.assertEqual({ledger["client"]["id"] for ledger in everyone}, {"C-1", "C-2"})
        self.assertEqual([ledger["client"]["id"] for ledger in active], ["C-1"])

    def test_client_with_transactions_cannot_be_deleted(self):
        self.create_challan()

        response = self.client.delete(f"/api/v1/clients/{self.customer.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "protected_record")
        self.assertTrue(Client.objects.filter(id=self.customer.id).exists())


class DashboardTests(RentalApiTestCase):
    def test_summary_counts_and_recent_activity(self):
        today = timezone.localdate()
        self.create_challan(number="B007", quantity=10, day="2024-01-01")
        self.create_challan(number="B008", quantity=10, day=today.isoformat())
        self.create_challan(number="B009", quantity=1, day="2024-01-02", status="completed")
        self.create_return(number="J001", quantity=4)
        StockItem.objects.filter(plate_size="9 X 3").update(available_quantity=5)
        Client.objects.create(id="C-2", name="Idle Client")
        self.client.force_authenticate(user=self.operator)

        response = self.client.get("/api/v1/dashboard/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["total_clients"], 2)
        self.assertEqual(payload["active_challans"], 2)
        self.assertEqual(payload["pending_returns"], 2)
        self.assertEqual(payload["overdue_challans"], 1)
        self.assertEqual(payload["on_rent_plates"], 17)
        self.assertEqual(payload["total_stock"], 100 * len(PLATE_SIZES))
        self.assertEqual(payload["low_stock_items"], 1)
        self.assertEqual(
            [(entry["type"], entry["number"], entry["status"]) for entry in payload["recent_activity"]],
            [
                ("udhar", "B008", "active"),
                ("udhar", "B009", "completed"),
                ("udhar", "B007", "active"),
                ("jama", "J001", "returned"),
            ],
        )
        self.assertEqual(payload["recent_activity"][0]["client_name"], "Shreeji Builders")
        self.assertEqual(payload["recent_activity"][0]["date"], today.isoformat())

    def test_overdue_means_issued_more_than_thirty_days_ago(self):
        self.create_challan(number="B007", day="2024-01-01")
        self.create_challan(number="B008", day="2024-01-02")

        summary = dashboard_summary(today=date(2024, 1, 2) + timedelta(days=30))

        self.assertEqual(summary["active_challans"], 2)
        self.assertEqual(summary["overdue_challans"], 1)

    def test_recent_activity_is_capped_at_five(self):
        for index in range(4):
            self.create_challan(number=f"B00{index}", quantity=1, day=f"2024-01-0{index + 1}")
        for index in range(3):
            self.create_return(number=f"J00{index}", quantity=1, day=f"2024-02-0{index + 1}")

        activity = dashboard_summary()["recent_activity"]

        self.assertEqual([entry["number"] for entry in activity], ["B003", "B002", "B001", "J002", "J001"])

    def test_dashboard_requires_authentication(self):
        self.client.force_authenticate(user=None)

        response = self.client.get("/api/v1/dashboard/")

        self.assertEqual(response.status_code, 401)
