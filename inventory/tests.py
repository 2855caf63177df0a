from datetime import date
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.db.models import F
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import StockUpdateError
from core.models import AuditLog
from inventory import services
from inventory.models import PLATE_SIZES, StockItem, plate_size_sort_key
from inventory.services import (
    ISSUE,
    RETURN,
    StockAdjustmentBatch,
    apply_stock_deltas,
    compute_stock_deltas,
    set_total_quantity,
    stock_level,
)
from rentals.models import Challan, ChallanItem, Client, Return, ReturnLineItem


class StockDeltaTests(SimpleTestCase):
    def test_issue_edit_reduces_on_rent_and_frees_available(self):
        deltas = compute_stock_deltas(
            ISSUE,
            [{"plate_size": "2 X 3", "borrowed_quantity": 10}],
            [{"plate_size": "2 X 3", "borrowed_quantity": 7}],
        )

        self.assertEqual(deltas, {"2 X 3": {"on_rent": -3, "available": 3}})

    def test_new_issue_moves_plates_out_and_depot_stock_is_ignored(self):
        deltas = compute_stock_deltas(
            ISSUE,
            [],
            [
                {"plate_size": "2 X 3", "borrowed_quantity": 10, "borrowed_stock": 4},
                {"plate_size": "9 X 3", "borrowed_quantity": 0, "borrowed_stock": 6},
            ],
        )

        self.assertEqual(deltas, {"2 X 3": {"on_rent": 10, "available": -10}})

    def test_unchanged_sizes_are_skipped(self):
        items = [{"plate_size": "2 X 3", "borrowed_quantity": 5}, {"plate_size": "પતરા", "borrowed_quantity": 2}]

        self.assertEqual(compute_stock_deltas(ISSUE, items, items), {})

    def test_deleting_issue_reverses_it(self):
        deltas = compute_stock_deltas(ISSUE, [{"plate_size": "2 ફુટ", "borrowed_quantity": 8}], [])

        self.assertEqual(deltas, {"2 ફુટ": {"on_rent": -8, "available": 8}})

    def test_return_keeps_damaged_and_lost_out_of_available(self):
        deltas = compute_stock_deltas(
            RETURN,
            [],
            [{"plate_size": "2 X 3", "returned_quantity": 10, "damaged_quantity": 2, "lost_quantity": 1}],
        )

        self.assertEqual(deltas, {"2 X 3": {"on_rent": -10, "available": 7}})

    def test_return_edit_only_moves_the_difference(self):
        deltas = compute_stock_deltas(
            RETURN,
            [{"plate_size": "2 X 3", "returned_quantity": 4}],
            [{"plate_size": "2 X 3", "returned_quantity": 6, "damaged_quantity": 1}],
        )

        self.assertEqual(deltas, {"2 X 3": {"on_rent": -2, "available": 1}})

    def test_unknown_kind_is_rejected(self):
        with self.assertRaises(ValueError):
            compute_stock_deltas("transfer", [], [])

    def test_stock_level_thresholds(self):
        self.assertEqual(stock_level(0), "low")
        self.assertEqual(stock_level(9), "low")
        self.assertEqual(stock_level(10), "medium")
        self.assertEqual(stock_level(49), "medium")
        self.assertEqual(stock_level(50), "good")

    @override_settings(STOCK_LOW_THRESHOLD=3, STOCK_MEDIUM_THRESHOLD=5)
    def test_stock_level_thresholds_are_configurable(self):
        self.assertEqual(stock_level(2), "low")
        self.assertEqual(stock_level(4), "medium")
        self.assertEqual(stock_level(5), "good")

    def test_plate_sizes_sort_in_display_order(self):
        self.assertEqual(sorted(reversed(PLATE_SIZES), key=plate_size_sort_key), PLATE_SIZES)
        self.assertEqual(plate_size_sort_key("unknown"), len(PLATE_SIZES))


class StockAdjustmentBatchTests(TestCase):
    def setUp(self):
        self.small = StockItem.objects.create(
            plate_size="2 X 3", total_quantity=100, available_quantity=100, on_rent_quantity=0
        )
        self.large = StockItem.objects.create(
            plate_size="21 X 3", total_quantity=50, available_quantity=40, on_rent_quantity=10
        )

    def test_apply_updates_counters_and_records_undo_log(self):
        batch = apply_stock_deltas(
            ISSUE,
            [],
            [{"plate_size": "2 X 3", "borrowed_quantity": 10}, {"plate_size": "21 X 3", "borrowed_quantity": 5}],
        )

        self.small.refresh_from_db()
        self.large.refresh_from_db()
        self.assertEqual((self.small.available_quantity, self.small.on_rent_quantity), (90, 10))
        self.assertEqual((self.large.available_quantity, self.large.on_rent_quantity), (35, 15))
        self.assertEqual(
            batch.applied,
            [(self.small.id, "2 X 3", -10, 10), (self.large.id, "21 X 3", -5, 5)],
        )

    def test_counters_are_clamped_at_zero(self):
        StockAdjustmentBatch().apply({"21 X 3": {"on_rent": -25, "available": -60}})

        self.large.refresh_from_db()
        self.assertEqual(self.large.available_quantity, 0)
        self.assertEqual(self.large.on_rent_quantity, 0)

    def test_rollback_reverts_only_the_clamped_change(self):
        batch = StockAdjustmentBatch().apply({"21 X 3": {"on_rent": -25, "available": -60}})

        self.assertEqual(batch.applied, [(self.large.id, "21 X 3", -40, -10)])
        with self.assertLogs("inventory.services", level="WARNING"):
            batch.rollback()

        self.large.refresh_from_db()
        self.assertEqual((self.large.available_quantity, self.large.on_rent_quantity), (40, 10))

    def test_writes_are_relative_to_the_current_counters(self):
        real_shift = services._shift_counters

        def shift_after_concurrent_issue(stock_id, available_change, on_rent_change):
            StockItem.objects.filter(id=stock_id).update(
                available_quantity=F("available_quantity") - 5,
                on_rent_quantity=F("on_rent_quantity") + 5,
            )
            real_shift(stock_id, available_change, on_rent_change)

        with patch("inventory.services._shift_counters", side_effect=shift_after_concurrent_issue):
            apply_stock_deltas(ISSUE, [], [{"plate_size": "2 X 3", "borrowed_quantity": 10}])

        self.small.refresh_from_db()
        self.assertEqual((self.small.available_quantity, self.small.on_rent_quantity), (85, 15))

    def test_missing_stock_row_is_skipped_with_warning(self):
        with self.assertLogs("inventory.services", level="WARNING") as logs:
            batch = StockAdjustmentBatch().apply({"9 X 3": {"on_rent": 3, "available": -3}})

        self.assertEqual(batch.applied, [])
        self.assertTrue(any("stock_row_missing" in entry for entry in logs.output))

    def test_failed_write_restores_already_applied_rows(self):
        real_shift = services._shift_counters
        calls = []

        def fail_on_second_write(*args):
            calls.append(args)
            if len(calls) == 2:
                raise DatabaseError("disk full")
            real_shift(*args)

        with patch("inventory.services._shift_counters", side_effect=fail_on_second_write):
            with self.assertLogs("inventory.services", level="WARNING") as logs:
                with self.assertRaises(StockUpdateError):
                    StockAdjustmentBatch().apply(
                        {
                            "2 X 3": {"on_rent": 10, "available": -10},
                            "21 X 3": {"on_rent": 5, "available": -5},
                        }
                    )

        self.small.refresh_from_db()
        self.large.refresh_from_db()
        self.assertEqual((self.small.available_quantity, self.small.on_rent_quantity), (100, 0))
        self.assertEqual((self.large.available_quantity, self.large.on_rent_quantity), (40, 10))
        self.assertTrue(any("stock_batch_rolled_back" in entry for entry in logs.output))

    def test_rollback_restores_in_reverse_order(self):
        batch = StockAdjustmentBatch().apply(
            {
                "2 X 3": {"on_rent": 4, "available": -4},
                "21 X 3": {"on_rent": 1, "available": -1},
            }
        )

        with patch("inventory.services._shift_counters") as shift:
            reverted = batch.rollback()

        self.assertEqual(reverted, 2)
        self.assertEqual(
            [call.args for call in shift.call_args_list],
            [(self.large.id, 1, -1), (self.small.id, 4, -4)],
        )
        self.assertEqual(batch.applied, [])

    def test_set_total_quantity_recomputes_available(self):
        set_total_quantity(self.large, 30)

        self.large.refresh_from_db()
        self.assertEqual(self.large.total_quantity, 30)
        self.assertEqual(self.large.available_quantity, 20)

        set_total_quantity(self.large, 5)
        self.large.refresh_from_db()
        self.assertEqual(self.large.available_quantity, 0)


class StockApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(username="stock-admin", password="pass1234", role="admin")
        self.operator = self.user_model.objects.create_user(
            username="stock-operator", password="pass1234", role="operator"
        )
        for plate_size in reversed(PLATE_SIZES):
            StockItem.objects.create(plate_size=plate_size, total_quantity=60, available_quantity=55, on_rent_quantity=5)

    def test_list_is_unpaginated_and_in_display_order(self):
        self.client.force_authenticate(user=self.operator)

        response = self.client.get("/api/v1/stock/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual([row["plate_size"] for row in payload], PLATE_SIZES)
        self.assertEqual(payload[0]["stock_level"], "good")

    def test_rows_carry_depot_stock_still_out_per_size(self):
        customer = Client.objects.create(id="C-9", name="Depot Client")
        challan = Challan.objects.create(challan_number="B001", challan_date=date(2024, 1, 1), client=customer)
        ChallanItem.objects.create(challan=challan, plate_size="2 X 3", borrowed_quantity=3, borrowed_stock=6)
        return_txn = Return.objects.create(return_challan_number="J001", return_date=date(2024, 1, 5), client=customer)
        ReturnLineItem.objects.create(return_txn=return_txn, plate_size="2 X 3", returned_borrowed_stock=2)
        self.client.force_authenticate(user=self.operator)

        payload = self.client.get("/api/v1/stock/").json()

        depot_out = {row["plate_size"]: row["borrowed_stock_out"] for row in payload}
        self.assertEqual(depot_out["2 X 3"], 4)
        self.assertEqual(sum(depot_out.values()), 4)
        row = StockItem.objects.get(plate_size="2 X 3")
        self.assertEqual(self.client.get(f"/api/v1/stock/{row.id}/").json()["borrowed_stock_out"], 4)

    def test_admin_can_set_total_and_audit_is_written(self):
        self.client.force_authenticate(user=self.admin)
        row = StockItem.objects.get(plate_size="2 X 3")

        response = self.client.patch(
            f"/api/v1/stock/{row.id}/",
            {"total_quantity": 20, "available_quantity": 999},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_quantity"], 20)
        self.assertEqual(response.json()["available_quantity"], 15)
        self.assertEqual(response.json()["stock_level"], "medium")
        log = AuditLog.objects.get(action="stock.update", entity="stock", entity_id=str(row.id))
        self.assertEqual(log.before_snapshot["total_quantity"], 60)
        self.assertEqual(log.after_snapshot["total_quantity"], 20)

    def test_operator_cannot_adjust_stock(self):
        self.client.force_authenticate(user=self.operator)
        row = StockItem.objects.get(plate_size="2 X 3")

        response = self.client.patch(f"/api/v1/stock/{row.id}/", {"total_quantity": 1}, format="json")

        self.assertEqual(response.status_code, 403)
        row.refresh_from_db()
        self.assertEqual(row.total_quantity, 60)
