from datetime import date
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from billing.calculator import (
    calculate_matched_bill,
    calculate_simple_bill,
    flatten_transactions,
    is_billable_day,
)
from billing.models import Bill
from core.models import AuditLog
from inventory.models import PLATE_SIZES, StockItem
from rentals.models import Client
from rentals.tests import CLIENT, issue_row, return_row


class SimpleBillCalculatorTests(SimpleTestCase):
    def setUp(self):
        self.challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 0))]
        self.returns = [return_row(1, date(2024, 1, 10), ("2 X 3", 4, 0))]

    def test_first_date_is_free_and_later_dates_are_charged(self):
        bill = calculate_simple_bill(
            CLIENT,
            self.challans,
            self.returns,
            bill_date=date(2024, 1, 31),
            rate_per_day=Decimal("2.00"),
        )

        rows = bill["daily_balances"]
        self.assertEqual([row["date"] for row in rows], [date(2024, 1, 1), date(2024, 1, 10)])
        self.assertEqual([row["plate_balance"] for row in rows], [10, 6])
        self.assertEqual([row["days_count"] for row in rows], [0, 1])
        self.assertEqual(rows[0]["amount"], Decimal("0"))
        self.assertEqual(rows[1]["amount"], Decimal("12.00"))
        self.assertEqual(bill["subtotal"], Decimal("12.00"))
        self.assertEqual(bill["total_days"], 1)
        self.assertEqual(bill["total_plates"], 6)
        self.assertEqual(bill["grand_total"], Decimal("12.00"))

    def test_same_rows_in_any_order_give_the_same_bill(self):
        challans = [
            issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 2)),
            issue_row(2, date(2024, 1, 10), ("9 X 3", 5, 0)),
            issue_row(3, date(2024, 1, 20), ("2 X 3", 3, 0)),
        ]
        returns = [
            return_row(1, date(2024, 1, 10), ("2 X 3", 4, 1)),
            return_row(2, date(2024, 1, 25), ("9 X 3", 5, 0)),
        ]

        def bill(issue_rows, return_rows):
            return calculate_simple_bill(
                CLIENT,
                issue_rows,
                return_rows,
                bill_date=date(2024, 1, 31),
                rate_per_day=Decimal("2.00"),
            )

        first = bill(challans, returns)

        self.assertEqual(bill(challans, returns), first)
        self.assertEqual(bill(list(reversed(challans)), list(reversed(returns))), first)
        self.assertEqual(bill([challans[1], challans[2], challans[0]], [returns[1], returns[0]]), first)
        self.assertEqual([row["plate_balance"] for row in first["daily_balances"]], [12, 12, 15, 10])

    def test_empty_window_bills_only_adjustments(self):
        bill = calculate_simple_bill(
            CLIENT,
            [],
            [],
            bill_date=date(2024, 1, 31),
            rate_per_day=Decimal("2.00"),
            extra_charges=[{"description": "Transport", "amount": Decimal("150.00")}],
            discounts=[{"description": "Loyalty", "amount": Decimal("20.50")}],
        )

        self.assertEqual(bill["daily_balances"], [])
        self.assertEqual(bill["total_days"], 0)
        self.assertEqual(bill["subtotal"], Decimal("0"))
        self.assertEqual(bill["grand_total"], Decimal("129.50"))

    def test_discounts_can_push_grand_total_negative(self):
        bill = calculate_simple_bill(
            CLIENT,
            self.challans,
            self.returns,
            bill_date=date(2024, 1, 31),
            rate_per_day=Decimal("1"),
            discounts=[{"description": "Credit note", "amount": Decimal("10")}],
        )

        self.assertEqual(bill["grand_total"], Decimal("-4"))

    def test_last_balance_on_a_date_wins(self):
        day = date(2024, 2, 2)
        challans = self.challans + [issue_row(2, day, ("2 X 3", 5, 0))]
        returns = [return_row(2, day, ("2 X 3", 3, 0))]

        bill = calculate_simple_bill(CLIENT, challans, returns, bill_date=day, rate_per_day=Decimal("1"))

        self.assertEqual(len(bill["daily_balances"]), 2)
        self.assertEqual(bill["daily_balances"][1]["plate_balance"], 12)

    def test_depot_plates_are_billed(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 5)), issue_row(2, date(2024, 1, 2), ("9 X 3", 0, 1))]

        bill = calculate_simple_bill(CLIENT, challans, [], bill_date=date(2024, 1, 2), rate_per_day=Decimal("1"))

        self.assertEqual(bill["daily_balances"][1]["plate_balance"], 16)

    def test_missing_client_is_rejected(self):
        with self.assertRaises(ValidationError):
            calculate_simple_bill(None, self.challans, self.returns, bill_date=date(2024, 1, 31))

    @override_settings(PLATE_RENT_DEFAULT_RATE=Decimal("3.50"))
    def test_rate_defaults_to_configured_value(self):
        bill = calculate_simple_bill(CLIENT, self.challans, self.returns, bill_date=date(2024, 1, 31))

        self.assertEqual(bill["rate_per_day"], Decimal("3.50"))
        self.assertEqual(bill["subtotal"], Decimal("21.00"))

    def test_billable_day_policy_is_swappable(self):
        bill = calculate_simple_bill(
            CLIENT,
            self.challans,
            self.returns,
            bill_date=date(2024, 1, 31),
            rate_per_day=Decimal("1"),
            billable=lambda index: True,
        )

        self.assertEqual(bill["total_days"], 2)
        self.assertEqual(bill["subtotal"], Decimal("16"))
        self.assertFalse(is_billable_day(0))
        self.assertTrue(is_billable_day(1))

    def test_flatten_counts_own_and_depot_plates(self):
        entries = flatten_transactions(
            [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 2))],
            [return_row(1, date(2024, 1, 1), ("2 X 3", 3, 1))],
        )

        self.assertEqual([(entry["type"], entry["plates"]) for entry in entries], [("udhar", 12), ("jama", 4)])


class MatchedBillCalculatorTests(SimpleTestCase):
    def test_items_are_charged_until_last_matching_return(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 0), ("9 X 3", 4, 1))]
        returns = [
            return_row(1, date(2024, 1, 5), ("2 X 3", 4, 0)),
            return_row(2, date(2024, 1, 11), ("2 X 3", 6, 0)),
        ]

        bill = calculate_matched_bill(
            CLIENT,
            challans,
            returns,
            bill_date=date(2024, 1, 21),
            plate_rates={"2 X 3": Decimal("2.00")},
            default_rate=Decimal("1.50"),
        )

        full, open_item = bill["matched_challans"]
        self.assertEqual(full["days_used"], 10)
        self.assertEqual(full["returned_quantity"], 10)
        self.assertTrue(full["is_fully_returned"])
        self.assertFalse(full["is_partial_return"])
        self.assertEqual(full["return_challan_number"], "J2")
        self.assertEqual(full["service_charge"], Decimal("200.00"))

        self.assertEqual(open_item["issued_quantity"], 5)
        self.assertEqual(open_item["outstanding_quantity"], 5)
        self.assertEqual(open_item["return_date"], date(2024, 1, 21))
        self.assertEqual(open_item["days_used"], 20)
        self.assertEqual(open_item["service_charge"], Decimal("150.00"))

        self.assertEqual(bill["subtotal"], Decimal("350.00"))
        self.assertEqual(bill["total_plates"], 15)
        self.assertEqual(bill["total_days"], 30)

    def test_partial_return_is_flagged(self):
        challans = [issue_row(1, date(2024, 1, 1), ("2 X 3", 10, 0))]
        returns = [return_row(1, date(2024, 1, 3), ("2 X 3", 4, 0))]

        row = calculate_matched_bill(CLIENT, challans, returns, bill_date=date(2024, 1, 9), default_rate=1)[
            "matched_challans"
        ][0]

        self.assertTrue(row["is_partial_return"])
        self.assertFalse(row["is_fully_returned"])
        self.assertEqual(row["outstanding_quantity"], 6)

    def test_missing_client_is_rejected(self):
        with self.assertRaises(ValidationError):
            calculate_matched_bill(None, [], [], bill_date=date(2024, 1, 9))


class BillingApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(username="billing-admin", password="pass1234", role="admin")
        self.operator = self.user_model.objects.create_user(
            username="billing-operator", password="pass1234", role="operator"
        )
        self.customer = Client.objects.create(id="C-1", name="Shreeji Builders", site="Ring Road")
        for plate_size in PLATE_SIZES:
            StockItem.objects.create(plate_size=plate_size, total_quantity=100, available_quantity=100)
        self.client.force_authenticate(user=self.admin)

        self.client.post(
            "/api/v1/challans/",
            {
                "challan_number": "B007",
                "challan_date": "2024-01-01",
                "client": self.customer.id,
                "items": [{"plate_size": "2 X 3", "borrowed_quantity": 10}],
            },
            format="json",
        )
        self.client.post(
            "/api/v1/returns/",
            {
                "return_challan_number": "J001",
                "return_date": "2024-01-10",
                "client": self.customer.id,
                "items": [{"plate_size": "2 X 3", "returned_quantity": 4}],
            },
            format="json",
        )

    def test_calculate_returns_daily_breakdown(self):
        response = self.client.post(
            "/api/v1/billing/calculate/",
            {"client": self.customer.id, "bill_date": "2024-01-31", "rate_per_day": "2.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(
            payload["daily_balances"],
            [
                {"date": "2024-01-01", "plate_balance": 10, "days_count": 0, "rate_per_day": "2.00", "amount": "0.00"},
                {"date": "2024-01-10", "plate_balance": 6, "days_count": 1, "rate_per_day": "2.00", "amount": "12.00"},
            ],
        )
        self.assertEqual(payload["subtotal"], "12.00")
        self.assertEqual(payload["total_days"], 1)
        self.assertEqual(payload["client"]["name"], "Shreeji Builders")

    def test_bill_date_bounds_an_open_window(self):
        response = self.client.post(
            "/api/v1/billing/calculate/",
            {"client": self.customer.id, "bill_date": "2024-01-05", "rate_per_day": "2.00"},
            format="json",
        )

        self.assertEqual([row["date"] for row in response.json()["daily_balances"]], ["2024-01-01"])
        self.assertEqual(response.json()["grand_total"], "0.00")

    def test_calculate_without_client_is_rejected(self):
        response = self.client.post("/api/v1/billing/calculate/", {"bill_date": "2024-01-31"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("client", response.json()["errors"])

    def test_calculate_fetch_failure_returns_fetch_error(self):
        with patch("rentals.transactions._return_queryset", side_effect=DatabaseError("timeout")):
            with self.assertLogs("rentals.transactions", level="ERROR"):
                response = self.client.post(
                    "/api/v1/billing/calculate/",
                    {"client": self.customer.id, "bill_date": "2024-01-31"},
                    format="json",
                )

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["code"], "fetch_error")
        self.assertFalse(Bill.objects.exists())

    def test_matched_calculation(self):
        response = self.client.post(
            "/api/v1/billing/matched/",
            {
                "client": self.customer.id,
                "bill_date": "2024-01-31",
                "plate_rates": {"2 X 3": "2.00"},
                "extra_charges": [{"description": "Transport", "amount": "50.00"}],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        row = response.json()["matched_challans"][0]
        self.assertEqual(row["challan_number"], "B007")
        self.assertEqual(row["returned_quantity"], 4)
        self.assertEqual(row["days_used"], 9)
        self.assertEqual(row["service_charge"], "180.00")
        self.assertEqual(response.json()["grand_total"], "230.00")

    def test_matched_rejects_unknown_plate_size_rates(self):
        response = self.client.post(
            "/api/v1/billing/matched/",
            {"client": self.customer.id, "plate_rates": {"3 X 3": "2.00"}},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("plate_rates", response.json()["errors"])

    def test_create_bill_persists_summary_and_numbers_sequentially(self):
        first = self.client.post(
            "/api/v1/bills/",
            {"client": self.customer.id, "bill_date": "2024-01-31", "rate_per_day": "2.00"},
            format="json",
        )
        second = self.client.post(
            "/api/v1/bills/",
            {"client": self.customer.id, "bill_date": "2024-02-29", "rate_per_day": "2.00"},
            format="json",
        )

        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["bill"]["bill_number"], "BILL-0001")
        self.assertEqual(second.json()["bill"]["bill_number"], "BILL-0002")
        bill = Bill.objects.get(bill_number="BILL-0001")
        self.assertEqual(bill.total_amount, Decimal("12.00"))
        self.assertEqual(bill.payment_status, Bill.PaymentStatus.PENDING)
        self.assertEqual(bill.period_end, date(2024, 1, 31))
        self.assertEqual(first.json()["calculation"]["bill_number"], "BILL-0001")
        self.assertTrue(AuditLog.objects.filter(action="bill.create", entity_id=str(bill.id)).exists())

        next_number = self.client.get("/api/v1/bills/next-number/")
        self.assertEqual(next_number.json(), {"bill_number": "BILL-0003"})

    def test_duplicate_bill_number_is_rejected(self):
        payload = {"client": self.customer.id, "bill_date": "2024-01-31", "bill_number": "BILL-0042"}
        self.client.post("/api/v1/bills/", payload, format="json")

        response = self.client.post("/api/v1/bills/", payload, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("bill_number", response.json()["errors"])
        self.assertEqual(Bill.objects.count(), 1)

    def test_only_admin_can_change_payment_status(self):
        bill_id = self.client.post(
            "/api/v1/bills/",
            {"client": self.customer.id, "bill_date": "2024-01-31"},
            format="json",
        ).json()["bill"]["id"]

        self.client.force_authenticate(user=self.operator)
        denied = self.client.patch(f"/api/v1/bills/{bill_id}/", {"payment_status": "paid"}, format="json")
        self.client.force_authenticate(user=self.admin)
        allowed = self.client.patch(
            f"/api/v1/bills/{bill_id}/",
            {"payment_status": "paid", "total_amount": "1.00"},
            format="json",
        )

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(allowed.status_code, 200)
        bill = Bill.objects.get(id=bill_id)
        self.assertEqual(bill.payment_status, "paid")
        self.assertNotEqual(bill.total_amount, Decimal("1.00"))
