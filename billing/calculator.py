"""Day-based rent calculation over issue/return rows.

Two calculators share this module:

* `calculate_simple_bill` walks a running plate balance per date and charges
  ``plate_balance x days_count x rate_per_day`` for every billable date.
* `calculate_matched_bill` charges each issued line item for the days until
  its plates came back (or until the bill date).

Amounts are exact `Decimal` values; rounding to two places happens when the
result is serialized.
"""

from decimal import Decimal

from django.conf import settings
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError

from rentals.ledger import client_summary
from rentals.transactions import JAMA, UDHAR, challan_sort_key, quantity, return_sort_key, transaction_sort_key

ZERO = Decimal("0")


def to_decimal(value):
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_date(value):
    if isinstance(value, str):
        return parse_date(value)
    return value


def _default_rate():
    return to_decimal(settings.PLATE_RENT_DEFAULT_RATE)


def is_billable_day(index):
    """The first date in a billing window opens the rental and is not charged."""
    return index > 0


def require_client(client):
    if client is None:
        raise ValidationError({"client": "Select a client before calculating a bill."})


def _charge_totals(extra_charges, discounts):
    extras_total = sum((to_decimal(charge["amount"]) for charge in extra_charges), ZERO)
    discounts_total = sum((to_decimal(discount["amount"]) for discount in discounts), ZERO)
    return extras_total, discounts_total


def flatten_transactions(challans, returns):
    """One `{date, type, plates, id}` entry per transaction, in canonical ascending order.

    Plates count own and depot stock together.
    """
    entries = [
        {
            "date": challan["challan_date"],
            "type": UDHAR,
            "plates": sum(quantity(item, "borrowed_quantity") + quantity(item, "borrowed_stock") for item in challan["items"]),
            "id": challan["id"],
        }
        for challan in challans
    ]
    entries += [
        {
            "date": return_txn["return_date"],
            "type": JAMA,
            "plates": sum(
                quantity(item, "returned_quantity") + quantity(item, "returned_borrowed_stock")
                for item in return_txn["items"]
            ),
            "id": return_txn["id"],
        }
        for return_txn in returns
    ]
    entries.sort(key=lambda entry: transaction_sort_key(entry["type"], entry["date"], entry["id"]))
    return entries


def build_daily_balances(entries, rate_per_day, billable=is_billable_day):
    balance_by_date = {}
    running_balance = 0
    for entry in entries:
        if entry["type"] == UDHAR:
            running_balance += entry["plates"]
        else:
            running_balance -= entry["plates"]
        # Later transactions on the same date overwrite earlier ones.
        balance_by_date[entry["date"]] = running_balance

    rows = []
    for index, day in enumerate(sorted(balance_by_date)):
        plate_balance = balance_by_date[day]
        days_count = 1 if billable(index) else 0
        rows.append(
            {
                "date": day,
                "plate_balance": plate_balance,
                "days_count": days_count,
                "rate_per_day": rate_per_day,
                "amount": plate_balance * days_count * rate_per_day,
            }
        )
    return rows


def calculate_simple_bill(
    client,
    challans,
    returns,
    *,
    bill_date,
    rate_per_day=None,
    extra_charges=(),
    discounts=(),
    bill_number="",
    billable=is_billable_day,
):
    require_client(client)
    rate = _default_rate() if rate_per_day is None else to_decimal(rate_per_day)

    daily_balances = build_daily_balances(flatten_transactions(challans, returns), rate, billable)
    subtotal = sum((row["amount"] for row in daily_balances), ZERO)
    extras_total, discounts_total = _charge_totals(extra_charges, discounts)
    billed_rows = [row for row in daily_balances if row["days_count"]]

    return {
        "client": client_summary(client),
        "bill_number": bill_number,
        "bill_date": bill_date,
        "rate_per_day": rate,
        "daily_balances": daily_balances,
        "total_days": sum(row["days_count"] for row in daily_balances),
        "total_plates": sum(row["plate_balance"] for row in billed_rows),
        "subtotal": subtotal,
        "extra_charges": list(extra_charges),
        "extra_charges_total": extras_total,
        "discounts": list(discounts),
        "discounts_total": discounts_total,
        "grand_total": subtotal + extras_total - discounts_total,
    }


def days_between(start, end):
    return abs((_as_date(end) - _as_date(start)).days)


def calculate_matched_bill(
    client,
    challans,
    returns,
    *,
    bill_date,
    plate_rates=None,
    default_rate=None,
    extra_charges=(),
    discounts=(),
    bill_number="",
):
    """Charge every issued line item for the days its plates were out.

    All returns of the same plate size count against an issued item, and the
    latest of them ends the rental; items with no matching return run until
    `bill_date`.
    """
    require_client(client)
    default = _default_rate() if default_rate is None else to_decimal(default_rate)
    rates = {size: to_decimal(rate) for size, rate in (plate_rates or {}).items()}
    ordered_returns = sorted(returns, key=return_sort_key)

    matched = []
    for challan in sorted(challans, key=challan_sort_key):
        issue_date = _as_date(challan["challan_date"])
        for item in challan["items"]:
            plate_size = item["plate_size"]
            issued = quantity(item, "borrowed_quantity") + quantity(item, "borrowed_stock")
            matches = [
                (return_txn, return_item)
                for return_txn in ordered_returns
                for return_item in return_txn["items"]
                if return_item["plate_size"] == plate_size
            ]
            returned = sum(
                quantity(return_item, "returned_quantity") + quantity(return_item, "returned_borrowed_stock")
                for _, return_item in matches
            )
            if matches:
                last_return = matches[-1][0]
                return_date = _as_date(last_return["return_date"])
                return_number = last_return["return_challan_number"]
            else:
                return_date = _as_date(bill_date)
                return_number = None

            days_used = days_between(issue_date, return_date)
            rate = rates.get(plate_size, default)
            matched.append(
                {
                    "challan_id": challan["id"],
                    "challan_number": challan["challan_number"],
                    "issue_date": issue_date,
                    "return_date": return_date,
                    "return_challan_number": return_number,
                    "plate_size": plate_size,
                    "issued_quantity": issued,
                    "returned_quantity": returned,
                    "outstanding_quantity": max(0, issued - returned),
                    "days_used": days_used,
                    "rate_per_day": rate,
                    "service_charge": issued * days_used * rate,
                    "is_fully_returned": returned >= issued,
                    "is_partial_return": 0 < returned < issued,
                }
            )

    subtotal = sum((row["service_charge"] for row in matched), ZERO)
    extras_total, discounts_total = _charge_totals(extra_charges, discounts)
    return {
        "client": client_summary(client),
        "bill_number": bill_number,
        "bill_date": bill_date,
        "default_rate": default,
        "matched_challans": matched,
        "total_plates": sum(row["issued_quantity"] for row in matched),
        "total_days": sum(row["days_used"] for row in matched),
        "subtotal": subtotal,
        "extra_charges": list(extra_charges),
        "extra_charges_total": extras_total,
        "discounts": list(discounts),
        "discounts_total": discounts_total,
        "grand_total": subtotal + extras_total - discounts_total,
    }
