import logging
from decimal import ROUND_HALF_UP, Decimal

from django.db import IntegrityError, transaction
from rest_framework.exceptions import ValidationError

from billing.calculator import calculate_matched_bill, calculate_simple_bill, require_client
from billing.models import Bill
from rentals.numbering import next_bill_number
from rentals.transactions import fetch_transactions

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")


def _to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _fetch_window(client, bill_date, start_date, end_date):
    # An open end falls back to the bill date.
    return fetch_transactions(client_id=client.id, start_date=start_date, end_date=end_date or bill_date)


def calculate_bill(client, *, bill_date, start_date=None, end_date=None, **options):
    require_client(client)
    challans, returns = _fetch_window(client, bill_date, start_date, end_date)
    return calculate_simple_bill(client, challans, returns, bill_date=bill_date, **options)


def calculate_matched(client, *, bill_date, start_date=None, end_date=None, **options):
    require_client(client)
    challans, returns = _fetch_window(client, bill_date, start_date, end_date)
    return calculate_matched_bill(client, challans, returns, bill_date=bill_date, **options)


def suggest_bill_number():
    last_number = Bill.objects.order_by("-generated_at", "-id").values_list("bill_number", flat=True).first()
    return next_bill_number(last_number)


def create_bill(client, *, bill_date, start_date=None, end_date=None, bill_number=None, **options):
    """Calculate a day-based bill and store its summary.

    Returns `(bill, calculation)`; the calculation carries the full daily
    breakdown, which is not persisted.
    """
    number = bill_number or suggest_bill_number()
    if Bill.objects.filter(bill_number=number).exists():
        raise ValidationError({"bill_number": "Bill number already exists. Use a different number."})

    calculation = calculate_bill(
        client,
        bill_date=bill_date,
        start_date=start_date,
        end_date=end_date,
        bill_number=number,
        **options,
    )

    try:
        with transaction.atomic():
            bill = Bill.objects.create(
                bill_number=number,
                client=client,
                bill_date=bill_date,
                period_start=start_date,
                period_end=end_date or bill_date,
                rate_per_day=_to_money(calculation["rate_per_day"]),
                total_days=calculation["total_days"],
                total_plates=calculation["total_plates"],
                subtotal=_to_money(calculation["subtotal"]),
                extra_charges_total=_to_money(calculation["extra_charges_total"]),
                discounts_total=_to_money(calculation["discounts_total"]),
                total_amount=_to_money(calculation["grand_total"]),
            )
    except IntegrityError as exc:
        raise ValidationError({"bill_number": "Bill number already exists. Use a different number."}) from exc

    logger.info("bill_created bill_number=%s", bill.bill_number, extra={"client_id": client.id})
    return bill, calculation
