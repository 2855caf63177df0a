"""Plain-dict rows for challans and returns.

The ledger and billing calculators work on these rows instead of model
instances so they can run over any source (querysets, fixtures, exports).

Issue row::

    {"id", "challan_number", "challan_date", "client_id", "driver_name",
     "items": [{"plate_size", "borrowed_quantity", "borrowed_stock", "notes"}]}

Return row::

    {"id", "return_challan_number", "return_date", "client_id", "driver_name",
     "items": [{"plate_size", "returned_quantity", "returned_borrowed_stock",
                "damaged_quantity", "lost_quantity", "notes"}]}
"""

import logging

from django.db import DatabaseError

from common.exceptions import FetchError
from inventory.models import TransactionType
from rentals.models import Challan, Return

logger = logging.getLogger(__name__)

UDHAR = TransactionType.UDHAR
JAMA = TransactionType.JAMA

# Issues sort before returns that share a date.
_TYPE_ORDER = {UDHAR: 0, JAMA: 1}


def quantity(item, field):
    return int(item.get(field) or 0)


def challan_to_row(challan):
    return {
        "id": challan.id,
        "challan_number": challan.challan_number,
        "challan_date": challan.challan_date,
        "client_id": challan.client_id,
        "driver_name": challan.driver_name,
        "items": [
            {
                "plate_size": item.plate_size,
                "borrowed_quantity": item.borrowed_quantity,
                "borrowed_stock": item.borrowed_stock,
                "notes": item.partner_stock_notes,
            }
            for item in challan.items.all()
        ],
    }


def return_to_row(return_txn):
    return {
        "id": return_txn.id,
        "return_challan_number": return_txn.return_challan_number,
        "return_date": return_txn.return_date,
        "client_id": return_txn.client_id,
        "driver_name": return_txn.driver_name,
        "items": [
            {
                "plate_size": item.plate_size,
                "returned_quantity": item.returned_quantity,
                "returned_borrowed_stock": item.returned_borrowed_stock,
                "damaged_quantity": item.damaged_quantity,
                "lost_quantity": item.lost_quantity,
                "notes": item.damage_notes,
            }
            for item in return_txn.items.all()
        ],
    }


def transaction_sort_key(transaction_type, transaction_date, transaction_id):
    """Canonical ascending order: date, then issues before returns, then id."""
    return (transaction_date, _TYPE_ORDER[transaction_type], transaction_id)


def challan_sort_key(row):
    return transaction_sort_key(UDHAR, row["challan_date"], row["id"])


def return_sort_key(row):
    return transaction_sort_key(JAMA, row["return_date"], row["id"])


def _challan_queryset():
    return Challan.objects.prefetch_related("items").order_by("challan_date", "id")


def _return_queryset():
    return Return.objects.prefetch_related("items").order_by("return_date", "id")


def fetch_transactions(client_id=None, start_date=None, end_date=None):
    """Load issue and return rows, optionally for one client and an inclusive date window.

    Raises `FetchError` when the database cannot be read.
    """
    try:
        challans = _challan_queryset()
        returns = _return_queryset()
        if client_id is not None:
            challans = challans.filter(client_id=client_id)
            returns = returns.filter(client_id=client_id)
        if start_date is not None:
            challans = challans.filter(challan_date__gte=start_date)
            returns = returns.filter(return_date__gte=start_date)
        if end_date is not None:
            challans = challans.filter(challan_date__lte=end_date)
            returns = returns.filter(return_date__lte=end_date)

        challan_rows = [challan_to_row(challan) for challan in challans]
        return_rows = [return_to_row(return_txn) for return_txn in returns]
    except DatabaseError as exc:
        logger.exception("transaction_fetch_failed", extra={"client_id": client_id})
        raise FetchError() from exc

    logger.debug(
        "transactions_fetched challans=%s returns=%s",
        len(challan_rows),
        len(return_rows),
        extra={"client_id": client_id},
    )
    return challan_rows, return_rows
