import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from inventory.models import StockItem
from inventory.services import apply_stock_deltas
from rentals.models import Challan, ChallanItem, Client, Return, ReturnLineItem
from rentals.numbering import suggest_next_number
from rentals.transactions import JAMA, UDHAR

logger = logging.getLogger(__name__)


def _write_with_stock_sync(kind, old_items, new_items, write):
    """Apply stock deltas first, then run `write` in a DB transaction.

    Stock counters are not part of that transaction. When `write` fails the
    already-applied counter writes are reverted before the error propagates.
    """
    batch = apply_stock_deltas(kind, old_items, new_items)
    try:
        with transaction.atomic():
            return write()
    except Exception:
        logger.warning("transaction_write_failed", extra={"transaction_type": kind})
        batch.rollback()
        raise


def _insert_challan_items(challan, items):
    ChallanItem.objects.bulk_create(
        [
            ChallanItem(
                challan=challan,
                plate_size=item["plate_size"],
                borrowed_quantity=item.get("borrowed_quantity") or 0,
                borrowed_stock=item.get("borrowed_stock") or 0,
                partner_stock_notes=item.get("partner_stock_notes") or None,
            )
            for item in items
        ]
    )


def _insert_return_items(return_txn, items):
    ReturnLineItem.objects.bulk_create(
        [
            ReturnLineItem(
                return_txn=return_txn,
                plate_size=item["plate_size"],
                returned_quantity=item.get("returned_quantity") or 0,
                returned_borrowed_stock=item.get("returned_borrowed_stock") or 0,
                damaged_quantity=item.get("damaged_quantity") or 0,
                lost_quantity=item.get("lost_quantity") or 0,
                damage_notes=item.get("damage_notes") or None,
            )
            for item in items
        ]
    )


def create_challan(*, items, **header):
    def write():
        challan = Challan.objects.create(**header)
        _insert_challan_items(challan, items)
        return challan

    challan = _write_with_stock_sync(UDHAR, [], items, write)
    logger.info("challan_created", extra={"client_id": challan.client_id, "transaction_id": challan.id})
    return challan


def update_challan(challan, *, items=None, **header):
    """Replace a challan's header fields and, when given, all of its line items."""
    old_items = list(challan.items.all())
    new_items = old_items if items is None else items

    def write():
        for field, value in header.items():
            setattr(challan, field, value)
        challan.save()
        if items is not None:
            challan.items.all().delete()
            _insert_challan_items(challan, items)
        return challan

    _write_with_stock_sync(UDHAR, old_items, new_items, write)
    logger.info("challan_updated", extra={"client_id": challan.client_id, "transaction_id": challan.id})
    return challan


def delete_challan(challan):
    challan_id = challan.id
    old_items = list(challan.items.all())
    _write_with_stock_sync(UDHAR, old_items, [], challan.delete)
    logger.info("challan_deleted", extra={"client_id": challan.client_id, "transaction_id": challan_id})


def create_return(*, items, **header):
    def write():
        return_txn = Return.objects.create(**header)
        _insert_return_items(return_txn, items)
        return return_txn

    return_txn = _write_with_stock_sync(JAMA, [], items, write)
    logger.info("return_created", extra={"client_id": return_txn.client_id, "transaction_id": return_txn.id})
    return return_txn


def update_return(return_txn, *, items=None, **header):
    old_items = list(return_txn.items.all())
    new_items = old_items if items is None else items

    def write():
        for field, value in header.items():
            setattr(return_txn, field, value)
        return_txn.save()
        if items is not None:
            return_txn.items.all().delete()
            _insert_return_items(return_txn, items)
        return return_txn

    _write_with_stock_sync(JAMA, old_items, new_items, write)
    logger.info("return_updated", extra={"client_id": return_txn.client_id, "transaction_id": return_txn.id})
    return return_txn


def delete_return(return_txn):
    return_id = return_txn.id
    old_items = list(return_txn.items.all())
    _write_with_stock_sync(JAMA, old_items, [], return_txn.delete)
    logger.info("return_deleted", extra={"client_id": return_txn.client_id, "transaction_id": return_id})


def _first_unused_number(candidate, queryset, field):
    for _ in range(settings.NUMBER_SUGGESTION_MAX_PROBES):
        if not queryset.filter(**{field: candidate}).exists():
            return candidate
        candidate = suggest_next_number(candidate)
    return candidate


def next_challan_number():
    last_number = Challan.objects.order_by("-id").values_list("challan_number", flat=True).first()
    return _first_unused_number(suggest_next_number(last_number), Challan.objects.all(), "challan_number")


def next_return_number():
    last_number = Return.objects.order_by("-id").values_list("return_challan_number", flat=True).first()
    return _first_unused_number(suggest_next_number(last_number), Return.objects.all(), "return_challan_number")


def previous_driver_names():
    names = set(Challan.objects.exclude(driver_name__isnull=True).values_list("driver_name", flat=True))
    names |= set(Return.objects.exclude(driver_name__isnull=True).values_list("driver_name", flat=True))
    return sorted({name.strip() for name in names if name and name.strip()})


def _recent_activity():
    challans = Challan.objects.select_related("client").order_by("-challan_date", "-id")
    returns = Return.objects.select_related("client").order_by("-return_date", "-id")
    activity = [
        {
            "id": challan.id,
            "type": UDHAR,
            "number": challan.challan_number,
            "client_name": challan.client.name,
            "date": challan.challan_date,
            "status": challan.status,
        }
        for challan in challans[: settings.DASHBOARD_RECENT_CHALLANS]
    ]
    activity += [
        {
            "id": return_txn.id,
            "type": JAMA,
            "number": return_txn.return_challan_number,
            "client_name": return_txn.client.name,
            "date": return_txn.return_date,
            "status": "returned",
        }
        for return_txn in returns[: settings.DASHBOARD_RECENT_RETURNS]
    ]
    return activity


def dashboard_summary(today=None):
    """Headline counts for the home screen.

    A challan is overdue when it is still active and was issued more than
    `DASHBOARD_OVERDUE_DAYS` days before `today`. Every active challan
    still has a return pending, so the two counts are the same.
    """
    today = today or timezone.localdate()
    active = Challan.objects.filter(status=Challan.Status.ACTIVE)
    overdue_cutoff = today - timedelta(days=settings.DASHBOARD_OVERDUE_DAYS)
    stock = StockItem.objects.aggregate(
        total=Coalesce(Sum("total_quantity"), 0),
        on_rent=Coalesce(Sum("on_rent_quantity"), 0),
    )
    active_count = active.count()

    return {
        "total_clients": Client.objects.count(),
        "active_challans": active_count,
        "pending_returns": active_count,
        "overdue_challans": active.filter(challan_date__lt=overdue_cutoff).count(),
        "on_rent_plates": stock["on_rent"],
        "total_stock": stock["total"],
        "low_stock_items": StockItem.objects.filter(available_quantity__lt=settings.STOCK_LOW_THRESHOLD).count(),
        "recent_activity": _recent_activity(),
    }
