import logging

from django.conf import settings
from django.db import DatabaseError
from django.db.models import F, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from common.exceptions import StockUpdateError
from inventory.models import PLATE_SIZES, StockItem, TransactionType

logger = logging.getLogger(__name__)

ISSUE = TransactionType.UDHAR
RETURN = TransactionType.JAMA


def _qty(item, field):
    if isinstance(item, dict):
        value = item.get(field)
    else:
        value = getattr(item, field, None)
    return int(value or 0)


def _plate_size(item):
    return item["plate_size"] if isinstance(item, dict) else item.plate_size


def issue_stock_totals(items):
    """Own-stock plates per size for a set of issue line items. Depot stock is not counted."""
    totals = {}
    for item in items:
        size = _plate_size(item)
        totals[size] = totals.get(size, 0) + _qty(item, "borrowed_quantity")
    return totals


def return_stock_totals(items):
    totals = {}
    for item in items:
        size = _plate_size(item)
        returned = _qty(item, "returned_quantity")
        good = returned - _qty(item, "damaged_quantity") - _qty(item, "lost_quantity")
        current = totals.setdefault(size, {"returned": 0, "good": 0})
        current["returned"] += returned
        current["good"] += good
    return totals


def compute_stock_deltas(kind, old_items, new_items):
    """Per-size counter changes for replacing `old_items` with `new_items`.

    Pass an empty `old_items` for a new transaction and an empty `new_items`
    for a deletion. Issues move own plates from available to on rent; returns
    move them back, except that damaged and lost plates never become available
    again. Sizes whose counters do not change are left out.
    """
    deltas = {}
    if kind == ISSUE:
        old = issue_stock_totals(old_items)
        new = issue_stock_totals(new_items)
        for size in PLATE_SIZES:
            change = new.get(size, 0) - old.get(size, 0)
            if change:
                deltas[size] = {"on_rent": change, "available": -change}
        return deltas

    if kind != RETURN:
        raise ValueError(f"Unknown transaction kind: {kind!r}")

    zero = {"returned": 0, "good": 0}
    old = return_stock_totals(old_items)
    new = return_stock_totals(new_items)
    for size in PLATE_SIZES:
        returned_change = new.get(size, zero)["returned"] - old.get(size, zero)["returned"]
        good_change = new.get(size, zero)["good"] - old.get(size, zero)["good"]
        if returned_change or good_change:
            deltas[size] = {"on_rent": -returned_change, "available": good_change}
    return deltas


def _shift_counters(stock_id, available_change, on_rent_change):
    # Relative update; counters written by other requests since the read are kept.
    StockItem.objects.filter(id=stock_id).update(
        available_quantity=Greatest(F("available_quantity") + available_change, Value(0)),
        on_rent_quantity=Greatest(F("on_rent_quantity") + on_rent_change, Value(0)),
        updated_at=timezone.now(),
    )


class StockAdjustmentBatch:
    """Applies stock counter deltas row by row and keeps an undo log.

    Counters never drop below zero, so the change actually applied to a row
    can be smaller than the requested delta. Every successful write appends
    `(stock_id, plate_size, available_change, on_rent_change)` with that
    applied change to `applied`. When a write fails, the rows already written
    are shifted back in reverse order and `StockUpdateError` is raised.
    Callers that fail later (for example while replacing line items) call
    `rollback()` themselves.
    """

    def __init__(self):
        self.applied = []

    def apply(self, deltas):
        if not deltas:
            return self

        rows = {row.plate_size: row for row in StockItem.objects.filter(plate_size__in=list(deltas))}
        for plate_size, delta in deltas.items():
            row = rows.get(plate_size)
            if row is None:
                logger.warning("stock_row_missing", extra={"plate_size": plate_size})
                continue

            available_change = max(0, row.available_quantity + delta["available"]) - row.available_quantity
            on_rent_change = max(0, row.on_rent_quantity + delta["on_rent"]) - row.on_rent_quantity
            try:
                _shift_counters(row.id, available_change, on_rent_change)
            except DatabaseError as exc:
                logger.exception("stock_update_failed", extra={"plate_size": plate_size})
                self.rollback()
                raise StockUpdateError() from exc

            self.applied.append((row.id, plate_size, available_change, on_rent_change))
        return self

    def rollback(self):
        reverted = 0
        while self.applied:
            stock_id, plate_size, available_change, on_rent_change = self.applied.pop()
            try:
                _shift_counters(stock_id, -available_change, -on_rent_change)
                reverted += 1
            except DatabaseError:
                logger.exception("stock_rollback_failed", extra={"plate_size": plate_size})
        logger.warning("stock_batch_rolled_back reverted=%s", reverted)
        return reverted


def apply_stock_deltas(kind, old_items, new_items):
    deltas = compute_stock_deltas(kind, old_items, new_items)
    return StockAdjustmentBatch().apply(deltas)


def set_total_quantity(stock_item, total_quantity):
    stock_item.total_quantity = total_quantity
    stock_item.available_quantity = max(0, total_quantity - stock_item.on_rent_quantity)
    stock_item.save(update_fields=["total_quantity", "available_quantity", "updated_at"])
    return stock_item


def stock_level(available_quantity):
    if available_quantity < settings.STOCK_LOW_THRESHOLD:
        return "low"
    if available_quantity < settings.STOCK_MEDIUM_THRESHOLD:
        return "medium"
    return "good"
