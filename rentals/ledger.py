"""Per-client plate balances and transaction history.

Everything here is a pure function over issue/return rows (see
`rentals.transactions`), so views, reports and tests share one
reconciliation path.
"""

from collections import defaultdict

from inventory.models import PLATE_SIZES
from rentals.transactions import JAMA, UDHAR, challan_sort_key, quantity, return_sort_key, transaction_sort_key


def build_plate_balances(challans, returns, active_only=False):
    """Own-stock balances for every known plate size, in display order.

    Outstanding is allowed to go negative (more returned than issued) so that
    data-entry mistakes stay visible. Depot (borrowed) stock is reconciled
    separately by `net_borrowed_stock`.
    """
    balances = {
        size: {"plate_size": size, "total_borrowed": 0, "total_returned": 0, "outstanding": 0}
        for size in PLATE_SIZES
    }

    for challan in challans:
        for item in challan["items"]:
            balance = balances.get(item["plate_size"])
            if balance is not None:
                balance["total_borrowed"] += quantity(item, "borrowed_quantity")

    for return_txn in returns:
        for item in return_txn["items"]:
            balance = balances.get(item["plate_size"])
            if balance is not None:
                balance["total_returned"] += quantity(item, "returned_quantity")

    rows = []
    for size in PLATE_SIZES:
        balance = balances[size]
        balance["outstanding"] = balance["total_borrowed"] - balance["total_returned"]
        if active_only and not (balance["total_borrowed"] or balance["total_returned"]):
            continue
        rows.append(balance)
    return rows


def signed_outstanding_total(balances):
    return sum(balance["outstanding"] for balance in balances if balance["outstanding"])


def absolute_outstanding_total(balances):
    return sum(abs(balance["outstanding"]) for balance in balances)


def net_borrowed_stock(challans, returns, plate_size=None):
    """Depot plates still out: borrowed stock issued minus borrowed stock returned."""
    issued = sum(
        quantity(item, "borrowed_stock")
        for challan in challans
        for item in challan["items"]
        if plate_size is None or item["plate_size"] == plate_size
    )
    returned = sum(
        quantity(item, "returned_borrowed_stock")
        for return_txn in returns
        for item in return_txn["items"]
        if plate_size is None or item["plate_size"] == plate_size
    )
    return issued - returned


def combined_outstanding_total(balances, challans, returns):
    return absolute_outstanding_total(balances) + net_borrowed_stock(challans, returns)


def _issue_entry(challan):
    items = []
    for item in challan["items"]:
        own = quantity(item, "borrowed_quantity")
        depot = quantity(item, "borrowed_stock")
        if not (own or depot):
            continue
        items.append(
            {
                "plate_size": item["plate_size"],
                "quantity": own,
                "borrowed_stock": depot,
                "notes": item.get("notes") or "",
            }
        )
    return {
        "type": UDHAR,
        "id": challan["id"],
        "number": challan["challan_number"],
        "date": challan["challan_date"],
        "client_id": challan.get("client_id"),
        "driver_name": challan.get("driver_name"),
        "items": items,
        "total_plates": sum(item["quantity"] + item["borrowed_stock"] for item in items),
    }


def _return_entry(return_txn):
    items = []
    for item in return_txn["items"]:
        own = quantity(item, "returned_quantity")
        depot = quantity(item, "returned_borrowed_stock")
        damaged = quantity(item, "damaged_quantity")
        lost = quantity(item, "lost_quantity")
        if not (own or depot or damaged or lost):
            continue
        items.append(
            {
                "plate_size": item["plate_size"],
                "quantity": own,
                "returned_borrowed_stock": depot,
                "damaged_quantity": damaged,
                "lost_quantity": lost,
                "notes": item.get("notes") or "",
            }
        )
    return {
        "type": JAMA,
        "id": return_txn["id"],
        "number": return_txn["return_challan_number"],
        "date": return_txn["return_date"],
        "client_id": return_txn.get("client_id"),
        "driver_name": return_txn.get("driver_name"),
        "items": items,
        "total_plates": sum(item["quantity"] + item["returned_borrowed_stock"] for item in items),
    }


def merge_transactions(challans, returns, descending=True):
    """Issues and returns as one dated history, newest first by default.

    Ties on date put issues before returns and then order by id; the
    descending order is the exact reverse of that ascending order.
    """
    entries = [_issue_entry(challan) for challan in challans]
    entries += [_return_entry(return_txn) for return_txn in returns]
    entries.sort(key=lambda entry: transaction_sort_key(entry["type"], entry["date"], entry["id"]), reverse=descending)
    return entries


def client_summary(client):
    if isinstance(client, dict):
        return {
            "id": client["id"],
            "name": client.get("name", ""),
            "site": client.get("site", ""),
            "mobile_number": client.get("mobile_number", ""),
        }
    return {
        "id": client.id,
        "name": client.name,
        "site": client.site,
        "mobile_number": client.mobile_number,
    }


def build_client_ledger(client, challans, returns, active_only=False):
    challans = sorted(challans, key=challan_sort_key)
    returns = sorted(returns, key=return_sort_key)
    # Sizes hidden by active_only have no movements, so they add nothing to the totals.
    balances = build_plate_balances(challans, returns, active_only=active_only)

    return {
        "client": client_summary(client),
        "plate_balances": balances,
        "total_outstanding": signed_outstanding_total(balances),
        "total_outstanding_absolute": absolute_outstanding_total(balances),
        "borrowed_stock_outstanding": net_borrowed_stock(challans, returns),
        "total_outstanding_with_borrowed": combined_outstanding_total(balances, challans, returns),
        "has_activity": len(challans) + len(returns) > 0,
        "all_transactions": merge_transactions(challans, returns),
    }


def build_client_ledgers(clients, challans, returns, active_only=False):
    """Ledgers for every client, including clients with no transactions yet."""
    challans_by_client = defaultdict(list)
    returns_by_client = defaultdict(list)
    for challan in challans:
        challans_by_client[challan["client_id"]].append(challan)
    for return_txn in returns:
        returns_by_client[return_txn["client_id"]].append(return_txn)

    ledgers = []
    for client in clients:
        client_id = client["id"] if isinstance(client, dict) else client.id
        ledgers.append(
            build_client_ledger(
                client,
                challans_by_client.get(client_id, []),
                returns_by_client.get(client_id, []),
                active_only=active_only,
            )
        )
    return ledgers
