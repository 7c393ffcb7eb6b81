"""Inventory reservation — hold, commit and release stock for an order.

Called from command handlers, inside their unit of work, with the SKU key
locks already held by the orchestrator. ``load_and_check`` performs every
availability check up front so ``reserve`` never leaves a partial set of
holds behind.
"""

from collections import Counter

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.errors import InsufficientStock
from storefront.inventory.stock import ALLOCATED_STATES, HoldState, InventoryHold, StockItem

logger = structlog.get_logger(__name__)


def quantities_by_sku(lines) -> dict[str, int]:
    """Collapse ``(sku, quantity)`` pairs so repeated SKUs are checked together."""
    totals = Counter()
    for sku, quantity in lines:
        totals[sku] += quantity
    return dict(totals)


def load_stock_item(sku: str) -> StockItem:
    item = current_domain.repository_for(StockItem).get_by_sku(sku)
    if item is None:
        raise ObjectNotFoundError({"sku": [f"Unknown SKU {sku}"]})
    return item


def load_and_check(quantities: dict[str, int]) -> dict[str, StockItem]:
    """Load the stock items for ``quantities`` and verify every SKU can be held."""
    items = {}
    for sku in sorted(quantities):
        item = load_stock_item(sku)
        try:
            item.ensure_available(quantities[sku])
        except InsufficientStock:
            logger.info(
                "Insufficient stock",
                sku=sku,
                requested=quantities[sku],
                available=item.available,
            )
            raise
        items[sku] = item
    return items


def reserve(
    order_id,
    quantities: dict[str, int],
    items: dict[str, StockItem] | None = None,
    commit: bool = False,
) -> list[str]:
    """Place a ``held`` hold per SKU for ``order_id``; fails without side effects if any SKU is short.

    With ``commit`` the holds are committed straight away (cash on delivery).
    """
    items = items or load_and_check(quantities)
    repo = current_domain.repository_for(StockItem)
    hold_repo = current_domain.repository_for(InventoryHold)

    hold_ids = []
    for sku in sorted(quantities):
        item = items[sku]
        hold = item.hold(order_id, quantities[sku])
        if commit:
            item.commit(order_id, [hold])
        repo.add(item)
        hold_repo.add(hold)
        hold_ids.append(str(hold.id))
    return hold_ids


def _move_holds(order_id, skus, states, move) -> int:
    repo = current_domain.repository_for(StockItem)
    hold_repo = current_domain.repository_for(InventoryHold)
    moved = 0
    for sku in sorted(set(skus)):
        holds = hold_repo.for_order(order_id, sku=sku, states=states)
        if not holds:
            continue
        item = load_stock_item(sku)
        quantity = move(item, order_id, holds)
        if quantity:
            repo.add(item)
            for hold in holds:
                hold_repo.add(hold)
            moved += quantity
    return moved


def commit(order_id, skus) -> int:
    committed = _move_holds(order_id, skus, {HoldState.HELD.value}, StockItem.commit)
    logger.info("Inventory committed", order_id=str(order_id), quantity=committed)
    return committed


def release(order_id, skus) -> int:
    released = _move_holds(order_id, skus, ALLOCATED_STATES, StockItem.release)
    logger.info("Inventory released", order_id=str(order_id), quantity=released)
    return released


def holds_for(order_id, states=None) -> list[InventoryHold]:
    return current_domain.repository_for(InventoryHold).for_order(order_id, states=states)
