"""StockItem aggregate — physical stock per SKU and the holds placed against it.

Each hold is an aggregate of its own, so a SKU may carry any number of open
holds without loading them all. The stock item keeps a running count of the
units tied up in held or committed holds:

    available = on_hand - allocated

Holds move ``held → committed`` when the order is paid (immediately for cash
on delivery) and ``held/committed → released`` when the order is cancelled
or expires, which returns the units to available stock.
"""

from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront
from storefront.errors import InsufficientStock
from storefront.inventory.events import (
    HoldsCommitted,
    HoldsReleased,
    StockHeld,
    StockItemRegistered,
    StockReceived,
)
from storefront.utils.timestamps import utcnow


class HoldState(Enum):
    HELD = "held"
    COMMITTED = "committed"
    RELEASED = "released"


ALLOCATED_STATES = {HoldState.HELD.value, HoldState.COMMITTED.value}


@storefront.aggregate
class InventoryHold:
    sku = String(required=True, max_length=50)
    order_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    state = String(choices=HoldState, default=HoldState.HELD.value)
    held_at = DateTime()
    committed_at = DateTime()
    released_at = DateTime()

    @property
    def is_allocated(self) -> bool:
        return self.state in ALLOCATED_STATES

    def commit(self, now) -> None:
        self.state = HoldState.COMMITTED.value
        self.committed_at = now

    def release(self, now) -> None:
        self.state = HoldState.RELEASED.value
        self.released_at = now


@storefront.aggregate
class StockItem:
    sku = String(required=True, max_length=50, unique=True)
    title = String(max_length=255)
    unit_price = Float(required=True, min_value=0.0)  # current catalog price
    on_hand = Integer(default=0, min_value=0)
    allocated = Integer(default=0, min_value=0)  # units in held or committed holds
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def allocations_must_not_exceed_physical_stock(self):
        if (self.allocated or 0) > (self.on_hand or 0):
            raise ValidationError({"on_hand": [f"Holds on {self.sku} exceed physical stock"]})

    @classmethod
    def register(cls, sku: str, unit_price: float, on_hand: int = 0, title: str | None = None):
        now = utcnow()
        item = cls(
            sku=sku,
            title=title,
            unit_price=unit_price,
            on_hand=on_hand,
            allocated=0,
            created_at=now,
            updated_at=now,
        )
        item.raise_(
            StockItemRegistered(
                stock_item_id=str(item.id),
                sku=sku,
                unit_price=unit_price,
                on_hand=on_hand,
                registered_at=now,
            )
        )
        return item

    @property
    def available(self) -> int:
        return (self.on_hand or 0) - (self.allocated or 0)

    # -------------------------------------------------------------------
    # Stock movements
    # -------------------------------------------------------------------
    def receive(self, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        now = utcnow()
        self.on_hand = (self.on_hand or 0) + quantity
        self.updated_at = now
        self.raise_(
            StockReceived(
                stock_item_id=str(self.id),
                sku=self.sku,
                quantity=quantity,
                on_hand=self.on_hand,
                received_at=now,
            )
        )

    def ensure_available(self, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        if self.available < quantity:
            raise InsufficientStock(self.sku, requested=quantity, available=self.available)

    def hold(self, order_id, quantity: int) -> InventoryHold:
        """Set aside ``quantity`` units for ``order_id``. All or nothing.

        Returns the new hold; the caller persists it alongside this item.
        """
        self.ensure_available(quantity)

        now = utcnow()
        hold = InventoryHold(
            sku=self.sku,
            order_id=str(order_id),
            quantity=quantity,
            state=HoldState.HELD.value,
            held_at=now,
        )
        self.allocated = (self.allocated or 0) + quantity
        self.updated_at = now

        self.raise_(
            StockHeld(
                stock_item_id=str(self.id),
                sku=self.sku,
                hold_id=str(hold.id),
                order_id=str(order_id),
                quantity=quantity,
                available=self.available,
                held_at=now,
            )
        )
        return hold

    def commit(self, order_id, holds: list[InventoryHold]) -> int:
        """Make the order's held units firm. Returns the committed quantity."""
        holds = [hold for hold in holds if hold.state == HoldState.HELD.value and hold.sku == self.sku]
        if not holds:
            return 0

        now = utcnow()
        for hold in holds:
            hold.commit(now)
        self.updated_at = now

        quantity = sum(hold.quantity for hold in holds)
        self.raise_(
            HoldsCommitted(
                stock_item_id=str(self.id),
                sku=self.sku,
                order_id=str(order_id),
                quantity=quantity,
                committed_at=now,
            )
        )
        return quantity

    def release(self, order_id, holds: list[InventoryHold]) -> int:
        """Return the order's held or committed units to available stock."""
        holds = [hold for hold in holds if hold.is_allocated and hold.sku == self.sku]
        if not holds:
            return 0

        now = utcnow()
        for hold in holds:
            hold.release(now)

        quantity = sum(hold.quantity for hold in holds)
        self.allocated = max((self.allocated or 0) - quantity, 0)
        self.updated_at = now

        self.raise_(
            HoldsReleased(
                stock_item_id=str(self.id),
                sku=self.sku,
                order_id=str(order_id),
                quantity=quantity,
                available=self.available,
                released_at=now,
            )
        )
        return quantity


@storefront.repository(part_of=StockItem)
class StockItemRepository:
    def get_by_sku(self, sku: str) -> StockItem | None:
        return self._dao.query.filter(sku=sku).all().first


@storefront.repository(part_of=InventoryHold)
class InventoryHoldRepository:
    def for_order(self, order_id, sku: str | None = None, states=None) -> list[InventoryHold]:
        query = self._dao.query.filter(order_id=str(order_id))
        if sku is not None:
            query = query.filter(sku=sku)
        if states is not None:
            query = query.filter(state__in=sorted(states))
        return query.all().items
