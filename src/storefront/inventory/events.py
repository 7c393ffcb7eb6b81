"""Domain events for the StockItem aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="StockItem")
class StockItemRegistered:
    __version__ = 1

    stock_item_id = Identifier(required=True)
    sku = String(required=True)
    unit_price = Float(required=True)
    on_hand = Integer(required=True)
    registered_at = DateTime(required=True)


@storefront.event(part_of="StockItem")
class StockReceived:
    """Physical stock for a SKU was replenished."""

    __version__ = 1

    stock_item_id = Identifier(required=True)
    sku = String(required=True)
    quantity = Integer(required=True)
    on_hand = Integer(required=True)
    received_at = DateTime(required=True)


@storefront.event(part_of="StockItem")
class StockHeld:
    """Units of a SKU were set aside for an unpaid order."""

    __version__ = 1

    stock_item_id = Identifier(required=True)
    sku = String(required=True)
    hold_id = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    available = Integer(required=True)
    held_at = DateTime(required=True)


@storefront.event(part_of="StockItem")
class HoldsCommitted:
    """An order's holds on a SKU became firm (payment confirmed or cash order)."""

    __version__ = 1

    stock_item_id = Identifier(required=True)
    sku = String(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    committed_at = DateTime(required=True)


@storefront.event(part_of="StockItem")
class HoldsReleased:
    """An order's holds on a SKU were returned to available stock."""

    __version__ = 1

    stock_item_id = Identifier(required=True)
    sku = String(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    available = Integer(required=True)
    released_at = DateTime(required=True)
