"""Domain events for the Order aggregate.

Every status or payment-status change of an order is recorded as one of
these events, which gives each order a complete audit trail in the event
store.
"""

from protean.fields import DateTime, Float, Identifier, String, Text

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderPlaced:
    """A customer or guest checked out; stock is held and any voucher redeemed."""

    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier()
    items = Text(required=True)  # JSON: list of item dicts
    voucher_code = String()
    payment_method = String(required=True)
    subtotal = Float(required=True)
    discount = Float()
    shipping_fee = Float()
    total = Float(required=True)
    placed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderConfirmed:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_status = String(required=True)
    confirmed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderShipped:
    __version__ = 1

    order_id = Identifier(required=True)
    shipped_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderDelivered:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_status = String(required=True)
    delivered_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderCancelled:
    """The order was cancelled; its holds were released."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(required=True)
    cancelled_by = String(required=True)
    payment_status = String(required=True)
    cancelled_at = DateTime(required=True)


@storefront.event(part_of="Order")
class ShippingAddressChanged:
    """Staff corrected where an order is delivered."""

    __version__ = 1

    order_id = Identifier(required=True)
    city = String(required=True)
    previous_city = String()
    changed_by = String()
    changed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaid:
    """The gateway confirmed payment of the order total."""

    __version__ = 1

    order_id = Identifier(required=True)
    amount = Float(required=True)
    txn_ref = String()
    gateway_transaction_no = String()
    paid_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaymentFailed:
    __version__ = 1

    order_id = Identifier(required=True)
    txn_ref = String()
    reason = String(required=True)
    failed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class RefundRequested:
    __version__ = 1

    order_id = Identifier(required=True)
    amount = Float(required=True)
    requested_by = String()
    requested_at = DateTime(required=True)


@storefront.event(part_of="Order")
class RefundFailed:
    """The gateway did not confirm the refund; the order stays refund_requested."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(required=True)
    failed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderRefunded:
    __version__ = 1

    order_id = Identifier(required=True)
    amount = Float(required=True)
    gateway_refund_id = String()
    refunded_at = DateTime(required=True)
