"""Order aggregate — line items, computed totals and the order/payment state machine.

``status`` and ``payment_status`` evolve together. Every change to either goes
through ``assert_transition``, which checks both transition tables and the
combined-state rules below before anything is written.

Order status:
    pending → confirmed → shipped → delivered → refund_requested → refunded
    pending/confirmed → cancelled

Payment status:
    unpaid → paid → refunded
    unpaid → payment_failed → paid   (payment_failed may repeat on retries)

Combined-state rules:
    - a gateway order cannot be shipped or delivered until it is paid
    - a cash order is paid on delivery
    - refund_requested needs a paid order, refunded needs a refunded payment
"""

import json
import re
from datetime import datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from storefront.domain import storefront
from storefront.errors import ConflictError
from storefront.order.events import (
    OrderCancelled,
    OrderConfirmed,
    OrderDelivered,
    OrderPaid,
    OrderPaymentFailed,
    OrderPlaced,
    OrderRefunded,
    OrderShipped,
    RefundFailed,
    RefundRequested,
    ShippingAddressChanged,
)
from storefront.utils.timestamps import utcnow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    REFUNDED = "refunded"


class PaymentMethod(Enum):
    CASH = "cash"
    GATEWAY = "gateway"


_STATUS_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.REFUND_REQUESTED},
    OrderStatus.REFUND_REQUESTED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

_PAYMENT_TRANSITIONS = {
    PaymentStatus.UNPAID: {PaymentStatus.PAID, PaymentStatus.PAYMENT_FAILED},
    PaymentStatus.PAYMENT_FAILED: {PaymentStatus.PAID, PaymentStatus.PAYMENT_FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),  # Terminal
}

TERMINAL_STATUSES = {OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.DELIVERED}
PAYABLE_PAYMENT_STATUSES = {PaymentStatus.UNPAID, PaymentStatus.PAYMENT_FAILED}

_FULFILMENT_STATUSES = {OrderStatus.SHIPPED, OrderStatus.DELIVERED}

# Once delivered (or cancelled) the destination is history.
_ADDRESS_LOCKED_STATUSES = {
    OrderStatus.DELIVERED,
    OrderStatus.REFUND_REQUESTED,
    OrderStatus.REFUNDED,
    OrderStatus.CANCELLED,
}

PHONE_NUMBER_PATTERN = re.compile(r"^(0[35789]|[1-9][0-9])[0-9]{8,14}$")


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@storefront.value_object(part_of="Order")
class ShippingAddress:
    """Delivery address captured at checkout. Later address book edits never touch it."""

    full_name = String(required=True, max_length=255)
    phone_number = String(required=True, max_length=20)
    street_address = String(required=True, max_length=255)
    ward = String(max_length=100)
    district = String(required=True, max_length=100)
    city = String(required=True, max_length=100)

    @invariant.post
    def phone_number_must_be_valid(self):
        if not PHONE_NUMBER_PATTERN.match(self.phone_number or ""):
            raise ValidationError({"phone_number": [f"Invalid phone number: {self.phone_number}"]})


@storefront.value_object(part_of="Order")
class OrderPricing:
    """Computed totals of an order. ``total = subtotal - discount + shipping_fee``."""

    subtotal = Float(default=0.0, min_value=0.0)
    discount = Float(default=0.0, min_value=0.0)
    shipping_base_fee = Float(default=0.0, min_value=0.0)
    shipping_discount = Float(default=0.0, min_value=0.0)
    shipping_fee = Float(default=0.0, min_value=0.0)
    total = Float(default=0.0)

    @invariant.post
    def total_must_match_components(self):
        expected = self.subtotal - self.discount + self.shipping_fee
        if abs(self.total - expected) > 0.005:
            raise ValidationError({"total": [f"Total {self.total} does not equal subtotal - discount + shipping"]})

    @invariant.post
    def total_must_not_be_negative(self):
        if self.total < 0:
            raise ValidationError({"total": ["Total cannot be negative"]})

    @classmethod
    def compute(cls, subtotal: float, discount: float = 0.0, shipping_base_fee: float = 0.0, shipping_discount=0.0):
        shipping_fee = shipping_base_fee - shipping_discount
        return cls(
            subtotal=subtotal,
            discount=discount,
            shipping_base_fee=shipping_base_fee,
            shipping_discount=shipping_discount,
            shipping_fee=shipping_fee,
            total=subtotal - discount + shipping_fee,
        )


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Order")
class OrderItem:
    """A line item. ``unit_price`` is the catalog price at the time of the order."""

    sku = String(required=True, max_length=50)
    title = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)

    @property
    def line_total(self) -> float:
        return self.quantity * self.unit_price


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Order:
    customer_id = Identifier()  # Nullable for guest checkout
    items = HasMany(OrderItem)
    shipping_address = ValueObject(ShippingAddress)
    pricing = ValueObject(OrderPricing)
    voucher_code = String(max_length=50)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.UNPAID.value)
    payment_method = String(choices=PaymentMethod, required=True)
    txn_ref = String(max_length=100)  # gateway reference of the successful attempt
    gateway_transaction_no = String(max_length=100)
    cancellation_reason = String(max_length=500)
    cancelled_by = String(max_length=50)
    last_refund_error = String(max_length=500)
    gateway_refund_id = String(max_length=100)
    refund_in_flight = Boolean(default=False)  # a gateway refund call is outstanding
    paid_at = DateTime()
    refund_requested_at = DateTime()
    refunded_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def order_must_have_items(self):
        if not self.items:
            raise ValidationError({"items": ["An order needs at least one line item"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        customer_id,
        items_data: list[dict],
        shipping_address: dict,
        pricing: OrderPricing,
        payment_method: str,
        voucher_code: str | None = None,
        order_id: str | None = None,
    ):
        """Create a pending, unpaid order.

        Args:
            customer_id: The customer placing the order, or None for a guest.
            items_data: List of dicts with sku, title, quantity, unit_price.
            shipping_address: Dict with full_name, phone_number, street_address,
                ward, district, city.
            pricing: Totals computed at checkout.
            payment_method: ``cash`` or ``gateway``.
            voucher_code: Code redeemed for this order, if any.
            order_id: Pre-generated identity, so holds and redemptions can
                reference the order before it is persisted.
        """
        now = utcnow()
        kwargs = {"id": order_id} if order_id else {}
        order = cls(
            customer_id=customer_id,
            items=[OrderItem(**item) for item in items_data],
            shipping_address=ShippingAddress(**shipping_address),
            pricing=pricing,
            payment_method=payment_method,
            voucher_code=voucher_code,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.UNPAID.value,
            created_at=now,
            updated_at=now,
            **kwargs,
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                customer_id=str(customer_id) if customer_id else None,
                items=json.dumps(items_data),
                voucher_code=voucher_code,
                payment_method=payment_method,
                subtotal=pricing.subtotal,
                discount=pricing.discount,
                shipping_fee=pricing.shipping_fee,
                total=pricing.total,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def total(self) -> float:
        return self.pricing.total if self.pricing else 0.0

    @property
    def skus(self) -> list[str]:
        return sorted({item.sku for item in self.items or []})

    def is_cash(self) -> bool:
        return self.payment_method == PaymentMethod.CASH.value

    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    def is_payable(self) -> bool:
        """An unpaid gateway order that is still pending, or was confirmed by staff ahead of payment."""
        return (
            self.status in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value)
            and not self.is_cash()
            and PaymentStatus(self.payment_status) in PAYABLE_PAYMENT_STATUSES
        )

    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES

    # -------------------------------------------------------------------
    # State transition helper
    # -------------------------------------------------------------------
    def assert_transition(
        self,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
    ) -> None:
        """Raise ConflictError unless moving to (status, payment_status) is legal."""
        current_status = OrderStatus(self.status)
        current_payment = PaymentStatus(self.payment_status)
        target_status = status or current_status
        target_payment = payment_status or current_payment

        if status is not None and target_status not in _STATUS_TRANSITIONS[current_status]:
            self._conflict(f"Cannot move order from {current_status.value} to {target_status.value}")

        if payment_status is not None and target_payment not in _PAYMENT_TRANSITIONS[current_payment]:
            self._conflict(f"Cannot move payment from {current_payment.value} to {target_payment.value}")

        if (
            target_status in _FULFILMENT_STATUSES
            and not self.is_cash()
            and target_payment not in (PaymentStatus.PAID, PaymentStatus.REFUNDED)
        ):
            self._conflict(f"A gateway order must be paid before it is {target_status.value}")

        if target_status == OrderStatus.REFUND_REQUESTED and target_payment != PaymentStatus.PAID:
            self._conflict("Only paid orders can be refunded")

        if (target_status == OrderStatus.REFUNDED) != (target_payment == PaymentStatus.REFUNDED):
            self._conflict("Order and payment are refunded together")

    def _conflict(self, message: str) -> None:
        raise ConflictError(message, status=self.status, payment_status=self.payment_status)

    def _transition(
        self,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
    ) -> None:
        self.assert_transition(status, payment_status)
        with atomic_change(self):
            if status is not None:
                self.status = status.value
            if payment_status is not None:
                self.payment_status = payment_status.value
            self.updated_at = utcnow()

    # -------------------------------------------------------------------
    # Fulfilment
    # -------------------------------------------------------------------
    def confirm(self) -> None:
        self._transition(OrderStatus.CONFIRMED)
        self.raise_(
            OrderConfirmed(
                order_id=str(self.id),
                payment_status=self.payment_status,
                confirmed_at=self.updated_at,
            )
        )

    def ship(self) -> None:
        self._transition(OrderStatus.SHIPPED)
        self.raise_(OrderShipped(order_id=str(self.id), shipped_at=self.updated_at))

    def deliver(self) -> None:
        """Mark delivered. Cash on delivery is collected at this point."""
        payment_status = PaymentStatus.PAID if self.is_cash() and not self.is_paid() else None
        self._transition(OrderStatus.DELIVERED, payment_status)
        if payment_status is not None:
            self.paid_at = self.updated_at
        self.raise_(
            OrderDelivered(
                order_id=str(self.id),
                payment_status=self.payment_status,
                delivered_at=self.updated_at,
            )
        )

    def change_shipping_address(self, shipping_address: dict, changed_by: str) -> None:
        """Replace the delivery address. Pricing is left as quoted at checkout."""
        if OrderStatus(self.status) in _ADDRESS_LOCKED_STATUSES:
            self._conflict(f"Cannot change the shipping address of a {self.status} order")

        previous_city = self.shipping_address.city if self.shipping_address else None
        self.shipping_address = ShippingAddress(**shipping_address)
        self.updated_at = utcnow()
        self.raise_(
            ShippingAddressChanged(
                order_id=str(self.id),
                city=self.shipping_address.city,
                previous_city=previous_city,
                changed_by=changed_by,
                changed_at=self.updated_at,
            )
        )

    def cancel(self, reason: str, cancelled_by: str) -> None:
        payment_status = self.payment_status
        self._transition(OrderStatus.CANCELLED)
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                reason=reason,
                cancelled_by=cancelled_by,
                payment_status=payment_status,
                cancelled_at=self.updated_at,
            )
        )

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def record_payment(self, amount: float, txn_ref: str, gateway_transaction_no: str | None = None) -> None:
        """Record a confirmed gateway payment; a pending order is confirmed with it."""
        confirm = self.status == OrderStatus.PENDING.value
        self._transition(OrderStatus.CONFIRMED if confirm else None, PaymentStatus.PAID)
        self.txn_ref = txn_ref
        self.gateway_transaction_no = gateway_transaction_no
        self.paid_at = self.updated_at

        self.raise_(
            OrderPaid(
                order_id=str(self.id),
                amount=amount,
                txn_ref=txn_ref,
                gateway_transaction_no=gateway_transaction_no,
                paid_at=self.paid_at,
            )
        )
        if confirm:
            self.raise_(
                OrderConfirmed(
                    order_id=str(self.id),
                    payment_status=self.payment_status,
                    confirmed_at=self.updated_at,
                )
            )

    def record_payment_failure(self, txn_ref: str, reason: str) -> None:
        self._transition(payment_status=PaymentStatus.PAYMENT_FAILED)
        self.raise_(
            OrderPaymentFailed(
                order_id=str(self.id),
                txn_ref=txn_ref,
                reason=reason,
                failed_at=self.updated_at,
            )
        )

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def request_refund(self, requested_by: str) -> None:
        self._transition(OrderStatus.REFUND_REQUESTED)
        self.refund_requested_at = self.updated_at
        self.last_refund_error = None
        self.raise_(
            RefundRequested(
                order_id=str(self.id),
                amount=self.total,
                requested_by=requested_by,
                requested_at=self.refund_requested_at,
            )
        )

    def claim_refund_call(self) -> None:
        """Mark the gateway refund call as outstanding. Only one may be in flight per order."""
        if self.refund_in_flight:
            self._conflict("A refund for this order is already being processed")
        self.refund_in_flight = True
        self.updated_at = utcnow()

    def record_refund_failure(self, reason: str) -> None:
        if self.status != OrderStatus.REFUND_REQUESTED.value:
            self._conflict("No refund is in progress for this order")
        self.last_refund_error = reason
        self.refund_in_flight = False
        self.updated_at = utcnow()
        self.raise_(RefundFailed(order_id=str(self.id), reason=reason, failed_at=self.updated_at))

    def complete_refund(self, gateway_refund_id: str | None = None) -> None:
        self._transition(OrderStatus.REFUNDED, PaymentStatus.REFUNDED)
        self.gateway_refund_id = gateway_refund_id
        self.last_refund_error = None
        self.refund_in_flight = False
        self.refunded_at = self.updated_at
        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                amount=self.total,
                gateway_refund_id=gateway_refund_id,
                refunded_at=self.refunded_at,
            )
        )


@storefront.repository(part_of=Order)
class OrderRepository:
    _PAGE_SIZE = 100

    def find_by_status(self, status: str) -> list[Order]:
        """All orders in ``status``, fetched page by page."""
        orders = []
        offset = 0
        while True:
            results = self._dao.query.filter(status=status).offset(offset).limit(self._PAGE_SIZE).all()
            orders.extend(results.items)
            if not results.has_next:
                return orders
            offset += self._PAGE_SIZE

    def search(
        self,
        customer_id=None,
        status: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        page: int = 1,
        per_page: int = 10,
    ):
        """One page of orders, newest first. Returns a ResultSet carrying ``total``."""
        query = self._dao.query
        if customer_id is not None:
            query = query.filter(customer_id=str(customer_id))
        if status:
            query = query.filter(status=status)
        if created_from is not None:
            query = query.filter(created_at__gte=created_from)
        if created_to is not None:
            query = query.filter(created_at__lte=created_to)
        return query.order_by("-created_at").offset((page - 1) * per_page).limit(per_page).all()
