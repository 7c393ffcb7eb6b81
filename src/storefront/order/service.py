"""Order service — the use cases exposed to the HTTP layer and the scheduler.

Every mutating use case is a single command processed while holding the lock
keys of the records it touches (see ``storefront.locking``). Payment use
cases live in ``storefront.payment.reconciliation``.
"""

import json
import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, time

from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from storefront.errors import PermissionDenied
from storefront.locking import order_key, process_serialized
from storefront.order import expiry
from storefront.order.cancellation import CancelOrder, lock_keys_for_order
from storefront.order.fulfillment import UpdateOrderStatus, UpdateShippingAddress
from storefront.order.order import Order, OrderStatus, PaymentStatus
from storefront.order.permissions import Actor, Role
from storefront.order.placement import PlaceOrder, lock_keys_for
from storefront.payment import reconciliation
from storefront.shipping import ShippingQuote, quote_shipping
from storefront.voucher import ledger

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class OrderPage:
    orders: list[Order]
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.total else 0


@dataclass(frozen=True)
class VoucherPreview:
    code: str
    discount_type: str
    value: float
    min_order_value: float
    discount_amount: float


def place_order(
    items: list[dict],
    shipping_address: dict,
    payment_method: str,
    customer_id: str | None = None,
    voucher_code: str | None = None,
) -> Order:
    command = PlaceOrder(
        customer_id=customer_id,
        items=json.dumps(items),
        shipping_address=json.dumps(shipping_address),
        payment_method=payment_method,
        voucher_code=voucher_code or None,
    )
    order_id = process_serialized(command, lock_keys_for(command))
    return current_domain.repository_for(Order).get(order_id)


def get_order(order_id, actor: Actor) -> Order:
    order = current_domain.repository_for(Order).get(order_id)
    actor.require_access(order.customer_id)
    return order


def check_payment_status(order_id, actor: Actor) -> dict:
    order = get_order(order_id, actor)
    return {
        "order_id": str(order.id),
        "status": order.status,
        "payment_status": order.payment_status,
        "paid": order.payment_status == PaymentStatus.PAID.value,
    }


def cancel_order(order_id, actor: Actor, reason: str | None = None) -> Order:
    order = current_domain.repository_for(Order).get(order_id)
    process_serialized(
        CancelOrder(
            order_id=str(order.id),
            actor_role=actor.role.value,
            actor_id=actor.actor_id,
            reason=reason,
        ),
        lock_keys_for_order(order),
    )
    return current_domain.repository_for(Order).get(order.id)


def update_order_status(order_id, status: str, actor: Actor) -> Order:
    process_serialized(
        UpdateOrderStatus(
            order_id=str(order_id),
            status=status,
            actor_role=actor.role.value,
            actor_id=actor.actor_id,
        ),
        [order_key(order_id)],
    )
    return current_domain.repository_for(Order).get(order_id)


def refund_order(order_id, actor: Actor) -> Order:
    return reconciliation.initiate_refund(order_id, actor)


def sweep_expired_orders(actor: Actor, now: datetime | None = None) -> expiry.SweepResult:
    actor.require_admin()
    return expiry.sweep(now=now)


def update_shipping_address(order_id, shipping_address: dict, actor: Actor) -> Order:
    process_serialized(
        UpdateShippingAddress(
            order_id=str(order_id),
            shipping_address=json.dumps(shipping_address),
            actor_role=actor.role.value,
            actor_id=actor.actor_id,
        ),
        [order_key(order_id)],
    )
    return current_domain.repository_for(Order).get(order_id)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------
def _parse_status_filter(status: str | None) -> str | None:
    if not status or status == "all":
        return None
    try:
        return OrderStatus(status.strip().lower()).value
    except ValueError:
        raise ValidationError(
            {"status": [f"Status must be 'all' or one of: {', '.join(s.value for s in OrderStatus)}"]}
        ) from None


def _check_paging(page: int, per_page: int) -> None:
    if page < 1:
        raise ValidationError({"page": ["Page numbers start at 1"]})
    if not 1 <= per_page <= MAX_PAGE_SIZE:
        raise ValidationError({"limit": [f"Page size must be between 1 and {MAX_PAGE_SIZE}"]})


def _search(
    customer_id=None,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    per_page: int = 10,
) -> OrderPage:
    _check_paging(page, per_page)
    if date_from and date_to and date_from > date_to:
        raise ValidationError({"from_date": ["from_date must not be after to_date"]})

    results = current_domain.repository_for(Order).search(
        customer_id=customer_id,
        status=_parse_status_filter(status),
        created_from=datetime.combine(date_from, time.min, tzinfo=UTC) if date_from else None,
        created_to=datetime.combine(date_to, time.max, tzinfo=UTC) if date_to else None,
        page=page,
        per_page=per_page,
    )
    return OrderPage(orders=list(results.items), total=results.total, page=page, per_page=per_page)


def list_my_orders(actor: Actor, status: str | None = None, page: int = 1, per_page: int = 10) -> OrderPage:
    """The signed-in customer's own orders, newest first."""
    if actor.role != Role.CUSTOMER or not actor.actor_id:
        raise PermissionDenied("Sign in as a customer to list your orders")
    return _search(customer_id=actor.actor_id, status=status, page=page, per_page=per_page)


def list_orders(
    actor: Actor,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    per_page: int = 10,
) -> OrderPage:
    """Every order, for administrators. Dates filter on the UTC creation day, both ends inclusive."""
    actor.require_admin()
    return _search(status=status, date_from=date_from, date_to=date_to, page=page, per_page=per_page)


def list_customer_orders(
    customer_id,
    actor: Actor,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    per_page: int = 10,
) -> OrderPage:
    """One customer's orders, for staff."""
    if not actor.is_staff:
        raise PermissionDenied("Only staff may list another customer's orders")
    return _search(
        customer_id=customer_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
        page=page,
        per_page=per_page,
    )


# ---------------------------------------------------------------------------
# Checkout previews
# ---------------------------------------------------------------------------
def preview_voucher(code: str, order_total: float) -> VoucherPreview:
    """Check a voucher against a cart total without consuming a use."""
    voucher, discount = ledger.check_redemption(code, order_total)
    return VoucherPreview(
        code=voucher.code,
        discount_type=voucher.discount_type,
        value=voucher.value,
        min_order_value=voucher.min_order_value,
        discount_amount=discount,
    )


def quote_shipping_fee(subtotal: float, city: str) -> ShippingQuote:
    if subtotal < 0:
        raise ValidationError({"subtotal": ["Subtotal cannot be negative"]})
    if not (city or "").strip():
        raise ValidationError({"city": ["City is required"]})
    return quote_shipping(subtotal, city)
