"""Order cancellation — command and handler.

Customers may cancel their own orders while pending, and a guest order may
be cancelled while pending by whoever holds its id; admins may cancel
pending or confirmed orders. Cancelling releases the order's stock holds
and, unless the order was paid, its voucher redemption.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import ConflictError, PermissionDenied
from storefront.inventory import reservation
from storefront.locking import order_key, sku_key, voucher_key
from storefront.order.order import Order, OrderStatus
from storefront.order.permissions import Actor, Role, parse_role
from storefront.voucher import ledger

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    actor_role = String(max_length=20, default="customer")
    actor_id = String(max_length=100)
    reason = String(max_length=500)


def lock_keys_for_order(order: Order):
    """Keys touched by releasing ``order``: the order, its SKUs and its voucher."""
    keys = [order_key(order.id)] + [sku_key(sku) for sku in order.skus]
    if order.voucher_code:
        keys.append(voucher_key(order.voucher_code))
    return keys


def assert_can_cancel(order: Order, actor: Actor) -> None:
    if actor.role == Role.ADMIN:
        return
    if actor.role == Role.SYSTEM:
        if order.status != OrderStatus.PENDING.value:
            raise ConflictError("Only pending orders expire", status=order.status)
        return
    if actor.role == Role.CUSTOMER and (order.customer_id is None or actor.owns(order.customer_id)):
        if order.status != OrderStatus.PENDING.value:
            raise ConflictError("Customers can only cancel pending orders", status=order.status)
        return
    raise PermissionDenied(f"Actor may not cancel order {order.id}", status=order.status)


def apply_cancellation(order: Order, reason: str, cancelled_by: str) -> None:
    """Cancel ``order`` and give back what it holds. Runs inside the caller's unit of work."""
    order.cancel(reason=reason, cancelled_by=cancelled_by)
    reservation.release(order.id, order.skus)
    if order.voucher_code and not order.is_paid():
        ledger.release_redemption(order.voucher_code, order.id)
    current_domain.repository_for(Order).add(order)

    logger.info(
        "Order cancelled",
        order_id=str(order.id),
        reason=reason,
        cancelled_by=cancelled_by,
        payment_status=order.payment_status,
    )


@storefront.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        actor = Actor(role=parse_role(command.actor_role), actor_id=command.actor_id)
        order = current_domain.repository_for(Order).get(command.order_id)

        assert_can_cancel(order, actor)
        order.assert_transition(OrderStatus.CANCELLED)

        apply_cancellation(
            order,
            reason=command.reason or f"Cancelled by {actor.role.value}",
            cancelled_by=actor.role.value,
        )
        return order.status
