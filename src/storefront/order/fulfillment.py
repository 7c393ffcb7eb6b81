"""Staff updates to an order in fulfilment — forward status moves and shipping address corrections."""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import PermissionDenied
from storefront.order.order import Order, OrderStatus
from storefront.order.permissions import Actor, Permission, Role, parse_role
from storefront.order.placement import parse_shipping_address

logger = structlog.get_logger(__name__)

_FORWARD_STEPS = {
    OrderStatus.CONFIRMED.value: Order.confirm,
    OrderStatus.SHIPPED.value: Order.ship,
    OrderStatus.DELIVERED.value: Order.deliver,
}


@storefront.command(part_of="Order")
class UpdateOrderStatus:
    """Move an order one step forward through fulfilment."""

    order_id = Identifier(required=True)
    status = String(required=True, max_length=20)
    actor_role = String(max_length=20, default="customer")
    actor_id = String(max_length=100)


@storefront.command_handler(part_of=Order)
class UpdateOrderStatusHandler:
    @handle(UpdateOrderStatus)
    def update_order_status(self, command):
        actor = Actor(role=parse_role(command.actor_role), actor_id=command.actor_id)
        actor.require(Permission.MANAGE_ORDERS)

        step = _FORWARD_STEPS.get((command.status or "").strip().lower())
        if step is None:
            raise ValidationError(
                {"status": [f"Status must be one of: {', '.join(_FORWARD_STEPS)}"]}
            )

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        previous = order.status
        step(order)
        repo.add(order)

        logger.info(
            "Order status updated",
            order_id=str(order.id),
            from_status=previous,
            to_status=order.status,
            payment_status=order.payment_status,
            actor_role=actor.role.value,
        )
        return order.status


@storefront.command(part_of="Order")
class UpdateShippingAddress:
    """Correct the delivery address of an order that has not been delivered."""

    order_id = Identifier(required=True)
    shipping_address = Text(required=True)  # JSON object, same fields as at checkout
    actor_role = String(max_length=20, default="customer")
    actor_id = String(max_length=100)


@storefront.command_handler(part_of=Order)
class UpdateShippingAddressHandler:
    @handle(UpdateShippingAddress)
    def update_shipping_address(self, command):
        actor = Actor(role=parse_role(command.actor_role), actor_id=command.actor_id)
        if actor.role != Role.ADMIN:
            raise PermissionDenied("Only administrators may change a shipping address")

        address = parse_shipping_address(command.shipping_address)

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        previous_city = order.shipping_address.city
        order.change_shipping_address(address, changed_by=actor.actor_id or actor.role.value)
        repo.add(order)

        logger.info(
            "Shipping address changed",
            order_id=str(order.id),
            from_city=previous_city,
            to_city=order.shipping_address.city,
            status=order.status,
        )
        return order.status
