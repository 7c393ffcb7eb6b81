"""Order refunds — commands and handler.

``RequestRefund`` moves a delivered, paid order to refund_requested (or
accepts a retry of one already there). Cash orders are refunded on the spot;
gateway orders wait for the gateway call made by
``reconciliation.initiate_refund``, whose outcome is recorded with
``CompleteRefund`` or ``RecordRefundFailure``. While that call is
outstanding the order is marked ``refund_in_flight`` and a second request
is refused with ConflictError.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.order.order import Order, OrderStatus
from storefront.order.permissions import Actor, Permission, parse_role

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Order")
class RequestRefund:
    order_id = Identifier(required=True)
    actor_role = String(max_length=20, default="customer")
    actor_id = String(max_length=100)


@storefront.command(part_of="Order")
class CompleteRefund:
    order_id = Identifier(required=True)
    gateway_refund_id = String(max_length=100)


@storefront.command(part_of="Order")
class RecordRefundFailure:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


@storefront.command_handler(part_of=Order)
class RefundHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        """Returns True when the gateway still has to be asked for the money back."""
        actor = Actor(role=parse_role(command.actor_role), actor_id=command.actor_id)
        actor.require(Permission.REFUND_ORDERS)

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        if order.status == OrderStatus.REFUND_REQUESTED.value:
            logger.info("Refund retried", order_id=str(order.id), last_error=order.last_refund_error)
        else:
            order.request_refund(requested_by=actor.actor_id or actor.role.value)
            logger.info("Refund requested", order_id=str(order.id), amount=order.total)

        if order.is_cash():
            order.complete_refund()
            logger.info("Cash order refunded", order_id=str(order.id), amount=order.total)
        else:
            order.claim_refund_call()

        repo.add(order)
        return not order.is_cash()

    @handle(CompleteRefund)
    def complete_refund(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.complete_refund(gateway_refund_id=command.gateway_refund_id)
        repo.add(order)

        logger.info(
            "Refund completed",
            order_id=str(order.id),
            gateway_refund_id=command.gateway_refund_id,
            amount=order.total,
        )

    @handle(RecordRefundFailure)
    def record_refund_failure(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_refund_failure(reason=command.reason)
        repo.add(order)

        logger.warning("Refund failed", order_id=str(order.id), reason=command.reason)
