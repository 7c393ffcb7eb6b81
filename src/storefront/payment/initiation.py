"""Payment attempt initiation — command and handler.

Opens a new PaymentAttempt for a payable order. The attempt's amount is the
order total at this moment; the payment URL itself is built and signed
outside the unit of work by ``reconciliation.create_payment_url``.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import OrderNotPayable
from storefront.order.order import Order
from storefront.order.permissions import Actor, parse_role
from storefront.payment.attempt import PaymentAttempt

logger = structlog.get_logger(__name__)


@storefront.command(part_of="PaymentAttempt")
class StartPaymentAttempt:
    order_id = Identifier(required=True)
    actor_role = String(max_length=20, default="customer")
    actor_id = String(max_length=100)
    client_ip = String(max_length=45)


@storefront.command_handler(part_of=PaymentAttempt)
class StartPaymentAttemptHandler:
    @handle(StartPaymentAttempt)
    def start_payment_attempt(self, command):
        actor = Actor(role=parse_role(command.actor_role), actor_id=command.actor_id)
        order = current_domain.repository_for(Order).get(command.order_id)
        actor.require_access(order.customer_id)

        if not order.is_payable():
            raise OrderNotPayable(
                f"Order {order.id} is not awaiting payment",
                status=order.status,
                payment_status=order.payment_status,
                payment_method=order.payment_method,
            )

        attempt = PaymentAttempt.start(order.id, order.total, client_ip=command.client_ip)
        current_domain.repository_for(PaymentAttempt).add(attempt)

        logger.info(
            "Payment attempt initiated",
            order_id=str(order.id),
            txn_ref=attempt.txn_ref,
            amount=attempt.amount,
        )
        return attempt.txn_ref
