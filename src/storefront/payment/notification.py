"""Payment notification reconciliation — command and handler.

The gateway's server-to-server notification is the only channel that moves
money state. The handler runs with the order's lock keys held and resolves
the payment attempt at most once:

- attempt already resolved: the stored acknowledgement is returned and
  nothing is re-applied (the gateway redelivers notifications)
- amount differs from the attempt: the attempt fails, the order is untouched
- gateway reports failure: the attempt fails, the order becomes payment_failed
- gateway reports success: the attempt succeeds, the order is paid and
  confirmed, and its stock holds are committed

The return value is the acknowledgement code sent back to the gateway.
"""

import structlog
from protean import handle
from protean.fields import Float, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.gateway.port import SUCCESS_CODE
from storefront.inventory import reservation
from storefront.order.order import Order
from storefront.payment.attempt import PaymentAttempt

logger = structlog.get_logger(__name__)

ACK_CONFIRMED = "00"
ACK_ORDER_NOT_FOUND = "01"
ACK_ALREADY_CONFIRMED = "02"
ACK_INVALID_AMOUNT = "04"
ACK_INVALID_SIGNATURE = "97"
ACK_UNKNOWN_ERROR = "99"

ACK_MESSAGES = {
    ACK_CONFIRMED: "Confirm Success",
    ACK_ORDER_NOT_FOUND: "Order not found",
    ACK_ALREADY_CONFIRMED: "Order already confirmed",
    ACK_INVALID_AMOUNT: "Invalid amount",
    ACK_INVALID_SIGNATURE: "Invalid signature",
    ACK_UNKNOWN_ERROR: "Unknown error",
}


def amounts_match(left: float, right: float) -> bool:
    return round(float(left), 2) == round(float(right), 2)


@storefront.command(part_of="PaymentAttempt")
class ReconcilePaymentNotification:
    """A verified gateway notification for one payment attempt."""

    txn_ref = String(required=True, max_length=100)
    amount = Float(required=True)
    response_code = String(max_length=10)
    transaction_status = String(max_length=10)
    transaction_no = String(max_length=100)
    pay_date = String(max_length=14)
    response_digest = String(max_length=64)


@storefront.command_handler(part_of=PaymentAttempt)
class ReconcilePaymentNotificationHandler:
    @handle(ReconcilePaymentNotification)
    def reconcile(self, command):
        attempt_repo = current_domain.repository_for(PaymentAttempt)
        order_repo = current_domain.repository_for(Order)

        attempt = attempt_repo.get_by_txn_ref(command.txn_ref)
        if attempt is None:
            logger.warning("Notification for unknown transaction", txn_ref=command.txn_ref)
            return ACK_ORDER_NOT_FOUND

        if attempt.is_resolved():
            logger.info(
                "Duplicate payment notification ignored",
                txn_ref=attempt.txn_ref,
                attempt_status=attempt.status,
                ack_code=attempt.ack_code,
            )
            return attempt.ack_code

        order = order_repo.get(attempt.order_id)

        if not amounts_match(command.amount, attempt.amount) or not amounts_match(command.amount, order.total):
            attempt.fail(
                reason=f"Notified amount {command.amount} does not match {attempt.amount}",
                ack_code=ACK_INVALID_AMOUNT,
                response_code=command.response_code,
                response_digest=command.response_digest,
                transaction_no=command.transaction_no,
            )
            attempt_repo.add(attempt)
            logger.warning(
                "Payment amount mismatch",
                order_id=str(order.id),
                txn_ref=attempt.txn_ref,
                notified=command.amount,
                expected=attempt.amount,
                order_total=order.total,
            )
            return ACK_INVALID_AMOUNT

        succeeded = command.response_code == SUCCESS_CODE and command.transaction_status in (
            None,
            "",
            SUCCESS_CODE,
        )

        if not succeeded:
            reason = f"Gateway declined payment ({command.response_code})"
            attempt.fail(
                reason=reason,
                ack_code=ACK_CONFIRMED,
                response_code=command.response_code,
                response_digest=command.response_digest,
                transaction_no=command.transaction_no,
            )
            attempt_repo.add(attempt)
            if order.is_payable():
                order.record_payment_failure(txn_ref=attempt.txn_ref, reason=reason)
                order_repo.add(order)
            logger.info(
                "Payment failed",
                order_id=str(order.id),
                txn_ref=attempt.txn_ref,
                response_code=command.response_code,
            )
            return ACK_CONFIRMED

        if not order.is_payable():
            attempt.fail(
                reason="Order no longer payable",
                ack_code=ACK_ALREADY_CONFIRMED,
                response_code=command.response_code,
                response_digest=command.response_digest,
                transaction_no=command.transaction_no,
            )
            attempt_repo.add(attempt)
            logger.warning(
                "Payment succeeded for an order that is no longer payable",
                order_id=str(order.id),
                txn_ref=attempt.txn_ref,
                status=order.status,
                payment_status=order.payment_status,
            )
            return ACK_ALREADY_CONFIRMED

        attempt.succeed(
            ack_code=ACK_CONFIRMED,
            response_code=command.response_code,
            response_digest=command.response_digest,
            transaction_no=command.transaction_no,
            pay_date=command.pay_date,
        )
        order.record_payment(
            amount=command.amount,
            txn_ref=attempt.txn_ref,
            gateway_transaction_no=command.transaction_no,
        )
        reservation.commit(order.id, order.skus)
        attempt_repo.add(attempt)
        order_repo.add(order)

        logger.info(
            "Payment confirmed",
            order_id=str(order.id),
            txn_ref=attempt.txn_ref,
            amount=command.amount,
            status=order.status,
        )
        return ACK_CONFIRMED
