"""Payment reconciliation — the boundary between orders and the gateway.

Each function is called from the HTTP layer inside a domain context. State
changes go through commands processed with the affected lock keys held;
gateway network calls (refunds) are made between units of work, never
inside one.
"""

from collections.abc import Mapping
from dataclasses import dataclass

import structlog
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from storefront.errors import AmountMismatch, ConflictError, GatewayTimeout, InvalidSignature, RefundFailed
from storefront.gateway import get_gateway, signing
from storefront.locking import order_key, process_serialized, sku_key
from storefront.order.order import Order
from storefront.order.permissions import Actor
from storefront.payment.attempt import PaymentAttempt
from storefront.payment.initiation import StartPaymentAttempt
from storefront.payment.notification import (
    ACK_ALREADY_CONFIRMED,
    ACK_INVALID_SIGNATURE,
    ACK_MESSAGES,
    ACK_ORDER_NOT_FOUND,
    ACK_UNKNOWN_ERROR,
    ReconcilePaymentNotification,
    amounts_match,
)
from storefront.payment.refund import CompleteRefund, RecordRefundFailure, RequestRefund

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaymentLink:
    order_id: str
    txn_ref: str
    amount: float
    payment_url: str


@dataclass(frozen=True)
class ReturnOutcome:
    """What the customer's browser is told after the gateway redirect. Advisory only."""

    order_id: str
    txn_ref: str
    success: bool
    response_code: str
    message: str
    status: str
    payment_status: str


@dataclass(frozen=True)
class NotificationAck:
    code: str
    message: str

    @classmethod
    def for_code(cls, code: str) -> "NotificationAck":
        return cls(code=code, message=ACK_MESSAGES[code])

    def as_dict(self) -> dict:
        return {"RspCode": self.code, "Message": self.message}


# ---------------------------------------------------------------------------
# Payment URL
# ---------------------------------------------------------------------------
def create_payment_url(order_id, actor: Actor, client_ip: str | None = None) -> PaymentLink:
    txn_ref = process_serialized(
        StartPaymentAttempt(
            order_id=str(order_id),
            actor_role=actor.role.value,
            actor_id=actor.actor_id,
            client_ip=client_ip,
        ),
        [order_key(order_id)],
    )
    attempt = current_domain.repository_for(PaymentAttempt).get_by_txn_ref(txn_ref)

    url = get_gateway().build_payment_url(
        txn_ref=txn_ref,
        amount=attempt.amount,
        order_info=f"Thanh toan don hang {order_id}",
        client_ip=client_ip or "127.0.0.1",
        created_at=attempt.initiated_at,
    )
    return PaymentLink(order_id=str(order_id), txn_ref=txn_ref, amount=attempt.amount, payment_url=url)


# ---------------------------------------------------------------------------
# Return redirect
# ---------------------------------------------------------------------------
def handle_return(params: Mapping[str, str]) -> ReturnOutcome:
    """Verify the browser redirect and report the current state. Never mutates."""
    gateway = get_gateway()
    if not gateway.verify_signature(params):
        logger.warning("Return redirect rejected", reason="invalid signature", txn_ref=params.get("vnp_TxnRef"))
        raise InvalidSignature("Payment return signature is invalid")

    callback = gateway.parse_callback(params)
    attempt = current_domain.repository_for(PaymentAttempt).get_by_txn_ref(callback.txn_ref)
    if attempt is None:
        raise ObjectNotFoundError({"vnp_TxnRef": [f"Unknown transaction {callback.txn_ref}"]})

    if not amounts_match(callback.amount, attempt.amount):
        logger.warning(
            "Return redirect amount mismatch",
            txn_ref=callback.txn_ref,
            notified=callback.amount,
            expected=attempt.amount,
        )
        raise AmountMismatch("Paid amount does not match the order total", txn_ref=callback.txn_ref)

    order = current_domain.repository_for(Order).get(attempt.order_id)
    if callback.succeeded:
        message = "Payment received. Your order will be confirmed shortly."
    else:
        message = f"Payment was not completed ({callback.response_code})."

    return ReturnOutcome(
        order_id=str(order.id),
        txn_ref=callback.txn_ref,
        success=callback.succeeded,
        response_code=callback.response_code,
        message=message,
        status=order.status,
        payment_status=order.payment_status,
    )


# ---------------------------------------------------------------------------
# Notification (IPN)
# ---------------------------------------------------------------------------
def _notification_lock_keys(txn_ref: str):
    attempt = current_domain.repository_for(PaymentAttempt).get_by_txn_ref(txn_ref)
    if attempt is None:
        return None
    order = current_domain.repository_for(Order).get(attempt.order_id)
    return [order_key(order.id)] + [sku_key(sku) for sku in order.skus]


def handle_notification(params: Mapping[str, str]) -> NotificationAck:
    """Reconcile a gateway notification; every outcome becomes an acknowledgement."""
    gateway = get_gateway()
    if not gateway.verify_signature(params):
        logger.warning(
            "Payment notification rejected", txn_ref=params.get("vnp_TxnRef"), ack_code=ACK_INVALID_SIGNATURE
        )
        return NotificationAck.for_code(ACK_INVALID_SIGNATURE)

    try:
        callback = gateway.parse_callback(params)
        keys = _notification_lock_keys(callback.txn_ref)
        if keys is None:
            ack_code = ACK_ORDER_NOT_FOUND
        else:
            ack_code = process_serialized(
                ReconcilePaymentNotification(
                    txn_ref=callback.txn_ref,
                    amount=callback.amount,
                    response_code=callback.response_code,
                    transaction_status=callback.transaction_status,
                    transaction_no=callback.transaction_no,
                    pay_date=callback.pay_date,
                    response_digest=signing.digest(params),
                ),
                keys,
            )
    except ValidationError as exc:
        logger.warning("Malformed payment notification", errors=exc.messages)
        ack_code = ACK_UNKNOWN_ERROR
    except ObjectNotFoundError:
        ack_code = ACK_ORDER_NOT_FOUND
    except ConflictError as exc:
        logger.warning("Payment notification conflicts with order state", error=exc.message)
        ack_code = ACK_ALREADY_CONFIRMED
    except ExpectedVersionError as exc:
        logger.warning("Payment notification lost a concurrent write", error=str(exc))
        ack_code = ACK_UNKNOWN_ERROR

    logger.info("Payment notification verified", txn_ref=params.get("vnp_TxnRef"), ack_code=ack_code)
    return NotificationAck.for_code(ack_code)


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------
def _record_refund_failure(order_id, reason: str) -> None:
    process_serialized(RecordRefundFailure(order_id=str(order_id), reason=reason), [order_key(order_id)])


def initiate_refund(order_id, actor: Actor) -> Order:
    """Refund a delivered, paid order. A failed gateway call leaves it refund_requested."""
    needs_gateway = process_serialized(
        RequestRefund(order_id=str(order_id), actor_role=actor.role.value, actor_id=actor.actor_id),
        [order_key(order_id)],
    )
    order = current_domain.repository_for(Order).get(order_id)
    if not needs_gateway:
        return order

    attempt = current_domain.repository_for(PaymentAttempt).succeeded_for_order(order.id)
    if attempt is None:
        reason = "No captured payment found for this order"
        _record_refund_failure(order.id, reason)
        raise RefundFailed(reason, order_id=str(order.id))

    try:
        result = get_gateway().refund(
            txn_ref=attempt.txn_ref,
            transaction_no=attempt.gateway_transaction_no,
            amount=attempt.amount,
            transaction_date=attempt.gateway_pay_date,
            reason=f"Hoan tien don hang {order.id}",
            requested_by=actor.actor_id or actor.role.value,
        )
    except GatewayTimeout:
        _record_refund_failure(order.id, "Gateway timed out")
        raise

    if not result.success:
        _record_refund_failure(order.id, result.failure_reason or "Refund declined")
        raise RefundFailed(
            result.failure_reason or "Refund declined",
            order_id=str(order.id),
            response_code=result.response_code,
        )

    process_serialized(
        CompleteRefund(order_id=str(order.id), gateway_refund_id=result.gateway_refund_id),
        [order_key(order.id)],
    )
    return current_domain.repository_for(Order).get(order.id)
