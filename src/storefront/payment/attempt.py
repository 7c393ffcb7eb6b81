"""PaymentAttempt aggregate — one round trip through the payment gateway.

Each payment URL issued for an order creates an attempt with its own
transaction reference, fixed to the order total at that moment. The
gateway's notification resolves the attempt exactly once; redeliveries are
recognised by the attempt already being resolved and are answered with the
acknowledgement stored on the first delivery.

State Machine:
    INITIATED → SUCCEEDED
    INITIATED → FAILED
"""

from enum import Enum
from uuid import uuid4

from protean.fields import DateTime, Float, Identifier, String

from storefront.domain import storefront
from storefront.errors import ConflictError
from storefront.payment.events import (
    PaymentAttemptFailed,
    PaymentAttemptInitiated,
    PaymentAttemptSucceeded,
)
from storefront.utils.timestamps import utcnow


class AttemptStatus(Enum):
    INITIATED = "initiated"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_VALID_TRANSITIONS = {
    AttemptStatus.INITIATED: {AttemptStatus.SUCCEEDED, AttemptStatus.FAILED},
    AttemptStatus.SUCCEEDED: set(),  # Terminal
    AttemptStatus.FAILED: set(),  # Terminal
}


def new_txn_ref(order_id) -> str:
    return f"{order_id}_{uuid4().hex[:12]}"


@storefront.aggregate
class PaymentAttempt:
    order_id = Identifier(required=True)
    txn_ref = String(required=True, max_length=100, unique=True)
    amount = Float(required=True, min_value=0.0)
    status = String(choices=AttemptStatus, default=AttemptStatus.INITIATED.value)
    client_ip = String(max_length=45)
    gateway_transaction_no = String(max_length=100)
    gateway_pay_date = String(max_length=14)
    response_code = String(max_length=10)
    response_digest = String(max_length=64)
    ack_code = String(max_length=4)  # acknowledgement returned to the gateway
    failure_reason = String(max_length=500)
    initiated_at = DateTime(required=True)
    received_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def start(cls, order_id, amount: float, client_ip: str | None = None):
        now = utcnow()
        attempt = cls(
            order_id=str(order_id),
            txn_ref=new_txn_ref(order_id),
            amount=amount,
            client_ip=client_ip,
            status=AttemptStatus.INITIATED.value,
            initiated_at=now,
            updated_at=now,
        )
        attempt.raise_(
            PaymentAttemptInitiated(
                attempt_id=str(attempt.id),
                order_id=str(order_id),
                txn_ref=attempt.txn_ref,
                amount=amount,
                initiated_at=now,
            )
        )
        return attempt

    def is_resolved(self) -> bool:
        return self.status != AttemptStatus.INITIATED.value

    def _assert_can_transition(self, target_status: AttemptStatus) -> None:
        current = AttemptStatus(self.status)
        if target_status not in _VALID_TRANSITIONS[current]:
            raise ConflictError(
                f"Payment attempt {self.txn_ref} cannot move from {current.value} to {target_status.value}",
                status=current.value,
            )

    def succeed(
        self,
        ack_code: str,
        response_code: str,
        response_digest: str,
        transaction_no: str | None = None,
        pay_date: str | None = None,
    ) -> None:
        self._assert_can_transition(AttemptStatus.SUCCEEDED)
        now = utcnow()
        self.status = AttemptStatus.SUCCEEDED.value
        self._record_response(ack_code, response_code, response_digest, transaction_no, pay_date, now)

        self.raise_(
            PaymentAttemptSucceeded(
                attempt_id=str(self.id),
                order_id=str(self.order_id),
                txn_ref=self.txn_ref,
                amount=self.amount,
                gateway_transaction_no=transaction_no,
                received_at=now,
            )
        )

    def fail(
        self,
        reason: str,
        ack_code: str,
        response_code: str | None = None,
        response_digest: str | None = None,
        transaction_no: str | None = None,
    ) -> None:
        self._assert_can_transition(AttemptStatus.FAILED)
        now = utcnow()
        self.status = AttemptStatus.FAILED.value
        self.failure_reason = reason
        self._record_response(ack_code, response_code, response_digest, transaction_no, None, now)

        self.raise_(
            PaymentAttemptFailed(
                attempt_id=str(self.id),
                order_id=str(self.order_id),
                txn_ref=self.txn_ref,
                reason=reason,
                response_code=response_code,
                received_at=now,
            )
        )

    def _record_response(self, ack_code, response_code, response_digest, transaction_no, pay_date, now) -> None:
        self.ack_code = ack_code
        self.response_code = response_code
        self.response_digest = response_digest
        self.gateway_transaction_no = transaction_no
        self.gateway_pay_date = pay_date
        self.received_at = now
        self.updated_at = now


@storefront.repository(part_of=PaymentAttempt)
class PaymentAttemptRepository:
    def get_by_txn_ref(self, txn_ref: str) -> PaymentAttempt | None:
        return self._dao.query.filter(txn_ref=txn_ref).all().first

    def for_order(self, order_id) -> list[PaymentAttempt]:
        return self._dao.query.filter(order_id=str(order_id)).all().items

    def succeeded_for_order(self, order_id) -> PaymentAttempt | None:
        return (
            self._dao.query.filter(order_id=str(order_id), status=AttemptStatus.SUCCEEDED.value).all().first
        )
