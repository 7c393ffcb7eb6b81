"""Domain events for the PaymentAttempt aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from storefront.domain import storefront


@storefront.event(part_of="PaymentAttempt")
class PaymentAttemptInitiated:
    """A payment URL was issued for an order."""

    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    txn_ref = String(required=True)
    amount = Float(required=True)
    initiated_at = DateTime(required=True)


@storefront.event(part_of="PaymentAttempt")
class PaymentAttemptSucceeded:
    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    txn_ref = String(required=True)
    amount = Float(required=True)
    gateway_transaction_no = String()
    received_at = DateTime(required=True)


@storefront.event(part_of="PaymentAttempt")
class PaymentAttemptFailed:
    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    txn_ref = String(required=True)
    reason = String(required=True)
    response_code = String()
    received_at = DateTime(required=True)
