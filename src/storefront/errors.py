"""Error taxonomy for the storefront domain.

Malformed input is reported with ``protean.exceptions.ValidationError`` and
unknown records with ``protean.exceptions.ObjectNotFoundError``, exactly as
the framework raises them. The classes below cover the remaining cases:
state-machine conflicts and failures of the external payment gateway.
"""


class StorefrontError(Exception):
    """Base class for domain errors that carry a machine readable code."""

    code = "storefront_error"

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.details}


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------
class ConflictError(StorefrontError):
    """The operation is not legal in the current state of the record."""

    code = "conflict"


class PermissionDenied(ConflictError):
    code = "permission_denied"


class OrderNotPayable(ConflictError):
    code = "order_not_payable"


class InsufficientStock(ConflictError):
    code = "insufficient_stock"

    def __init__(self, sku: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for {sku}: {available} available, {requested} requested",
            sku=sku,
            requested=requested,
            available=available,
        )
        self.sku = sku
        self.requested = requested
        self.available = available


class VoucherRejected(ConflictError):
    """A voucher code could not be redeemed for this order."""

    code = "voucher_rejected"
    reason = "rejected"

    def __init__(self, voucher_code: str, message: str) -> None:
        super().__init__(message, voucher_code=voucher_code, reason=self.reason)
        self.voucher_code = voucher_code


class VoucherInvalid(VoucherRejected):
    reason = "invalid"


class VoucherExpired(VoucherRejected):
    reason = "expired"


class VoucherInactive(VoucherRejected):
    reason = "inactive"


class VoucherLimitReached(VoucherRejected):
    reason = "limit_reached"


class OrderBelowMinimum(VoucherRejected):
    reason = "below_minimum"


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------
class GatewayError(StorefrontError):
    """The payment gateway rejected, or could not complete, an interaction."""

    code = "gateway_error"


class InvalidSignature(GatewayError):
    code = "invalid_signature"


class AmountMismatch(GatewayError):
    code = "amount_mismatch"


class GatewayTimeout(GatewayError):
    code = "gateway_timeout"


class RefundFailed(GatewayError):
    code = "refund_failed"
