"""Payment gateway port (abstract interface).

Defines the contract every gateway adapter implements, so the sandbox
FakeGateway and the live VNPayGateway are interchangeable without changing
any domain or application code.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

SUCCESS_CODE = "00"


@dataclass(frozen=True)
class PaymentCallback:
    """Payment result carried by a return redirect or a notification."""

    txn_ref: str
    amount: float
    response_code: str
    transaction_status: str | None = None
    transaction_no: str | None = None
    bank_code: str | None = None
    pay_date: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.response_code == SUCCESS_CODE and self.transaction_status in (None, "", SUCCESS_CODE)


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    response_code: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def build_payment_url(
        self,
        txn_ref: str,
        amount: float,
        order_info: str,
        client_ip: str,
        created_at: datetime,
    ) -> str:
        """Return the signed URL the customer is redirected to."""
        ...

    @abstractmethod
    def verify_signature(self, params: Mapping[str, str]) -> bool:
        """Verify that callback parameters were signed by the gateway."""
        ...

    @abstractmethod
    def parse_callback(self, params: Mapping[str, str]) -> PaymentCallback:
        """Extract the payment result from verified callback parameters."""
        ...

    @abstractmethod
    def refund(
        self,
        txn_ref: str,
        transaction_no: str | None,
        amount: float,
        transaction_date: str | None,
        reason: str,
        requested_by: str,
    ) -> RefundResult:
        """Refund a captured payment. Raises GatewayTimeout when the gateway does not answer."""
        ...
