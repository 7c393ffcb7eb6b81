"""Configurable fake payment gateway for development and testing.

Signs and verifies exactly like VNPay (same HMAC scheme, same parameter
names) but never leaves the process: refunds are answered locally and can
be configured to fail or to time out. ``signed_callback`` produces the
parameters VNPay would send on the return redirect and the IPN, which is
how tests and manual API sessions simulate the customer paying.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from uuid import uuid4

from storefront.errors import GatewayTimeout
from storefront.gateway import signing
from storefront.gateway.port import SUCCESS_CODE, RefundResult
from storefront.gateway.vnpay_adapter import VNPayGateway, format_vnp_date

FAKE_TMN_CODE = "DEMO"
FAKE_HASH_SECRET = "VNPAYSECRET"


class FakeGateway(VNPayGateway):
    """VNPay-compatible gateway that answers refunds locally."""

    def __init__(self, tmn_code: str = FAKE_TMN_CODE, hash_secret: str = FAKE_HASH_SECRET) -> None:
        super().__init__(
            tmn_code=tmn_code,
            hash_secret=hash_secret,
            payment_url="https://sandbox.example.com/vpcpay.html",
            return_url="http://localhost:8000/payments/vnpay/return",
        )
        self.should_succeed: bool = True
        self.should_timeout: bool = False
        self.failure_reason: str = "Refund declined"
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Refund declined",
        should_timeout: bool = False,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.should_timeout = should_timeout

    def build_payment_url(self, txn_ref, amount, order_info, client_ip, created_at) -> str:
        self.calls.append({"method": "build_payment_url", "txn_ref": txn_ref, "amount": amount})
        return super().build_payment_url(txn_ref, amount, order_info, client_ip, created_at)

    def refund(
        self,
        txn_ref: str,
        transaction_no: str | None,
        amount: float,
        transaction_date: str | None,
        reason: str,
        requested_by: str,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "refund",
                "txn_ref": txn_ref,
                "transaction_no": transaction_no,
                "amount": amount,
                "transaction_date": transaction_date,
                "reason": reason,
                "requested_by": requested_by,
            }
        )

        if self.should_timeout:
            raise GatewayTimeout(f"Refund request for {txn_ref} timed out", txn_ref=txn_ref)
        if self.should_succeed:
            return RefundResult(
                success=True,
                gateway_refund_id=f"fake_ref_{uuid4().hex[:12]}",
                response_code=SUCCESS_CODE,
            )
        return RefundResult(success=False, response_code="94", failure_reason=self.failure_reason)

    # -------------------------------------------------------------------
    # Simulation helpers
    # -------------------------------------------------------------------
    def signed_callback(
        self,
        txn_ref: str,
        amount: float,
        response_code: str = SUCCESS_CODE,
        transaction_no: str | None = None,
        paid_at: datetime | None = None,
        extra: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Build the parameters of a return redirect or IPN for ``txn_ref``."""
        params = {
            "vnp_TmnCode": self.tmn_code,
            "vnp_TxnRef": txn_ref,
            "vnp_Amount": str(int(round(amount * 100))),
            "vnp_OrderInfo": f"Thanh toan don hang {txn_ref}",
            "vnp_ResponseCode": response_code,
            "vnp_TransactionStatus": response_code,
            "vnp_TransactionNo": transaction_no or str(uuid4().int)[:8],
            "vnp_BankCode": "NCB",
            "vnp_PayDate": format_vnp_date(paid_at or datetime.now(UTC)),
            **(extra or {}),
        }
        params[signing.HASH_TYPE_FIELD] = "HmacSHA512"
        params[signing.HASH_FIELD] = signing.sign(params, self.hash_secret)
        return params
