"""VNPay gateway adapter.

Builds signed ``vpcpay.html`` redirect URLs, verifies return/IPN callbacks
and calls the merchant API for refunds.
"""

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta, timezone
from urllib.parse import urlencode
from uuid import uuid4

import httpx
import structlog

from storefront.errors import GatewayTimeout
from storefront.gateway import signing
from storefront.gateway.port import SUCCESS_CODE, PaymentCallback, PaymentGateway, RefundResult

logger = structlog.get_logger(__name__)

VNP_VERSION = "2.1.0"
VNP_TIMEZONE = timezone(timedelta(hours=7))

SANDBOX_PAYMENT_URL = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
SANDBOX_API_URL = "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction"


def format_vnp_date(value: datetime) -> str:
    """VNPay timestamps are yyyyMMddHHmmss in Vietnam time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(VNP_TIMEZONE).strftime("%Y%m%d%H%M%S")


class VNPayGateway(PaymentGateway):
    def __init__(
        self,
        tmn_code: str,
        hash_secret: str,
        payment_url: str = SANDBOX_PAYMENT_URL,
        api_url: str = SANDBOX_API_URL,
        return_url: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.tmn_code = tmn_code
        self.hash_secret = hash_secret
        self.payment_url = payment_url
        self.api_url = api_url
        self.return_url = return_url
        self.timeout = timeout

    # -------------------------------------------------------------------
    # Payment URL
    # -------------------------------------------------------------------
    def payment_params(
        self,
        txn_ref: str,
        amount: float,
        order_info: str,
        client_ip: str,
        created_at: datetime,
    ) -> dict[str, str]:
        params = {
            "vnp_Version": VNP_VERSION,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.tmn_code,
            "vnp_Locale": "vn",
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": order_info,
            "vnp_OrderType": "other",
            "vnp_Amount": str(int(round(amount * 100))),
            "vnp_ReturnUrl": self.return_url,
            "vnp_IpAddr": client_ip or "127.0.0.1",
            "vnp_CreateDate": format_vnp_date(created_at),
        }
        params[signing.HASH_FIELD] = signing.sign(params, self.hash_secret)
        return params

    def build_payment_url(
        self,
        txn_ref: str,
        amount: float,
        order_info: str,
        client_ip: str,
        created_at: datetime,
    ) -> str:
        params = self.payment_params(txn_ref, amount, order_info, client_ip, created_at)
        return f"{self.payment_url}?{urlencode(params)}"

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------
    def verify_signature(self, params: Mapping[str, str]) -> bool:
        return signing.verify(params, self.hash_secret)

    def parse_callback(self, params: Mapping[str, str]) -> PaymentCallback:
        return signing.parse_callback(params)

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def refund_payload(
        self,
        txn_ref: str,
        transaction_no: str | None,
        amount: float,
        transaction_date: str | None,
        reason: str,
        requested_by: str,
        request_id: str,
        created_at: datetime,
        client_ip: str = "127.0.0.1",
    ) -> dict[str, str]:
        payload = {
            "vnp_RequestId": request_id,
            "vnp_Version": VNP_VERSION,
            "vnp_Command": "refund",
            "vnp_TmnCode": self.tmn_code,
            "vnp_TransactionType": "02",  # full refund
            "vnp_TxnRef": txn_ref,
            "vnp_Amount": str(int(round(amount * 100))),
            "vnp_TransactionNo": transaction_no or "",
            "vnp_TransactionDate": transaction_date or "",
            "vnp_CreateBy": requested_by,
            "vnp_CreateDate": format_vnp_date(created_at),
            "vnp_IpAddr": client_ip,
            "vnp_OrderInfo": reason,
        }
        # The merchant API checksums a pipe-joined field list in this fixed order.
        checksum_data = "|".join(payload[key] for key in payload)
        payload[signing.HASH_FIELD] = signing.hmac_sha512(self.hash_secret, checksum_data)
        return payload

    def refund(
        self,
        txn_ref: str,
        transaction_no: str | None,
        amount: float,
        transaction_date: str | None,
        reason: str,
        requested_by: str,
    ) -> RefundResult:
        request_id = uuid4().hex[:32]
        payload = self.refund_payload(
            txn_ref=txn_ref,
            transaction_no=transaction_no,
            amount=amount,
            transaction_date=transaction_date,
            reason=reason,
            requested_by=requested_by,
            request_id=request_id,
            created_at=datetime.now(UTC),
        )

        try:
            response = httpx.post(self.api_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("Gateway refund timed out", txn_ref=txn_ref, timeout=self.timeout)
            raise GatewayTimeout(f"Refund request for {txn_ref} timed out", txn_ref=txn_ref) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Gateway refund request failed", txn_ref=txn_ref, error=str(exc))
            return RefundResult(success=False, failure_reason=f"Refund request failed: {exc}")

        response_code = str(body.get("vnp_ResponseCode") or "")
        if response_code == SUCCESS_CODE:
            return RefundResult(
                success=True,
                gateway_refund_id=body.get("vnp_TransactionNo") or request_id,
                response_code=response_code,
            )
        return RefundResult(
            success=False,
            response_code=response_code,
            failure_reason=body.get("vnp_Message") or f"Gateway refused refund ({response_code})",
        )
