"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing (default)
- VNPayGateway when PAYMENT_GATEWAY=vnpay, configured from VNP_* variables
"""

import os

from storefront.gateway.fake_adapter import FakeGateway
from storefront.gateway.port import PaymentGateway
from storefront.gateway.vnpay_adapter import SANDBOX_API_URL, SANDBOX_PAYMENT_URL, VNPayGateway

_current_gateway: PaymentGateway | None = None


def _build_gateway() -> PaymentGateway:
    adapter = os.environ.get("PAYMENT_GATEWAY", "fake")
    if adapter == "fake":
        return FakeGateway(
            tmn_code=os.environ.get("VNP_TMN_CODE", "DEMO"),
            hash_secret=os.environ.get("VNP_HASH_SECRET", "VNPAYSECRET"),
        )
    if adapter == "vnpay":
        return VNPayGateway(
            tmn_code=os.environ.get("VNP_TMN_CODE", "DEMO"),
            hash_secret=os.environ.get("VNP_HASH_SECRET", "VNPAYSECRET"),
            payment_url=os.environ.get("VNP_URL", SANDBOX_PAYMENT_URL),
            api_url=os.environ.get("VNP_API_URL", SANDBOX_API_URL),
            return_url=os.environ.get("VNP_RETURN_URL", "http://localhost:8000/payments/vnpay/return"),
            timeout=float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10")),
        )
    raise ValueError(f"Unknown payment gateway: {adapter}")


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway. Defaults to FakeGateway."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _build_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
