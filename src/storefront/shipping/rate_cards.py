"""Rate card adapters."""

from storefront.shipping.port import RateCard, ShippingQuote

HCM_FEE = 50_000.0
HANOI_FEE = 100_000.0
OTHER_REGION_FEE = 120_000.0

FREE_SHIPPING_THRESHOLD = 1_000_000.0
MAX_SHIPPING_DISCOUNT = 100_000.0

_HCM_NAMES = ("hồ chí minh", "ho chi minh", "hcm")
_HANOI_NAMES = ("hà nội", "ha noi")


class RegionalRateCard(RateCard):
    """Fee by destination region, with a shipping discount on large orders."""

    def base_fee(self, city: str) -> float:
        normalized = (city or "").strip().lower()
        if any(name in normalized for name in _HCM_NAMES):
            return HCM_FEE
        if any(name in normalized for name in _HANOI_NAMES):
            return HANOI_FEE
        return OTHER_REGION_FEE

    def quote(self, subtotal: float, city: str) -> ShippingQuote:
        base = self.base_fee(city)
        discount = min(base, MAX_SHIPPING_DISCOUNT) if subtotal >= FREE_SHIPPING_THRESHOLD else 0.0
        return ShippingQuote(base_fee=base, discount=discount)


class FlatRateCard(RateCard):
    def __init__(self, fee: float = 0.0) -> None:
        self.fee = fee

    def quote(self, subtotal: float, city: str) -> ShippingQuote:  # noqa: ARG002
        return ShippingQuote(base_fee=self.fee)
