"""Shipping rate card port.

Carrier integration is outside this service; all checkout needs is the fee
contract: given the merchandise subtotal and the destination city, what does
shipping cost.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ShippingQuote:
    """Shipping charge for an order."""

    base_fee: float
    discount: float = 0.0

    @property
    def fee(self) -> float:
        return self.base_fee - self.discount


class RateCard(ABC):
    @abstractmethod
    def quote(self, subtotal: float, city: str) -> ShippingQuote:
        """Quote the shipping fee for an order."""
        ...
