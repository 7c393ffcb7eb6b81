"""Shipping fee abstraction — pluggable rate card."""

import os

from storefront.shipping.port import RateCard, ShippingQuote

_rate_card: RateCard | None = None


def get_rate_card() -> RateCard:
    """Return the configured rate card (singleton).

    Uses RegionalRateCard by default. Configure via the SHIPPING_RATE_CARD
    environment variable (``regional`` or ``flat``; the flat fee comes from
    SHIPPING_FLAT_FEE).
    """
    global _rate_card
    if _rate_card is None:
        card = os.environ.get("SHIPPING_RATE_CARD", "regional")
        if card == "regional":
            from storefront.shipping.rate_cards import RegionalRateCard

            _rate_card = RegionalRateCard()
        elif card == "flat":
            from storefront.shipping.rate_cards import FlatRateCard

            _rate_card = FlatRateCard(float(os.environ.get("SHIPPING_FLAT_FEE", "0")))
        else:
            raise ValueError(f"Unknown shipping rate card: {card}")
    return _rate_card


def set_rate_card(rate_card: RateCard) -> None:
    global _rate_card
    _rate_card = rate_card


def reset_rate_card() -> None:
    """Reset the rate card singleton (useful for testing)."""
    global _rate_card
    _rate_card = None


def quote_shipping(subtotal: float, city: str) -> ShippingQuote:
    return get_rate_card().quote(subtotal, city)
