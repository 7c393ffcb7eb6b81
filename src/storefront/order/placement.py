"""Order placement — command and handler.

Checkout runs as one unit of work: every check (line items, address, stock
availability, voucher) happens before the first write, then stock is held,
the voucher redeemed and the order stored together. Cash orders are
confirmed on the spot and their holds committed.
"""

import json
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.inventory import reservation
from storefront.locking import sku_key, voucher_key
from storefront.order.order import Order, OrderPricing, PaymentMethod
from storefront.shipping import quote_shipping
from storefront.voucher import ledger
from storefront.voucher.voucher import normalize_code

logger = structlog.get_logger(__name__)

_ADDRESS_FIELDS = ("full_name", "phone_number", "street_address", "ward", "district", "city")


@storefront.command(part_of="Order")
class PlaceOrder:
    """Check out a set of line items."""

    order_id = Identifier()  # Optional; generated when absent
    customer_id = Identifier()  # Nullable for guest checkout
    items = Text(required=True)  # JSON: list of {sku, quantity}
    shipping_address = Text(required=True)  # JSON: address dict
    payment_method = String(required=True, max_length=20)
    voucher_code = String(max_length=50)


def parse_line_items(raw: str) -> list[tuple[str, int]]:
    try:
        items = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError({"items": ["Line items must be a JSON list"]}) from None

    if not isinstance(items, list) or not items:
        raise ValidationError({"items": ["An order needs at least one line item"]})

    lines = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError({"items": [f"Line item {index} must be an object"]})
        sku = str(item.get("sku") or "").strip()
        quantity = item.get("quantity")
        if not sku:
            raise ValidationError({"items": [f"Line item {index} has no SKU"]})
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError({"items": [f"Line item {index} needs a positive whole quantity"]})
        lines.append((sku, quantity))
    return lines


def parse_shipping_address(raw: str) -> dict:
    try:
        address = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError({"shipping_address": ["Shipping address must be a JSON object"]}) from None

    if not isinstance(address, dict):
        raise ValidationError({"shipping_address": ["Shipping address must be a JSON object"]})

    return {field: address.get(field) for field in _ADDRESS_FIELDS}


def parse_payment_method(raw: str) -> str:
    try:
        return PaymentMethod((raw or "").strip().lower()).value
    except ValueError:
        raise ValidationError(
            {"payment_method": [f"Payment method must be one of: {', '.join(m.value for m in PaymentMethod)}"]}
        ) from None


def lock_keys_for(command: PlaceOrder):
    """Lock keys the handler needs: every SKU ordered and the voucher code."""
    keys = [sku_key(sku) for sku, _ in parse_line_items(command.items)]
    if command.voucher_code:
        keys.append(voucher_key(command.voucher_code))
    return keys


@storefront.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        order_id = str(command.order_id or uuid4())
        lines = parse_line_items(command.items)
        address = parse_shipping_address(command.shipping_address)
        payment_method = parse_payment_method(command.payment_method)
        voucher_code = normalize_code(command.voucher_code) if command.voucher_code else None

        # --- checks, no writes -------------------------------------------
        quantities = reservation.quantities_by_sku(lines)
        stock_items = reservation.load_and_check(quantities)

        items_data = [
            {
                "sku": sku,
                "title": stock_items[sku].title,
                "quantity": quantity,
                "unit_price": stock_items[sku].unit_price,
            }
            for sku, quantity in lines
        ]
        subtotal = float(sum(item["quantity"] * item["unit_price"] for item in items_data))

        voucher, discount = (None, 0.0)
        if voucher_code:
            voucher, discount = ledger.check_redemption(voucher_code, subtotal)

        quote = quote_shipping(subtotal, address.get("city") or "")
        pricing = OrderPricing.compute(
            subtotal=subtotal,
            discount=discount,
            shipping_base_fee=quote.base_fee,
            shipping_discount=quote.discount,
        )
        order = Order.place(
            customer_id=command.customer_id,
            items_data=items_data,
            shipping_address=address,
            pricing=pricing,
            payment_method=payment_method,
            voucher_code=voucher_code,
            order_id=order_id,
        )

        # --- writes -------------------------------------------------------
        reservation.reserve(order_id, quantities, stock_items, commit=order.is_cash())
        if voucher is not None:
            ledger.redeem(voucher, order_id, subtotal)

        if order.is_cash():
            order.confirm()

        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order placed",
            order_id=order_id,
            customer_id=str(command.customer_id) if command.customer_id else None,
            payment_method=payment_method,
            total=pricing.total,
            voucher_code=voucher_code,
        )
        return order_id
