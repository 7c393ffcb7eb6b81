"""Application tests for checkout through the order service."""

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.errors import InsufficientStock, VoucherInvalid, VoucherLimitReached
from storefront.inventory import reservation
from storefront.inventory.stock import HoldState, StockItem
from storefront.order import service
from storefront.order.order import Order, OrderStatus, PaymentStatus
from storefront.order.permissions import Actor
from storefront.voucher.voucher import Voucher, VoucherRedemption


def _stock(sku="TS-RED-M"):
    return current_domain.repository_for(StockItem).get_by_sku(sku)


def _voucher(code="SUMMER10"):
    return current_domain.repository_for(Voucher).get_by_code(code)


class TestPlaceOrder:
    @pytest.fixture(autouse=True)
    def _catalog(self, register_stock, free_shipping):
        register_stock(on_hand=10)

    def test_gateway_order_is_pending_and_holds_stock(self, place_order):
        order = place_order()

        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.UNPAID.value
        assert order.pricing.subtotal == 500_000.0
        assert _stock().available == 8
        assert reservation.holds_for(order.id)[0].state == HoldState.HELD.value

    def test_unit_price_is_a_snapshot(self, place_order):
        order = place_order()

        repo = current_domain.repository_for(StockItem)
        item = repo.get_by_sku("TS-RED-M")
        item.unit_price = 300_000.0
        repo.add(item)

        order = current_domain.repository_for(Order).get(order.id)
        assert order.items[0].unit_price == 250_000.0
        assert order.pricing.subtotal == 500_000.0

    def test_cash_order_is_confirmed_with_committed_stock(self, place_order):
        order = place_order(payment_method="cash")

        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == PaymentStatus.UNPAID.value
        assert reservation.holds_for(order.id)[0].state == HoldState.COMMITTED.value

    def test_guest_checkout(self, place_order):
        order = place_order(customer_id=None)
        assert order.customer_id is None


class TestVoucherRedemptionAtCheckout:
    @pytest.fixture(autouse=True)
    def _catalog(self, register_stock, create_voucher, free_shipping):
        register_stock(on_hand=10)
        create_voucher(code="SUMMER10", value=10.0, min_order_value=300_000.0, usage_limit=1)

    def test_summer10_discount(self, place_order):
        order = place_order(voucher_code="summer10")

        assert order.pricing.discount == 50_000.0
        assert order.pricing.total == 450_000.0
        assert order.voucher_code == "SUMMER10"
        assert _voucher().usage_count == 1
        assert current_domain.repository_for(VoucherRedemption).find_active("SUMMER10", order.id) is not None

    def test_second_use_hits_the_limit(self, place_order):
        place_order(voucher_code="SUMMER10")
        with pytest.raises(VoucherLimitReached):
            place_order(voucher_code="SUMMER10", customer_id="cust-002")

        assert _voucher().usage_count == 1
        assert _stock().available == 8

    def test_unknown_voucher(self, place_order):
        with pytest.raises(VoucherInvalid):
            place_order(voucher_code="NOPE")
        assert _stock().available == 10


class TestRejectedCheckout:
    @pytest.fixture(autouse=True)
    def _catalog(self, register_stock, create_voucher):
        register_stock(sku="TS-RED-M", on_hand=10)
        register_stock(sku="MUG-01", unit_price=90_000.0, on_hand=1, title="Mug")
        create_voucher(code="SUMMER10", usage_limit=5)

    def test_insufficient_stock_rolls_back_everything(self, place_order):
        with pytest.raises(InsufficientStock) as exc:
            place_order(
                items=[{"sku": "TS-RED-M", "quantity": 2}, {"sku": "MUG-01", "quantity": 2}],
                voucher_code="SUMMER10",
            )

        assert exc.value.sku == "MUG-01"
        assert _stock("TS-RED-M").available == 10
        assert _voucher().usage_count == 0

    def test_repeated_sku_lines_are_checked_together(self, place_order):
        with pytest.raises(InsufficientStock):
            place_order(items=[{"sku": "MUG-01", "quantity": 1}, {"sku": "MUG-01", "quantity": 1}])

    def test_unknown_sku(self, place_order):
        with pytest.raises(ObjectNotFoundError):
            place_order(items=[{"sku": "GHOST", "quantity": 1}])

    def test_invalid_phone_number(self, place_order, address):
        with pytest.raises(ValidationError):
            place_order(shipping_address={**address, "phone_number": "123"}, voucher_code="SUMMER10")
        assert _stock("TS-RED-M").available == 10
        assert _voucher().usage_count == 0

    def test_empty_order(self, address):
        with pytest.raises(ValidationError):
            service.place_order(items=[], shipping_address=address, payment_method="gateway")

    def test_unknown_payment_method(self, place_order):
        with pytest.raises(ValidationError):
            place_order(payment_method="crypto")


class TestShippingFees:
    @pytest.fixture(autouse=True)
    def _catalog(self, register_stock):
        register_stock(sku="TS-RED-M", unit_price=250_000.0, on_hand=10)

    def test_regional_fee_is_added(self, place_order):
        order = place_order()
        assert order.pricing.shipping_fee == 50_000.0
        assert order.pricing.total == 550_000.0

    def test_large_order_gets_shipping_discount(self, place_order, address):
        order = place_order(
            items=[{"sku": "TS-RED-M", "quantity": 4}],
            shipping_address={**address, "city": "Can Tho"},
        )
        assert order.pricing.shipping_base_fee == 120_000.0
        assert order.pricing.shipping_discount == 100_000.0
        assert order.pricing.total == 1_020_000.0


class TestManyOpenHolds:
    @pytest.fixture(autouse=True)
    def _catalog(self, register_stock, free_shipping):
        register_stock(on_hand=105)

    def test_stock_is_not_oversold_past_a_hundred_holds(self, place_order):
        placed, rejected = [], 0
        for n in range(115):
            try:
                placed.append(place_order(items=[{"sku": "TS-RED-M", "quantity": 1}], customer_id=f"cust-{n:03d}"))
            except InsufficientStock:
                rejected += 1

        assert len(placed) == 105
        assert rejected == 10
        assert _stock().allocated == 105
        assert _stock().available == 0

    def test_late_holds_are_still_released(self, place_order):
        orders = [
            place_order(items=[{"sku": "TS-RED-M", "quantity": 1}], customer_id=f"cust-{n:03d}")
            for n in range(105)
        ]

        last = orders[-1]
        service.cancel_order(last.id, Actor(actor_id=last.customer_id))

        assert _stock().available == 1
        assert reservation.holds_for(last.id)[0].state == HoldState.RELEASED.value
