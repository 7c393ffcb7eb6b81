"""Shared BDD fixtures and step definitions for checkout scenarios."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then

from storefront.errors import VoucherRejected
from storefront.inventory import reservation
from storefront.inventory.stock import HoldState, StockItem
from storefront.order.order import Order
from storefront.voucher.voucher import Voucher


@pytest.fixture()
def error():
    """Container for a rejected checkout."""
    return {"exc": None}


@pytest.fixture()
def notification():
    """The last notification delivered, with its acknowledgement."""
    return {"params": None, "ack": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("free shipping")
def _free_shipping(free_shipping):
    pass


@given(parsers.cfparse('the stock item "{sku}" priced {price:d} with {on_hand:d} on hand'))
def _stock_item(register_stock, sku, price, on_hand):
    register_stock(sku=sku, unit_price=float(price), on_hand=on_hand)


@given(
    parsers.cfparse(
        'the voucher "{code}" giving {value:d} percent off orders from {minimum:d} usable {limit:d} time'
    )
)
def _voucher(create_voucher, code, value, minimum, limit):
    create_voucher(
        code=code,
        discount_type="percentage",
        value=float(value),
        min_order_value=float(minimum),
        usage_limit=limit,
    )


@given(
    parsers.cfparse('the customer has ordered {quantity:d} of "{sku}" with voucher "{code}"'),
    target_fixture="order",
)
def _ordered(place_order, quantity, sku, code):
    return place_order(items=[{"sku": sku, "quantity": quantity}], voucher_code=code)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse("the order total is {total:d}"))
def _order_total(order, total):
    assert order.pricing.total == float(total)


@then(parsers.cfparse('the order is "{status}" with payment "{payment_status}"'))
def _order_state(order, status, payment_status):
    refreshed = current_domain.repository_for(Order).get(order.id)
    assert refreshed.status == status
    assert refreshed.payment_status == payment_status


@then(parsers.cfparse('"{sku}" has {count:d} available'))
def _available(sku, count):
    assert current_domain.repository_for(StockItem).get_by_sku(sku).available == count


@then(parsers.cfparse('{count:d} units of "{sku}" are committed to the order'))
def _committed(order, sku, count):
    holds = [
        hold
        for hold in reservation.holds_for(order.id, {HoldState.COMMITTED.value})
        if hold.sku == sku
    ]
    assert sum(hold.quantity for hold in holds) == count


@then(parsers.re(r'the voucher "(?P<code>[^"]+)" has been used (?P<count>\d+) times?'))
def _usage(code, count):
    assert current_domain.repository_for(Voucher).get_by_code(code).usage_count == int(count)


@then(parsers.cfparse('the checkout is rejected with "{reason}"'))
def _rejected(error, reason):
    assert isinstance(error["exc"], VoucherRejected)
    assert error["exc"].reason == reason


@then(parsers.cfparse('the gateway is acknowledged with "{code}"'))
def _acknowledged(notification, code):
    assert notification["ack"].code == code
