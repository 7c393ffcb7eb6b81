"""BDD tests for checkout, payment notifications and order expiry."""

from datetime import timedelta

from pytest_bdd import given, parsers, scenarios, when

from storefront.errors import VoucherRejected
from storefront.order.expiry import sweep
from storefront.order.permissions import Actor
from storefront.payment import reconciliation
from storefront.utils.timestamps import utcnow

scenarios("features/checkout.feature")


def notify(fake_gateway, order, amount, notification):
    """Issue a payment URL for the order and deliver a signed success notification."""
    link = reconciliation.create_payment_url(order.id, Actor(actor_id=order.customer_id))
    params = fake_gateway.signed_callback(link.txn_ref, float(amount))
    notification["params"] = params
    notification["ack"] = reconciliation.handle_notification(params)


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse("the gateway has notified a successful payment of {amount:d}"))
def _notified(fake_gateway, order, amount, notification):
    notify(fake_gateway, order, amount, notification)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(
    parsers.cfparse('the customer orders {quantity:d} of "{sku}" with voucher "{code}"'),
    target_fixture="order",
)
def _orders(place_order, quantity, sku, code):
    return place_order(items=[{"sku": sku, "quantity": quantity}], voucher_code=code)


@when(parsers.cfparse('another customer orders {quantity:d} of "{sku}" with voucher "{code}"'))
def _another_orders(place_order, error, quantity, sku, code):
    try:
        place_order(items=[{"sku": sku, "quantity": quantity}], voucher_code=code, customer_id="cust-002")
    except VoucherRejected as exc:
        error["exc"] = exc


@when(parsers.cfparse("the gateway notifies a successful payment of {amount:d}"))
def _notifies(fake_gateway, order, amount, notification):
    notify(fake_gateway, order, amount, notification)


@when("the same notification is delivered again")
def _redelivered(notification):
    notification["ack"] = reconciliation.handle_notification(notification["params"])


@when(parsers.cfparse("the expiry sweep runs {hours:d} hours later with a {window:d} hour window"))
def _sweep(hours, window):
    sweep(now=utcnow() + timedelta(hours=hours), threshold=timedelta(hours=window))
