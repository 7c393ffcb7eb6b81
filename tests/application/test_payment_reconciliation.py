"""Application tests for payment URLs, return redirects and gateway notifications."""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError

from storefront.errors import AmountMismatch, InvalidSignature, OrderNotPayable, PermissionDenied
from storefront.inventory import reservation
from storefront.inventory.stock import HoldState, StockItem
from storefront.order import expiry, service
from storefront.order.order import Order, OrderStatus, PaymentStatus
from storefront.order.permissions import Actor, Role
from storefront.payment import reconciliation
from storefront.payment.attempt import AttemptStatus, PaymentAttempt
from storefront.utils.timestamps import utcnow
from storefront.voucher.voucher import Voucher

CUSTOMER = Actor(role=Role.CUSTOMER, actor_id="cust-001")


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _attempt(txn_ref):
    return current_domain.repository_for(PaymentAttempt).get_by_txn_ref(txn_ref)


def _stock(sku="TS-RED-M"):
    return current_domain.repository_for(StockItem).get_by_sku(sku)


@pytest.fixture(autouse=True)
def _catalog(register_stock, create_voucher, free_shipping, fake_gateway):
    register_stock(on_hand=10)
    create_voucher(code="SUMMER10", min_order_value=300_000.0, usage_limit=5)


@pytest.fixture
def order(place_order):
    """A 500,000 order discounted to 450,000 with SUMMER10."""
    return place_order(voucher_code="SUMMER10")


class TestPaymentUrl:
    def test_url_carries_amount_in_minor_units(self, order):
        link = reconciliation.create_payment_url(order.id, CUSTOMER, client_ip="10.0.0.1")

        query = parse_qs(urlparse(link.payment_url).query)
        assert link.amount == 450_000.0
        assert query["vnp_Amount"] == ["45000000"]
        assert query["vnp_TxnRef"] == [link.txn_ref]
        assert query["vnp_IpAddr"] == ["10.0.0.1"]
        assert "vnp_SecureHash" in query

    def test_every_url_is_a_new_attempt(self, order):
        first = reconciliation.create_payment_url(order.id, CUSTOMER)
        second = reconciliation.create_payment_url(order.id, CUSTOMER)

        assert first.txn_ref != second.txn_ref
        attempts = current_domain.repository_for(PaymentAttempt).for_order(order.id)
        assert len(attempts) == 2
        assert all(a.status == AttemptStatus.INITIATED.value for a in attempts)

    def test_other_customer_cannot_pay(self, order):
        with pytest.raises(PermissionDenied):
            reconciliation.create_payment_url(order.id, Actor(role=Role.CUSTOMER, actor_id="cust-999"))

    def test_cash_order_is_not_payable_online(self, place_order):
        cash_order = place_order(payment_method="cash")
        with pytest.raises(OrderNotPayable):
            reconciliation.create_payment_url(cash_order.id, CUSTOMER)


class TestSuccessfulNotification:
    def test_full_amount_confirms_order_and_commits_stock(self, order, pay_order):
        link, _, ack = pay_order(order)

        assert ack.as_dict() == {"RspCode": "00", "Message": "Confirm Success"}
        order = _order(order.id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.txn_ref == link.txn_ref
        assert _attempt(link.txn_ref).status == AttemptStatus.SUCCEEDED.value
        assert reservation.holds_for(order.id)[0].state == HoldState.COMMITTED.value
        assert _stock().available == 8

    def test_duplicate_notification_returns_the_same_ack(self, order, pay_order):
        link, params, first = pay_order(order)
        second = reconciliation.handle_notification(params)

        assert second == first
        assert len(reservation.holds_for(order.id, {HoldState.COMMITTED.value})) == 1
        assert _order(order.id).payment_status == PaymentStatus.PAID.value

    def test_success_on_an_already_paid_order_is_not_applied_twice(self, order, pay_order, fake_gateway):
        stale = reconciliation.create_payment_url(order.id, CUSTOMER)
        pay_order(order)

        params = fake_gateway.signed_callback(stale.txn_ref, stale.amount)
        ack = reconciliation.handle_notification(params)

        assert ack.code == "02"
        assert _attempt(stale.txn_ref).status == AttemptStatus.FAILED.value
        assert _stock().available == 8


class TestPaymentAfterStaffConfirmation:
    @pytest.fixture
    def confirmed(self, order):
        employee = Actor(role=Role.EMPLOYEE, actor_id="emp-1")
        return service.update_order_status(order.id, OrderStatus.CONFIRMED.value, employee)

    def test_unpaid_confirmed_order_still_accepts_payment(self, confirmed, pay_order):
        assert confirmed.payment_status == PaymentStatus.UNPAID.value

        link, _, ack = pay_order(confirmed)

        assert ack.as_dict() == {"RspCode": "00", "Message": "Confirm Success"}
        order = _order(confirmed.id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == PaymentStatus.PAID.value
        assert _attempt(link.txn_ref).status == AttemptStatus.SUCCEEDED.value
        assert reservation.holds_for(order.id)[0].state == HoldState.COMMITTED.value

    def test_shipped_unpaid_order_refuses_payment(self, confirmed, fake_gateway):
        link = reconciliation.create_payment_url(confirmed.id, CUSTOMER)
        admin = Actor(role=Role.ADMIN, actor_id="admin-1")
        service.update_order_status(confirmed.id, OrderStatus.SHIPPED.value, admin)

        ack = reconciliation.handle_notification(fake_gateway.signed_callback(link.txn_ref, link.amount))

        assert ack.as_dict()["RspCode"] == "02"
        assert _order(confirmed.id).payment_status == PaymentStatus.UNPAID.value


class TestRejectedNotification:
    def test_amount_mismatch_leaves_order_unpaid(self, order, pay_order):
        link, _, ack = pay_order(order, amount=400_000.0)

        assert ack.code == "04"
        assert ack.message == "Invalid amount"
        order = _order(order.id)
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.UNPAID.value
        assert _attempt(link.txn_ref).status == AttemptStatus.FAILED.value
        assert reservation.holds_for(order.id)[0].state == HoldState.HELD.value

    def test_tampered_parameters_fail_signature_check(self, order, fake_gateway):
        link = reconciliation.create_payment_url(order.id, CUSTOMER)
        params = fake_gateway.signed_callback(link.txn_ref, link.amount)
        params["vnp_Amount"] = "100"

        ack = reconciliation.handle_notification(params)

        assert ack.code == "97"
        assert _attempt(link.txn_ref).status == AttemptStatus.INITIATED.value

    def test_unknown_transaction(self, fake_gateway):
        params = fake_gateway.signed_callback("missing_txn", 450_000.0)
        assert reconciliation.handle_notification(params).code == "01"


class TestFailedPayment:
    def test_declined_payment_marks_order_and_allows_retry(self, order, pay_order):
        _, _, ack = pay_order(order, response_code="24")

        assert ack.code == "00"
        failed = _order(order.id)
        assert failed.status == OrderStatus.PENDING.value
        assert failed.payment_status == PaymentStatus.PAYMENT_FAILED.value
        assert reservation.holds_for(order.id)[0].state == HoldState.HELD.value

        _, _, retry_ack = pay_order(order)

        assert retry_ack.code == "00"
        assert _order(order.id).payment_status == PaymentStatus.PAID.value

    def test_stock_held_by_a_failed_payment_is_freed_by_the_sweeper(self, order, pay_order):
        pay_order(order, response_code="24")
        assert _stock().available == 8

        result = expiry.sweep(now=utcnow() + timedelta(hours=25), threshold=timedelta(hours=24))

        assert result.cancelled == 1
        assert _order(order.id).status == OrderStatus.CANCELLED.value
        assert reservation.holds_for(order.id)[0].state == HoldState.RELEASED.value
        assert _stock().available == 10
        assert current_domain.repository_for(Voucher).get_by_code("SUMMER10").usage_count == 0


class TestReturnRedirect:
    def test_reports_state_without_changing_it(self, order, fake_gateway):
        link = reconciliation.create_payment_url(order.id, CUSTOMER)
        params = fake_gateway.signed_callback(link.txn_ref, link.amount)

        outcome = reconciliation.handle_return(params)

        assert outcome.success is True
        assert outcome.order_id == str(order.id)
        assert outcome.payment_status == PaymentStatus.UNPAID.value
        assert _order(order.id).status == OrderStatus.PENDING.value
        assert _attempt(link.txn_ref).status == AttemptStatus.INITIATED.value

    def test_invalid_signature_raises(self, order, fake_gateway):
        link = reconciliation.create_payment_url(order.id, CUSTOMER)
        params = fake_gateway.signed_callback(link.txn_ref, link.amount)
        params["vnp_ResponseCode"] = "24"

        with pytest.raises(InvalidSignature):
            reconciliation.handle_return(params)

    def test_amount_mismatch_raises(self, order, fake_gateway):
        link = reconciliation.create_payment_url(order.id, CUSTOMER)
        params = fake_gateway.signed_callback(link.txn_ref, 400_000.0)

        with pytest.raises(AmountMismatch):
            reconciliation.handle_return(params)

    def test_unknown_transaction_raises(self, fake_gateway):
        params = fake_gateway.signed_callback("missing_txn", 1_000.0)
        with pytest.raises(ObjectNotFoundError):
            reconciliation.handle_return(params)
