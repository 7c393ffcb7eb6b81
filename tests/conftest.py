import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Select the config overlay before any storefront module is imported."""
    os.environ["PROTEAN_ENV"] = session.config.option.env


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/bdd/" in test_path:
            item.add_marker(pytest.mark.bdd)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def _storefront_domain():
    """Initialize the storefront domain once per session."""
    from storefront.domain import storefront

    storefront.init()
    return storefront


@pytest.fixture(scope="session", autouse=True)
def setup_db(_storefront_domain):
    from storefront.utils.db import drop_db, setup_db

    setup_db(_storefront_domain)

    yield

    drop_db(_storefront_domain)


@pytest.fixture(autouse=True)
def run_around_tests(_storefront_domain):
    """Push domain context before each test, cleanup after."""
    ctx = _storefront_domain.domain_context()
    ctx.push()

    yield

    from protean import current_domain

    from storefront.gateway import reset_gateway
    from storefront.locking import row_locks
    from storefront.shipping import reset_rate_card

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    for _, broker in current_domain.brokers.items():
        broker._data_reset()

    current_domain.event_store.store._data_reset()

    reset_gateway()
    reset_rate_card()
    row_locks.clear()
    ctx.pop()


# ---------------------------------------------------------------------------
# Shared builders
# ---------------------------------------------------------------------------
HCM_ADDRESS = {
    "full_name": "Nguyen Van A",
    "phone_number": "0912345678",
    "street_address": "12 Le Loi",
    "ward": "Ben Nghe",
    "district": "Quan 1",
    "city": "Ho Chi Minh",
}


@pytest.fixture
def address():
    return dict(HCM_ADDRESS)


@pytest.fixture
def free_shipping():
    """Shipping costs nothing, so order total = subtotal - discount."""
    from storefront.shipping import set_rate_card
    from storefront.shipping.rate_cards import FlatRateCard

    set_rate_card(FlatRateCard(0))


@pytest.fixture
def fake_gateway():
    from storefront.gateway import set_gateway
    from storefront.gateway.fake_adapter import FakeGateway

    gateway = FakeGateway()
    set_gateway(gateway)
    return gateway


@pytest.fixture
def register_stock():
    from protean import current_domain

    from storefront.inventory.stocking import RegisterStockItem

    def _register(sku="TS-RED-M", unit_price=250_000.0, on_hand=10, title="Red T-Shirt M"):
        return current_domain.process(
            RegisterStockItem(sku=sku, unit_price=unit_price, on_hand=on_hand, title=title),
            asynchronous=False,
        )

    return _register


@pytest.fixture
def create_voucher():
    from datetime import timedelta

    from protean import current_domain

    from storefront.utils.timestamps import utcnow
    from storefront.voucher.management import CreateVoucher

    def _create(
        code="SUMMER10",
        discount_type="percentage",
        value=10.0,
        min_order_value=0.0,
        usage_limit=0,
        expiration_date=None,
    ):
        return current_domain.process(
            CreateVoucher(
                code=code,
                discount_type=discount_type,
                value=value,
                min_order_value=min_order_value,
                usage_limit=usage_limit,
                expiration_date=expiration_date or utcnow() + timedelta(days=30),
            ),
            asynchronous=False,
        )

    return _create


@pytest.fixture
def place_order(address):
    from storefront.order import service

    def _place(
        items=None,
        payment_method="gateway",
        voucher_code=None,
        customer_id="cust-001",
        shipping_address=None,
    ):
        return service.place_order(
            items=items or [{"sku": "TS-RED-M", "quantity": 2}],
            shipping_address=shipping_address or address,
            payment_method=payment_method,
            customer_id=customer_id,
            voucher_code=voucher_code,
        )

    return _place


@pytest.fixture
def pay_order(fake_gateway):
    """Issue a payment URL for an order and deliver the gateway notification."""
    from storefront.order.permissions import Actor
    from storefront.payment import reconciliation

    def _pay(order, amount=None, response_code="00"):
        link = reconciliation.create_payment_url(order.id, Actor(actor_id=order.customer_id))
        params = fake_gateway.signed_callback(
            link.txn_ref,
            amount if amount is not None else link.amount,
            response_code=response_code,
        )
        ack = reconciliation.handle_notification(params)
        return link, params, ack

    return _pay
