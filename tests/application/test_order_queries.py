"""Application tests for order listings, address corrections and checkout previews."""

from datetime import UTC, date, datetime

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.errors import ConflictError, OrderBelowMinimum, PermissionDenied, VoucherInvalid
from storefront.order import service
from storefront.order.order import Order, OrderStatus
from storefront.order.permissions import Actor, Role
from storefront.voucher.voucher import Voucher

CUSTOMER = Actor(role=Role.CUSTOMER, actor_id="cust-001")
ADMIN = Actor(role=Role.ADMIN, actor_id="admin-1")
EMPLOYEE = Actor(role=Role.EMPLOYEE, actor_id="emp-1")


@pytest.fixture(autouse=True)
def _catalog(register_stock, free_shipping):
    register_stock(on_hand=100)


def _backdate(order, created_at):
    repo = current_domain.repository_for(Order)
    order = repo.get(order.id)
    order.created_at = created_at
    repo.add(order)
    return order


class TestMyOrders:
    def test_lists_only_the_callers_orders_newest_first(self, place_order):
        first = _backdate(place_order(), datetime(2026, 3, 1, 9, tzinfo=UTC))
        second = _backdate(place_order(), datetime(2026, 3, 2, 9, tzinfo=UTC))
        place_order(customer_id="cust-002")

        page = service.list_my_orders(CUSTOMER)

        assert [o.id for o in page.orders] == [second.id, first.id]
        assert page.total == 2
        assert page.total_pages == 1

    def test_pages_through_orders(self, place_order):
        for _ in range(5):
            place_order()

        first = service.list_my_orders(CUSTOMER, page=1, per_page=2)
        last = service.list_my_orders(CUSTOMER, page=3, per_page=2)

        assert len(first.orders) == 2
        assert len(last.orders) == 1
        assert first.total == 5
        assert first.total_pages == 3

    def test_status_filter(self, place_order):
        place_order()
        cash = place_order(payment_method="cash")

        confirmed = service.list_my_orders(CUSTOMER, status="confirmed")
        everything = service.list_my_orders(CUSTOMER, status="all")

        assert [o.id for o in confirmed.orders] == [cash.id]
        assert everything.total == 2

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            service.list_my_orders(CUSTOMER, status="lost")
        assert "status" in exc.value.messages

    def test_guests_have_no_order_list(self):
        with pytest.raises(PermissionDenied):
            service.list_my_orders(Actor(role=Role.CUSTOMER))

    def test_staff_use_the_admin_listing(self):
        with pytest.raises(PermissionDenied):
            service.list_my_orders(ADMIN)

    @pytest.mark.parametrize("page, per_page", [(0, 10), (1, 0), (1, 101)])
    def test_page_bounds(self, page, per_page):
        with pytest.raises(ValidationError):
            service.list_my_orders(CUSTOMER, page=page, per_page=per_page)


class TestAdminListing:
    def test_lists_every_customer(self, place_order):
        place_order()
        place_order(customer_id="cust-002")
        place_order(customer_id=None)

        assert service.list_orders(ADMIN).total == 3

    def test_date_range_covers_whole_days(self, place_order):
        _backdate(place_order(), datetime(2026, 2, 28, 23, 59, tzinfo=UTC))
        early = _backdate(place_order(), datetime(2026, 3, 1, 0, 0, tzinfo=UTC))
        late = _backdate(place_order(), datetime(2026, 3, 2, 23, 59, tzinfo=UTC))
        _backdate(place_order(), datetime(2026, 3, 3, 0, 1, tzinfo=UTC))

        page = service.list_orders(ADMIN, date_from=date(2026, 3, 1), date_to=date(2026, 3, 2))

        assert [o.id for o in page.orders] == [late.id, early.id]

    def test_inverted_date_range_is_rejected(self):
        with pytest.raises(ValidationError):
            service.list_orders(ADMIN, date_from=date(2026, 3, 2), date_to=date(2026, 3, 1))

    def test_status_and_date_filters_combine(self, place_order):
        _backdate(place_order(payment_method="cash"), datetime(2026, 3, 1, 12, tzinfo=UTC))
        _backdate(place_order(), datetime(2026, 3, 1, 12, tzinfo=UTC))
        _backdate(place_order(payment_method="cash"), datetime(2026, 4, 1, 12, tzinfo=UTC))

        page = service.list_orders(ADMIN, status=OrderStatus.CONFIRMED.value, date_to=date(2026, 3, 31))

        assert page.total == 1

    @pytest.mark.parametrize("actor", [CUSTOMER, EMPLOYEE])
    def test_admin_only(self, actor):
        with pytest.raises(PermissionDenied):
            service.list_orders(actor)


class TestCustomerListing:
    def test_staff_list_one_customers_orders(self, place_order):
        place_order()
        place_order()
        place_order(customer_id="cust-002")

        assert service.list_customer_orders("cust-001", ADMIN).total == 2
        assert service.list_customer_orders("cust-002", EMPLOYEE).total == 1

    def test_customers_cannot_list_other_customers(self, place_order):
        place_order(customer_id="cust-002")
        with pytest.raises(PermissionDenied):
            service.list_customer_orders("cust-002", CUSTOMER)


NEW_ADDRESS = {
    "full_name": "Tran Thi B",
    "phone_number": "0987654321",
    "street_address": "5 Trang Tien",
    "ward": "Trang Tien",
    "district": "Hoan Kiem",
    "city": "Ha Noi",
}


class TestShippingAddressCorrection:
    def test_admin_corrects_address_of_open_order(self, place_order):
        order = place_order(payment_method="cash")
        quoted_total = order.pricing.total

        order = service.update_shipping_address(order.id, NEW_ADDRESS, ADMIN)

        assert order.shipping_address.city == "Ha Noi"
        assert order.shipping_address.full_name == "Tran Thi B"
        assert order.pricing.total == quoted_total

    def test_shipped_order_can_still_be_corrected(self, place_order):
        order = place_order(payment_method="cash")
        service.update_order_status(order.id, "shipped", ADMIN)

        order = service.update_shipping_address(order.id, NEW_ADDRESS, ADMIN)

        assert order.shipping_address.city == "Ha Noi"

    def test_delivered_order_is_locked(self, place_order):
        order = place_order(payment_method="cash")
        service.update_order_status(order.id, "shipped", ADMIN)
        service.update_order_status(order.id, "delivered", ADMIN)

        with pytest.raises(ConflictError):
            service.update_shipping_address(order.id, NEW_ADDRESS, ADMIN)

    def test_cancelled_order_is_locked(self, place_order):
        order = place_order()
        service.cancel_order(order.id, CUSTOMER)

        with pytest.raises(ConflictError):
            service.update_shipping_address(order.id, NEW_ADDRESS, ADMIN)

    def test_address_is_validated(self, place_order):
        order = place_order()
        with pytest.raises(ValidationError):
            service.update_shipping_address(order.id, {**NEW_ADDRESS, "phone_number": "12"}, ADMIN)

    @pytest.mark.parametrize("actor", [CUSTOMER, EMPLOYEE])
    def test_admin_only(self, place_order, actor):
        order = place_order()
        with pytest.raises(PermissionDenied):
            service.update_shipping_address(order.id, NEW_ADDRESS, actor)

    def test_unknown_order(self):
        with pytest.raises(ObjectNotFoundError):
            service.update_shipping_address("does-not-exist", NEW_ADDRESS, ADMIN)


class TestShippingQuote:
    @pytest.fixture(autouse=True)
    def _regional(self):
        from storefront.shipping import set_rate_card
        from storefront.shipping.rate_cards import RegionalRateCard

        set_rate_card(RegionalRateCard())

    def test_quote_by_city(self):
        quote = service.quote_shipping_fee(200_000.0, "Ha Noi")
        assert (quote.base_fee, quote.discount, quote.fee) == (100_000.0, 0.0, 100_000.0)

    def test_large_cart_ships_free_to_hcm(self):
        quote = service.quote_shipping_fee(1_000_000.0, "Ho Chi Minh")
        assert quote.fee == 0.0

    def test_negative_subtotal_is_rejected(self):
        with pytest.raises(ValidationError):
            service.quote_shipping_fee(-1.0, "Ha Noi")

    def test_city_is_required(self):
        with pytest.raises(ValidationError):
            service.quote_shipping_fee(100_000.0, "  ")


class TestVoucherPreview:
    @pytest.fixture(autouse=True)
    def _voucher(self, create_voucher):
        create_voucher(code="SUMMER10", min_order_value=300_000.0, usage_limit=1)

    def test_preview_reports_the_discount(self):
        preview = service.preview_voucher("summer10", 500_000.0)

        assert preview.code == "SUMMER10"
        assert preview.discount_type == "percentage"
        assert preview.discount_amount == 50_000.0

    def test_preview_does_not_use_up_the_voucher(self):
        service.preview_voucher("SUMMER10", 500_000.0)
        service.preview_voucher("SUMMER10", 500_000.0)

        voucher = current_domain.repository_for(Voucher).get_by_code("SUMMER10")
        assert voucher.usage_count == 0

    def test_preview_enforces_minimum(self):
        with pytest.raises(OrderBelowMinimum):
            service.preview_voucher("SUMMER10", 100_000.0)

    def test_unknown_code(self):
        with pytest.raises(VoucherInvalid):
            service.preview_voucher("NOPE", 500_000.0)
