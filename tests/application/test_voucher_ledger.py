"""Application tests for voucher redemption and release through the ledger."""

from datetime import timedelta

import pytest
from protean import current_domain

from storefront.errors import OrderBelowMinimum, VoucherExpired, VoucherInactive, VoucherInvalid, VoucherLimitReached
from storefront.utils.timestamps import utcnow
from storefront.voucher import ledger
from storefront.voucher.voucher import Voucher


def _usage_count(code):
    return current_domain.repository_for(Voucher).get_by_code(code).usage_count


class TestReserveRedemption:
    def test_grant_carries_voucher_and_discount(self, create_voucher):
        voucher_id = create_voucher(code="SUMMER10", value=10.0, min_order_value=300_000.0)

        grant = ledger.reserve_redemption("summer10", "ord-001", 500_000.0)

        assert grant.voucher_id == str(voucher_id)
        assert grant.code == "SUMMER10"
        assert grant.discount_amount == 50_000.0
        assert _usage_count("SUMMER10") == 1

    def test_fixed_discount_is_capped_at_the_total(self, create_voucher):
        create_voucher(code="BIG", discount_type="fixed", value=80_000.0)
        assert ledger.reserve_redemption("BIG", "ord-001", 60_000.0).discount_amount == 60_000.0

    def test_unknown_code(self):
        with pytest.raises(VoucherInvalid):
            ledger.reserve_redemption("NOPE", "ord-001", 100_000.0)

    def test_below_minimum(self, create_voucher):
        create_voucher(code="SUMMER10", min_order_value=300_000.0)
        with pytest.raises(OrderBelowMinimum):
            ledger.reserve_redemption("SUMMER10", "ord-001", 299_999.0)
        assert _usage_count("SUMMER10") == 0

    def test_expired(self, create_voucher):
        create_voucher(code="OLD", expiration_date=utcnow() + timedelta(seconds=1))
        with pytest.raises(VoucherExpired):
            ledger.reserve_redemption("OLD", "ord-001", 100_000.0, as_of=utcnow() + timedelta(days=1))

    def test_inactive(self, create_voucher):
        create_voucher(code="GONE")
        repo = current_domain.repository_for(Voucher)
        voucher = repo.get_by_code("GONE")
        voucher.deactivate()
        repo.add(voucher)

        with pytest.raises(VoucherInactive):
            ledger.reserve_redemption("GONE", "ord-001", 100_000.0)

    def test_limit(self, create_voucher):
        create_voucher(code="ONCE", usage_limit=1)
        ledger.reserve_redemption("ONCE", "ord-001", 100_000.0)
        with pytest.raises(VoucherLimitReached):
            ledger.reserve_redemption("ONCE", "ord-002", 100_000.0)
        assert _usage_count("ONCE") == 1


class TestReleaseRedemption:
    def test_release_gives_the_use_back(self, create_voucher):
        create_voucher(code="ONCE", usage_limit=1)
        ledger.reserve_redemption("ONCE", "ord-001", 100_000.0)

        assert ledger.release_redemption("ONCE", "ord-001") is True
        assert _usage_count("ONCE") == 0
        ledger.reserve_redemption("ONCE", "ord-002", 100_000.0)

    def test_release_without_redemption_is_a_no_op(self, create_voucher):
        create_voucher(code="ONCE", usage_limit=1)

        assert ledger.release_redemption("ONCE", "ord-001") is False
        assert _usage_count("ONCE") == 0

    def test_release_twice_does_not_go_negative(self, create_voucher):
        create_voucher(code="ONCE", usage_limit=1)
        ledger.reserve_redemption("ONCE", "ord-001", 100_000.0)

        ledger.release_redemption("ONCE", "ord-001")
        assert ledger.release_redemption("ONCE", "ord-001") is False
        assert _usage_count("ONCE") == 0
