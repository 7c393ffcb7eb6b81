"""Voucher aggregate — discount codes with a bounded usage allowance.

A voucher is redeemed once per order. Every redemption increments
``usage_count`` and is recorded as a ``VoucherRedemption`` so it can be
released again if the order is cancelled before it is paid. Expiry, status,
limit and minimum order value are checked at redemption time, never
retroactively.
"""

import math
from datetime import datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront
from storefront.errors import (
    OrderBelowMinimum,
    VoucherExpired,
    VoucherInactive,
    VoucherLimitReached,
)
from storefront.utils.timestamps import as_utc, utcnow
from storefront.voucher.events import (
    VoucherCreated,
    VoucherDeactivated,
    VoucherRedeemed,
    VoucherRedemptionReleased,
)


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class VoucherStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class RedemptionStatus(Enum):
    ACTIVE = "active"
    RELEASED = "released"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


@storefront.aggregate
class Voucher:
    code = String(required=True, max_length=50, unique=True)
    discount_type = String(required=True, choices=DiscountType)
    value = Float(required=True, min_value=0.0)
    min_order_value = Float(default=0.0, min_value=0.0)
    expiration_date = DateTime(required=True)
    status = String(choices=VoucherStatus, default=VoucherStatus.ACTIVE.value)
    usage_limit = Integer(default=0, min_value=0)  # 0 means unlimited
    usage_count = Integer(default=0, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def usage_must_not_exceed_limit(self):
        if self.usage_limit and (self.usage_count or 0) > self.usage_limit:
            raise ValidationError({"usage_count": [f"Usage count cannot exceed the usage limit of {self.usage_limit}"]})

    @invariant.post
    def percentage_must_be_within_bounds(self):
        if self.discount_type == DiscountType.PERCENTAGE.value and not 0 < (self.value or 0) <= 100:
            raise ValidationError({"value": ["Percentage discounts must be greater than 0 and at most 100"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        code: str,
        discount_type: str,
        value: float,
        expiration_date: datetime,
        min_order_value: float = 0.0,
        usage_limit: int = 0,
    ):
        now = utcnow()
        voucher = cls(
            code=normalize_code(code),
            discount_type=discount_type,
            value=value,
            min_order_value=min_order_value or 0.0,
            expiration_date=expiration_date,
            usage_limit=usage_limit or 0,
            usage_count=0,
            status=VoucherStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        voucher.raise_(
            VoucherCreated(
                voucher_id=str(voucher.id),
                code=voucher.code,
                discount_type=voucher.discount_type,
                value=voucher.value,
                min_order_value=voucher.min_order_value,
                usage_limit=voucher.usage_limit,
                expiration_date=expiration_date,
                created_at=now,
            )
        )
        return voucher

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def is_expired(self, as_of: datetime | None = None) -> bool:
        as_of = as_utc(as_of) or utcnow()
        if self.status == VoucherStatus.EXPIRED.value:
            return True
        return as_utc(self.expiration_date) < as_of

    def has_remaining_uses(self) -> bool:
        return not self.usage_limit or (self.usage_count or 0) < self.usage_limit

    def compute_discount(self, order_total: float) -> float:
        """Discount for an order of ``order_total``, never more than the total itself."""
        if self.discount_type == DiscountType.PERCENTAGE.value:
            discount = math.floor(order_total * self.value / 100)
        else:
            discount = self.value
        return float(min(discount, order_total))

    def check_redeemable(self, order_total: float, as_of: datetime | None = None) -> float:
        """Validate a redemption against ``order_total`` and return the discount.

        Raises the specific ``VoucherRejected`` subclass for the first failed check.
        """
        if self.is_expired(as_of):
            raise VoucherExpired(self.code, f"Voucher {self.code} has expired")
        if self.status != VoucherStatus.ACTIVE.value:
            raise VoucherInactive(self.code, f"Voucher {self.code} is not active")
        if not self.has_remaining_uses():
            raise VoucherLimitReached(self.code, f"Voucher {self.code} has reached its usage limit")
        if order_total < (self.min_order_value or 0.0):
            raise OrderBelowMinimum(
                self.code,
                f"Voucher {self.code} requires a minimum order value of {self.min_order_value:,.0f}",
            )
        return self.compute_discount(order_total)

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------
    def redeem(self, order_id, order_total: float, as_of: datetime | None = None) -> float:
        """Consume one use of the voucher for ``order_id`` and return the discount."""
        discount = self.check_redeemable(order_total, as_of)

        now = utcnow()
        self.usage_count = (self.usage_count or 0) + 1
        self.updated_at = now

        self.raise_(
            VoucherRedeemed(
                voucher_id=str(self.id),
                code=self.code,
                order_id=str(order_id),
                discount_amount=discount,
                usage_count=self.usage_count,
                redeemed_at=now,
            )
        )
        return discount

    def release(self, order_id) -> None:
        """Give back one use of the voucher. The count never goes below zero."""
        now = utcnow()
        self.usage_count = max((self.usage_count or 0) - 1, 0)
        self.updated_at = now

        self.raise_(
            VoucherRedemptionReleased(
                voucher_id=str(self.id),
                code=self.code,
                order_id=str(order_id),
                usage_count=self.usage_count,
                released_at=now,
            )
        )

    def deactivate(self) -> None:
        if self.status == VoucherStatus.INACTIVE.value:
            return
        now = utcnow()
        self.status = VoucherStatus.INACTIVE.value
        self.updated_at = now
        self.raise_(VoucherDeactivated(voucher_id=str(self.id), code=self.code, deactivated_at=now))


@storefront.aggregate
class VoucherRedemption:
    """The fact that an order consumed one use of a voucher."""

    voucher_id = Identifier(required=True)
    voucher_code = String(required=True, max_length=50)
    order_id = Identifier(required=True)
    discount_amount = Float(default=0.0)
    status = String(choices=RedemptionStatus, default=RedemptionStatus.ACTIVE.value)
    redeemed_at = DateTime(required=True)
    released_at = DateTime()

    def release(self) -> None:
        self.status = RedemptionStatus.RELEASED.value
        self.released_at = utcnow()


@storefront.repository(part_of=Voucher)
class VoucherRepository:
    def get_by_code(self, code: str) -> Voucher | None:
        return self._dao.query.filter(code=normalize_code(code)).all().first


@storefront.repository(part_of=VoucherRedemption)
class VoucherRedemptionRepository:
    def find_active(self, code: str, order_id) -> VoucherRedemption | None:
        return (
            self._dao.query.filter(
                voucher_code=normalize_code(code),
                order_id=str(order_id),
                status=RedemptionStatus.ACTIVE.value,
            )
            .all()
            .first
        )

    def for_voucher(self, code: str) -> list[VoucherRedemption]:
        return self._dao.query.filter(voucher_code=normalize_code(code)).all().items
