"""Domain events for the Voucher aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Voucher")
class VoucherCreated:
    """A discount code was registered."""

    __version__ = 1

    voucher_id = Identifier(required=True)
    code = String(required=True)
    discount_type = String(required=True)
    value = Float(required=True)
    min_order_value = Float()
    usage_limit = Integer()
    expiration_date = DateTime(required=True)
    created_at = DateTime(required=True)


@storefront.event(part_of="Voucher")
class VoucherRedeemed:
    """One unit of the voucher's usage allowance was consumed by an order."""

    __version__ = 1

    voucher_id = Identifier(required=True)
    code = String(required=True)
    order_id = Identifier(required=True)
    discount_amount = Float(required=True)
    usage_count = Integer(required=True)
    redeemed_at = DateTime(required=True)


@storefront.event(part_of="Voucher")
class VoucherRedemptionReleased:
    """An order that held a redemption was cancelled before paying for it."""

    __version__ = 1

    voucher_id = Identifier(required=True)
    code = String(required=True)
    order_id = Identifier(required=True)
    usage_count = Integer(required=True)
    released_at = DateTime(required=True)


@storefront.event(part_of="Voucher")
class VoucherDeactivated:
    __version__ = 1

    voucher_id = Identifier(required=True)
    code = String(required=True)
    deactivated_at = DateTime(required=True)
