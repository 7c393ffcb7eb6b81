"""Voucher records — commands and handler."""

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Float, Integer, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.voucher.voucher import Voucher, normalize_code


@storefront.command(part_of="Voucher")
class CreateVoucher:
    """Register a new discount code."""

    code = String(required=True, max_length=50)
    discount_type = String(required=True, max_length=20)
    value = Float(required=True)
    expiration_date = DateTime(required=True)
    min_order_value = Float(default=0.0)
    usage_limit = Integer(default=0)


@storefront.command(part_of="Voucher")
class DeactivateVoucher:
    code = String(required=True, max_length=50)


@storefront.command_handler(part_of=Voucher)
class VoucherManagementHandler:
    @handle(CreateVoucher)
    def create_voucher(self, command):
        repo = current_domain.repository_for(Voucher)
        if repo.get_by_code(command.code) is not None:
            raise ValidationError({"code": [f"Voucher {normalize_code(command.code)} already exists"]})

        voucher = Voucher.create(
            code=command.code,
            discount_type=command.discount_type,
            value=command.value,
            expiration_date=command.expiration_date,
            min_order_value=command.min_order_value,
            usage_limit=command.usage_limit,
        )
        repo.add(voucher)
        return str(voucher.id)

    @handle(DeactivateVoucher)
    def deactivate_voucher(self, command):
        repo = current_domain.repository_for(Voucher)
        voucher = repo.get_by_code(command.code)
        if voucher is None:
            raise ObjectNotFoundError({"code": [f"Voucher {normalize_code(command.code)} does not exist"]})
        voucher.deactivate()
        repo.add(voucher)
