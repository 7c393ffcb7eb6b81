"""Storefront bounded context — order lifecycle and payment reconciliation.

Owns checkout (voucher redemption, inventory holds, order creation), the
order/payment state machine, reconciliation of gateway callbacks and the
scheduled expiry of abandoned unpaid orders. A single domain keeps every
write of a use case inside one unit of work.
"""

from protean.domain import Domain

from storefront.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

storefront = Domain(name="storefront")
