"""Voucher ledger — redemption and release of discount codes.

These functions run inside the unit of work of the calling command handler,
with the voucher's key lock already held by the orchestrator, so the
checks and the usage-count increment form a single conditional update.
"""

from dataclasses import dataclass
from datetime import datetime

import structlog
from protean.utils.globals import current_domain

from storefront.errors import VoucherInvalid
from storefront.utils.timestamps import utcnow
from storefront.voucher.voucher import Voucher, VoucherRedemption, normalize_code

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RedemptionGrant:
    voucher_id: str
    code: str
    discount_amount: float


def load_voucher(code: str) -> Voucher:
    voucher = current_domain.repository_for(Voucher).get_by_code(code)
    if voucher is None:
        raise VoucherInvalid(normalize_code(code), f"Voucher {normalize_code(code)} does not exist")
    return voucher


def check_redemption(code: str, order_total: float, as_of: datetime | None = None) -> tuple[Voucher, float]:
    """Validate ``code`` against an order total without consuming it."""
    voucher = load_voucher(code)
    discount = voucher.check_redeemable(order_total, as_of)
    return voucher, discount


def redeem(voucher: Voucher, order_id, order_total: float, as_of: datetime | None = None) -> RedemptionGrant:
    """Consume one use of an already loaded voucher and record the redemption."""
    discount = voucher.redeem(order_id, order_total, as_of)

    redemption = VoucherRedemption(
        voucher_id=str(voucher.id),
        voucher_code=voucher.code,
        order_id=str(order_id),
        discount_amount=discount,
        redeemed_at=utcnow(),
    )
    current_domain.repository_for(Voucher).add(voucher)
    current_domain.repository_for(VoucherRedemption).add(redemption)

    logger.info(
        "Voucher redeemed",
        code=voucher.code,
        order_id=str(order_id),
        discount=discount,
        usage_count=voucher.usage_count,
        usage_limit=voucher.usage_limit,
    )
    return RedemptionGrant(voucher_id=str(voucher.id), code=voucher.code, discount_amount=discount)


def reserve_redemption(code: str, order_id, order_total: float, as_of: datetime | None = None) -> RedemptionGrant:
    """Check and consume one use of ``code`` for ``order_id`` in the caller's unit of work."""
    voucher, _ = check_redemption(code, order_total, as_of)
    return redeem(voucher, order_id, order_total, as_of)


def release_redemption(code: str, order_id) -> bool:
    """Release the active redemption of ``code`` held by ``order_id``.

    Returns False, without touching the voucher, when there is nothing to release.
    """
    redemption = current_domain.repository_for(VoucherRedemption).find_active(code, order_id)
    if redemption is None:
        logger.debug("No active voucher redemption to release", code=normalize_code(code), order_id=str(order_id))
        return False

    voucher_repo = current_domain.repository_for(Voucher)
    voucher = voucher_repo.get_by_code(code)
    if voucher is not None:
        voucher.release(order_id)
        voucher_repo.add(voucher)

    redemption.release()
    current_domain.repository_for(VoucherRedemption).add(redemption)

    logger.info(
        "Voucher redemption released",
        code=normalize_code(code),
        order_id=str(order_id),
        usage_count=voucher.usage_count if voucher else None,
    )
    return True
