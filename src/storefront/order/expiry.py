"""Order expiry — cancel gateway orders that were never paid.

``sweep`` is run on a fixed interval by ``server.py`` and can be triggered
by an admin through the maintenance API endpoint. It scans pending orders
and dispatches one ``ExpireOrder`` command per candidate while holding the
order's lock keys. The handler re-checks eligibility under those locks, so
an order whose payment notification was reconciled in the meantime is
skipped rather than cancelled. A second sweep over the same data finds
nothing to do.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from protean import handle
from protean.exceptions import ExpectedVersionError
from protean.fields import DateTime, Identifier
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import ConflictError
from storefront.locking import process_serialized
from storefront.order.cancellation import apply_cancellation, lock_keys_for_order
from storefront.order.order import PAYABLE_PAYMENT_STATUSES, Order, OrderStatus, PaymentStatus
from storefront.order.permissions import Role
from storefront.utils.timestamps import as_utc, utcnow

logger = structlog.get_logger(__name__)

EXPIRY_REASON = "Payment window expired"


def default_threshold() -> timedelta:
    return timedelta(hours=float(os.environ.get("ORDER_EXPIRY_HOURS", "24")))


def is_expired(order: Order, cutoff: datetime) -> bool:
    """Pending, unpaid gateway order created before ``cutoff``."""
    return (
        order.status == OrderStatus.PENDING.value
        and not order.is_cash()
        and PaymentStatus(order.payment_status) in PAYABLE_PAYMENT_STATUSES
        and order.created_at is not None
        and as_utc(order.created_at) < as_utc(cutoff)
    )


@storefront.command(part_of="Order")
class ExpireOrder:
    order_id = Identifier(required=True)
    cutoff = DateTime(required=True)


@storefront.command_handler(part_of=Order)
class ExpireOrderHandler:
    @handle(ExpireOrder)
    def expire_order(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        if not is_expired(order, command.cutoff):
            logger.info(
                "Order no longer eligible for expiry",
                order_id=str(order.id),
                status=order.status,
                payment_status=order.payment_status,
            )
            return False

        apply_cancellation(order, reason=EXPIRY_REASON, cancelled_by=Role.SYSTEM.value)
        logger.info("Order expired", order_id=str(order.id), created_at=str(order.created_at))
        return True


@dataclass
class SweepResult:
    scanned: int = 0
    cancelled: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {"scanned": self.scanned, "cancelled": self.cancelled, "skipped": self.skipped}


def sweep(now: datetime | None = None, threshold: timedelta | None = None) -> SweepResult:
    """Cancel every pending unpaid gateway order older than ``threshold``."""
    now = as_utc(now) if now else utcnow()
    threshold = threshold if threshold is not None else default_threshold()
    cutoff = now - threshold

    logger.info("Sweeping expired orders", cutoff=cutoff.isoformat(), threshold_hours=threshold.total_seconds() / 3600)

    result = SweepResult()
    for order in current_domain.repository_for(Order).find_by_status(OrderStatus.PENDING.value):
        result.scanned += 1
        if not is_expired(order, cutoff):
            continue

        try:
            expired = process_serialized(
                ExpireOrder(order_id=str(order.id), cutoff=cutoff),
                lock_keys_for_order(order),
            )
        except ConflictError as exc:
            logger.warning("Failed to expire order", order_id=str(order.id), error=exc.message)
            expired = False
        except ExpectedVersionError as exc:
            logger.warning("Order changed while expiring", order_id=str(order.id), error=str(exc))
            expired = False

        if expired:
            result.cancelled += 1
        else:
            result.skipped += 1

    logger.info("Expired order sweep complete", **result.to_dict())
    return result
