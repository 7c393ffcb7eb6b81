"""Storefront API package."""

from storefront.api.errors import register_error_handlers
from storefront.api.routes import maintenance_router, order_router, payment_router, stock_router, voucher_router

__all__ = [
    "order_router",
    "payment_router",
    "voucher_router",
    "stock_router",
    "maintenance_router",
    "register_error_handlers",
]
