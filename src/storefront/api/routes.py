"""FastAPI routes for the Storefront — orders, payments, vouchers, stock."""

import os
from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from protean.utils.globals import current_domain

from storefront.api.schemas import (
    CancelOrderRequest,
    ConfigureGatewayRequest,
    CreateOrderRequest,
    CreateVoucherRequest,
    GatewayConfigResponse,
    OrderListResponse,
    OrderResponse,
    PaymentReturnResponse,
    PaymentStatusResponse,
    PaymentUrlRequest,
    PaymentUrlResponse,
    ReceiveStockRequest,
    RegisterStockItemRequest,
    ShippingFeeRequest,
    ShippingFeeResponse,
    StatusResponse,
    StockItemIdResponse,
    StockLevelResponse,
    SweepResponse,
    UpdateOrderStatusRequest,
    UpdateShippingAddressRequest,
    ValidateVoucherRequest,
    VoucherIdResponse,
    VoucherPreviewResponse,
)
from storefront.gateway import get_gateway
from storefront.gateway.fake_adapter import FakeGateway
from storefront.inventory.stocking import ReceiveStock, RegisterStockItem
from storefront.locking import process_serialized, sku_key, voucher_key
from storefront.order import service
from storefront.order.permissions import Actor, Permission, Role, parse_role
from storefront.payment import reconciliation
from storefront.voucher.management import CreateVoucher, DeactivateVoucher


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    """Actor identity as attached by the upstream auth layer."""
    return Actor(role=parse_role(x_actor_role), actor_id=x_actor_id)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "127.0.0.1"


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderResponse)
async def create_order(body: CreateOrderRequest, actor: Actor = Depends(get_actor)) -> OrderResponse:
    """Check out; anonymous callers place guest orders."""
    order = service.place_order(
        items=[item.model_dump() for item in body.items],
        shipping_address=body.shipping_address.model_dump(),
        payment_method=body.payment_method,
        customer_id=actor.actor_id if actor.role == Role.CUSTOMER else None,
        voucher_code=body.voucher_code,
    )
    return OrderResponse.from_order(order)


@order_router.post("/shipping-fee", response_model=ShippingFeeResponse)
async def shipping_fee(body: ShippingFeeRequest) -> ShippingFeeResponse:
    """Quote shipping for a cart before checkout."""
    quote = service.quote_shipping_fee(body.subtotal, body.city)
    return ShippingFeeResponse(base_fee=quote.base_fee, discount=quote.discount, fee=quote.fee)


@order_router.get("/my-orders", response_model=OrderListResponse)
async def list_my_orders(
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
    actor: Actor = Depends(get_actor),
) -> OrderListResponse:
    return OrderListResponse.from_page(service.list_my_orders(actor, status=status, page=page, per_page=limit))


@order_router.get("/admin/all", response_model=OrderListResponse)
async def list_all_orders(
    status: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    page: int = 1,
    limit: int = 10,
    actor: Actor = Depends(get_actor),
) -> OrderListResponse:
    result = service.list_orders(
        actor,
        status=status,
        date_from=from_date,
        date_to=to_date,
        page=page,
        per_page=limit,
    )
    return OrderListResponse.from_page(result)


@order_router.get("/user/{customer_id}", response_model=OrderListResponse)
async def list_customer_orders(
    customer_id: str,
    status: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    page: int = 1,
    limit: int = 10,
    actor: Actor = Depends(get_actor),
) -> OrderListResponse:
    result = service.list_customer_orders(
        customer_id,
        actor,
        status=status,
        date_from=from_date,
        date_to=to_date,
        page=page,
        per_page=limit,
    )
    return OrderListResponse.from_page(result)


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, actor: Actor = Depends(get_actor)) -> OrderResponse:
    return OrderResponse.from_order(service.get_order(order_id, actor))


@order_router.get("/{order_id}/payment-status", response_model=PaymentStatusResponse)
async def check_payment_status(order_id: str, actor: Actor = Depends(get_actor)) -> PaymentStatusResponse:
    return PaymentStatusResponse(**service.check_payment_status(order_id, actor))


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest | None = None,
    actor: Actor = Depends(get_actor),
) -> OrderResponse:
    order = service.cancel_order(order_id, actor, reason=body.reason if body else None)
    return OrderResponse.from_order(order)


@order_router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    actor: Actor = Depends(get_actor),
) -> OrderResponse:
    return OrderResponse.from_order(service.update_order_status(order_id, body.status, actor))


@order_router.put("/{order_id}/shipping", response_model=OrderResponse)
async def update_shipping_address(
    order_id: str,
    body: UpdateShippingAddressRequest,
    actor: Actor = Depends(get_actor),
) -> OrderResponse:
    order = service.update_shipping_address(order_id, body.shipping_address.model_dump(), actor)
    return OrderResponse.from_order(order)


@order_router.post("/{order_id}/refund", response_model=OrderResponse)
def refund_order(order_id: str, actor: Actor = Depends(get_actor)) -> OrderResponse:
    """Refund a delivered order. Calling again retries a failed gateway refund.

    Runs in the FastAPI threadpool since the gateway call blocks.
    """
    return OrderResponse.from_order(service.refund_order(order_id, actor))


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/vnpay/payment-url", status_code=201, response_model=PaymentUrlResponse)
async def create_payment_url(
    body: PaymentUrlRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> PaymentUrlResponse:
    link = reconciliation.create_payment_url(body.order_id, actor, client_ip=_client_ip(request))
    return PaymentUrlResponse(
        order_id=link.order_id,
        txn_ref=link.txn_ref,
        amount=link.amount,
        payment_url=link.payment_url,
    )


@payment_router.get("/vnpay/return", response_model=PaymentReturnResponse)
async def payment_return(request: Request) -> PaymentReturnResponse:
    """Browser redirect from the gateway. Reports status, changes nothing."""
    outcome = reconciliation.handle_return(dict(request.query_params))
    return PaymentReturnResponse(
        order_id=outcome.order_id,
        txn_ref=outcome.txn_ref,
        success=outcome.success,
        response_code=outcome.response_code,
        message=outcome.message,
        status=outcome.status,
        payment_status=outcome.payment_status,
    )


@payment_router.get("/vnpay/ipn")
async def payment_notification(request: Request) -> dict:
    """Server-to-server notification; always answered with a gateway acknowledgement."""
    return reconciliation.handle_notification(dict(request.query_params)).as_dict()


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only).

    This endpoint is only available when PROTEAN_ENV is not 'production'.
    It allows toggling refund success, failure and timeouts for manual API testing.
    """
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
        should_timeout=body.should_timeout,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
        should_timeout=gateway.should_timeout,
    )


# ---------------------------------------------------------------------------
# Voucher Router
# ---------------------------------------------------------------------------
voucher_router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@voucher_router.post("", status_code=201, response_model=VoucherIdResponse)
async def create_voucher(body: CreateVoucherRequest, actor: Actor = Depends(get_actor)) -> VoucherIdResponse:
    actor.require(Permission.MANAGE_CATALOG)
    command = CreateVoucher(
        code=body.code,
        discount_type=body.discount_type,
        value=body.value,
        expiration_date=body.expiration_date,
        min_order_value=body.min_order_value,
        usage_limit=body.usage_limit,
    )
    result = current_domain.process(command, asynchronous=False)
    return VoucherIdResponse(voucher_id=result)


@voucher_router.post("/validate", response_model=VoucherPreviewResponse)
async def validate_voucher(body: ValidateVoucherRequest) -> VoucherPreviewResponse:
    """Preview the discount a code would give, without using it up."""
    preview = service.preview_voucher(body.code, body.order_total)
    return VoucherPreviewResponse(
        code=preview.code,
        discount_type=preview.discount_type,
        value=preview.value,
        min_order_value=preview.min_order_value,
        discount_amount=preview.discount_amount,
    )


@voucher_router.post("/{code}/deactivate", response_model=StatusResponse)
async def deactivate_voucher(code: str, actor: Actor = Depends(get_actor)) -> StatusResponse:
    actor.require(Permission.MANAGE_CATALOG)
    process_serialized(DeactivateVoucher(code=code), [voucher_key(code)])
    return StatusResponse(status="inactive")


# ---------------------------------------------------------------------------
# Stock Router
# ---------------------------------------------------------------------------
stock_router = APIRouter(prefix="/stock", tags=["stock"])


@stock_router.post("", status_code=201, response_model=StockItemIdResponse)
async def register_stock_item(
    body: RegisterStockItemRequest,
    actor: Actor = Depends(get_actor),
) -> StockItemIdResponse:
    actor.require(Permission.MANAGE_CATALOG)
    command = RegisterStockItem(
        sku=body.sku,
        title=body.title,
        unit_price=body.unit_price,
        on_hand=body.on_hand,
    )
    result = current_domain.process(command, asynchronous=False)
    return StockItemIdResponse(stock_item_id=result)


@stock_router.post("/{sku}/receive", response_model=StockLevelResponse)
async def receive_stock(
    sku: str,
    body: ReceiveStockRequest,
    actor: Actor = Depends(get_actor),
) -> StockLevelResponse:
    actor.require(Permission.MANAGE_CATALOG)
    on_hand = process_serialized(ReceiveStock(sku=sku, quantity=body.quantity), [sku_key(sku)])
    return StockLevelResponse(sku=sku, on_hand=on_hand)


# ---------------------------------------------------------------------------
# Maintenance Router
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@maintenance_router.post("/expire-orders", response_model=SweepResponse)
async def expire_orders(actor: Actor = Depends(get_actor)) -> SweepResponse:
    """Run the expired-order sweep now instead of waiting for the scheduler."""
    result = service.sweep_expired_orders(actor)
    return SweepResponse(**result.to_dict())
