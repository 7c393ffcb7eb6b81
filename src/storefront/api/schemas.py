"""Pydantic request/response schemas for the Storefront API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class LineItemSchema(BaseModel):
    sku: str
    quantity: int = Field(ge=1)


class ShippingAddressSchema(BaseModel):
    full_name: str
    phone_number: str
    street_address: str
    ward: str | None = None
    district: str
    city: str


class OrderItemSchema(BaseModel):
    sku: str
    title: str | None = None
    quantity: int
    unit_price: float
    line_total: float


class PricingSchema(BaseModel):
    subtotal: float
    discount: float
    shipping_base_fee: float
    shipping_discount: float
    shipping_fee: float
    total: float


# ---------------------------------------------------------------------------
# Order Schemas
# ---------------------------------------------------------------------------
class CreateOrderRequest(BaseModel):
    items: list[LineItemSchema] = Field(min_length=1)
    shipping_address: ShippingAddressSchema
    payment_method: str = "gateway"
    voucher_code: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "items": [{"sku": "TS-RED-M", "quantity": 2}],
                    "shipping_address": {
                        "full_name": "Nguyen Van A",
                        "phone_number": "0912345678",
                        "street_address": "12 Le Loi",
                        "ward": "Ben Nghe",
                        "district": "Quan 1",
                        "city": "Ho Chi Minh",
                    },
                    "payment_method": "gateway",
                    "voucher_code": "SUMMER10",
                }
            ]
        }
    }


class CancelOrderRequest(BaseModel):
    reason: str | None = None


class UpdateOrderStatusRequest(BaseModel):
    status: str


class UpdateShippingAddressRequest(BaseModel):
    shipping_address: ShippingAddressSchema


class OrderResponse(BaseModel):
    order_id: str
    customer_id: str | None = None
    status: str
    payment_status: str
    payment_method: str
    voucher_code: str | None = None
    items: list[OrderItemSchema]
    shipping_address: ShippingAddressSchema
    pricing: PricingSchema
    cancellation_reason: str | None = None
    last_refund_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        address = order.shipping_address
        pricing = order.pricing
        return cls(
            order_id=str(order.id),
            customer_id=str(order.customer_id) if order.customer_id else None,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            voucher_code=order.voucher_code,
            items=[
                OrderItemSchema(
                    sku=item.sku,
                    title=item.title,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                )
                for item in order.items
            ],
            shipping_address=ShippingAddressSchema(
                full_name=address.full_name,
                phone_number=address.phone_number,
                street_address=address.street_address,
                ward=address.ward,
                district=address.district,
                city=address.city,
            ),
            pricing=PricingSchema(
                subtotal=pricing.subtotal,
                discount=pricing.discount,
                shipping_base_fee=pricing.shipping_base_fee,
                shipping_discount=pricing.shipping_discount,
                shipping_fee=pricing.shipping_fee,
                total=pricing.total,
            ),
            cancellation_reason=order.cancellation_reason,
            last_refund_error=order.last_refund_error,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class PaymentStatusResponse(BaseModel):
    order_id: str
    status: str
    payment_status: str
    paid: bool


class SweepResponse(BaseModel):
    scanned: int
    cancelled: int
    skipped: int


class PaginationSchema(BaseModel):
    total: int
    total_pages: int
    page: int
    per_page: int


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    pagination: PaginationSchema

    @classmethod
    def from_page(cls, page) -> "OrderListResponse":
        return cls(
            orders=[OrderResponse.from_order(order) for order in page.orders],
            pagination=PaginationSchema(
                total=page.total,
                total_pages=page.total_pages,
                page=page.page,
                per_page=page.per_page,
            ),
        )


class ShippingFeeRequest(BaseModel):
    subtotal: float = Field(ge=0)
    city: str = Field(min_length=1)


class ShippingFeeResponse(BaseModel):
    base_fee: float
    discount: float
    fee: float


# ---------------------------------------------------------------------------
# Payment Schemas
# ---------------------------------------------------------------------------
class PaymentUrlRequest(BaseModel):
    order_id: str


class PaymentUrlResponse(BaseModel):
    order_id: str
    txn_ref: str
    amount: float
    payment_url: str


class PaymentReturnResponse(BaseModel):
    order_id: str
    txn_ref: str
    success: bool
    response_code: str
    message: str
    status: str
    payment_status: str


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Refund declined"
    should_timeout: bool = False


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str
    should_timeout: bool


# ---------------------------------------------------------------------------
# Voucher Schemas
# ---------------------------------------------------------------------------
class CreateVoucherRequest(BaseModel):
    code: str
    discount_type: str
    value: float = Field(gt=0)
    expiration_date: datetime
    min_order_value: float = Field(default=0.0, ge=0)
    usage_limit: int = Field(default=0, ge=0)


class VoucherIdResponse(BaseModel):
    voucher_id: str


class ValidateVoucherRequest(BaseModel):
    code: str = Field(min_length=1)
    order_total: float = Field(ge=0)


class VoucherPreviewResponse(BaseModel):
    code: str
    discount_type: str
    value: float
    min_order_value: float
    discount_amount: float


# ---------------------------------------------------------------------------
# Stock Schemas
# ---------------------------------------------------------------------------
class RegisterStockItemRequest(BaseModel):
    sku: str
    title: str | None = None
    unit_price: float = Field(ge=0)
    on_hand: int = Field(default=0, ge=0)


class ReceiveStockRequest(BaseModel):
    quantity: int = Field(ge=1)


class StockItemIdResponse(BaseModel):
    stock_item_id: str


class StockLevelResponse(BaseModel):
    sku: str
    on_hand: int


class StatusResponse(BaseModel):
    status: str
