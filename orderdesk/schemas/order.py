"""Order Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from orderdesk.models.order import OrderRecord, OrderStatus, PaymentMethod, from_cents


class OrderItemSchema(BaseModel):
    """Schema for a single line item in an order."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(min_length=1, description="Menu item name")
    quantity: int = Field(ge=1, description="Quantity ordered")
    unit_price: Decimal = Field(ge=0, description="Unit price in currency units")
    special_instructions: str | None = Field(default=None, max_length=500, description="Item-level request")
    location: str = Field(min_length=1, description="Fulfilling location for this item")


class CustomerInfoSchema(BaseModel):
    """Customer contact details."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(default="", description="Customer name")
    email: str | None = Field(default=None, description="Customer email for notifications")
    phone: str | None = Field(default=None, description="Customer phone for pickup contact")
    special_instructions: str | None = Field(default=None, max_length=1000, description="Order-level request")


class OrderCreate(BaseModel):
    """Schema for creating an order via POST /orders."""

    model_config = ConfigDict(from_attributes=True)

    items: list[OrderItemSchema] = Field(description="Ordered line items")
    customer_info: CustomerInfoSchema = Field(description="Customer contact details")
    subtotal: Decimal = Field(ge=0, description="Sum of line items")
    tax: Decimal = Field(ge=0, description="Tax amount")
    total: Decimal = Field(ge=0, description="subtotal + tax")
    payment_method: PaymentMethod = Field(description="in_store, online_direct or online_redirect")
    card_token: str | None = Field(default=None, description="Tokenized card for online_direct payments")
    location: str | None = Field(default=None, description="Fulfilling location; defaults to the items' location")


class OrderCreateResponse(BaseModel):
    """Schema for order creation response."""

    order_id: str = Field(description="Created order id")
    status: OrderStatus = Field(description="Status after intake")
    payment_url: str | None = Field(default=None, description="Hosted payment page for online_redirect orders")
    payment_reference: str | None = Field(default=None, description="Gateway reference when one exists")
    access_token: str | None = Field(
        default=None,
        description="Secret to send as X-Order-Token when reading this order without signing in",
    )


class OrderItemResponse(BaseModel):
    """Line item as returned by the API."""

    name: str
    quantity: int
    unit_price: Decimal
    special_instructions: str | None = None
    location: str


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    id: str = Field(description="Order unique identifier")
    status: OrderStatus = Field(description="Order status")
    items: list[OrderItemResponse] = Field(description="Order line items")
    customer_info: CustomerInfoSchema = Field(description="Customer contact details")
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    currency: str = Field(default="usd", description="Currency code")
    payment_method: PaymentMethod
    payment_reference: str | None = None
    location: str
    estimated_completion_minutes: int | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, order: OrderRecord) -> "OrderResponse":
        """Convert a stored order row (amounts in cents) to the API shape."""
        return cls(
            id=order["id"],
            status=order["status"],
            items=[
                OrderItemResponse(
                    name=item["name"],
                    quantity=item["quantity"],
                    unit_price=from_cents(item["unit_price_cents"]),
                    special_instructions=item.get("special_instructions"),
                    location=item["location"],
                )
                for item in order.get("items") or []
            ],
            customer_info=CustomerInfoSchema(**(order.get("customer_info") or {})),
            subtotal=from_cents(order["subtotal_cents"]),
            tax=from_cents(order["tax_cents"]),
            total=from_cents(order["total_cents"]),
            currency=order.get("currency", "usd"),
            payment_method=order["payment_method"],
            payment_reference=order.get("payment_reference"),
            location=order["location"],
            estimated_completion_minutes=order.get("estimated_completion_minutes"),
            created_at=order["created_at"],
            updated_at=order["updated_at"],
        )


class OrderListResponse(BaseModel):
    """Schema for order list API responses."""

    items: list[OrderResponse] = Field(description="List of orders")


class StatusUpdateRequest(BaseModel):
    """Schema for PATCH /admin/orders/status."""

    order_id: str = Field(min_length=1, description="Order to update")
    status: OrderStatus = Field(description="Target status")
    estimated_minutes: int | None = Field(default=None, ge=0, le=600, description="Optional completion estimate")


class TimeEstimateRequest(BaseModel):
    """Schema for PATCH /admin/orders/time-estimate."""

    order_id: str = Field(min_length=1, description="Order to update")
    estimated_minutes: int = Field(ge=0, le=600, description="Minutes until the order is ready")
