"""Order model type definitions for database operations."""

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TypedDict


class OrderStatus(str, Enum):
    """Lifecycle states of an order."""

    PENDING_PAYMENT = "pending_payment"
    PREPARING = "preparing"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    COMPLETED = "completed"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """How the customer pays for an order."""

    IN_STORE = "in_store"
    ONLINE_DIRECT = "online_direct"
    ONLINE_REDIRECT = "online_redirect"


class OrderItemRecord(TypedDict):
    """Structure for a single line item in an order.

    Stored as part of the items JSONB array.
    """

    name: str
    quantity: int
    unit_price_cents: int
    special_instructions: str | None
    location: str


class CustomerInfoRecord(TypedDict):
    """Customer contact details stored in the customer_info JSONB column."""

    name: str
    email: str | None
    phone: str | None
    special_instructions: str | None


class OrderRecord(TypedDict):
    """Order table row representation.

    Represents an order stored in the orders table.
    Maps directly to the database schema.
    """

    id: str
    items: list[OrderItemRecord]
    customer_info: CustomerInfoRecord
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    currency: str
    payment_method: str
    payment_reference: str | None
    gateway_payment_id: str | None
    status: str
    location: str
    estimated_completion_minutes: int | None
    access_token: str | None
    created_at: str
    updated_at: str


class OrderUpdate(TypedDict, total=False):
    """Fields that may be written alongside a status change."""

    status: str
    updated_at: str
    estimated_completion_minutes: int
    payment_reference: str
    gateway_payment_id: str
    items: list[OrderItemRecord]
    customer_info: CustomerInfoRecord


class WebhookEventRecord(TypedDict, total=False):
    """Row in the webhook_events dedup table."""

    event_id: str
    event_type: str
    gateway_order_id: str | None
    order_id: str | None
    outcome: str
    processed_at: str


CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to integer cents."""
    return int((amount / CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-place currency amount."""
    return (Decimal(cents) * CENT).quantize(CENT)
