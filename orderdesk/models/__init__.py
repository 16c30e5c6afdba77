"""Database model type definitions."""

from orderdesk.models.order import (
    CustomerInfoRecord,
    OrderItemRecord,
    OrderRecord,
    OrderStatus,
    OrderUpdate,
    PaymentMethod,
    WebhookEventRecord,
)

__all__ = [
    "CustomerInfoRecord",
    "OrderItemRecord",
    "OrderRecord",
    "OrderStatus",
    "OrderUpdate",
    "PaymentMethod",
    "WebhookEventRecord",
]
