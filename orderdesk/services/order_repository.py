"""Supabase-backed persistence for orders and processed webhook events."""

import logging
from datetime import datetime, timezone
from typing import Any

from supabase import Client

from orderdesk.models.order import OrderRecord, OrderUpdate, WebhookEventRecord

logger = logging.getLogger(__name__)


class OrderRepository:
    """Order Store over the ``orders`` table.

    Status changes go through :meth:`compare_and_set_status`, a single
    conditional UPDATE keyed on the expected current status. PostgREST
    applies it atomically per row, so it stays correct when several
    processes serve requests for the same order.
    """

    table_name = "orders"

    def __init__(self, client: Client) -> None:
        self.client = client

    async def insert(self, order: OrderRecord) -> OrderRecord:
        """Insert a new order row.

        Args:
            order: Fully populated order row.

        Returns:
            OrderRecord: The stored row as returned by the database.
        """
        response = self.client.table(self.table_name).insert(dict(order)).execute()
        return response.data[0]

    async def get(self, order_id: str) -> OrderRecord | None:
        """Get an order by ID.

        Args:
            order_id: The order's id.

        Returns:
            OrderRecord | None: The order or None if not found.
        """
        response = (
            self.client.table(self.table_name)
            .select("*")
            .eq("id", order_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def find_by_payment_reference(self, reference: str) -> OrderRecord | None:
        """Find the order whose gateway charge / gateway order id matches."""
        response = (
            self.client.table(self.table_name)
            .select("*")
            .eq("payment_reference", reference)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def list_orders(
        self,
        status: str | None = None,
        location: str | None = None,
        customer_email: str | None = None,
        limit: int = 100,
    ) -> list[OrderRecord]:
        """List orders newest first, optionally filtered."""
        query = self.client.table(self.table_name).select("*")
        if status:
            query = query.eq("status", status)
        if location:
            query = query.eq("location", location)
        if customer_email:
            query = query.eq("customer_info->>email", customer_email)
        response = query.order("created_at", desc=True).limit(limit).execute()
        return response.data or []

    async def compare_and_set_status(
        self,
        order_id: str,
        expected_status: str,
        update: OrderUpdate,
    ) -> OrderRecord | None:
        """Write ``update`` only if the order is still in ``expected_status``.

        Args:
            order_id: The order's id.
            expected_status: Status the caller read before deciding.
            update: Columns to write, including the new status.

        Returns:
            OrderRecord | None: The updated row, or None when no row matched
            (unknown order or the status moved on).
        """
        response = (
            self.client.table(self.table_name)
            .update(dict(update))
            .eq("id", order_id)
            .eq("status", expected_status)
            .execute()
        )
        return response.data[0] if response.data else None

    async def update_fields(self, order_id: str, update: OrderUpdate) -> OrderRecord | None:
        """Write non-status columns (estimate, payment reference, backfilled detail)."""
        if "status" in update:
            raise ValueError("Status must change through compare_and_set_status")
        response = (
            self.client.table(self.table_name)
            .update(dict(update))
            .eq("id", order_id)
            .execute()
        )
        return response.data[0] if response.data else None


class WebhookEventRepository:
    """Dedup tracking for payment webhook deliveries (``webhook_events`` table)."""

    table_name = "webhook_events"

    def __init__(self, client: Client) -> None:
        self.client = client

    async def has_processed(self, event_id: str) -> bool:
        response = (
            self.client.table(self.table_name)
            .select("event_id")
            .eq("event_id", event_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    async def record(
        self,
        event_id: str,
        event_type: str,
        outcome: str,
        gateway_order_id: str | None = None,
        order_id: str | None = None,
    ) -> None:
        """Record an applied event. A concurrent duplicate insert is a no-op."""
        row: WebhookEventRecord = {
            "event_id": event_id,
            "event_type": event_type,
            "gateway_order_id": gateway_order_id,
            "order_id": order_id,
            "outcome": outcome,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
        payload: dict[str, Any] = dict(row)
        self.client.table(self.table_name).upsert(
            payload,
            on_conflict="event_id",
            ignore_duplicates=True,
        ).execute()
        logger.debug("Recorded webhook event %s (%s)", event_id, outcome)
