"""Unit tests for the Supabase-backed repositories."""

from unittest.mock import MagicMock

import pytest

from orderdesk.services.order_repository import OrderRepository, WebhookEventRepository
from tests.fakes import make_order


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


class TestOrderRepository:
    """Tests for OrderRepository."""

    @pytest.mark.asyncio
    async def test_compare_and_set_filters_on_expected_status(self, client: MagicMock) -> None:
        row = make_order(status="ready")
        update_query = client.table.return_value.update.return_value
        update_query.eq.return_value.eq.return_value.execute.return_value.data = [row]
        repository = OrderRepository(client)

        result = await repository.compare_and_set_status(row["id"], "in_progress", {"status": "ready"})

        assert result == row
        client.table.assert_called_with("orders")
        update_query.eq.assert_called_once_with("id", row["id"])
        update_query.eq.return_value.eq.assert_called_once_with("status", "in_progress")

    @pytest.mark.asyncio
    async def test_compare_and_set_returns_none_when_nothing_matched(self, client: MagicMock) -> None:
        update_query = client.table.return_value.update.return_value
        update_query.eq.return_value.eq.return_value.execute.return_value.data = []
        repository = OrderRepository(client)

        result = await repository.compare_and_set_status("order-1", "preparing", {"status": "ready"})

        assert result is None

    @pytest.mark.asyncio
    async def test_get_returns_none_for_missing_row(self, client: MagicMock) -> None:
        select_query = client.table.return_value.select.return_value
        select_query.eq.return_value.maybe_single.return_value.execute.return_value = None
        repository = OrderRepository(client)

        assert await repository.get("missing") is None

    @pytest.mark.asyncio
    async def test_update_fields_refuses_status(self, client: MagicMock) -> None:
        repository = OrderRepository(client)

        with pytest.raises(ValueError):
            await repository.update_fields("order-1", {"status": "ready"})

        client.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_orders_applies_filters(self, client: MagicMock) -> None:
        query = client.table.return_value.select.return_value
        query.eq.return_value = query
        query.order.return_value.limit.return_value.execute.return_value.data = [make_order()]
        repository = OrderRepository(client)

        orders = await repository.list_orders(status="preparing", location="downtown", limit=10)

        assert len(orders) == 1
        query.eq.assert_any_call("status", "preparing")
        query.eq.assert_any_call("location", "downtown")
        query.order.assert_called_once_with("created_at", desc=True)
        query.order.return_value.limit.assert_called_once_with(10)


class TestWebhookEventRepository:
    """Tests for WebhookEventRepository."""

    @pytest.mark.asyncio
    async def test_has_processed(self, client: MagicMock) -> None:
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value.data = [{"event_id": "evt_1"}]
        repository = WebhookEventRepository(client)

        assert await repository.has_processed("evt_1") is True
        client.table.assert_called_with("webhook_events")

    @pytest.mark.asyncio
    async def test_record_ignores_duplicates(self, client: MagicMock) -> None:
        repository = WebhookEventRepository(client)

        await repository.record("evt_1", "checkout.session.completed", "processed", gateway_order_id="gw_1", order_id="order-1")

        args, kwargs = client.table.return_value.upsert.call_args
        assert args[0]["event_id"] == "evt_1"
        assert args[0]["outcome"] == "processed"
        assert kwargs == {"on_conflict": "event_id", "ignore_duplicates": True}
