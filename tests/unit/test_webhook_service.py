"""Unit tests for WebhookIngestor."""

import time

import pytest

from orderdesk.api.middleware.error_handler import PaymentError, WebhookSignatureError
from orderdesk.schemas.order import OrderCreate
from orderdesk.services.email_service import ORDER_CONFIRMATION
from orderdesk.services.order_service import OrderIntakeService
from orderdesk.services.payment_gateway import GatewayLineItem, GatewayOrder, PaymentOutcomeUnknownError
from orderdesk.services.status_service import StatusTransitionManager
from orderdesk.services.webhook_service import WebhookIngestor
from tests.conftest import WEBHOOK_SECRET, order_payload
from tests.fakes import (
    FakePaymentGateway,
    InMemoryOrderRepository,
    InMemoryWebhookEventRepository,
    RecordingNotifier,
    make_order,
    payment_intent_succeeded,
    session_completed,
    stripe_event,
    stripe_signature,
)

ORDER_ID = make_order()["id"]


def signed(body: bytes) -> tuple[bytes, str]:
    return body, stripe_signature(body, WEBHOOK_SECRET)


async def pending_redirect_order(intake: OrderIntakeService) -> tuple[str, str]:
    data = OrderCreate.model_validate(order_payload(payment_method="online_redirect"))
    result = await intake.create_order(data)
    return result.order["id"], result.order["payment_reference"]


class TestSignature:
    """Tests for verify_signature()."""

    def test_valid_signature_passes(self, ingestor: WebhookIngestor) -> None:
        ingestor.verify_signature(*signed(session_completed("cs_test_1")))

    @pytest.mark.parametrize("signature", [None, "", "t=1700000000,v1=deadbeef", "not-a-signature"])
    def test_bad_or_missing_signature_rejected(self, ingestor: WebhookIngestor, signature: str | None) -> None:
        with pytest.raises(WebhookSignatureError):
            ingestor.verify_signature(session_completed("cs_test_1"), signature)

    def test_signature_over_different_body_rejected(self, ingestor: WebhookIngestor) -> None:
        _, signature = signed(session_completed("cs_test_1", amount_total=100))

        with pytest.raises(WebhookSignatureError):
            ingestor.verify_signature(session_completed("cs_test_1", amount_total=999), signature)

    def test_signature_with_other_secret_rejected(self, ingestor: WebhookIngestor) -> None:
        body = session_completed("cs_test_1")

        with pytest.raises(WebhookSignatureError):
            ingestor.verify_signature(body, stripe_signature(body, "whsec_someone_else"))

    def test_signed_payload_that_is_not_json_rejected(self, ingestor: WebhookIngestor) -> None:
        with pytest.raises(WebhookSignatureError):
            ingestor.verify_signature(*signed(b"not json"))

    def test_replayed_old_signature_rejected(self, ingestor: WebhookIngestor) -> None:
        body = session_completed("cs_test_1")
        an_hour_ago = int(time.time()) - 3600

        with pytest.raises(WebhookSignatureError):
            ingestor.verify_signature(body, stripe_signature(body, WEBHOOK_SECRET, timestamp=an_hour_ago))

    def test_missing_secret_rejects_everything(
        self,
        repository: InMemoryOrderRepository,
        event_repository: InMemoryWebhookEventRepository,
        gateway: FakePaymentGateway,
        transitions: StatusTransitionManager,
    ) -> None:
        ingestor = WebhookIngestor(repository, event_repository, gateway, transitions, signing_secret="")
        body = session_completed("cs_test_1")

        with pytest.raises(WebhookSignatureError):
            ingestor.verify_signature(body, stripe_signature(body, ""))

    @pytest.mark.asyncio
    async def test_rejected_delivery_has_no_side_effects(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        repository: InMemoryOrderRepository,
        event_repository: InMemoryWebhookEventRepository,
    ) -> None:
        order_id, reference = await pending_redirect_order(intake)

        with pytest.raises(WebhookSignatureError):
            await ingestor.handle(session_completed(reference), "t=1,v1=forged")

        assert repository.rows[order_id]["status"] == "pending_payment"
        assert event_repository.events == {}

    @pytest.mark.asyncio
    async def test_disabled_verification_accepts_unsigned_delivery(
        self,
        repository: InMemoryOrderRepository,
        event_repository: InMemoryWebhookEventRepository,
        gateway: FakePaymentGateway,
        transitions: StatusTransitionManager,
        intake: OrderIntakeService,
    ) -> None:
        ingestor = WebhookIngestor(
            repository,
            event_repository,
            gateway,
            transitions,
            signing_secret="",
            verify_signatures=False,
        )
        order_id, reference = await pending_redirect_order(intake)

        result = await ingestor.handle(session_completed(reference), None)

        assert result.status == "processed"
        assert repository.rows[order_id]["status"] == "preparing"


class TestHandle:
    """Tests for handle()."""

    @pytest.mark.asyncio
    async def test_completed_checkout_moves_order_to_preparing(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        repository: InMemoryOrderRepository,
        event_repository: InMemoryWebhookEventRepository,
        notifier: RecordingNotifier,
    ) -> None:
        order_id, reference = await pending_redirect_order(intake)

        result = await ingestor.handle(*signed(session_completed(reference)))

        assert result.status == "processed"
        assert result.order_id == order_id
        assert repository.rows[order_id]["status"] == "preparing"
        assert repository.rows[order_id]["gateway_payment_id"] == "pi_test_from_session"
        assert repository.rows[order_id]["payment_reference"] == reference
        assert event_repository.events["evt_test_1"]["outcome"] == "processed"
        assert notifier.count(ORDER_CONFIRMATION) == 1

    @pytest.mark.asyncio
    async def test_redelivery_has_same_effect_as_one(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        repository: InMemoryOrderRepository,
        notifier: RecordingNotifier,
    ) -> None:
        order_id, reference = await pending_redirect_order(intake)
        delivery = signed(session_completed(reference))

        results = [await ingestor.handle(*delivery) for _ in range(3)]

        assert [r.status for r in results] == ["processed", "duplicate", "duplicate"]
        assert repository.rows[order_id]["status"] == "preparing"
        assert notifier.count(ORDER_CONFIRMATION) == 1

    @pytest.mark.asyncio
    async def test_session_and_payment_intent_events_apply_once(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        repository: InMemoryOrderRepository,
        event_repository: InMemoryWebhookEventRepository,
        notifier: RecordingNotifier,
    ) -> None:
        order_id, reference = await pending_redirect_order(intake)

        first = await ingestor.handle(*signed(session_completed(reference, event_id="evt_1")))
        second = await ingestor.handle(
            *signed(payment_intent_succeeded("pi_test_from_session", order_id=order_id, event_id="evt_2"))
        )

        assert (first.status, second.status) == ("processed", "duplicate")
        assert set(event_repository.events) == {"evt_1", "evt_2"}
        assert repository.rows[order_id]["payment_reference"] == reference
        assert notifier.count(ORDER_CONFIRMATION) == 1

    @pytest.mark.asyncio
    async def test_delayed_payment_completes_on_async_success(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        repository: InMemoryOrderRepository,
    ) -> None:
        order_id, reference = await pending_redirect_order(intake)
        succeeded = stripe_event(
            "checkout.session.async_payment_succeeded",
            {"id": reference, "object": "checkout.session", "payment_status": "paid", "amount_total": 756},
            event_id="evt_2",
        )

        completed = await ingestor.handle(*signed(session_completed(reference, payment_status="unpaid")))
        assert completed.status == "ignored"
        assert repository.rows[order_id]["status"] == "pending_payment"

        result = await ingestor.handle(*signed(succeeded))

        assert result.status == "processed"
        assert repository.rows[order_id]["status"] == "preparing"

    @pytest.mark.asyncio
    async def test_event_without_id_deduplicates_on_reference(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        event_repository: InMemoryWebhookEventRepository,
    ) -> None:
        _, reference = await pending_redirect_order(intake)
        delivery = signed(session_completed(reference, event_id=None))

        first = await ingestor.handle(*delivery)
        second = await ingestor.handle(*delivery)

        assert (first.status, second.status) == ("processed", "duplicate")
        assert f"{reference}:preparing" in event_repository.events

    @pytest.mark.asyncio
    async def test_unknown_order_is_ignored(
        self,
        ingestor: WebhookIngestor,
        repository: InMemoryOrderRepository,
        notifier: RecordingNotifier,
    ) -> None:
        result = await ingestor.handle(*signed(session_completed("cs_unknown")))

        assert result.status == "ignored"
        assert result.reason == "unknown order"
        assert repository.rows == {}
        assert notifier.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            pytest.param(stripe_event("charge.refunded", {"id": "ch_1", "object": "charge"}), id="unhandled-type"),
            pytest.param(session_completed("cs_test_any", payment_status="unpaid"), id="session-unpaid"),
            pytest.param(
                stripe_event("payment_intent.succeeded", {"id": "pi_1", "status": "processing"}),
                id="intent-not-succeeded",
            ),
            pytest.param(
                stripe_event("checkout.session.completed", {"object": "checkout.session", "payment_status": "paid"}),
                id="no-ids",
            ),
            pytest.param(b'{"id": "evt_1", "type": "checkout.session.completed", "data": []}', id="wrong-shape"),
        ],
    )
    async def test_irrelevant_events_are_ignored(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        repository: InMemoryOrderRepository,
        body: bytes,
    ) -> None:
        order_id, _ = await pending_redirect_order(intake)

        result = await ingestor.handle(*signed(body))

        assert result.status == "ignored"
        assert repository.rows[order_id]["status"] == "pending_payment"

    @pytest.mark.asyncio
    async def test_finds_order_through_metadata(
        self,
        ingestor: WebhookIngestor,
        repository: InMemoryOrderRepository,
    ) -> None:
        await repository.insert(
            make_order(status="pending_payment", payment_method="online_redirect", payment_reference=None)
        )

        result = await ingestor.handle(*signed(session_completed("cs_test_1", order_id=ORDER_ID)))

        assert result.status == "processed"
        assert repository.rows[ORDER_ID]["status"] == "preparing"
        assert repository.rows[ORDER_ID]["payment_reference"] == "cs_test_1"

    @pytest.mark.asyncio
    async def test_backfills_items_from_gateway(
        self,
        ingestor: WebhookIngestor,
        repository: InMemoryOrderRepository,
        gateway: FakePaymentGateway,
    ) -> None:
        await repository.insert(
            make_order(
                status="pending_payment",
                payment_method="online_redirect",
                payment_reference="cs_test_1",
                items=[],
                customer_info={"name": "", "email": None, "phone": None, "special_instructions": None},
            )
        )
        gateway.gateway_orders["cs_test_1"] = GatewayOrder(
            id="cs_test_1",
            paid=True,
            line_items=[GatewayLineItem(name="Burrito", quantity=1, unit_price_cents=900)],
            customer_name="Sam Ortiz",
            customer_email="sam@example.com",
        )

        result = await ingestor.handle(*signed(session_completed("cs_test_1")))

        row = repository.rows[ORDER_ID]
        assert result.status == "processed"
        assert row["items"] == [
            {
                "name": "Burrito",
                "quantity": 1,
                "unit_price_cents": 900,
                "special_instructions": None,
                "location": "downtown",
            }
        ]
        assert row["customer_info"]["email"] == "sam@example.com"
        assert row["customer_info"]["name"] == "Sam Ortiz"

    @pytest.mark.asyncio
    async def test_payment_for_cancelled_order_is_ignored_and_recorded(
        self,
        ingestor: WebhookIngestor,
        repository: InMemoryOrderRepository,
        event_repository: InMemoryWebhookEventRepository,
    ) -> None:
        await repository.insert(
            make_order(status="cancelled", payment_method="online_redirect", payment_reference="cs_test_1")
        )

        result = await ingestor.handle(*signed(session_completed("cs_test_1")))

        assert result.status == "ignored"
        assert result.reason == "order is cancelled"
        assert repository.rows[ORDER_ID]["status"] == "cancelled"
        assert event_repository.events["evt_test_1"]["outcome"] == "ignored"

    @pytest.mark.asyncio
    async def test_amount_that_differs_from_total_is_not_applied(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        repository: InMemoryOrderRepository,
        event_repository: InMemoryWebhookEventRepository,
    ) -> None:
        order_id, reference = await pending_redirect_order(intake)

        result = await ingestor.handle(*signed(session_completed(reference, amount_total=755)))

        assert result.status == "ignored"
        assert result.reason == "amount mismatch"
        assert repository.rows[order_id]["status"] == "pending_payment"
        assert event_repository.events["evt_test_1"]["outcome"] == "ignored"


class TestUnknownCaptureOutcome:
    """A direct capture that timed out is settled by its payment_intent.succeeded event."""

    @pytest.mark.asyncio
    async def test_capture_timeout_then_webhook_completes_order(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        gateway: FakePaymentGateway,
        repository: InMemoryOrderRepository,
        notifier: RecordingNotifier,
    ) -> None:
        gateway.capture_error = PaymentOutcomeUnknownError("timed out")
        data = OrderCreate.model_validate(order_payload(payment_method="online_direct", card_token="tok_visa"))

        with pytest.raises(PaymentError) as exc_info:
            await intake.create_order(data)

        order_id = exc_info.value.order_id
        assert repository.rows[order_id]["status"] == "pending_payment"
        assert repository.rows[order_id]["payment_reference"] is None

        result = await ingestor.handle(*signed(payment_intent_succeeded("pi_test_123", order_id=order_id)))

        row = repository.rows[order_id]
        assert result.status == "processed"
        assert result.order_id == order_id
        assert row["status"] == "preparing"
        assert row["payment_reference"] == "pi_test_123"
        assert row["gateway_payment_id"] == "pi_test_123"
        assert notifier.count(ORDER_CONFIRMATION) == 1

    @pytest.mark.asyncio
    async def test_succeeded_intent_for_declined_order_is_ignored(
        self,
        ingestor: WebhookIngestor,
        repository: InMemoryOrderRepository,
    ) -> None:
        await repository.insert(make_order(status="payment_failed", payment_method="online_direct"))

        result = await ingestor.handle(*signed(payment_intent_succeeded("pi_test_123", order_id=ORDER_ID)))

        assert result.status == "ignored"
        assert result.reason == "order is payment_failed"


class TestPaymentReturnRace:
    """Webhook and customer redirect can arrive in either order."""

    @pytest.mark.asyncio
    async def test_return_then_webhook(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        gateway: FakePaymentGateway,
        notifier: RecordingNotifier,
    ) -> None:
        order_id, reference = await pending_redirect_order(intake)
        gateway.mark_paid(reference)

        await intake.confirm_payment_return(order_id)
        result = await ingestor.handle(*signed(session_completed(reference)))

        assert result.status == "duplicate"
        assert notifier.count(ORDER_CONFIRMATION) == 1

    @pytest.mark.asyncio
    async def test_webhook_then_return(
        self,
        ingestor: WebhookIngestor,
        intake: OrderIntakeService,
        gateway: FakePaymentGateway,
        notifier: RecordingNotifier,
    ) -> None:
        order_id, reference = await pending_redirect_order(intake)
        gateway.mark_paid(reference)

        await ingestor.handle(*signed(session_completed(reference)))
        order = await intake.confirm_payment_return(order_id)

        assert order["status"] == "preparing"
        assert notifier.count(ORDER_CONFIRMATION) == 1
