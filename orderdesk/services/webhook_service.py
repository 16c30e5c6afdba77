"""Stripe webhook ingestion: verification, deduplication and reconciliation."""

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError as PydanticValidationError

from orderdesk.api.middleware.error_handler import InvalidTransitionError, NotFoundError, WebhookSignatureError
from orderdesk.models.order import OrderRecord, OrderStatus, OrderUpdate
from orderdesk.schemas.webhook import WebhookEvent, WebhookResult
from orderdesk.services.order_repository import OrderRepository, WebhookEventRepository
from orderdesk.services.payment_gateway import GatewayOrder, StripePaymentGateway, WebhookVerificationError
from orderdesk.services.status_service import Actor, ActorKind, StatusTransitionManager

logger = logging.getLogger(__name__)

CHECKOUT_PAID_EVENTS = frozenset({"checkout.session.completed", "checkout.session.async_payment_succeeded"})
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
WEBHOOK_ACTOR = Actor(ActorKind.WEBHOOK)


@dataclass
class PaymentNotice:
    """What a paid Stripe event tells us, whichever object it carried."""

    gateway_order_id: str | None
    payment_id: str | None
    order_id: str | None
    amount_cents: int | None

    @property
    def reference(self) -> str | None:
        return self.gateway_order_id or self.payment_id


def read_payment(event: WebhookEvent) -> tuple[PaymentNotice | None, str | None]:
    """Extract a completed payment from an event.

    Returns:
        tuple: The notice, or None and the reason the event is not one.
    """
    obj = event.payload
    if obj is None:
        return None, f"unhandled event type {event.type}"

    order_id = obj.metadata.get("order_id") or None
    if event.type in CHECKOUT_PAID_EVENTS:
        # Delayed methods complete the session before the money arrives
        if obj.payment_status != "paid":
            return None, f"payment status {obj.payment_status}"
        return PaymentNotice(obj.id, obj.payment_intent, order_id, obj.amount_total), None
    if event.type == PAYMENT_INTENT_SUCCEEDED:
        if obj.status != "succeeded":
            return None, f"payment status {obj.status}"
        return PaymentNotice(None, obj.id, order_id, obj.amount_received), None
    return None, f"unhandled event type {event.type}"


class WebhookIngestor:
    """Turns Stripe payment events into order status transitions.

    A delivery is acknowledged unless its signature is bad or an internal
    dependency fails; in the latter case Stripe retries, which is safe
    because the transition is idempotent and the event id is only
    recorded once the transition has been applied.
    """

    def __init__(
        self,
        repository: OrderRepository,
        events: WebhookEventRepository,
        gateway: StripePaymentGateway,
        transitions: StatusTransitionManager,
        signing_secret: str,
        signature_header: str = "stripe-signature",
        verify_signatures: bool = True,
    ) -> None:
        self.repository = repository
        self.events = events
        self.gateway = gateway
        self.transitions = transitions
        self.signing_secret = signing_secret
        self.signature_header = signature_header
        self.verify_signatures = verify_signatures
        if not verify_signatures:
            logger.warning(
                "WEBHOOK SIGNATURE VERIFICATION IS DISABLED. "
                "Any caller can mark orders paid. Never run this configuration in production."
            )

    def verify_signature(self, raw_body: bytes, signature: str | None) -> None:
        """Check the Stripe-Signature header against the raw body.

        Raises:
            WebhookSignatureError: If the header is missing, does not match,
                is outside Stripe's timestamp tolerance, or no signing secret
                is configured.
        """
        if not self.verify_signatures:
            logger.warning("Accepting payment webhook WITHOUT signature verification")
            return
        if not self.signing_secret:
            logger.error("Stripe webhook secret is not configured; rejecting delivery")
            raise WebhookSignatureError("Webhook signing secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing webhook signature")

        try:
            self.gateway.verify_webhook(raw_body, signature, self.signing_secret)
        except WebhookVerificationError as e:
            logger.warning("Rejected payment webhook (%d byte body): %s", len(raw_body), e)
            raise WebhookSignatureError() from e

    async def handle(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        """Verify and apply one webhook delivery.

        Args:
            raw_body: Request body exactly as received.
            signature: Value of the signature header.

        Returns:
            WebhookResult: processed, duplicate or ignored.

        Raises:
            WebhookSignatureError: If verification fails; nothing is applied.
        """
        self.verify_signature(raw_body, signature)

        try:
            event = WebhookEvent.model_validate(json.loads(raw_body))
        except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError) as e:
            logger.warning("Ignoring malformed payment webhook: %s", e)
            return WebhookResult(status="ignored", reason="malformed payload")

        notice, reason = read_payment(event)
        if notice is None:
            logger.info("Ignoring webhook event %s (%s): %s", event.id, event.type, reason)
            return WebhookResult(status="ignored", reason=reason)
        if not notice.reference and not notice.order_id:
            logger.warning("Payment webhook %s carries no order or payment id", event.id)
            return WebhookResult(status="ignored", reason="no order id")

        dedup_key = event.id or f"{notice.reference or notice.order_id}:{OrderStatus.PREPARING.value}"
        if await self.events.has_processed(dedup_key):
            logger.info("Webhook event %s already applied", dedup_key)
            return WebhookResult(status="duplicate")

        order = await self._find_order(notice)
        if order is None:
            logger.warning(
                "No local order for session %s / payment %s / metadata %s (event %s); needs manual review",
                notice.gateway_order_id,
                notice.payment_id,
                notice.order_id,
                dedup_key,
            )
            return WebhookResult(status="ignored", reason="unknown order")

        if notice.gateway_order_id and not order.get("items"):
            order = await self._backfill(order, await self.gateway.retrieve_order(notice.gateway_order_id))

        outcome = "processed"
        reason = None
        if notice.amount_cents is not None and notice.amount_cents != order["total_cents"]:
            logger.error(
                "Payment of %d cents for order %s does not match its total of %d; needs manual review",
                notice.amount_cents,
                order["id"],
                order["total_cents"],
            )
            outcome = "ignored"
            reason = "amount mismatch"
        else:
            outcome, reason = await self._apply(order, notice)

        await self.events.record(
            dedup_key,
            event.type,
            outcome,
            gateway_order_id=notice.reference,
            order_id=order["id"],
        )
        return WebhookResult(status=outcome, order_id=order["id"], reason=reason)

    async def _apply(self, order: OrderRecord, notice: PaymentNotice) -> tuple[str, str | None]:
        try:
            result = await self.transitions.transition(
                order["id"],
                OrderStatus.PREPARING,
                WEBHOOK_ACTOR,
                payment_reference=None if order.get("payment_reference") else notice.reference,
                gateway_payment_id=notice.payment_id,
            )
        except InvalidTransitionError as e:
            logger.warning(
                "Payment completed for order %s but it is %s; needs manual review",
                order["id"],
                e.current,
            )
            return "ignored", f"order is {e.current}"
        except NotFoundError:
            return "ignored", "unknown order"
        return ("processed" if result.changed else "duplicate"), None

    async def _find_order(self, notice: PaymentNotice) -> OrderRecord | None:
        """Correlate by stored reference first, then by the metadata order id."""
        for reference in (notice.gateway_order_id, notice.payment_id):
            if reference:
                order = await self.repository.find_by_payment_reference(reference)
                if order is not None:
                    return order
        if notice.order_id:
            return await self.repository.get(notice.order_id)
        return None

    async def _backfill(self, order: OrderRecord, gateway_order: GatewayOrder) -> OrderRecord:
        """Copy line items and customer detail from the gateway onto a bare order."""
        location = order["location"]
        update: OrderUpdate = {
            "items": [
                {
                    "name": line.name,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                    "special_instructions": None,
                    "location": location,
                }
                for line in gateway_order.line_items
            ],
        }
        customer = dict(order.get("customer_info") or {})
        for key, value in (
            ("name", gateway_order.customer_name),
            ("email", gateway_order.customer_email),
            ("phone", gateway_order.customer_phone),
        ):
            if value and not customer.get(key):
                customer[key] = value
        update["customer_info"] = customer  # type: ignore[typeddict-item]

        updated = await self.repository.update_fields(order["id"], update)
        logger.info("Backfilled %d items for order %s from gateway", len(gateway_order.line_items), order["id"])
        return updated or order
