"""Stripe webhook payload and result schemas."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class WebhookObject(BaseModel):
    """The Checkout Session or PaymentIntent an event is about.

    Both shapes share one model; fields the other type lacks stay None.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, description="cs_... for sessions, pi_... for payment intents")
    object: str | None = Field(default=None, description="Stripe object type, e.g. checkout.session")
    status: str | None = Field(default=None, description="PaymentIntent status, e.g. succeeded")
    payment_status: str | None = Field(default=None, description="Checkout Session payment status, e.g. paid")
    payment_intent: str | None = Field(default=None, description="PaymentIntent created by a Checkout Session")
    amount_total: int | None = Field(default=None, description="Session total in cents")
    amount_received: int | None = Field(default=None, description="PaymentIntent amount received in cents")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Metadata set when the object was created")


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: WebhookObject | None = None


class WebhookEvent(BaseModel):
    """Stripe event envelope.

    Only the fields the reconciliation logic needs are modelled;
    everything else is ignored.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, description="Stripe event id (evt_...), used for deduplication")
    type: str = Field(default="", description="Stripe event type")
    data: WebhookData | None = None

    @property
    def payload(self) -> WebhookObject | None:
        return self.data.object if self.data else None


WebhookOutcome = Literal["processed", "duplicate", "ignored"]


class WebhookResult(BaseModel):
    """Acknowledgement returned to the payment processor."""

    status: WebhookOutcome = Field(description="What happened to the event")
    order_id: str | None = Field(default=None, description="Local order affected, if any")
    reason: str | None = Field(default=None, description="Why the event was ignored")
