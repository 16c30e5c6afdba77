"""Payment gateway adapter backed by Stripe."""

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable

import stripe

from orderdesk.models.order import OrderRecord

logger = logging.getLogger(__name__)

TAX_LINE_NAME = "Tax"


class PaymentGatewayError(Exception):
    """Base class for gateway failures."""


class PaymentDeclinedError(PaymentGatewayError):
    """The gateway definitively refused the payment."""


class PaymentOutcomeUnknownError(PaymentGatewayError):
    """The call timed out or failed in transit; the charge may or may not exist."""


class WebhookVerificationError(PaymentGatewayError):
    """A webhook payload did not carry a valid Stripe signature."""


@dataclass
class PaymentLink:
    url: str
    gateway_order_id: str


@dataclass
class GatewayLineItem:
    name: str
    quantity: int
    unit_price_cents: int


@dataclass
class GatewayOrder:
    """The gateway's view of a hosted checkout."""

    id: str
    paid: bool
    amount_total_cents: int | None = None
    line_items: list[GatewayLineItem] = field(default_factory=list)
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class StripePaymentGateway:
    """Wraps the Stripe calls the order flow needs.

    Knows nothing about local order states. Every SDK call is blocking,
    so it runs in a worker thread under a timeout; a timeout surfaces as
    :class:`PaymentOutcomeUnknownError`.
    """

    def __init__(self, stripe_module: Any, currency: str = "usd", timeout_seconds: float = 10.0) -> None:
        self.stripe = stripe_module
        self.currency = currency
        self.timeout_seconds = timeout_seconds

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(partial(func, *args, **kwargs)),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise PaymentOutcomeUnknownError(
                f"Payment gateway did not answer within {self.timeout_seconds}s"
            ) from e
        except (stripe.error.CardError, stripe.error.InvalidRequestError) as e:
            raise PaymentDeclinedError(e.user_message or str(e)) from e
        except (
            stripe.error.APIConnectionError,
            stripe.error.APIError,
            stripe.error.RateLimitError,
        ) as e:
            raise PaymentOutcomeUnknownError(str(e)) from e
        except stripe.error.StripeError as e:
            raise PaymentDeclinedError(str(e)) from e

    async def capture(
        self,
        token: str,
        amount_cents: int,
        order_id: str,
        receipt_email: str | None = None,
    ) -> str:
        """Charge a tokenized card synchronously.

        Args:
            token: Payment method token obtained by the client.
            amount_cents: Exact order total to authorize and capture.
            order_id: Local order id, used for the idempotency key and metadata.
            receipt_email: Optional address for the gateway receipt.

        Returns:
            str: Gateway charge reference (PaymentIntent id).

        Raises:
            PaymentDeclinedError: If the charge was refused.
            PaymentOutcomeUnknownError: If the result could not be determined.
        """
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "payment_method": token,
            "confirm": True,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
            "metadata": {"order_id": order_id},
            "idempotency_key": f"capture-{order_id}",
        }
        if receipt_email:
            params["receipt_email"] = receipt_email

        intent = await self._call(self.stripe.PaymentIntent.create, **params)

        if intent.get("status") != "succeeded":
            logger.warning(
                "Payment intent %s for order %s ended in status %s",
                intent.get("id"),
                order_id,
                intent.get("status"),
            )
            raise PaymentDeclinedError(f"Payment not completed (status: {intent.get('status')})")

        logger.info("Captured %d cents for order %s as %s", amount_cents, order_id, intent["id"])
        return intent["id"]

    async def create_payment_link(
        self,
        order: OrderRecord,
        success_url: str,
        cancel_url: str,
    ) -> PaymentLink:
        """Create a hosted checkout page for an order.

        One line item per order item, plus tax as its own line so the
        hosted total matches the order total.
        """
        line_items: list[dict[str, Any]] = [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": item["name"]},
                    "unit_amount": item["unit_price_cents"],
                },
                "quantity": item["quantity"],
            }
            for item in order["items"]
        ]
        if order["tax_cents"]:
            line_items.append(
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": TAX_LINE_NAME},
                        "unit_amount": order["tax_cents"],
                    },
                    "quantity": 1,
                }
            )

        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {"order_id": order["id"], "location": order["location"]},
            "payment_intent_data": {"metadata": {"order_id": order["id"]}},
            "idempotency_key": f"link-{order['id']}",
        }
        customer_email = (order.get("customer_info") or {}).get("email")
        if customer_email:
            params["customer_email"] = customer_email

        session = await self._call(self.stripe.checkout.Session.create, **params)
        logger.info("Created hosted checkout %s for order %s", session["id"], order["id"])
        return PaymentLink(url=session["url"], gateway_order_id=session["id"])

    async def retrieve_order(self, gateway_order_id: str) -> GatewayOrder:
        """Fetch a hosted checkout with its line items and customer details."""
        session = await self._call(
            self.stripe.checkout.Session.retrieve,
            gateway_order_id,
            expand=["line_items"],
        )

        items = []
        for line in (session.get("line_items") or {}).get("data", []):
            if line.get("description") == TAX_LINE_NAME:
                continue
            quantity = line.get("quantity") or 1
            price = line.get("price") or {}
            unit = price.get("unit_amount")
            if unit is None:
                unit = (line.get("amount_total") or 0) // quantity
            items.append(
                GatewayLineItem(
                    name=line.get("description") or "",
                    quantity=quantity,
                    unit_price_cents=unit,
                )
            )

        details = session.get("customer_details") or {}
        return GatewayOrder(
            id=session["id"],
            paid=session.get("payment_status") == "paid",
            amount_total_cents=session.get("amount_total"),
            line_items=items,
            customer_name=details.get("name"),
            customer_email=details.get("email") or session.get("customer_email"),
            customer_phone=details.get("phone"),
            metadata=dict(session.get("metadata") or {}),
        )

    def verify_webhook(self, payload: bytes, signature: str, signing_secret: str) -> Any:
        """Verify a Stripe webhook signature and return the event.

        Args:
            payload: Raw webhook payload bytes.
            signature: Stripe-Signature header value.
            signing_secret: Endpoint signing secret (whsec_...).

        Returns:
            stripe.Event: The verified event.

        Raises:
            WebhookVerificationError: If the signature is invalid, too old, or
                the payload is not JSON.
        """
        try:
            return self.stripe.Webhook.construct_event(payload, signature, signing_secret)
        except stripe.error.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Invalid webhook signature: {e}") from e
        except ValueError as e:
            raise WebhookVerificationError(f"Invalid webhook payload: {e}") from e
