"""Order intake: validation, persistence and the payment path."""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from orderdesk.api.middleware.error_handler import NotFoundError, PaymentError, ValidationError
from orderdesk.models.order import (
    CENT,
    CustomerInfoRecord,
    OrderItemRecord,
    OrderRecord,
    OrderStatus,
    PaymentMethod,
    from_cents,
    to_cents,
)
from orderdesk.schemas.auth import UserContext
from orderdesk.schemas.order import OrderCreate
from orderdesk.services.admin_policy import AdminPolicy
from orderdesk.services.order_repository import OrderRepository
from orderdesk.services.payment_gateway import (
    PaymentDeclinedError,
    PaymentGatewayError,
    PaymentOutcomeUnknownError,
    StripePaymentGateway,
)
from orderdesk.services.status_service import Actor, ActorKind, StatusTransitionManager

logger = logging.getLogger(__name__)

CHECKOUT_ACTOR = Actor(ActorKind.CHECKOUT)
SYSTEM_ACTOR = Actor(ActorKind.SYSTEM)


@dataclass
class OrderCreateResult:
    order: OrderRecord
    payment_url: str | None = None


class OrderIntakeService:
    """Validates and persists new orders and drives their payment step."""

    def __init__(
        self,
        repository: OrderRepository,
        gateway: StripePaymentGateway,
        transitions: StatusTransitionManager,
        frontend_url: str,
        currency: str = "usd",
        policy: AdminPolicy | None = None,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.transitions = transitions
        self.frontend_url = frontend_url.rstrip("/")
        self.currency = currency
        self.policy = policy

    def validate(self, data: OrderCreate) -> str:
        """Check an order before anything is stored or charged.

        Args:
            data: Candidate order.

        Returns:
            str: The fulfilling location shared by all items.

        Raises:
            ValidationError: On the first inconsistency found.
        """
        if not data.items:
            raise ValidationError("Order must contain items")

        locations = {item.location for item in data.items}
        if len(locations) > 1:
            raise ValidationError(
                "All items must come from the same location",
                details=[{"loc": ["items"], "msg": ", ".join(sorted(locations)), "type": "mixed_locations"}],
            )
        location = locations.pop()
        if data.location and data.location != location:
            raise ValidationError(f"Items are from '{location}' but the order is for '{data.location}'")

        fractional = [
            name
            for name, amount in (
                ("subtotal", data.subtotal),
                ("tax", data.tax),
                ("total", data.total),
                *((f"items.{index}.unit_price", item.unit_price) for index, item in enumerate(data.items)),
            )
            if amount != amount.quantize(CENT)
        ]
        if fractional:
            raise ValidationError(
                "Amounts must be whole cents",
                details=[{"loc": name.split("."), "msg": "more than two decimal places", "type": "precision"} for name in fractional],
            )

        subtotal_cents = to_cents(data.subtotal)
        if to_cents(data.total) != subtotal_cents + to_cents(data.tax):
            raise ValidationError(
                f"Total {data.total} does not equal subtotal {data.subtotal} plus tax {data.tax}"
            )
        items_cents = sum(to_cents(item.unit_price) * item.quantity for item in data.items)
        if items_cents != subtotal_cents:
            raise ValidationError(f"Subtotal {data.subtotal} does not match the items ({from_cents(items_cents)})")

        customer = data.customer_info
        missing = [field for field in ("name", "email") if not (getattr(customer, field) or "").strip()]
        if data.payment_method == PaymentMethod.IN_STORE and not (customer.phone or "").strip():
            missing.append("phone")
        if missing:
            raise ValidationError(
                "Customer information is required",
                details=[{"loc": ["customer_info", field], "msg": "required", "type": "missing"} for field in missing],
            )

        if data.payment_method == PaymentMethod.ONLINE_DIRECT and not data.card_token:
            raise ValidationError("A card token is required for online payment")
        if data.payment_method != PaymentMethod.ONLINE_DIRECT and data.card_token:
            raise ValidationError(f"A card token cannot be used with {data.payment_method.value} payment")

        return location

    def _build_record(self, data: OrderCreate, location: str) -> OrderRecord:
        now = datetime.now(timezone.utc).isoformat()
        items: list[OrderItemRecord] = [
            {
                "name": item.name,
                "quantity": item.quantity,
                "unit_price_cents": to_cents(item.unit_price),
                "special_instructions": item.special_instructions,
                "location": item.location,
            }
            for item in data.items
        ]
        customer: CustomerInfoRecord = {
            "name": data.customer_info.name.strip(),
            "email": (data.customer_info.email or "").strip() or None,
            "phone": (data.customer_info.phone or "").strip() or None,
            "special_instructions": data.customer_info.special_instructions,
        }
        return {
            "id": str(uuid.uuid4()),
            "items": items,
            "customer_info": customer,
            "subtotal_cents": to_cents(data.subtotal),
            "tax_cents": to_cents(data.tax),
            "total_cents": to_cents(data.total),
            "currency": self.currency,
            "payment_method": data.payment_method.value,
            "payment_reference": None,
            "gateway_payment_id": None,
            "status": OrderStatus.PENDING_PAYMENT.value,
            "location": location,
            "estimated_completion_minutes": None,
            "access_token": secrets.token_urlsafe(32),
            "created_at": now,
            "updated_at": now,
        }

    async def create_order(self, data: OrderCreate) -> OrderCreateResult:
        """Validate, persist and start payment for a new order.

        Args:
            data: Candidate order.

        Returns:
            OrderCreateResult: Stored order and, for hosted checkout, the redirect URL.

        Raises:
            ValidationError: If the order is inconsistent (nothing is stored).
            PaymentError: If the payment step failed; the order is kept.
        """
        location = self.validate(data)
        order = await self.repository.insert(self._build_record(data, location))
        order_id = order["id"]
        logger.info(
            "Created order %s at %s (%s, %d cents)",
            order_id,
            location,
            data.payment_method.value,
            order["total_cents"],
        )

        if data.payment_method == PaymentMethod.IN_STORE:
            result = await self.transitions.transition(order_id, OrderStatus.PREPARING, CHECKOUT_ACTOR)
            return OrderCreateResult(order=result.order)

        if data.payment_method == PaymentMethod.ONLINE_DIRECT:
            return OrderCreateResult(order=await self._capture(order, data.card_token or ""))

        return await self._start_hosted_checkout(order)

    async def _capture(self, order: OrderRecord, token: str) -> OrderRecord:
        order_id = order["id"]
        try:
            reference = await self.gateway.capture(
                token,
                order["total_cents"],
                order_id,
                receipt_email=order["customer_info"].get("email"),
            )
        except PaymentOutcomeUnknownError as e:
            # Not marked failed: a charge carries metadata.order_id, so its
            # payment_intent.succeeded webhook can still settle the order
            logger.error("Capture outcome unknown for order %s, left pending: %s", order_id, e)
            raise PaymentError(
                "Payment could not be confirmed. Please check with the restaurant before retrying.",
                order_id=order_id,
                outcome_unknown=True,
            ) from e
        except PaymentDeclinedError as e:
            logger.warning("Capture declined for order %s: %s", order_id, e)
            await self.transitions.transition(order_id, OrderStatus.PAYMENT_FAILED, SYSTEM_ACTOR)
            raise PaymentError(f"Payment declined: {e}", order_id=order_id) from e

        result = await self.transitions.transition(
            order_id,
            OrderStatus.PREPARING,
            CHECKOUT_ACTOR,
            payment_reference=reference,
        )
        return result.order

    async def _start_hosted_checkout(self, order: OrderRecord) -> OrderCreateResult:
        order_id = order["id"]
        success_url = f"{self.frontend_url}/payment-return?status=success&order_id={order_id}"
        cancel_url = f"{self.frontend_url}/payment-return?status=cancelled&order_id={order_id}"
        try:
            link = await self.gateway.create_payment_link(order, success_url, cancel_url)
        except PaymentGatewayError as e:
            logger.error("Could not create payment link for order %s: %s", order_id, e)
            await self.transitions.transition(order_id, OrderStatus.CANCELLED, SYSTEM_ACTOR)
            raise PaymentError("Could not start online payment. Please try again.", order_id=order_id) from e

        updated = await self.repository.update_fields(
            order_id,
            {
                "payment_reference": link.gateway_order_id,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        return OrderCreateResult(order=updated or order, payment_url=link.url)

    async def confirm_payment_return(self, order_id: str) -> OrderRecord:
        """Reconcile an order after the customer returns from hosted checkout.

        The client only signals that the redirect happened; the gateway is
        asked whether the order was actually paid. Safe to call repeatedly
        and in either order with the payment webhook.

        Raises:
            NotFoundError: If the order does not exist.
            ValidationError: If the order did not use hosted checkout.
            PaymentError: If the gateway cannot be reached.
        """
        order = await self.repository.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order["payment_method"] != PaymentMethod.ONLINE_REDIRECT.value or not order.get("payment_reference"):
            raise ValidationError("Order was not paid through hosted checkout")
        if order["status"] != OrderStatus.PENDING_PAYMENT.value:
            return order

        try:
            gateway_order = await self.gateway.retrieve_order(order["payment_reference"])
        except PaymentGatewayError as e:
            logger.error("Could not verify hosted checkout for order %s: %s", order_id, e)
            raise PaymentError(
                "Payment status is not available yet", order_id=order_id, outcome_unknown=True
            ) from e

        if not gateway_order.paid:
            logger.info("Order %s returned from checkout but is not paid yet", order_id)
            return order

        result = await self.transitions.transition(
            order_id,
            OrderStatus.PREPARING,
            Actor(ActorKind.PAYMENT_RETURN),
        )
        return result.order

    async def get_order(self, order_id: str) -> OrderRecord:
        order = await self.repository.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def can_access_order(
        self,
        order: OrderRecord,
        user: UserContext | None = None,
        access_token: str | None = None,
    ) -> bool:
        """Check whether a caller may see or act on an order.

        Guests prove ownership with the access token handed out when the
        order was created. Signed-in customers match on email, and admins
        may access any order.

        Args:
            order: The stored order.
            user: Authenticated user, if a bearer token was sent.
            access_token: Value of the X-Order-Token header, if sent.

        Returns:
            bool: True if access is allowed.
        """
        stored_token = order.get("access_token")
        if access_token and stored_token and secrets.compare_digest(access_token, stored_token):
            return True
        if user is None:
            return False

        owner_email = ((order.get("customer_info") or {}).get("email") or "").strip().lower()
        if user.email and owner_email and user.email.strip().lower() == owner_email:
            return True
        if self.policy is not None and await self.policy.is_admin(user):
            return True

        logger.info("User %s denied access to order %s", user.user_id, order["id"])
        return False

    async def list_orders_for_customer(self, email: str) -> list[OrderRecord]:
        return await self.repository.list_orders(customer_email=email)
