"""Order status state machine with notification side effects."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from orderdesk.api.middleware.error_handler import InvalidTransitionError, NotFoundError
from orderdesk.models.order import OrderRecord, OrderStatus, OrderUpdate
from orderdesk.services.admin_policy import AdminPolicy
from orderdesk.services.email_service import (
    NEW_ORDER_ALERT,
    ORDER_CONFIRMATION,
    STATUS_UPDATE,
    EmailService,
)
from orderdesk.services.order_repository import OrderRepository

logger = logging.getLogger(__name__)


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset(
        {OrderStatus.PREPARING, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PREPARING: frozenset(
        {OrderStatus.IN_PROGRESS, OrderStatus.READY, OrderStatus.CANCELLED}
    ),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.PAYMENT_FAILED: frozenset(),
}


class ActorKind(str, Enum):
    """Who asked for a status change."""

    ADMIN = "admin"
    CHECKOUT = "checkout"
    WEBHOOK = "webhook"
    PAYMENT_RETURN = "payment_return"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    kind: ActorKind
    identifier: str | None = None

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.identifier}" if self.identifier else self.kind.value


@dataclass
class TransitionResult:
    order: OrderRecord
    previous_status: OrderStatus
    changed: bool


def allowed_transitions(status: OrderStatus | str) -> frozenset[OrderStatus]:
    """Statuses reachable in one step from ``status``."""
    return TRANSITIONS[OrderStatus(status)]


def is_terminal(status: OrderStatus | str) -> bool:
    return not allowed_transitions(status)


class StatusTransitionManager:
    """Enforces the order lifecycle and triggers notifications.

    Each transition is a read, a legality check and a compare-and-set
    write keyed on the status that was read, so two callers racing from
    the same source status cannot both win. Notifications are sent only
    after the write is persisted and only by the caller whose write
    actually changed the status.
    """

    def __init__(
        self,
        repository: OrderRepository,
        notifier: EmailService,
        policy: AdminPolicy,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.policy = policy

    async def transition(
        self,
        order_id: str,
        target: OrderStatus,
        actor: Actor,
        estimated_minutes: int | None = None,
        payment_reference: str | None = None,
        gateway_payment_id: str | None = None,
    ) -> TransitionResult:
        """Move an order to ``target``.

        Args:
            order_id: The order's id.
            target: Desired status.
            actor: Who is requesting the change.
            estimated_minutes: Optional completion estimate written with the change.
            payment_reference: Optional gateway charge/order id written with the change.
            gateway_payment_id: Optional gateway payment id written with the change.

        Returns:
            TransitionResult: The order after the call and whether it changed.

        Raises:
            NotFoundError: If the order does not exist.
            InvalidTransitionError: If the edge is not allowed, or another
                caller moved the order first.
        """
        target = OrderStatus(target)
        order = await self.repository.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        current = OrderStatus(order["status"])
        if current == target:
            logger.info("Order %s already %s, nothing to do (actor=%s)", order_id, target.value, actor)
            return TransitionResult(order=order, previous_status=current, changed=False)

        if target not in TRANSITIONS[current]:
            logger.warning(
                "Rejected transition %s -> %s for order %s (actor=%s)",
                current.value,
                target.value,
                order_id,
                actor,
            )
            raise InvalidTransitionError(current.value, target.value)

        update: OrderUpdate = {
            "status": target.value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        if estimated_minutes is not None:
            update["estimated_completion_minutes"] = estimated_minutes
        if payment_reference is not None:
            update["payment_reference"] = payment_reference
        if gateway_payment_id is not None:
            update["gateway_payment_id"] = gateway_payment_id

        updated = await self.repository.compare_and_set_status(order_id, current.value, update)
        if updated is None:
            # Lost the race: someone else moved the order after our read
            latest = await self.repository.get(order_id)
            if latest is None:
                raise NotFoundError(f"Order {order_id} not found")
            if latest["status"] == target.value:
                logger.info("Order %s reached %s concurrently (actor=%s)", order_id, target.value, actor)
                return TransitionResult(order=latest, previous_status=current, changed=False)
            logger.warning(
                "Stale transition %s -> %s for order %s, now %s (actor=%s)",
                current.value,
                target.value,
                order_id,
                latest["status"],
                actor,
            )
            raise InvalidTransitionError(latest["status"], target.value)

        logger.info(
            "Order %s moved %s -> %s (actor=%s)",
            order_id,
            current.value,
            target.value,
            actor,
        )
        await self._notify(updated, target, actor)
        return TransitionResult(order=updated, previous_status=current, changed=True)

    async def set_estimate(self, order_id: str, minutes: int, actor: Actor) -> OrderRecord:
        """Update the completion estimate without touching the status.

        Raises:
            NotFoundError: If the order does not exist.
        """
        updated = await self.repository.update_fields(
            order_id,
            {
                "estimated_completion_minutes": minutes,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        if updated is None:
            raise NotFoundError(f"Order {order_id} not found")
        logger.info("Order %s estimate set to %d minutes (actor=%s)", order_id, minutes, actor)
        return updated

    async def _notify(self, order: OrderRecord, target: OrderStatus, actor: Actor) -> None:
        """Best-effort emails for a persisted transition. Never raises."""
        if target == OrderStatus.PREPARING:
            messages = [(ORDER_CONFIRMATION, (order.get("customer_info") or {}).get("email"))]
            messages += [(NEW_ORDER_ALERT, email) for email in self.policy.admin_recipients(order["location"])]
        elif actor.kind == ActorKind.ADMIN:
            messages = [(STATUS_UPDATE, (order.get("customer_info") or {}).get("email"))]
        else:
            return

        for template, recipient in messages:
            if not recipient:
                logger.warning("No recipient for %s email on order %s", template, order["id"])
                continue
            try:
                sent = await self.notifier.send(template, recipient, order)
            except Exception:
                logger.exception("Notifier raised while sending %s for order %s", template, order["id"])
                sent = False
            if not sent:
                logger.warning(
                    "Order %s is %s but the %s email to %s was not delivered",
                    order["id"],
                    target.value,
                    template,
                    recipient,
                )
