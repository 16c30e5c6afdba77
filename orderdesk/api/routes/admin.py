"""Kitchen/admin order management routes."""

from fastapi import APIRouter, Query

from orderdesk.api.deps import AdminUser, Container, TransitionManager
from orderdesk.models.order import OrderStatus
from orderdesk.schemas.order import (
    OrderListResponse,
    OrderResponse,
    StatusUpdateRequest,
    TimeEstimateRequest,
)
from orderdesk.services.status_service import Actor, ActorKind

router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders for the kitchen dashboard",
)
async def list_orders(
    admin: AdminUser,
    container: Container,
    status: OrderStatus | None = Query(default=None, description="Only orders in this status"),
    location: str | None = Query(default=None, description="Only orders for this location"),
    limit: int = Query(default=100, ge=1, le=500),
) -> OrderListResponse:
    orders = await container.orders.list_orders(
        status=status.value if status else None,
        location=location,
        limit=limit,
    )
    return OrderListResponse(items=[OrderResponse.from_record(order) for order in orders])


@router.patch(
    "/status",
    response_model=OrderResponse,
    summary="Update order status",
    description="Moves an order along its lifecycle. Skipping a stage or leaving a final state returns 409.",
    responses={
        404: {"description": "Order not found"},
        409: {"description": "Transition not allowed from the current status"},
    },
)
async def update_order_status(
    data: StatusUpdateRequest,
    admin: AdminUser,
    transitions: TransitionManager,
) -> OrderResponse:
    """Apply a manual status change from the dashboard.

    Args:
        data: Target status and optional estimate.
        admin: Authenticated admin.
        transitions: Status transition manager.

    Returns:
        OrderResponse: The order after the change.
    """
    result = await transitions.transition(
        data.order_id,
        data.status,
        Actor(ActorKind.ADMIN, str(admin.user_id)),
        estimated_minutes=data.estimated_minutes,
    )
    return OrderResponse.from_record(result.order)


@router.patch(
    "/time-estimate",
    response_model=OrderResponse,
    summary="Set completion estimate",
)
async def update_time_estimate(
    data: TimeEstimateRequest,
    admin: AdminUser,
    transitions: TransitionManager,
) -> OrderResponse:
    order = await transitions.set_estimate(
        data.order_id,
        data.estimated_minutes,
        Actor(ActorKind.ADMIN, str(admin.user_id)),
    )
    return OrderResponse.from_record(order)
