"""Customer-facing order API routes."""

import logging

from fastapi import APIRouter, HTTPException, status

from orderdesk.api.deps import CurrentUser, IntakeService, OptionalUser, OrderToken
from orderdesk.api.middleware.error_handler import AuthorizationError
from orderdesk.models.order import OrderRecord
from orderdesk.schemas.auth import UserContext
from orderdesk.schemas.order import (
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
)
from orderdesk.services.order_service import OrderIntakeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Validates and stores an order, then captures payment, starts hosted checkout, or confirms an in-store order.",
    responses={
        400: {"description": "Order is inconsistent or incomplete"},
        402: {"description": "Payment declined or outcome unknown; the order is kept"},
    },
)
async def create_order(data: OrderCreate, service: IntakeService) -> OrderCreateResponse:
    """Create an order.

    Args:
        data: Order payload.
        service: Order intake service.

    Returns:
        OrderCreateResponse: Order id, status and payment handle.
    """
    result = await service.create_order(data)
    return OrderCreateResponse(
        order_id=result.order["id"],
        status=result.order["status"],
        payment_url=result.payment_url,
        payment_reference=result.order.get("payment_reference"),
        access_token=result.order.get("access_token"),
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List my orders",
    description="Returns the authenticated customer's orders, newest first.",
)
async def list_my_orders(user: CurrentUser, service: IntakeService) -> OrderListResponse:
    if not user.email:
        return OrderListResponse(items=[])
    orders = await service.list_orders_for_customer(user.email)
    return OrderListResponse(items=[OrderResponse.from_record(order) for order in orders])


async def _get_order_for_caller(
    order_id: str,
    service: OrderIntakeService,
    user: UserContext | None,
    token: str | None,
) -> OrderRecord:
    """Fetch an order, raising unless the caller owns it or is an admin."""
    if user is None and not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in or provide the order access token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    order = await service.get_order(order_id)
    if not await service.can_access_order(order, user=user, access_token=token):
        raise AuthorizationError("You don't have access to this order")
    return order


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    description="Readable by the customer who placed the order (bearer token or X-Order-Token) and by admins.",
    responses={401: {"description": "No credentials"}, 403: {"description": "Not your order"}},
)
async def get_order(
    order_id: str,
    service: IntakeService,
    user: OptionalUser,
    token: OrderToken,
) -> OrderResponse:
    order = await _get_order_for_caller(order_id, service, user, token)
    return OrderResponse.from_record(order)


@router.post(
    "/{order_id}/payment-return",
    response_model=OrderResponse,
    summary="Confirm return from hosted checkout",
    description="Called after the hosted payment page redirects back. The payment is verified with the gateway before the order moves on.",
    responses={401: {"description": "No credentials"}, 403: {"description": "Not your order"}},
)
async def confirm_payment_return(
    order_id: str,
    service: IntakeService,
    user: OptionalUser,
    token: OrderToken,
) -> OrderResponse:
    await _get_order_for_caller(order_id, service, user, token)
    order = await service.confirm_payment_return(order_id)
    return OrderResponse.from_record(order)
