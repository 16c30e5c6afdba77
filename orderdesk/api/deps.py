"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from orderdesk.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from orderdesk.api.middleware.error_handler import AuthorizationError
from orderdesk.core.container import ServiceContainer
from orderdesk.schemas.auth import UserContext
from orderdesk.services.admin_policy import AdminPolicy
from orderdesk.services.order_service import OrderIntakeService
from orderdesk.services.status_service import StatusTransitionManager
from orderdesk.services.webhook_service import WebhookIngestor


def get_container(request: Request) -> ServiceContainer:
    """Return the service container built during application startup."""
    return request.app.state.container


Container = Annotated[ServiceContainer, Depends(get_container)]


def get_intake_service(container: Container) -> OrderIntakeService:
    return container.intake


def get_transition_manager(container: Container) -> StatusTransitionManager:
    return container.transitions


def get_webhook_ingestor(container: Container) -> WebhookIngestor:
    return container.webhooks


def get_admin_policy(container: Container) -> AdminPolicy:
    return container.policy


IntakeService = Annotated[OrderIntakeService, Depends(get_intake_service)]
TransitionManager = Annotated[StatusTransitionManager, Depends(get_transition_manager)]
Ingestor = Annotated[WebhookIngestor, Depends(get_webhook_ingestor)]
Policy = Annotated[AdminPolicy, Depends(get_admin_policy)]


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the current user from the Authorization header.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_jwt(parts[1])
        return payload.to_user_context()
    except AuthError as e:
        detail = "Token has expired" if e.code == AuthErrorCode.TOKEN_EXPIRED else e.message
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


CurrentUser = Annotated[UserContext, Depends(get_current_user)]


async def get_optional_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext | None:
    """Like ``get_current_user`` but lets anonymous callers through.

    A header that is present but invalid is still rejected with 401.
    """
    if not authorization:
        return None
    return await get_current_user(authorization)


OptionalUser = Annotated[UserContext | None, Depends(get_optional_user)]


def get_order_token(
    x_order_token: Annotated[str | None, Header(description="Order access token from order creation")] = None,
) -> str | None:
    """Extract the guest order access token from the X-Order-Token header."""
    return x_order_token or None


OrderToken = Annotated[str | None, Depends(get_order_token)]


async def get_admin_user(user: CurrentUser, policy: Policy) -> UserContext:
    """Require an authenticated user with the admin role.

    Raises:
        AuthorizationError: 403 if the user is not an admin.
    """
    if not await policy.is_admin(user):
        raise AuthorizationError("Admin access required")
    return user


AdminUser = Annotated[UserContext, Depends(get_admin_user)]
