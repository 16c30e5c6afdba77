"""Explicit construction of the service graph."""

import logging
from dataclasses import dataclass

from supabase import Client

from orderdesk.core.config import Settings
from orderdesk.core.stripe import configure_stripe, get_stripe
from orderdesk.core.supabase import create_supabase_client
from orderdesk.services.admin_policy import AdminPolicy
from orderdesk.services.email_service import EmailService
from orderdesk.services.order_repository import OrderRepository, WebhookEventRepository
from orderdesk.services.order_service import OrderIntakeService
from orderdesk.services.payment_gateway import StripePaymentGateway
from orderdesk.services.status_service import StatusTransitionManager
from orderdesk.services.webhook_service import WebhookIngestor

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every collaborator the HTTP layer needs, built once per process."""

    database: Client
    orders: OrderRepository
    policy: AdminPolicy
    transitions: StatusTransitionManager
    intake: OrderIntakeService
    webhooks: WebhookIngestor


def build_container(settings: Settings, database: Client | None = None) -> ServiceContainer:
    """Wire the service graph from settings.

    Args:
        settings: Application settings.
        database: Optional pre-built Supabase client.

    Returns:
        ServiceContainer: Ready-to-use services.
    """
    database = database or create_supabase_client(settings)
    configure_stripe(settings)

    orders = OrderRepository(database)
    events = WebhookEventRepository(database)
    gateway = StripePaymentGateway(
        get_stripe(),
        currency=settings.stripe_currency,
        timeout_seconds=settings.payment_gateway_timeout_seconds,
    )
    notifier = EmailService(
        api_key=settings.resend_api_key,
        from_email=settings.email_from_address,
        frontend_url=settings.frontend_url,
        timeout_seconds=settings.notification_timeout_seconds,
        max_attempts=settings.notification_max_attempts,
    )
    policy = AdminPolicy(
        database,
        location_admins=settings.location_admins,
        fallback_email=settings.admin_notification_email,
    )
    transitions = StatusTransitionManager(orders, notifier, policy)
    intake = OrderIntakeService(
        orders,
        gateway,
        transitions,
        frontend_url=settings.frontend_url,
        currency=settings.stripe_currency,
        policy=policy,
    )
    webhooks = WebhookIngestor(
        orders,
        events,
        gateway,
        transitions,
        signing_secret=settings.stripe_webhook_secret,
        signature_header=settings.webhook_signature_header,
        verify_signatures=not settings.webhook_signature_bypass,
    )
    logger.info("Service container built for %s", settings.app_env)
    return ServiceContainer(
        database=database,
        orders=orders,
        policy=policy,
        transitions=transitions,
        intake=intake,
        webhooks=webhooks,
    )
