"""Stripe SDK configuration."""

import logging

import stripe

from orderdesk.core.config import Settings

logger = logging.getLogger(__name__)


def configure_stripe(settings: Settings) -> None:
    """Configure Stripe SDK with API key from settings.

    This should be called once at application startup.
    If Stripe keys are not configured, Stripe operations will fail with clear errors.

    Args:
        settings: Application settings.
    """
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
        # Retries reuse the same idempotency key, so a retried capture never charges twice
        stripe.max_network_retries = 2
        if settings.is_stripe_test_mode:
            logger.info("Stripe configured with test keys")
    else:
        logger.warning("Stripe secret key not configured. Online payments will not work.")


def get_stripe() -> stripe:
    """Get the configured Stripe module.

    Returns:
        stripe: The Stripe module with API key configured.

    Note:
        Stripe SDK uses module-level configuration, so this returns
        the stripe module itself. Ensure configure_stripe() has been
        called before using Stripe API calls.
    """
    return stripe
