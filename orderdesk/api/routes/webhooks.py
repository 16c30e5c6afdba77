"""Webhook API routes for the payment processor."""

import logging

from fastapi import APIRouter, Request, status

from orderdesk.api.deps import Ingestor
from orderdesk.schemas.webhook import WebhookResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/payments",
    response_model=WebhookResult,
    status_code=status.HTTP_200_OK,
    summary="Handle payment processor webhooks",
    description="Receives signed payment events. Answers 200 for every verified delivery, including ignored and duplicate ones.",
    responses={401: {"description": "Signature missing or invalid"}},
)
async def payment_webhook(request: Request, ingestor: Ingestor) -> WebhookResult:
    """Handle a Stripe webhook delivery.

    The raw body is read before any parsing so the signature is checked
    against exactly the bytes that were signed.

    Args:
        request: FastAPI request object for reading raw body and headers.
        ingestor: Webhook ingestor.

    Returns:
        WebhookResult: Acknowledgement with the processing outcome.
    """
    payload = await request.body()
    signature = request.headers.get(ingestor.signature_header)
    logger.debug("Payment webhook received (%d bytes, signed=%s)", len(payload), bool(signature))

    result = await ingestor.handle(payload, signature)
    logger.info("Payment webhook %s (order=%s)", result.status, result.order_id)
    return result
