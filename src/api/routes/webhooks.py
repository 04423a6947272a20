"""
Webhook API routes
Signature verification stays in the route; event effects go through the service layer.
"""

import logging
from typing import Any, Dict
from fastapi import APIRouter, Depends, HTTPException

from models.webhook import StripeEvent
from services.webhook_service import StripeWebhookService, get_webhook_service
from utils.webhook_verification import verify_stripe_webhook

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def handle_stripe_webhook(
    payload: Dict[str, Any] = Depends(verify_stripe_webhook),
    service: StripeWebhookService = Depends(get_webhook_service)
):
    """
    Handle Stripe webhooks (payment_intent.*, checkout.session.completed,
    invoice.payment_*, customer.subscription.deleted)

    Any 5xx makes Stripe redeliver the event; replays of an applied event
    are acknowledged as duplicates.
    """
    try:
        event = StripeEvent(**payload)
    except ValueError as e:
        logger.error(f"Malformed Stripe event: {e}")
        raise HTTPException(status_code=400, detail="Malformed event")

    logger.info(f"Stripe webhook received: type={event.type}, id={event.id}")

    try:
        result = await service.handle(event)
    except Exception as e:
        logger.error(f"Stripe webhook {event.id} processing failed: {e}")
        raise HTTPException(status_code=500, detail=f"Webhook processing failed: {str(e)}")

    return {"received": True, **result.model_dump()}
