"""
Webhook verification utilities for Stripe events
"""

import json
import logging
from typing import Any, Dict

import stripe
from fastapi import HTTPException, Request

from config.settings import STRIPE_WEBHOOK_SECRET

logger = logging.getLogger(__name__)


async def verify_stripe_webhook(request: Request) -> Dict[str, Any]:
    """
    Verify a Stripe webhook signature and return the event payload.

    Args:
        request: FastAPI Request object containing headers and raw body

    Returns:
        Dict[str, Any]: Verified event (id, type, data.object, ...)

    Raises:
        HTTPException: 400 if verification fails, 500 if secret not configured
    """
    if not STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET environment variable not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.error("Missing Stripe-Signature header")
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    payload = await request.body()
    try:
        event = stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid webhook payload")
    except stripe.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Webhook verification failed")

    logger.debug(f"Webhook signature verification successful for event {event['id']}")
    return json.loads(payload)
