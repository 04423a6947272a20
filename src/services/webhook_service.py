"""
Stripe webhook dispatch with event-id idempotency
"""

import logging

from database.connection import Database, get_database
from models.webhook import StripeEvent, WebhookResult
from repositories.events import WebhookEventsRepository
from services.billing_service import BillingService, get_billing_service
from services.payments_service import PaymentsService, get_payments_service

logger = logging.getLogger(__name__)

PAYMENT_EVENTS = {"payment_intent.succeeded", "payment_intent.payment_failed"}
SUBSCRIPTION_EVENTS = {
    "checkout.session.completed",
    "invoice.payment_failed",
    "invoice.payment_succeeded",
    "customer.subscription.deleted",
}


class StripeWebhookService:
    """Routes verified processor events to the payment ledger and B2B billing"""

    def __init__(self, db: Database, events: WebhookEventsRepository,
                 payments: PaymentsService, billing: BillingService):
        self.db = db
        self.events = events
        self.payments = payments
        self.billing = billing

    async def handle(self, event: StripeEvent) -> WebhookResult:
        """
        Apply an event exactly once

        The event id is recorded in the same transaction as its effects, so a
        failure rolls both back and the processor's retry is applied later.
        """
        if event.type not in PAYMENT_EVENTS | SUBSCRIPTION_EVENTS:
            logger.debug(f"Unhandled Stripe event: {event.type}")
            return WebhookResult(status="ignored", event_id=event.id, event_type=event.type)

        async with self.db.transaction():
            if not await self.events.record(event.id, event.type):
                logger.info(f"Stripe event {event.id} already processed")
                return WebhookResult(status="duplicate", event_id=event.id, event_type=event.type)

            if event.type in PAYMENT_EVENTS:
                status = await self.payments.handle_intent_event(event.type, event.payload)
            else:
                status = await self.billing.handle_subscription_event(event.type, event.payload)

        logger.info(f"Stripe event {event.id} ({event.type}): {status}")
        return WebhookResult(status=status, event_id=event.id, event_type=event.type)


# Global webhook service instance
_webhook_service = None


def get_webhook_service() -> StripeWebhookService:
    """Get the global webhook service instance"""
    global _webhook_service
    if _webhook_service is None:
        db = get_database()
        _webhook_service = StripeWebhookService(
            db, WebhookEventsRepository(db), get_payments_service(), get_billing_service()
        )
    return _webhook_service
