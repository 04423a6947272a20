"""
Stripe payment processor adapter

All processor calls go through ``PaymentGateway`` so services can be tested
against a fake. Amounts cross this boundary as Decimals and are converted to
integer minor units here.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from config.settings import B2B_CURRENCY
from models.business import SubscriptionPlan
from utils.helpers import to_minor_units

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the payment processor rejects or fails a call"""


async def _call(operation: str, fn, **kwargs) -> Any:
    try:
        return await asyncio.to_thread(fn, **kwargs)
    except stripe.StripeError as e:
        message = getattr(e, "user_message", None) or str(e)
        logger.error(f"Stripe {operation} failed: {message}")
        raise PaymentGatewayError(f"Stripe {operation} failed: {message}") from e


class PaymentGateway:
    """Stripe-backed processor"""

    async def create_payment_intent(self, amount: Decimal, currency: str,
                                    metadata: Dict[str, str]) -> Dict[str, Any]:
        intent = await _call(
            "payment intent creation",
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        return {"id": intent["id"], "client_secret": intent["client_secret"], "status": intent["status"]}

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        intent = await _call(
            "payment intent lookup",
            stripe.PaymentIntent.retrieve,
            id=payment_intent_id,
            expand=["payment_method"],
        )
        method = intent.get("payment_method")
        if not method or isinstance(method, str):
            # Not expanded
            method = {}
        card = method.get("card") or {}
        return {
            "id": intent["id"],
            "status": intent["status"],
            "latest_charge": intent.get("latest_charge"),
            "payment_method": {
                "type": method.get("type"),
                "last4": card.get("last4"),
                "brand": card.get("brand"),
            },
        }

    async def create_refund(self, payment_intent_id: str, amount: Decimal) -> Dict[str, Any]:
        refund = await _call(
            "refund",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=to_minor_units(amount),
        )
        return {"id": refund["id"], "status": refund["status"]}

    async def create_customer(self, email: str, name: str, metadata: Dict[str, str]) -> str:
        customer = await _call(
            "customer creation",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=metadata,
        )
        return customer["id"]

    async def create_checkout_session(self, customer_id: str, plan: SubscriptionPlan,
                                      business_id: str, success_url: str, cancel_url: str,
                                      metadata: Optional[Dict[str, str]] = None,
                                      include_setup_fee: bool = True) -> Dict[str, Any]:
        """Subscription checkout for a plan, with the setup fee as a one-off line"""
        line_items = [{
            "price_data": {
                "currency": B2B_CURRENCY,
                "product_data": {"name": plan.name, "description": plan.description or plan.name},
                "unit_amount": to_minor_units(plan.monthly_price),
                "recurring": {"interval": "month"},
            },
            "quantity": 1,
        }]
        if include_setup_fee and plan.setup_fee and plan.setup_fee > 0:
            line_items.append({
                "price_data": {
                    "currency": B2B_CURRENCY,
                    "product_data": {"name": f"{plan.name} setup fee"},
                    "unit_amount": to_minor_units(plan.setup_fee),
                },
                "quantity": 1,
            })

        session = await _call(
            "checkout session creation",
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=line_items,
            metadata={"business_id": business_id, "plan_id": plan.id, **(metadata or {})},
            success_url=f"{success_url}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url,
        )
        return {"id": session["id"], "url": session["url"]}

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        session = await _call("checkout session lookup", stripe.checkout.Session.retrieve, id=session_id)
        return {
            "id": session["id"],
            "payment_status": session.get("payment_status"),
            "customer": session.get("customer"),
            "subscription": session.get("subscription"),
            "payment_intent": session.get("payment_intent"),
            "invoice": session.get("invoice"),
            "metadata": dict(session.get("metadata") or {}),
        }

    async def charge_customer(self, customer_id: str, amount: Decimal, currency: str,
                              metadata: Dict[str, str]) -> Dict[str, Any]:
        """Off-session charge against the customer's default payment method"""
        customer = await _call("customer lookup", stripe.Customer.retrieve, id=customer_id)
        method = (customer.get("invoice_settings") or {}).get("default_payment_method")
        if not method:
            raise PaymentGatewayError("Customer has no default payment method")
        intent = await _call(
            "off-session charge",
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency,
            customer=customer_id,
            payment_method=method,
            off_session=True,
            confirm=True,
            metadata=metadata,
        )
        return {"id": intent["id"], "status": intent["status"], "latest_charge": intent.get("latest_charge")}

    async def cancel_subscription(self, subscription_id: str) -> Optional[str]:
        """Stop renewal; the subscription stays live until the current period ends"""
        subscription = await _call(
            "subscription cancellation",
            stripe.Subscription.modify,
            id=subscription_id,
            cancel_at_period_end=True,
        )
        return subscription.get("status")


# Global gateway instance
_payment_gateway = None


def get_payment_gateway() -> PaymentGateway:
    """Get the global payment gateway instance"""
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = PaymentGateway()
    return _payment_gateway
