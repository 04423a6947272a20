"""
Configuration settings for the Off The Record backend
"""

import os
import logging
from decimal import Decimal

import resend
import stripe

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Environment configuration
ENV = os.getenv("ENV", "PROD")  # PROD or QA
DATABASE_URL = os.getenv("DATABASE_URL")
PORT = int(os.getenv("PORT", 8080))

# Supabase auth (tokens are issued by Supabase, we only validate them)
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")

# Payment processor
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
CHECKOUT_SUCCESS_URL = os.getenv("CHECKOUT_SUCCESS_URL", "http://localhost:3000/subscription/success")
CHECKOUT_CANCEL_URL = os.getenv("CHECKOUT_CANCEL_URL", "http://localhost:3000/subscription/cancel")

# Notifications
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
FROM_EMAIL = os.getenv("FROM_EMAIL", "no-reply@offtherecord.app")
ADMIN_ALERT_EMAILS = [email.strip() for email in os.getenv("ADMIN_ALERT_EMAILS", "admin@offtherecord.app").split(",")]

# Ledger policy. The two legacy payment flows disagreed on the platform cut
# (20% vs 10%); the business owner picks it here.
PLATFORM_FEE_PERCENT = Decimal(os.getenv("PLATFORM_FEE_PERCENT", "20"))
CASE_CURRENCY = os.getenv("CASE_CURRENCY", "usd")

# B2B billing
B2B_VAT_PERCENT = Decimal(os.getenv("B2B_VAT_PERCENT", "15"))
B2B_EXTRA_FINE_CHARGE = Decimal(os.getenv("B2B_EXTRA_FINE_CHARGE", "50"))
B2B_CURRENCY = os.getenv("B2B_CURRENCY", "sar")
B2B_LIMIT_WARNING_RATIO = Decimal(os.getenv("B2B_LIMIT_WARNING_RATIO", "0.8"))

# Consumer quota
DEFAULT_CASES_PER_MONTH = int(os.getenv("DEFAULT_CASES_PER_MONTH", 5))


class CasePricingConfig:
    """Quoted price table for new cases"""

    BASE_PRICE = Decimal(os.getenv("CASE_PRICE_BASE", "249"))
    CDL_PRICE = Decimal(os.getenv("CASE_PRICE_CDL", "299"))

    # Violation-specific prices take precedence over the CDL price
    VIOLATION_PRICES = {
        "dui": Decimal(os.getenv("CASE_PRICE_DUI", "499")),
        "reckless_driving": Decimal(os.getenv("CASE_PRICE_RECKLESS", "349")),
    }


# CORS settings
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

logger.info(f"Environment: {ENV}")

# Configure third-party clients
resend.api_key = RESEND_API_KEY
stripe.api_key = STRIPE_SECRET_KEY


def validate_settings():
    """Fail fast on missing configuration (called on application startup)"""
    if not DATABASE_URL:
        raise ValueError("DATABASE_URL environment variable is required")
    if not SUPABASE_JWT_SECRET:
        raise ValueError("SUPABASE_JWT_SECRET environment variable is required")
    if not STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not set - payment endpoints will fail")
    if not STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET not set - Stripe webhooks will be rejected")
    if not RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set - notifications will be skipped")
