"""
Utility functions and helpers
"""

import calendar
import logging
import secrets
import string
import time
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal, ROUND_HALF_UP

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def utc_now() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def add_months(value: datetime, months: int = 1) -> datetime:
    """Shift a datetime by whole months, clamping the day to the target month's length"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def month_bounds(year: int, month: int) -> tuple:
    """First and last calendar day of a month"""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def to_money(value) -> Decimal:
    """Quantize an amount to cents, rounding half up"""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def round_half_up(value, places: int = 0) -> Decimal:
    """Round like Math.round (half away from zero for positives)"""
    exponent = Decimal(1).scaleb(-places)
    return Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to the processor's integer minor units"""
    return int(round_half_up(Decimal(amount) * 100))


def _random_suffix(length: int = 9) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_case_number() -> str:
    """Unique, human-readable case number: OTR-<epoch millis>-<random>"""
    return f"OTR-{int(time.time() * 1000)}-{_random_suffix(6)}"


def generate_transaction_id() -> str:
    return f"TXN-{int(time.time() * 1000)}-{_random_suffix()}"


def generate_invoice_number(now: datetime) -> str:
    return f"INV-{now.strftime('%Y%m%d')}-{_random_suffix(6)}"


def business_invoice_number(business_id: str, year: int, month: int) -> str:
    return f"INV-{business_id[:8]}-{year}{month:02d}"
