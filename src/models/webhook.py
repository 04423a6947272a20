"""
Webhook-related Pydantic models
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class StripeEventData(BaseModel):
    object: Dict[str, Any] = Field(default_factory=dict)


class StripeEvent(BaseModel):
    id: str
    type: str  # "checkout.session.completed", "invoice.payment_failed", ...
    created: Optional[int] = None
    livemode: bool = False
    data: StripeEventData

    @property
    def payload(self) -> Dict[str, Any]:
        return self.data.object


class WebhookResult(BaseModel):
    status: str  # "processed", "duplicate", "ignored", "not_found"
    event_id: str
    event_type: str
    detail: Optional[str] = None
