"""
Payment, refund and invoice Pydantic models
"""

from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal
from pydantic import BaseModel, Field

from models.enums import (
    PaymentType, PaymentStatus, PayoutStatus, RefundStatus, InvoiceStatus
)


class PaymentMethod(BaseModel):
    type: Optional[str] = None
    last4: Optional[str] = None
    brand: Optional[str] = None


class PlatformFee(BaseModel):
    amount: Decimal
    percentage: Decimal


class LawyerPayout(BaseModel):
    amount: Decimal
    status: PayoutStatus = PayoutStatus.PENDING
    paid_at: Optional[datetime] = None
    transaction_id: Optional[str] = None


class RefundRecord(BaseModel):
    amount: Decimal
    reason: Optional[str] = None
    status: RefundStatus = RefundStatus.PENDING
    requested_at: datetime
    processed_at: Optional[datetime] = None


class Payment(BaseModel):
    id: str
    case_id: Optional[str] = None
    user_id: str
    lawyer_id: Optional[str] = None
    amount: Decimal
    currency: str = "usd"
    type: PaymentType = PaymentType.CASE_PAYMENT
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_charge_id: Optional[str] = None
    stripe_refund_id: Optional[str] = None
    transaction_id: str
    platform_fee: Optional[PlatformFee] = None
    lawyer_payout: Optional[LawyerPayout] = None
    refund: Optional[RefundRecord] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentIntentRequest(BaseModel):
    case_id: str
    amount: Decimal = Field(..., gt=0)


class PaymentConfirmRequest(BaseModel):
    payment_intent_id: str
    payment_id: str


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to the full payment amount")


class RefundRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class InvoiceLineItem(BaseModel):
    description: str
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class InvoiceTotals(BaseModel):
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


class InvoiceCreateRequest(BaseModel):
    user_id: str
    lawyer_id: Optional[str] = None
    case_id: Optional[str] = None
    line_items: List[InvoiceLineItem] = Field(default_factory=list)
    tax_percentage: Decimal = Field(Decimal("0"), ge=0)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None
    terms: Optional[str] = None


class Invoice(BaseModel):
    id: str
    invoice_number: str
    user_id: str
    lawyer_id: Optional[str] = None
    case_id: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    line_items: List[InvoiceLineItem]
    subtotal: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal = Decimal("0")
    notes: Optional[str] = None
    terms: Optional[str] = None
    due_date: date
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class FinancialSummary(BaseModel):
    total_revenue: Decimal
    total_payouts: Decimal
    total_fees: Decimal
    pending_payouts: Decimal
    payment_count: int
    completed_payments: int
    pending_payments: int
    refunded_payments: int
