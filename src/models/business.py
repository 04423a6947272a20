"""
B2B business account Pydantic models
"""

from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal
from pydantic import BaseModel, Field

from models.enums import EmployeeRole, BillingPaymentStatus


class SubscriptionPlan(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    monthly_price: Decimal
    setup_fee: Decimal = Decimal("0")
    fines_limit: Optional[int] = Field(None, description="Fines included per month; None means unlimited")
    employees_limit: Optional[int] = None
    is_active: bool = True
    display_order: int = 0


class BusinessAccount(BaseModel):
    id: str
    company_name: str
    company_registration: Optional[str] = None
    business_type: Optional[str] = None
    contact_email: str
    contact_phone: Optional[str] = None
    contact_person: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    plan_id: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    account_manager_id: str
    is_active: bool = False
    is_verified: bool = False
    auto_renew: bool = False
    subscription_status: str = "inactive"
    subscription_starts: Optional[datetime] = None
    subscription_renews: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BusinessAccountCreateRequest(BaseModel):
    company_name: str = Field(..., min_length=1)
    company_registration: Optional[str] = None
    business_type: Optional[str] = None
    contact_email: str = Field(..., min_length=3)
    contact_phone: Optional[str] = None
    contact_person: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    plan_id: str


class BusinessAccountUpdateRequest(BaseModel):
    company_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_person: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None


class BusinessEmployee(BaseModel):
    id: str
    business_id: str
    user_id: Optional[str] = None
    role: EmployeeRole = EmployeeRole.EMPLOYEE
    full_name: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    added_by: Optional[str] = None
    created_at: Optional[datetime] = None


class EmployeeCreateRequest(BaseModel):
    user_id: Optional[str] = None
    full_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    role: EmployeeRole = EmployeeRole.EMPLOYEE


class EmployeeUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[EmployeeRole] = None
    is_active: Optional[bool] = None


class MonthlyUsage(BaseModel):
    business_id: str
    year: int
    month: int = Field(..., ge=1, le=12)
    fines_submitted: int = 0
    fines_extra: int = 0
    extra_fine_cost: Decimal = Decimal("0")


class FineSubmissionRequest(BaseModel):
    case_id: Optional[str] = None
    fine_type_id: Optional[str] = None
    fine_amount: Decimal = Field(..., ge=0)
    employee_id: Optional[str] = None


class FineSubmission(BaseModel):
    id: str
    business_id: str
    case_id: Optional[str] = None
    fine_type_id: Optional[str] = None
    fine_amount: Decimal
    employee_id: Optional[str] = None
    included_in_plan: bool
    extra_charge: Decimal = Decimal("0")
    created_at: Optional[datetime] = None


class BusinessInvoice(BaseModel):
    """Billing history entry for a business account"""
    id: str
    business_id: str
    invoice_number: str
    billing_period_start: date
    billing_period_end: date
    plan_fee: Decimal
    setup_fee: Decimal = Decimal("0")
    extra_fines_count: int = 0
    extra_fines_cost: Decimal = Decimal("0")
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_status: BillingPaymentStatus = BillingPaymentStatus.PENDING
    payment_date: Optional[datetime] = None
    stripe_charge_id: Optional[str] = None
    created_at: Optional[datetime] = None


class MonthlyInvoiceRequest(BaseModel):
    year: int = Field(..., ge=2000)
    month: int = Field(..., ge=1, le=12)


class SubscriptionConfirmRequest(BaseModel):
    session_id: str
    business_id: str


class SubscriptionCancelRequest(BaseModel):
    reason: Optional[str] = None


class PlanCreateRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z0-9_]+$")
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    monthly_price: Decimal = Field(..., ge=0)
    setup_fee: Decimal = Field(Decimal("0"), ge=0)
    fines_limit: Optional[int] = Field(None, ge=0)
    employees_limit: Optional[int] = Field(None, ge=1)
    display_order: int = 999


class PlanUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class PlanPricingRequest(BaseModel):
    """Price and limit changes; an explicit null limit means unlimited"""
    monthly_price: Optional[Decimal] = Field(None, ge=0)
    setup_fee: Optional[Decimal] = Field(None, ge=0)
    fines_limit: Optional[int] = Field(None, ge=0)
    employees_limit: Optional[int] = Field(None, ge=1)


class PlanChangeRequest(BaseModel):
    plan_id: str


class PlanAnalytics(BaseModel):
    plan_id: str
    name: str
    active_businesses: int = 0
    monthly_revenue: Decimal = Decimal("0")


class SubscriptionAnalytics(BaseModel):
    active_businesses: int
    total_revenue: Decimal
    pending_revenue: Decimal
    monthly_recurring_revenue: Decimal
    annual_recurring_revenue: Decimal
    plans: List[PlanAnalytics]
