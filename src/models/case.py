"""
Case-related Pydantic models
"""

from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from models.enums import CaseStatus, OutcomeType, CasePaymentStatus, ViolationType


class Location(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: str = Field(..., min_length=2)
    county: Optional[str] = None


class Court(BaseModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None


class OfficerInfo(BaseModel):
    name: Optional[str] = None
    badge_number: Optional[str] = None


class SpeedDetails(BaseModel):
    actual_speed: Optional[int] = None
    speed_limit: Optional[int] = None
    zone: Optional[str] = None


class TicketDetails(BaseModel):
    violation_type: ViolationType
    ticket_number: Optional[str] = None
    issue_date: datetime
    location: Location
    court: Court
    officer_info: Optional[OfficerInfo] = None
    speed_details: Optional[SpeedDetails] = None
    fine: Decimal = Field(..., ge=0)
    points: Optional[int] = None
    ticket_image: str = Field(..., description="Storage reference of the uploaded ticket image")


class ClientInfo(BaseModel):
    is_cdl_driver: bool = False
    license_number: Optional[str] = None
    license_state: Optional[str] = None


class TimelineEntry(BaseModel):
    status: CaseStatus
    note: str = ""
    updated_by: Optional[str] = None
    timestamp: datetime


class CaseOutcome(BaseModel):
    type: OutcomeType
    final_fine: Optional[Decimal] = None
    final_points: Optional[int] = None
    notes: Optional[str] = None
    document_url: Optional[str] = None


class CasePricing(BaseModel):
    quoted_price: Decimal
    actual_price: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    refund_amount: Optional[Decimal] = None


class CasePayment(BaseModel):
    status: CasePaymentStatus = CasePaymentStatus.PENDING
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class ClientRating(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None
    rated_at: datetime


class CaseDocument(BaseModel):
    name: str
    type: Optional[str] = None
    url: str
    uploaded_by: Optional[str] = None
    uploaded_at: datetime


class Case(BaseModel):
    id: str
    case_number: str
    user_id: str
    lawyer_id: Optional[str] = None
    ticket_details: TicketDetails
    client_info: ClientInfo = Field(default_factory=ClientInfo)
    status: CaseStatus = CaseStatus.PENDING
    timeline: List[TimelineEntry] = Field(default_factory=list)
    court_date: Optional[datetime] = None
    outcome: Optional[CaseOutcome] = None
    pricing: CasePricing
    payment: CasePayment = Field(default_factory=CasePayment)
    documents: List[CaseDocument] = Field(default_factory=list)
    assignment_score: Optional[float] = None
    client_rating: Optional[ClientRating] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CaseCreateRequest(BaseModel):
    ticket_details: TicketDetails
    client_info: ClientInfo = Field(default_factory=ClientInfo)


class CaseStatusUpdateRequest(BaseModel):
    status: CaseStatus
    note: str = ""
    court_date: Optional[datetime] = None
    outcome: Optional[CaseOutcome] = None


class CaseReassignRequest(BaseModel):
    lawyer_id: str
    note: Optional[str] = None


class CaseRatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=2000)


class DocumentAttachRequest(BaseModel):
    name: str = Field(..., min_length=1)
    type: Optional[str] = None
    url: str = Field(..., min_length=1, description="Storage reference of the uploaded file")
