"""
Lawyer-related Pydantic models
"""

from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, Field

from models.enums import Specialization


class Jurisdiction(BaseModel):
    state: str
    counties: List[str] = Field(default_factory=list)
    courts: List[str] = Field(default_factory=list)


class LawyerRating(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class LawyerStatistics(BaseModel):
    total_cases: int = 0
    cases_won: int = 0
    cases_dismissed: int = 0
    cases_reduced: int = 0
    success_rate: int = 0


class LawyerAvailability(BaseModel):
    is_available: bool = True
    max_cases: int = Field(20, ge=1)
    current_cases: int = Field(0, ge=0)


class LawyerPricing(BaseModel):
    base_fee: Decimal = Decimal("249")
    dui: Optional[Decimal] = None
    misdemeanor: Optional[Decimal] = None
    cdl: Optional[Decimal] = None


class BankDetails(BaseModel):
    account_number: Optional[str] = None
    routing_number: Optional[str] = None
    account_holder_name: Optional[str] = None


class Lawyer(BaseModel):
    id: str
    user_id: str
    full_name: str = ""
    email: Optional[str] = None
    license_number: str
    bar_association: str
    years_of_experience: int = Field(0, ge=0)
    specializations: List[Specialization] = Field(default_factory=list)
    jurisdictions: List[Jurisdiction] = Field(default_factory=list)
    bio: Optional[str] = Field(None, max_length=1000)
    rating: LawyerRating = Field(default_factory=LawyerRating)
    statistics: LawyerStatistics = Field(default_factory=LawyerStatistics)
    availability: LawyerAvailability = Field(default_factory=LawyerAvailability)
    pricing: LawyerPricing = Field(default_factory=LawyerPricing)
    bank_details: Optional[BankDetails] = None
    is_approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def covers_state(self, state: str) -> bool:
        return any(j.state == state for j in self.jurisdictions)

    def has_capacity(self) -> bool:
        return self.availability.current_cases < self.availability.max_cases

    def public_view(self) -> dict:
        """Serializable profile with bank details stripped"""
        return self.model_dump(mode="json", exclude={"bank_details"})


class LawyerRegistrationRequest(BaseModel):
    license_number: str = Field(..., min_length=1)
    bar_association: str = Field(..., min_length=1)
    years_of_experience: int = Field(..., ge=0)
    specializations: List[Specialization] = Field(..., min_length=1)
    jurisdictions: List[Jurisdiction] = Field(..., min_length=1)
    bio: Optional[str] = Field(None, max_length=1000)
    pricing: Optional[LawyerPricing] = None
    bank_details: Optional[BankDetails] = None


class LawyerProfileUpdate(BaseModel):
    bio: Optional[str] = Field(None, max_length=1000)
    years_of_experience: Optional[int] = Field(None, ge=0)
    specializations: Optional[List[Specialization]] = None
    jurisdictions: Optional[List[Jurisdiction]] = None
    max_cases: Optional[int] = Field(None, ge=1)
    pricing: Optional[LawyerPricing] = None
    bank_details: Optional[BankDetails] = None


class AvailabilityUpdate(BaseModel):
    is_available: bool


class LawyerApprovalRequest(BaseModel):
    approved: bool
    rejection_reason: Optional[str] = None


class LawyerSortField(str, Enum):
    RATING = "rating"
    EXPERIENCE = "experience"
    SUCCESS = "success"


class LawyerSearchQuery(BaseModel):
    """Search parameters for the public lawyer directory"""
    state: Optional[str] = Field(None, description="Jurisdiction state, e.g. WA")
    specialization: Optional[Specialization] = None
    min_rating: Optional[float] = Field(None, ge=0, le=5)
    sort_by: LawyerSortField = LawyerSortField.RATING
    limit: int = Field(20, ge=1, le=50)
