"""
Fine taxonomy Pydantic models: categories, subcategories, fine types, fee
structures and violations
"""

from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from models.enums import Language, SeverityLevel


class _Bilingual(BaseModel):
    """Entries carry English text plus an optional Arabic translation"""
    name: str
    name_ar: Optional[str] = None
    description: Optional[str] = None
    description_ar: Optional[str] = None

    def localized(self, language: Language):
        """Copy with the Arabic text swapped in where it exists"""
        if language != Language.AR:
            return self
        return self.model_copy(update={
            "name": self.name_ar or self.name,
            "description": self.description_ar or self.description,
        })


class FineCategory(_Bilingual):
    id: str
    icon: Optional[str] = None
    color: Optional[str] = None
    is_default: bool = False
    is_active: bool = True
    display_order: int = 0


class FineSubcategory(_Bilingual):
    id: str
    category_id: str
    is_active: bool = True
    display_order: int = 0
    fine_count: int = 0


class FeeStructure(BaseModel):
    fine_type_id: str
    min_fine: Optional[Decimal] = None
    max_fine: Optional[Decimal] = None
    admin_fee: Decimal = Decimal("0")
    penalty_fee_percentage: Decimal = Decimal("0")
    late_payment_fee: Decimal = Decimal("0")
    platform_commission_percentage: Decimal = Decimal("0")
    lawyer_commission_percentage: Decimal = Decimal("0")
    updated_at: Optional[datetime] = None


class FineRequirement(BaseModel):
    text: str
    text_ar: Optional[str] = None
    type: Optional[str] = None
    mandatory: bool = True


class FineResolution(BaseModel):
    method: str
    method_ar: Optional[str] = None
    description: Optional[str] = None
    timeline_days: Optional[int] = None


class FineViolation(BaseModel):
    id: str
    fine_type_id: str
    violation_name: str
    violation_code: Optional[str] = None
    description: Optional[str] = None
    default_fine_amount: Optional[Decimal] = None
    severity_level: SeverityLevel = SeverityLevel.MODERATE
    is_active: bool = True
    created_at: Optional[datetime] = None


class FineType(_Bilingual):
    id: str
    subcategory_id: Optional[str] = None
    category: str
    icon_url: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    requirements: List[FineRequirement] = Field(default_factory=list)
    resolutions: List[FineResolution] = Field(default_factory=list)
    is_active: bool = True
    display_order: int = 0
    fee_structure: Optional[FeeStructure] = None
    violations: List[FineViolation] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class FineTypeCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    name_ar: Optional[str] = None
    description: Optional[str] = None
    description_ar: Optional[str] = None
    category: str = Field(..., min_length=1)
    subcategory_id: Optional[str] = None
    icon_url: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    requirements: List[FineRequirement] = Field(default_factory=list)
    resolutions: List[FineResolution] = Field(default_factory=list)
    display_order: int = 0


class FineTypeUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    name_ar: Optional[str] = None
    description: Optional[str] = None
    description_ar: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1)
    subcategory_id: Optional[str] = None
    icon_url: Optional[str] = None
    keywords: Optional[List[str]] = None
    requirements: Optional[List[FineRequirement]] = None
    resolutions: Optional[List[FineResolution]] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class FeeStructureRequest(BaseModel):
    fine_type_id: str
    min_fine: Optional[Decimal] = Field(None, ge=0)
    max_fine: Optional[Decimal] = Field(None, ge=0)
    admin_fee: Decimal = Field(Decimal("0"), ge=0)
    penalty_fee_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    late_payment_fee: Decimal = Field(Decimal("0"), ge=0)
    platform_commission_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    lawyer_commission_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)


class ViolationCreateRequest(BaseModel):
    fine_type_id: str
    violation_name: str = Field(..., min_length=1)
    violation_code: Optional[str] = None
    description: Optional[str] = None
    default_fine_amount: Optional[Decimal] = Field(None, ge=0)
    severity_level: SeverityLevel = SeverityLevel.MODERATE
