"""
User-related Pydantic models
"""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from config.settings import DEFAULT_CASES_PER_MONTH
from models.enums import UserRole


class UserQuota(BaseModel):
    """Monthly case submission allowance"""
    cases_per_month: int = Field(DEFAULT_CASES_PER_MONTH, ge=0)
    cases_used: int = Field(0, ge=0)
    reset_date: Optional[datetime] = None


class User(BaseModel):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    role: UserRole = UserRole.USER
    quota: UserQuota = Field(default_factory=UserQuota)
    created_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class QuotaUpdateRequest(BaseModel):
    cases_per_month: int = Field(..., ge=0)
