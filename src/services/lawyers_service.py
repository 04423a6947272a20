"""
Lawyers service - registration, profiles, directory search and approval
"""

import logging

from database.connection import Database, get_database
from models.enums import CasePaymentStatus, CaseStatus
from models.lawyer import (
    AvailabilityUpdate, Lawyer, LawyerApprovalRequest, LawyerAvailability, LawyerPricing,
    LawyerProfileUpdate, LawyerRegistrationRequest, LawyerSearchQuery
)
from repositories.cases import CasesRepository
from repositories.lawyers import LawyersRepository
from services.base_service import BaseService, ServiceResult
from services.case_lifecycle import ACTIVE_STATUSES, TERMINAL_STATUSES
from utils.auth import AuthContext
from utils.helpers import new_id, to_money, utc_now

logger = logging.getLogger(__name__)

# Upper bound on cases scanned for the dashboard
DASHBOARD_CASE_LIMIT = 1000


class LawyersService(BaseService):
    """Service for lawyer profile operations"""

    def __init__(self, db: Database, lawyers: LawyersRepository, cases: CasesRepository):
        self.db = db
        self.lawyers = lawyers
        self.cases = cases

    async def register(self, actor: AuthContext, request: LawyerRegistrationRequest) -> ServiceResult:
        """
        Create the actor's lawyer profile, pending admin approval

        Args:
            actor: Registering user
            request: License, specializations and jurisdictions

        Returns:
            ServiceResult with the created (unapproved) profile
        """
        if not self.can(actor, "lawyers:register"):
            return self.forbidden("Not allowed to register as a lawyer")
        if await self.lawyers.get_by_user(actor.user_id):
            return self.invalid("Lawyer profile already exists for this user")
        if await self.lawyers.get_by_license(request.license_number):
            return self.invalid("License number is already registered")

        lawyer = Lawyer(
            id=new_id(),
            user_id=actor.user_id,
            email=actor.email,
            license_number=request.license_number,
            bar_association=request.bar_association,
            years_of_experience=request.years_of_experience,
            specializations=request.specializations,
            jurisdictions=request.jurisdictions,
            bio=request.bio,
            pricing=request.pricing or LawyerPricing(),
            bank_details=request.bank_details,
            availability=LawyerAvailability(),
            is_approved=False,
            created_at=utc_now()
        )
        try:
            created = await self.lawyers.create(lawyer)
        except Exception as e:
            return self.server_error("Lawyer registration", e)
        return ServiceResult.ok(created, message="Registration submitted for approval")

    async def get_own_profile(self, actor: AuthContext) -> ServiceResult:
        lawyer = await self.lawyers.get_by_user(actor.user_id)
        if lawyer is None:
            return self.not_found("Lawyer profile")
        return ServiceResult.ok(lawyer)

    async def update_profile(self, actor: AuthContext, request: LawyerProfileUpdate) -> ServiceResult:
        if not self.can(actor, "lawyers:manage_profile"):
            return self.forbidden("Not allowed to manage a lawyer profile")
        lawyer = await self.lawyers.get_by_user(actor.user_id)
        if lawyer is None:
            return self.not_found("Lawyer profile")

        fields = {}
        for name in ("bio", "years_of_experience", "specializations", "jurisdictions",
                     "max_cases", "pricing", "bank_details"):
            value = getattr(request, name)
            if value is not None:
                fields[name] = value
        if not fields:
            return self.invalid("No profile fields provided to update")
        if "max_cases" in fields and fields["max_cases"] < lawyer.availability.current_cases:
            return self.invalid("max_cases cannot be below the number of active cases")

        try:
            updated = await self.lawyers.update(lawyer.id, fields)
        except Exception as e:
            return self.server_error("Lawyer profile update", e)
        return ServiceResult.ok(updated)

    async def set_availability(self, actor: AuthContext, request: AvailabilityUpdate) -> ServiceResult:
        if not self.can(actor, "lawyers:manage_profile"):
            return self.forbidden("Not allowed to manage a lawyer profile")
        lawyer = await self.lawyers.get_by_user(actor.user_id)
        if lawyer is None:
            return self.not_found("Lawyer profile")
        updated = await self.lawyers.update(lawyer.id, {"is_available": request.is_available})
        logger.info(f"Lawyer {lawyer.id} availability set to {request.is_available}")
        return ServiceResult.ok(updated)

    async def get_public_profile(self, lawyer_id: str) -> ServiceResult:
        lawyer = await self.lawyers.get(lawyer_id)
        if lawyer is None or not lawyer.is_approved:
            return self.not_found("Lawyer")
        return ServiceResult.ok(lawyer.public_view())

    async def search(self, query: LawyerSearchQuery) -> ServiceResult:
        try:
            lawyers = await self.lawyers.search(query)
        except Exception as e:
            return self.server_error("Lawyer search", e)
        return ServiceResult.ok_list([lawyer.public_view() for lawyer in lawyers])

    async def list_pending_approval(self, actor: AuthContext) -> ServiceResult:
        if not self.can(actor, "lawyers:approve"):
            return self.forbidden("Only administrators can review lawyers")
        return ServiceResult.ok_list(await self.lawyers.list_pending_approval())

    async def review(self, actor: AuthContext, lawyer_id: str, request: LawyerApprovalRequest) -> ServiceResult:
        """Approve or reject a registration"""
        if not self.can(actor, "lawyers:approve"):
            return self.forbidden("Only administrators can review lawyers")
        lawyer = await self.lawyers.get(lawyer_id)
        if lawyer is None:
            return self.not_found("Lawyer")
        if not request.approved and not request.rejection_reason:
            return self.invalid("rejection_reason is required when rejecting")

        updated = await self.lawyers.set_approval(
            lawyer.id, request.approved, actor.user_id, utc_now(), request.rejection_reason
        )
        logger.info(f"Lawyer {lawyer.id} {'approved' if request.approved else 'rejected'} by {actor.user_id}")
        return ServiceResult.ok(updated)

    async def dashboard(self, actor: AuthContext) -> ServiceResult:
        """Case counts, paid revenue and rating for the actor's own practice"""
        lawyer = await self.lawyers.get_by_user(actor.user_id)
        if lawyer is None:
            return self.not_found("Lawyer profile")

        cases, total = await self.cases.list(0, DASHBOARD_CASE_LIMIT, lawyer_id=lawyer.id)
        active = sum(1 for c in cases if c.status in ACTIVE_STATUSES)
        completed = sum(1 for c in cases if c.status in TERMINAL_STATUSES)
        pending = sum(1 for c in cases if c.status == CaseStatus.PENDING)
        revenue = sum(
            (c.pricing.actual_price or c.pricing.quoted_price
             for c in cases if c.payment.status == CasePaymentStatus.PAID),
            to_money(0)
        )
        return ServiceResult.ok({
            "total_cases": total,
            "active_cases": active,
            "pending_cases": pending,
            "completed_cases": completed,
            "revenue": to_money(revenue),
            "rating": lawyer.rating,
            "statistics": lawyer.statistics,
            "availability": lawyer.availability,
        })


# Global lawyers service instance
_lawyers_service = None


def get_lawyers_service() -> LawyersService:
    """Get the global lawyers service instance"""
    global _lawyers_service
    if _lawyers_service is None:
        db = get_database()
        _lawyers_service = LawyersService(db, LawyersRepository(db), CasesRepository(db))
    return _lawyers_service
