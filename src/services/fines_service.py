"""
Fines service - public fine catalogue and its administration
"""

import logging
from typing import Optional

from database.connection import Database, get_database
from models.enums import Language
from models.fines import (
    FeeStructure, FeeStructureRequest, FineType, FineTypeCreateRequest, FineTypeUpdateRequest,
    FineViolation, ViolationCreateRequest
)
from repositories.fines import FinesRepository
from services.base_service import BaseService, ServiceResult
from utils.auth import AuthContext
from utils.helpers import new_id, utc_now

logger = logging.getLogger(__name__)

SEARCH_MIN_LENGTH = 2
SEARCH_LIMIT = 20


class FinesService(BaseService):
    """Service for the fine taxonomy"""

    def __init__(self, db: Database, fines: FinesRepository):
        self.db = db
        self.fines = fines

    # Public catalogue

    async def list_categories(self, language: Language = Language.EN) -> ServiceResult:
        try:
            categories = await self.fines.list_categories()
        except Exception as e:
            return self.server_error("Fine category listing", e)
        return ServiceResult.ok_list([c.localized(language) for c in categories])

    async def list_subcategories(self, category_id: str, language: Language = Language.EN) -> ServiceResult:
        if await self.fines.get_category(category_id) is None:
            return self.not_found("Fine category")
        subcategories = await self.fines.list_subcategories(category_id)
        return ServiceResult.ok_list([s.localized(language) for s in subcategories])

    async def list_fine_types(self, subcategory_id: str, language: Language = Language.EN) -> ServiceResult:
        if await self.fines.get_subcategory(subcategory_id) is None:
            return self.not_found("Fine subcategory")
        fine_types = await self.fines.list_fine_types(subcategory_id)
        return ServiceResult.ok_list([t.localized(language) for t in fine_types])

    async def browse(self, language: Language = Language.EN) -> ServiceResult:
        """Every active category with its subcategories nested under it"""
        try:
            categories = await self.fines.list_categories()
            subcategories = await self.fines.list_subcategories()
        except Exception as e:
            return self.server_error("Fine catalogue", e)
        tree = []
        for category in categories:
            entry = category.localized(language).model_dump()
            entry["subcategories"] = [
                s.localized(language) for s in subcategories if s.category_id == category.id
            ]
            tree.append(entry)
        return ServiceResult.ok_list(tree)

    async def search(self, query: Optional[str], language: Language = Language.EN) -> ServiceResult:
        """
        Keyword search, falling back to names and descriptions

        Returns:
            ServiceResult with up to 20 matching fine types
        """
        query = (query or "").strip()
        if len(query) < SEARCH_MIN_LENGTH:
            return self.invalid(f"Search query must be at least {SEARCH_MIN_LENGTH} characters")
        try:
            found = await self.fines.search_by_keyword(query, SEARCH_LIMIT)
            if not found:
                found = await self.fines.search_by_text(query, SEARCH_LIMIT)
        except Exception as e:
            return self.server_error("Fine search", e)
        logger.debug(f"Fine search '{query}' matched {len(found)}")
        return ServiceResult.ok_list([t.localized(language) for t in found])

    async def get_fine_type(self, fine_type_id: str, language: Language = Language.EN) -> ServiceResult:
        """Fine type with its place in the catalogue"""
        fine_type = await self.fines.get_fine_type(fine_type_id)
        if fine_type is None:
            return self.not_found("Fine type")
        subcategory = None
        if fine_type.subcategory_id:
            subcategory = await self.fines.get_subcategory(fine_type.subcategory_id)
        category = await self.fines.get_category(subcategory.category_id) if subcategory else None
        return ServiceResult.ok({
            "fine_type": fine_type.localized(language),
            "subcategory": subcategory.localized(language) if subcategory else None,
            "category": category.localized(language) if category else None,
        })

    async def require_active(self, fine_type_id: str) -> Optional[FineType]:
        """The fine type when it exists and is active"""
        fine_type = await self.fines.get_fine_type(fine_type_id)
        if fine_type is None or not fine_type.is_active:
            return None
        return fine_type

    # Administration

    async def admin_list_fine_types(self, actor: AuthContext) -> ServiceResult:
        """Active fine types with their fee structures and violations"""
        if not self.can(actor, "fines:manage"):
            return self.forbidden("Only administrators can manage fine types")
        try:
            fine_types = await self.fines.list_fine_types()
            for fine_type in fine_types:
                fine_type.violations = await self.fines.list_violations(fine_type.id)
        except Exception as e:
            return self.server_error("Fine type listing", e)
        return ServiceResult.ok_list(fine_types)

    async def create_fine_type(self, actor: AuthContext, request: FineTypeCreateRequest) -> ServiceResult:
        if not self.can(actor, "fines:manage"):
            return self.forbidden("Only administrators can manage fine types")
        if request.subcategory_id and await self.fines.get_subcategory(request.subcategory_id) is None:
            return self.invalid("Fine subcategory not found")

        fine_type = FineType(id=new_id(), **request.model_dump(), created_at=utc_now())
        try:
            created = await self.fines.create_fine_type(fine_type)
        except Exception as e:
            return self.server_error("Fine type creation", e)
        logger.info(f"Fine type {created.id} created by {actor.user_id}")
        return ServiceResult.ok(created)

    async def update_fine_type(self, actor: AuthContext, fine_type_id: str,
                               request: FineTypeUpdateRequest) -> ServiceResult:
        if not self.can(actor, "fines:manage"):
            return self.forbidden("Only administrators can manage fine types")
        if await self.fines.get_fine_type(fine_type_id) is None:
            return self.not_found("Fine type")
        fields = request.model_dump(exclude_none=True)
        if not fields:
            return self.invalid("No fields provided to update")
        if fields.get("subcategory_id") and await self.fines.get_subcategory(fields["subcategory_id"]) is None:
            return self.invalid("Fine subcategory not found")
        try:
            updated = await self.fines.update_fine_type(fine_type_id, fields)
        except Exception as e:
            return self.server_error("Fine type update", e)
        logger.info(f"Fine type {fine_type_id} updated by {actor.user_id}: {sorted(fields)}")
        return ServiceResult.ok(updated)

    async def get_fee_structure(self, actor: AuthContext, fine_type_id: str) -> ServiceResult:
        if not self.can(actor, "fines:manage"):
            return self.forbidden("Only administrators can manage fee structures")
        fee = await self.fines.get_fee_structure(fine_type_id)
        if fee is None:
            return self.not_found("Fee structure")
        return ServiceResult.ok(fee)

    async def set_fee_structure(self, actor: AuthContext, request: FeeStructureRequest) -> ServiceResult:
        """Create or replace the fee structure of a fine type"""
        if not self.can(actor, "fines:manage"):
            return self.forbidden("Only administrators can manage fee structures")
        if await self.fines.get_fine_type(request.fine_type_id) is None:
            return self.not_found("Fine type")
        if request.min_fine is not None and request.max_fine is not None and request.min_fine > request.max_fine:
            return self.invalid("min_fine cannot exceed max_fine")
        if request.platform_commission_percentage + request.lawyer_commission_percentage > 100:
            return self.invalid("Platform and lawyer commission cannot exceed 100%")

        try:
            fee, created = await self.fines.upsert_fee_structure(FeeStructure(**request.model_dump()))
        except Exception as e:
            return self.server_error("Fee structure update", e)
        message = "Fee structure created" if created else "Fee structure updated"
        logger.info(f"{message} for fine type {request.fine_type_id} by {actor.user_id}")
        return ServiceResult.ok(fee, message=message)

    async def list_violations(self, actor: AuthContext, fine_type_id: str) -> ServiceResult:
        if not self.can(actor, "fines:manage"):
            return self.forbidden("Only administrators can manage violations")
        if await self.fines.get_fine_type(fine_type_id) is None:
            return self.not_found("Fine type")
        return ServiceResult.ok_list(await self.fines.list_violations(fine_type_id))

    async def create_violation(self, actor: AuthContext, request: ViolationCreateRequest) -> ServiceResult:
        if not self.can(actor, "fines:manage"):
            return self.forbidden("Only administrators can manage violations")
        if await self.require_active(request.fine_type_id) is None:
            return self.invalid("Fine type not found or inactive")

        violation = FineViolation(id=new_id(), **request.model_dump(), created_at=utc_now())
        try:
            created = await self.fines.create_violation(violation)
        except Exception as e:
            return self.server_error("Violation creation", e)
        return ServiceResult.ok(created)


# Global fines service instance
_fines_service = None


def get_fines_service() -> FinesService:
    """Get the global fines service instance"""
    global _fines_service
    if _fines_service is None:
        db = get_database()
        _fines_service = FinesService(db, FinesRepository(db))
    return _fines_service
