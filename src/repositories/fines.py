"""
Fine taxonomy persistence: categories, subcategories, fine types, fee structures
and violations
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from models.fines import (
    FeeStructure, FineCategory, FineSubcategory, FineType, FineViolation
)
from repositories.base import BaseRepository, build_set_clause, jsonable, record_to_dict

logger = logging.getLogger(__name__)

_TYPE_UPDATABLE = {
    "name", "name_ar", "description", "description_ar", "category", "subcategory_id", "icon_url",
    "keywords", "requirements", "resolutions", "display_order", "is_active"
}

# Severity order for violation listings
_SEVERITY_ORDER = "array_position(ARRAY['minor', 'moderate', 'major', 'severe'], severity_level)"


def _build(model, record):
    row = record_to_dict(record)
    if row is None:
        return None
    return model(**row)


class FinesRepository(BaseRepository):

    # Browsing

    async def list_categories(self) -> List[FineCategory]:
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                "SELECT * FROM fine_categories WHERE is_active ORDER BY display_order, id"
            )
        return [_build(FineCategory, r) for r in records]

    async def get_category(self, category_id: str) -> Optional[FineCategory]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM fine_categories WHERE id = $1", category_id)
        return _build(FineCategory, record)

    async def list_subcategories(self, category_id: Optional[str] = None) -> List[FineSubcategory]:
        """Active subcategories with their active fine type counts"""
        where = "WHERE s.is_active" + (" AND s.category_id = $1" if category_id else "")
        params = [category_id] if category_id else []
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                f"""
                SELECT s.*, COUNT(t.id) FILTER (WHERE t.is_active) AS fine_count
                FROM fine_subcategories s
                LEFT JOIN fine_types t ON t.subcategory_id = s.id
                {where}
                GROUP BY s.id
                ORDER BY s.display_order, s.id
                """,
                *params
            )
        return [_build(FineSubcategory, r) for r in records]

    async def get_subcategory(self, subcategory_id: str) -> Optional[FineSubcategory]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM fine_subcategories WHERE id = $1", subcategory_id)
        return _build(FineSubcategory, record)

    async def _with_fees(self, conn, records) -> List[FineType]:
        types = [_build(FineType, r) for r in records]
        if not types:
            return types
        fees = await conn.fetch(
            "SELECT * FROM fee_structures WHERE fine_type_id = ANY($1::text[])", [t.id for t in types]
        )
        by_type = {f["fine_type_id"]: _build(FeeStructure, f) for f in fees}
        for fine_type in types:
            fine_type.fee_structure = by_type.get(fine_type.id)
        return types

    async def list_fine_types(self, subcategory_id: Optional[str] = None,
                              active_only: bool = True) -> List[FineType]:
        conditions = []
        params: List[Any] = []
        if active_only:
            conditions.append("is_active")
        if subcategory_id:
            params.append(subcategory_id)
            conditions.append(f"subcategory_id = ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                f"SELECT * FROM fine_types {where} ORDER BY display_order, name", *params
            )
            return await self._with_fees(conn, records)

    async def get_fine_type(self, fine_type_id: str) -> Optional[FineType]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM fine_types WHERE id = $1", fine_type_id)
            if record is None:
                return None
            return (await self._with_fees(conn, [record]))[0]

    async def search_by_keyword(self, query: str, limit: int) -> List[FineType]:
        """Active fine types with a search keyword containing ``query``"""
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                """
                SELECT * FROM fine_types
                WHERE is_active AND EXISTS (
                    SELECT 1 FROM unnest(keywords) AS keyword WHERE keyword ILIKE '%' || $1 || '%'
                )
                ORDER BY display_order, name
                LIMIT $2
                """,
                query, limit
            )
            return await self._with_fees(conn, records)

    async def search_by_text(self, query: str, limit: int) -> List[FineType]:
        """Active fine types whose name or description, in either language, contains ``query``"""
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                """
                SELECT * FROM fine_types
                WHERE is_active AND (
                    name ILIKE '%' || $1 || '%' OR description ILIKE '%' || $1 || '%'
                    OR name_ar ILIKE '%' || $1 || '%' OR description_ar ILIKE '%' || $1 || '%'
                )
                ORDER BY display_order, name
                LIMIT $2
                """,
                query, limit
            )
            return await self._with_fees(conn, records)

    # Administration

    async def create_fine_type(self, fine_type: FineType) -> FineType:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO fine_types (
                    id, subcategory_id, name, name_ar, description, description_ar, category,
                    icon_url, keywords, requirements, resolutions, is_active, display_order, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                RETURNING *
                """,
                fine_type.id, fine_type.subcategory_id, fine_type.name, fine_type.name_ar,
                fine_type.description, fine_type.description_ar, fine_type.category,
                fine_type.icon_url, fine_type.keywords, jsonable(fine_type.requirements),
                jsonable(fine_type.resolutions), fine_type.is_active, fine_type.display_order,
                fine_type.created_at
            )
        logger.info(f"Created fine type {fine_type.id} ({fine_type.name})")
        return _build(FineType, record)

    async def update_fine_type(self, fine_type_id: str, fields: Dict[str, Any]) -> Optional[FineType]:
        set_clause, values = build_set_clause(fields, _TYPE_UPDATABLE, start_index=2)
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                f"UPDATE fine_types SET {set_clause}, updated_at = NOW() WHERE id = $1 RETURNING *",
                fine_type_id, *values
            )
            if record is None:
                return None
            return (await self._with_fees(conn, [record]))[0]

    async def get_fee_structure(self, fine_type_id: str) -> Optional[FeeStructure]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM fee_structures WHERE fine_type_id = $1", fine_type_id)
        return _build(FeeStructure, record)

    async def upsert_fee_structure(self, fee: FeeStructure) -> Tuple[FeeStructure, bool]:
        """
        Returns:
            (stored fee structure, True when it was created rather than replaced)
        """
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO fee_structures (
                    fine_type_id, min_fine, max_fine, admin_fee, penalty_fee_percentage,
                    late_payment_fee, platform_commission_percentage, lawyer_commission_percentage,
                    updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, NOW())
                ON CONFLICT (fine_type_id) DO UPDATE SET
                    min_fine = EXCLUDED.min_fine,
                    max_fine = EXCLUDED.max_fine,
                    admin_fee = EXCLUDED.admin_fee,
                    penalty_fee_percentage = EXCLUDED.penalty_fee_percentage,
                    late_payment_fee = EXCLUDED.late_payment_fee,
                    platform_commission_percentage = EXCLUDED.platform_commission_percentage,
                    lawyer_commission_percentage = EXCLUDED.lawyer_commission_percentage,
                    updated_at = NOW()
                RETURNING *, (xmax = 0) AS inserted
                """,
                fee.fine_type_id, fee.min_fine, fee.max_fine, fee.admin_fee,
                fee.penalty_fee_percentage, fee.late_payment_fee,
                fee.platform_commission_percentage, fee.lawyer_commission_percentage
            )
        row = record_to_dict(record)
        inserted = row.pop("inserted")
        return FeeStructure(**row), inserted

    async def list_violations(self, fine_type_id: str) -> List[FineViolation]:
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                f"""
                SELECT * FROM fine_violations
                WHERE fine_type_id = $1 AND is_active
                ORDER BY {_SEVERITY_ORDER}, violation_name
                """,
                fine_type_id
            )
        return [_build(FineViolation, r) for r in records]

    async def create_violation(self, violation: FineViolation) -> FineViolation:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO fine_violations (
                    id, fine_type_id, violation_name, violation_code, description,
                    default_fine_amount, severity_level, is_active, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                RETURNING *
                """,
                violation.id, violation.fine_type_id, violation.violation_name,
                violation.violation_code, violation.description, violation.default_fine_amount,
                violation.severity_level.value, violation.is_active, violation.created_at
            )
        logger.info(f"Created violation {violation.violation_name} for fine type {violation.fine_type_id}")
        return _build(FineViolation, record)
