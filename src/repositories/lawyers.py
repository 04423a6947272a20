"""
Lawyer profile persistence
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.lawyer import (
    Lawyer, LawyerAvailability, LawyerRating, LawyerSearchQuery, LawyerSortField,
    LawyerStatistics
)
from repositories.base import BaseRepository, build_set_clause, jsonable, record_to_dict

logger = logging.getLogger(__name__)

_SELECT = """
    SELECT l.*, p.first_name, p.last_name, p.email
    FROM lawyers l
    JOIN profiles p ON p.id = l.user_id
"""

_UPDATABLE = {
    "bio", "years_of_experience", "specializations", "jurisdictions", "max_cases",
    "pricing", "bank_details", "is_available", "is_approved", "approved_by",
    "approved_at", "rejection_reason"
}

_SORT_COLUMNS = {
    LawyerSortField.RATING: "l.rating_average DESC",
    LawyerSortField.EXPERIENCE: "l.years_of_experience DESC",
    LawyerSortField.SUCCESS: "l.success_rate DESC",
}


def _to_lawyer(record) -> Optional[Lawyer]:
    row = record_to_dict(record)
    if row is None:
        return None
    full_name = f"{row.get('first_name') or ''} {row.get('last_name') or ''}".strip()
    return Lawyer(
        id=row["id"],
        user_id=row["user_id"],
        full_name=full_name,
        email=row.get("email"),
        license_number=row["license_number"],
        bar_association=row["bar_association"],
        years_of_experience=row["years_of_experience"],
        specializations=row["specializations"] or [],
        jurisdictions=row["jurisdictions"] or [],
        bio=row["bio"],
        rating=LawyerRating(average=row["rating_average"], count=row["rating_count"]),
        statistics=LawyerStatistics(
            total_cases=row["total_cases"],
            cases_won=row["cases_won"],
            cases_dismissed=row["cases_dismissed"],
            cases_reduced=row["cases_reduced"],
            success_rate=row["success_rate"]
        ),
        availability=LawyerAvailability(
            is_available=row["is_available"],
            max_cases=row["max_cases"],
            current_cases=row["current_cases"]
        ),
        pricing=row["pricing"] or {},
        bank_details=row["bank_details"],
        is_approved=row["is_approved"],
        approved_by=row["approved_by"],
        approved_at=row["approved_at"],
        rejection_reason=row["rejection_reason"],
        created_at=row["created_at"]
    )


class LawyersRepository(BaseRepository):

    async def get(self, lawyer_id: str, for_update: bool = False) -> Optional[Lawyer]:
        """Fetch one lawyer; ``for_update`` locks the row inside a transaction"""
        query = _SELECT + " WHERE l.id = $1"
        if for_update:
            query += " FOR UPDATE OF l"
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(query, lawyer_id)
        return _to_lawyer(record)

    async def get_by_user(self, user_id: str) -> Optional[Lawyer]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(_SELECT + " WHERE l.user_id = $1", user_id)
        return _to_lawyer(record)

    async def get_by_license(self, license_number: str) -> Optional[Lawyer]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(_SELECT + " WHERE l.license_number = $1", license_number)
        return _to_lawyer(record)

    async def create(self, lawyer: Lawyer) -> Lawyer:
        async with self.db.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO lawyers (
                    id, user_id, license_number, bar_association, years_of_experience,
                    specializations, jurisdictions, bio, pricing, bank_details,
                    max_cases, is_available, is_approved, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                """,
                lawyer.id, lawyer.user_id, lawyer.license_number, lawyer.bar_association,
                lawyer.years_of_experience, [s.value for s in lawyer.specializations],
                jsonable(lawyer.jurisdictions), lawyer.bio, jsonable(lawyer.pricing),
                jsonable(lawyer.bank_details), lawyer.availability.max_cases,
                lawyer.availability.is_available, lawyer.is_approved, lawyer.created_at
            )
        logger.info(f"Created lawyer profile {lawyer.id} for user {lawyer.user_id}")
        return await self.get(lawyer.id)

    async def update(self, lawyer_id: str, fields: Dict[str, Any]) -> Optional[Lawyer]:
        if "specializations" in fields and fields["specializations"] is not None:
            fields = {**fields, "specializations": [getattr(s, "value", s) for s in fields["specializations"]]}
        set_clause, values = build_set_clause(fields, _UPDATABLE, start_index=2)
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                f"UPDATE lawyers SET {set_clause}, updated_at = NOW() WHERE id = $1 RETURNING id",
                lawyer_id, *values
            )
        if record is None:
            return None
        return await self.get(lawyer_id)

    async def find_candidates(self, state: str, specialization: Optional[str] = None) -> List[Lawyer]:
        """
        Approved, available lawyers with spare capacity licensed in ``state``

        Args:
            state: Jurisdiction state of the ticket
            specialization: Restrict to lawyers with this specialization (optional)

        Returns:
            Candidates in a stable order (oldest profile first)
        """
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                _SELECT + """
                WHERE l.is_approved AND l.is_available
                  AND l.current_cases < l.max_cases
                  AND EXISTS (
                      SELECT 1 FROM jsonb_array_elements(l.jurisdictions) j
                      WHERE j->>'state' = $1
                  )
                  AND ($2::text IS NULL OR $2 = ANY(l.specializations))
                ORDER BY l.created_at, l.id
                """,
                state, specialization
            )
        return [_to_lawyer(r) for r in records]

    async def reserve_capacity(self, lawyer_id: str) -> bool:
        """Take one capacity slot; False when the lawyer filled up or went unavailable"""
        async with self.db.acquire() as conn:
            current = await conn.fetchval(
                """
                UPDATE lawyers SET current_cases = current_cases + 1, updated_at = NOW()
                WHERE id = $1 AND is_approved AND is_available AND current_cases < max_cases
                RETURNING current_cases
                """,
                lawyer_id
            )
        return current is not None

    async def release_capacity(self, lawyer_id: str):
        async with self.db.acquire() as conn:
            await conn.execute(
                """
                UPDATE lawyers SET current_cases = GREATEST(current_cases - 1, 0), updated_at = NOW()
                WHERE id = $1
                """,
                lawyer_id
            )

    async def save_statistics(self, lawyer_id: str, stats: LawyerStatistics):
        async with self.db.acquire() as conn:
            await conn.execute(
                """
                UPDATE lawyers
                SET total_cases = $2, cases_won = $3, cases_dismissed = $4,
                    cases_reduced = $5, success_rate = $6, updated_at = NOW()
                WHERE id = $1
                """,
                lawyer_id, stats.total_cases, stats.cases_won, stats.cases_dismissed,
                stats.cases_reduced, stats.success_rate
            )

    async def save_rating(self, lawyer_id: str, rating: LawyerRating):
        async with self.db.acquire() as conn:
            await conn.execute(
                "UPDATE lawyers SET rating_average = $2, rating_count = $3, updated_at = NOW() WHERE id = $1",
                lawyer_id, rating.average, rating.count
            )

    async def search(self, query: LawyerSearchQuery) -> List[Lawyer]:
        """Public directory search over approved lawyers"""
        conditions = ["l.is_approved"]
        params: List[Any] = []
        if query.state:
            params.append(query.state)
            conditions.append(
                f"EXISTS (SELECT 1 FROM jsonb_array_elements(l.jurisdictions) j WHERE j->>'state' = ${len(params)})"
            )
        if query.specialization:
            params.append(query.specialization.value)
            conditions.append(f"${len(params)} = ANY(l.specializations)")
        if query.min_rating is not None:
            params.append(query.min_rating)
            conditions.append(f"l.rating_average >= ${len(params)}")
        params.append(query.limit)

        sql = (
            _SELECT
            + " WHERE " + " AND ".join(conditions)
            + f" ORDER BY {_SORT_COLUMNS[query.sort_by]}, l.id LIMIT ${len(params)}"
        )
        async with self.db.acquire() as conn:
            records = await conn.fetch(sql, *params)
        return [_to_lawyer(r) for r in records]

    async def list_pending_approval(self) -> List[Lawyer]:
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                _SELECT + " WHERE NOT l.is_approved AND l.rejection_reason IS NULL ORDER BY l.created_at"
            )
        return [_to_lawyer(r) for r in records]

    async def set_approval(self, lawyer_id: str, approved: bool, admin_id: str,
                           now: datetime, rejection_reason: Optional[str] = None) -> Optional[Lawyer]:
        return await self.update(lawyer_id, {
            "is_approved": approved,
            "approved_by": admin_id if approved else None,
            "approved_at": now if approved else None,
            "rejection_reason": None if approved else (rejection_reason or "Not approved"),
        })
