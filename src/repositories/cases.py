"""
Case persistence
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from models.case import Case, CaseDocument, ClientRating, TimelineEntry
from models.enums import CaseStatus
from repositories.base import BaseRepository, build_set_clause, jsonable, record_to_dict

logger = logging.getLogger(__name__)

_UPDATABLE = {"lawyer_id", "court_date", "outcome", "pricing", "payment", "assignment_score"}

# Default for ``expected_lawyer_id``: the write does not care who holds the case
ANY_LAWYER = object()


def _guards(params: List[Any], expected_lawyer_id: Any, require_unpaid: bool) -> str:
    """Extra WHERE predicates; appends their values to ``params``"""
    clause = ""
    if expected_lawyer_id is not ANY_LAWYER:
        params.append(expected_lawyer_id)
        clause += f" AND lawyer_id IS NOT DISTINCT FROM ${len(params)}"
    if require_unpaid:
        clause += " AND (payment->>'status') IS DISTINCT FROM 'paid'"
    return clause


def _to_case(record) -> Optional[Case]:
    row = record_to_dict(record)
    if row is None:
        return None
    row.pop("total_count", None)
    return Case(**row)


class CasesRepository(BaseRepository):

    async def create(self, case: Case) -> Case:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO cases (
                    id, case_number, user_id, lawyer_id, ticket_details, client_info,
                    status, timeline, pricing, payment, documents, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $12)
                RETURNING *
                """,
                case.id, case.case_number, case.user_id, case.lawyer_id,
                jsonable(case.ticket_details), jsonable(case.client_info), case.status.value,
                jsonable(case.timeline), jsonable(case.pricing), jsonable(case.payment),
                jsonable(case.documents), case.created_at
            )
        logger.info(f"Created case {case.case_number} ({case.id})")
        return _to_case(record)

    async def get(self, case_id: str) -> Optional[Case]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM cases WHERE id = $1", case_id)
        return _to_case(record)

    async def list(self, offset: int, limit: int, user_id: Optional[str] = None,
                   lawyer_id: Optional[str] = None,
                   status: Optional[CaseStatus] = None) -> Tuple[List[Case], int]:
        """
        Page through cases, newest first

        Returns:
            (cases on this page, total matching cases)
        """
        conditions = []
        params: List[Any] = []
        if user_id:
            params.append(user_id)
            conditions.append(f"user_id = ${len(params)}")
        if lawyer_id:
            params.append(lawyer_id)
            conditions.append(f"lawyer_id = ${len(params)}")
        if status:
            params.append(status.value)
            conditions.append(f"status = ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.extend([limit, offset])

        async with self.db.acquire() as conn:
            records = await conn.fetch(
                f"""
                SELECT *, COUNT(*) OVER() AS total_count FROM cases
                {where}
                ORDER BY created_at DESC, id
                LIMIT ${len(params) - 1} OFFSET ${len(params)}
                """,
                *params
            )
            if records:
                total = records[0]["total_count"]
            else:
                total = await conn.fetchval(f"SELECT COUNT(*) FROM cases {where}", *params[:-2])
        return [_to_case(r) for r in records], total

    async def list_pending(self, limit: int = 50) -> List[Case]:
        """Unassigned cases waiting for a lawyer, oldest first"""
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                "SELECT * FROM cases WHERE status = 'pending' AND lawyer_id IS NULL ORDER BY created_at LIMIT $1",
                limit
            )
        return [_to_case(r) for r in records]

    async def transition(self, case_id: str, expected_status: CaseStatus, entry: TimelineEntry,
                         fields: Optional[Dict[str, Any]] = None, expected_lawyer_id: Any = ANY_LAWYER,
                         require_unpaid: bool = False) -> Optional[Case]:
        """
        Move a case to ``entry.status`` and append the timeline entry in one write

        The write only applies while the case is still in ``expected_status``
        (and, when given, still held by ``expected_lawyer_id`` and not yet
        paid); returns None when another writer got there first.
        """
        set_clause, values = build_set_clause(fields or {}, _UPDATABLE, start_index=5)
        extra = f", {set_clause}" if set_clause else ""
        params: List[Any] = [case_id, expected_status.value, entry.status.value, [jsonable(entry)], *values]
        guards = _guards(params, expected_lawyer_id, require_unpaid)
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                f"""
                UPDATE cases
                SET status = $3, timeline = timeline || $4::jsonb, updated_at = NOW(){extra}
                WHERE id = $1 AND status = $2{guards}
                RETURNING *
                """,
                *params
            )
        return _to_case(record)

    async def update(self, case_id: str, fields: Dict[str, Any],
                     require_unpaid: bool = False) -> Optional[Case]:
        """Plain field update; with ``require_unpaid`` it misses once the case is paid"""
        set_clause, values = build_set_clause(fields, _UPDATABLE, start_index=2)
        params: List[Any] = [case_id, *values]
        guards = _guards(params, ANY_LAWYER, require_unpaid)
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                f"UPDATE cases SET {set_clause}, updated_at = NOW() WHERE id = $1{guards} RETURNING *",
                *params
            )
        return _to_case(record)

    async def set_rating(self, case_id: str, rating: ClientRating) -> Optional[Case]:
        """Store the client's rating; None if the case was already rated"""
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                UPDATE cases SET client_rating = $2, updated_at = NOW()
                WHERE id = $1 AND client_rating IS NULL
                RETURNING *
                """,
                case_id, jsonable(rating)
            )
        return _to_case(record)

    async def add_document(self, case_id: str, document: CaseDocument) -> Optional[Case]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                UPDATE cases SET documents = documents || $2::jsonb, updated_at = NOW()
                WHERE id = $1
                RETURNING *
                """,
                case_id, [jsonable(document)]
            )
        return _to_case(record)
