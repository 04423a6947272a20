"""
User profile persistence (Supabase `profiles` table)
"""

import logging
from datetime import datetime
from typing import Optional

from models.user import User, UserQuota
from repositories.base import BaseRepository, record_to_dict
from utils.helpers import add_months

logger = logging.getLogger(__name__)

_SELECT = """
    SELECT id, email, first_name, last_name, phone, role,
           cases_per_month, cases_used, quota_reset_date, created_at
    FROM profiles
"""


def _to_user(record) -> Optional[User]:
    row = record_to_dict(record)
    if row is None:
        return None
    return User(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"] or "",
        last_name=row["last_name"] or "",
        phone=row["phone"],
        role=row["role"] or "user",
        quota=UserQuota(
            cases_per_month=row["cases_per_month"],
            cases_used=row["cases_used"],
            reset_date=row["quota_reset_date"]
        ),
        created_at=row["created_at"]
    )


class UsersRepository(BaseRepository):

    async def get(self, user_id: str) -> Optional[User]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(_SELECT + " WHERE id = $1", user_id)
        return _to_user(record)

    async def reset_quota_if_due(self, user_id: str, now: datetime) -> Optional[User]:
        """Zero the monthly counter when the reset date has passed; returns the current user"""
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                UPDATE profiles
                SET cases_used = 0, quota_reset_date = $3
                WHERE id = $1 AND (quota_reset_date IS NULL OR quota_reset_date <= $2)
                RETURNING id
                """,
                user_id, now, add_months(now, 1)
            )
        if record:
            logger.info(f"Monthly quota reset for user {user_id}")
        return await self.get(user_id)

    async def consume_quota(self, user_id: str) -> bool:
        """Take one case from the monthly allowance; False when it is exhausted"""
        async with self.db.acquire() as conn:
            used = await conn.fetchval(
                """
                UPDATE profiles SET cases_used = cases_used + 1
                WHERE id = $1 AND cases_used < cases_per_month
                RETURNING cases_used
                """,
                user_id
            )
        return used is not None

    async def set_quota_limit(self, user_id: str, cases_per_month: int) -> Optional[User]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                "UPDATE profiles SET cases_per_month = $2 WHERE id = $1 RETURNING id",
                user_id, cases_per_month
            )
        if record is None:
            return None
        return await self.get(user_id)
