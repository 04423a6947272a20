"""
Processed webhook event ledger
"""

from repositories.base import BaseRepository


class WebhookEventsRepository(BaseRepository):

    async def record(self, event_id: str, event_type: str) -> bool:
        """Remember an event id; False when it was already processed"""
        async with self.db.acquire() as conn:
            inserted = await conn.fetchval(
                """
                INSERT INTO stripe_events (event_id, event_type, received_at)
                VALUES ($1, $2, NOW())
                ON CONFLICT (event_id) DO NOTHING
                RETURNING event_id
                """,
                event_id, event_type
            )
        return inserted is not None
