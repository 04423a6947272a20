"""
Case chat message persistence
"""

from datetime import datetime
from typing import List, Optional, Tuple

from models.message import Conversation, Message
from repositories.base import BaseRepository, jsonable, record_to_dict


def _to_message(record) -> Optional[Message]:
    row = record_to_dict(record)
    if row is None:
        return None
    return Message(**row)


class MessagesRepository(BaseRepository):

    async def create(self, message: Message) -> Message:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO messages (
                    id, case_id, sender_id, receiver_id, content, type, attachments,
                    is_read, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, FALSE, $8)
                RETURNING *
                """,
                message.id, message.case_id, message.sender_id, message.receiver_id,
                message.content, message.type.value, jsonable(message.attachments),
                message.created_at
            )
        return _to_message(record)

    async def list_for_case(self, case_id: str, offset: int, limit: int) -> Tuple[List[Message], int]:
        """Conversation for a case, newest first"""
        async with self.db.acquire() as conn:
            total = await conn.fetchval("SELECT COUNT(*) FROM messages WHERE case_id = $1", case_id)
            records = await conn.fetch(
                """
                SELECT * FROM messages WHERE case_id = $1
                ORDER BY created_at DESC, id
                LIMIT $2 OFFSET $3
                """,
                case_id, limit, offset
            )
        return [_to_message(r) for r in records], total

    async def mark_read(self, case_id: str, receiver_id: str, now: datetime) -> int:
        """Mark every unread message addressed to ``receiver_id`` in the case as read"""
        async with self.db.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE messages SET is_read = TRUE, read_at = $3
                WHERE case_id = $1 AND receiver_id = $2 AND NOT is_read
                """,
                case_id, receiver_id, now
            )
        # asyncpg returns the command tag, e.g. "UPDATE 3"
        return int(status.split()[-1])

    async def get(self, message_id: str) -> Optional[Message]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM messages WHERE id = $1", message_id)
        return _to_message(record)

    async def mark_one_read(self, message_id: str, now: datetime) -> Optional[Message]:
        """Mark a single message read; an already read message keeps its read_at"""
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                UPDATE messages SET is_read = TRUE, read_at = COALESCE(read_at, $2)
                WHERE id = $1
                RETURNING *
                """,
                message_id, now
            )
        return _to_message(record)

    async def count_unread(self, receiver_id: str) -> int:
        async with self.db.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM messages WHERE receiver_id = $1 AND NOT is_read", receiver_id
            )

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        """Latest message per case the user sent or received, most recent conversation first"""
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                """
                SELECT latest.*, (
                    SELECT COUNT(*) FROM messages u
                    WHERE u.case_id = latest.case_id AND u.receiver_id = $1 AND NOT u.is_read
                ) AS unread_count
                FROM (
                    SELECT DISTINCT ON (case_id) * FROM messages
                    WHERE sender_id = $1 OR receiver_id = $1
                    ORDER BY case_id, created_at DESC, id
                ) latest
                ORDER BY latest.created_at DESC
                """,
                user_id
            )
        conversations = []
        for record in records:
            row = record_to_dict(record)
            unread = row.pop("unread_count")
            conversations.append(
                Conversation(case_id=row["case_id"], last_message=Message(**row), unread_count=unread)
            )
        return conversations
