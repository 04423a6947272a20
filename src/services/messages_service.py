"""
Messages service - case-scoped chat between client, lawyer and support
"""

import logging
from typing import Optional, Set

from database.connection import Database, get_database
from models.case import Case
from models.message import Message, MessageCreateRequest
from repositories.cases import CasesRepository
from repositories.lawyers import LawyersRepository
from repositories.messages import MessagesRepository
from services.base_service import BaseService, ServiceResult
from utils.auth import AuthContext
from utils.helpers import new_id, utc_now
from utils.pagination import PageParams, build_page_info

logger = logging.getLogger(__name__)


class MessagesService(BaseService):
    """Service for case messaging"""

    def __init__(self, db: Database, messages: MessagesRepository, cases: CasesRepository,
                 lawyers: LawyersRepository):
        self.db = db
        self.messages = messages
        self.cases = cases
        self.lawyers = lawyers

    async def participants(self, case: Case) -> Set[str]:
        """User ids of the case owner and the assigned lawyer"""
        users = {case.user_id}
        if case.lawyer_id:
            lawyer = await self.lawyers.get(case.lawyer_id)
            if lawyer:
                users.add(lawyer.user_id)
        return users

    async def send(self, actor: AuthContext, request: MessageCreateRequest) -> ServiceResult:
        """
        Send a message on a case

        The sender must take part in the case (or be staff with
        `messages:read_all`); the receiver must take part in the case.
        """
        if not self.can(actor, "messages:send"):
            return self.forbidden("Not allowed to send messages")

        case = await self.cases.get(request.case_id)
        if case is None:
            return self.not_found("Case")

        participants = await self.participants(case)
        if actor.user_id not in participants and not self.can(actor, "messages:read_all"):
            return self.forbidden("Not a participant of this case")
        if request.receiver_id not in participants:
            return self.invalid("Receiver is not a participant of this case")
        if request.receiver_id == actor.user_id:
            return self.invalid("Cannot send a message to yourself")

        message = Message(
            id=new_id(),
            case_id=case.id,
            sender_id=actor.user_id,
            receiver_id=request.receiver_id,
            content=request.content,
            type=request.type,
            attachments=request.attachments,
            created_at=utc_now()
        )
        try:
            created = await self.messages.create(message)
        except Exception as e:
            return self.server_error("Message send", e)
        return ServiceResult.ok(created)

    async def list_for_case(self, actor: AuthContext, case_id: str, params: PageParams,
                            mark_read: Optional[bool] = True) -> ServiceResult:
        """Paginated conversation; messages addressed to the reader are marked read"""
        case = await self.cases.get(case_id)
        if case is None:
            return self.not_found("Case")
        participants = await self.participants(case)
        if actor.user_id not in participants and not self.can(actor, "messages:read_all"):
            return self.forbidden("Not authorized to read this conversation")

        try:
            items, total = await self.messages.list_for_case(case.id, params.offset, params.limit)
            if mark_read and actor.user_id in participants:
                marked = await self.messages.mark_read(case.id, actor.user_id, utc_now())
                if marked:
                    logger.debug(f"Marked {marked} messages read on case {case.id}")
        except Exception as e:
            return self.server_error("Message listing", e)
        return ServiceResult.ok_list(items, page_info=build_page_info(params, total))

    async def unread_count(self, actor: AuthContext) -> ServiceResult:
        try:
            count = await self.messages.count_unread(actor.user_id)
        except Exception as e:
            return self.server_error("Unread count", e)
        return ServiceResult.ok({"unread_count": count})

    async def conversations(self, actor: AuthContext) -> ServiceResult:
        try:
            found = await self.messages.list_conversations(actor.user_id)
        except Exception as e:
            return self.server_error("Conversation listing", e)
        return ServiceResult.ok_list(found)

    async def mark_read(self, actor: AuthContext, message_id: str) -> ServiceResult:
        """Only the receiver can mark a message read"""
        message = await self.messages.get(message_id)
        if message is None:
            return self.not_found("Message")
        if message.receiver_id != actor.user_id:
            return self.forbidden("Only the receiver can mark a message as read")
        if message.is_read:
            return ServiceResult.ok(message)
        try:
            updated = await self.messages.mark_one_read(message.id, utc_now())
        except Exception as e:
            return self.server_error("Message update", e)
        return ServiceResult.ok(updated, message="Message marked as read")


# Global messages service instance
_messages_service = None


def get_messages_service() -> MessagesService:
    """Get the global messages service instance"""
    global _messages_service
    if _messages_service is None:
        db = get_database()
        _messages_service = MessagesService(
            db, MessagesRepository(db), CasesRepository(db), LawyersRepository(db)
        )
    return _messages_service
