"""
Case messaging API routes
"""

from fastapi import APIRouter, Depends, Query

from models.message import MessageCreateRequest
from services.messages_service import MessagesService, get_messages_service
from utils.auth import AuthContext, get_current_user, require_capability
from utils.pagination import PageParams, page_params
from utils.responses import list_response, success_response

router = APIRouter()


@router.post("", status_code=201)
async def send_message(
    request: MessageCreateRequest,
    actor: AuthContext = Depends(require_capability("messages:send")),
    service: MessagesService = Depends(get_messages_service)
):
    return success_response(await service.send(actor, request))


@router.get("/case/{case_id}")
async def list_case_messages(
    case_id: str,
    mark_read: bool = Query(True, description="Mark messages addressed to the caller as read"),
    params: PageParams = Depends(page_params),
    actor: AuthContext = Depends(get_current_user),
    service: MessagesService = Depends(get_messages_service)
):
    """Conversation for a case, newest first"""
    return list_response(await service.list_for_case(actor, case_id, params, mark_read))


@router.get("/unread-count")
async def unread_count(
    actor: AuthContext = Depends(get_current_user),
    service: MessagesService = Depends(get_messages_service)
):
    return success_response(await service.unread_count(actor))


@router.get("/conversations")
async def list_conversations(
    actor: AuthContext = Depends(get_current_user),
    service: MessagesService = Depends(get_messages_service)
):
    """Latest message of each case conversation, with unread counts"""
    return list_response(await service.conversations(actor))


@router.put("/{message_id}/read")
async def mark_message_read(
    message_id: str,
    actor: AuthContext = Depends(get_current_user),
    service: MessagesService = Depends(get_messages_service)
):
    return success_response(await service.mark_read(actor, message_id))
