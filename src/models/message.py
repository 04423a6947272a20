"""
Case chat message Pydantic models
"""

from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from models.enums import MessageType


class MessageAttachment(BaseModel):
    file_name: str
    file_url: str
    file_type: Optional[str] = None
    file_size: Optional[int] = None


class Message(BaseModel):
    id: str
    case_id: str
    sender_id: str
    receiver_id: str
    content: str
    type: MessageType = MessageType.TEXT
    attachments: List[MessageAttachment] = Field(default_factory=list)
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class MessageCreateRequest(BaseModel):
    case_id: str
    receiver_id: str
    content: str = Field(..., min_length=1, max_length=5000)
    type: MessageType = MessageType.TEXT
    attachments: List[MessageAttachment] = Field(default_factory=list)


class Conversation(BaseModel):
    """Latest message of a case the user takes part in"""
    case_id: str
    last_message: Message
    unread_count: int = 0
