from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator

from donchat.schemas.base import CamelModel
from donchat.schemas.message import ChatMessage


class ConversationType(str, Enum):
    direct = "direct"
    group = "group"


class ParticipantRole(str, Enum):
    admin = "admin"
    member = "member"


class ParticipantDetail(CamelModel):
    user_id: str
    joined_at: datetime
    role: ParticipantRole = ParticipantRole.member
    last_read_message_id: Optional[str] = None


class Conversation(CamelModel):
    id: str
    participants: List[str]
    participant_details: List[ParticipantDetail] = Field(default_factory=list)
    type: ConversationType
    name: Optional[str] = None
    description: Optional[str] = None
    admin_id: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_active: bool = True

    @field_validator("participants", "participant_details", mode="before")
    @classmethod
    def validate_array_fields(cls, value):
        """Ensure array fields are always lists, not None"""
        if value is None:
            return []
        return value

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants


class ConversationSummary(CamelModel):
    id: str
    participant_details: List[ParticipantDetail] = Field(default_factory=list)
    last_message: Optional[ChatMessage] = None
    unread_count: int = 0


class ConversationCreate(CamelModel):
    participants: List[str] = Field(..., min_length=1)
    type: ConversationType = ConversationType.direct
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("participants")
    @classmethod
    def validate_participants(cls, value: List[str]) -> List[str]:
        participants = [participant.strip() for participant in value]
        if any(not participant for participant in participants):
            raise ValueError("Participant ids cannot be empty")
        return participants


class ConversationCreated(CamelModel):
    conversation_id: str


class MarkAllReadResult(CamelModel):
    marked: int
