from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import (
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    field_validator,
    model_validator,
)

from donchat.schemas.base import CamelModel


class MessageType(str, Enum):
    text = "text"
    image = "image"
    file = "file"
    system = "system"


# Per-type metadata. Unknown keys are rejected so malformed payloads fail at
# the boundary instead of at render time.


class MessageMetadata(CamelModel):
    model_config = ConfigDict(extra="forbid")


class TextMetadata(MessageMetadata):
    mentions: List[str] = Field(default_factory=list)


class ImageMetadata(MessageMetadata):
    url: Optional[str] = None
    width: Optional[PositiveInt] = None
    height: Optional[PositiveInt] = None
    mime_type: Optional[str] = None

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.startswith("image/"):
            raise ValueError("Image messages need an image/* mime type")
        return value


class FileMetadata(MessageMetadata):
    file_name: str = Field(..., min_length=1)
    file_size: Optional[NonNegativeInt] = None
    mime_type: Optional[str] = None
    url: Optional[str] = None


class SystemMetadata(MessageMetadata):
    event: Optional[str] = None
    actor_id: Optional[str] = None


METADATA_MODELS: Dict[MessageType, Type[MessageMetadata]] = {
    MessageType.text: TextMetadata,
    MessageType.image: ImageMetadata,
    MessageType.file: FileMetadata,
    MessageType.system: SystemMetadata,
}


def validate_metadata(message_type: MessageType, metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Validate ``metadata`` against the model for ``message_type`` and return it in wire form."""
    if metadata is None:
        return None
    model = METADATA_MODELS[MessageType(message_type)].model_validate(metadata)
    return model.model_dump(by_alias=True, exclude_none=True)


class MessageCreate(CamelModel):
    conversation_id: str = Field(..., min_length=1)
    content: str
    message_type: MessageType = MessageType.text
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def validate_variant(self) -> "MessageCreate":
        if self.message_type == MessageType.text and not self.content.strip():
            raise ValueError("Text messages cannot be empty")
        self.metadata = validate_metadata(self.message_type, self.metadata)
        return self


class MarkAsReadRequest(CamelModel):
    conversation_id: str = Field(..., min_length=1)
    message_id: str = Field(..., min_length=1)


class ChatMessage(CamelModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    message_type: MessageType = MessageType.text
    metadata: Optional[Dict[str, Any]] = None
    read_by: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("read_by", mode="before")
    @classmethod
    def validate_read_by(cls, value):
        """Ensure read_by is always a list, never None"""
        if value is None:
            return []
        return list(value)

    @field_validator("message_type", mode="before")
    @classmethod
    def set_default_message_type(cls, value):
        if value is None:
            return MessageType.text
        return value

    def is_read_by(self, user_id: str) -> bool:
        return user_id in self.read_by


class MessageCreated(CamelModel):
    message_id: str
