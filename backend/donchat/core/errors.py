"""
Error taxonomy shared by the store, the services and both transports.

Every error carries a short machine-readable ``code``; HTTP handlers look the
code up in ``SERVICE_ERROR_MAP`` for the status, socket handlers emit the code
to the originating connection only.
"""
from typing import Dict, Optional

SERVICE_ERROR_MAP: Dict[str, int] = {
    # authentication
    "AUTHENTICATION_TOKEN_REQUIRED": 401,
    "AUTHENTICATION_FAILED": 401,
    # authorization
    "ACCESS_DENIED": 403,
    "PERMISSION_DENIED": 403,
    "CONVERSATION_NOT_FOUND_OR_USER_NOT_AUTHORIZED": 403,
    # not found
    "CONVERSATION_NOT_FOUND": 404,
    "MESSAGE_NOT_FOUND": 404,
    "DOCUMENT_NOT_FOUND": 404,
    # validation / invariants
    "INVALID_PARTICIPANT_COUNT": 400,
    "INVALID_CURSOR": 400,
    "DOCUMENT_ALREADY_EXISTS": 409,
    # store
    "STORE_OPERATION_FAILED": 500,
}


class ChatError(Exception):
    code = "STORE_OPERATION_FAILED"
    message = "Operation failed"

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        if code is not None:
            self.code = code
        if message is not None:
            self.message = message
        super().__init__(self.code)

    @property
    def status_code(self) -> int:
        return SERVICE_ERROR_MAP.get(self.code, 400)

    def __str__(self) -> str:
        return self.code


# Store level


class StoreError(ChatError):
    pass


class DocumentNotFoundError(StoreError):
    code = "DOCUMENT_NOT_FOUND"
    message = "Document not found"


class PermissionDeniedError(StoreError):
    code = "PERMISSION_DENIED"
    message = "Permission denied"


class DocumentAlreadyExistsError(StoreError):
    code = "DOCUMENT_ALREADY_EXISTS"
    message = "Document already exists"


class StoreOperationError(StoreError):
    code = "STORE_OPERATION_FAILED"
    message = "Store operation failed"


# Chat level


class InvalidParticipantCountError(ChatError):
    code = "INVALID_PARTICIPANT_COUNT"
    message = "Direct conversations need exactly 2 participants, groups at least 2"


class ConversationNotFoundError(ChatError):
    code = "CONVERSATION_NOT_FOUND"
    message = "Conversation not found"


class ConversationAccessError(ChatError):
    """Sender is not a participant, or the conversation does not exist. Deliberately merged."""

    code = "CONVERSATION_NOT_FOUND_OR_USER_NOT_AUTHORIZED"
    message = "Conversation not found or user not authorized"


class AccessDeniedError(ChatError):
    code = "ACCESS_DENIED"
    message = "Access denied to conversation"


class MessageNotFoundError(ChatError):
    code = "MESSAGE_NOT_FOUND"
    message = "Message not found"


class InvalidCursorError(ChatError):
    code = "INVALID_CURSOR"
    message = "startAfter does not reference a message of this conversation"


# Identity


class AuthenticationError(ChatError):
    code = "AUTHENTICATION_FAILED"
    message = "Authentication failed"


class TokenRequiredError(AuthenticationError):
    code = "AUTHENTICATION_TOKEN_REQUIRED"
    message = "Authentication token required"
