from donchat.services.conversation_service import ConversationService
from donchat.services.delivery import ChatDelivery
from donchat.services.message_service import MessageService

__all__ = [
    "ConversationService",
    "ChatDelivery",
    "MessageService",
]
