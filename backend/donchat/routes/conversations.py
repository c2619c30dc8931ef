from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from donchat.core.auth import get_current_user_id
from donchat.core.dependencies import ChatServices, get_services
from donchat.core.streaming import SSE_HEADERS, snapshot_stream
from donchat.schemas.base import ApiResponse, ErrorResponse
from donchat.schemas.conversation import (
    Conversation,
    ConversationCreate,
    ConversationCreated,
    ConversationSummary,
    MarkAllReadResult,
)
from donchat.schemas.message import ChatMessage
from donchat.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
        403: {"model": ErrorResponse, "description": "Caller is not a participant"},
    },
)


@router.post(
    "",
    response_model=ApiResponse[ConversationCreated],
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(
    payload: ConversationCreate,
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    """
    Create a conversation, or return the existing direct conversation between
    the same two users.
    """
    conversation_id = await services.conversations.create_conversation(
        creator_id=current_user_id,
        participants=payload.participants,
        type=payload.type,
        name=payload.name,
        description=payload.description,
    )
    return ApiResponse(
        data=ConversationCreated(conversation_id=conversation_id),
        message="Conversation created successfully",
    )


@router.get("", response_model=ApiResponse[List[ConversationSummary]])
async def get_user_conversations(
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    """Conversations of the current user, most recently active first."""
    summaries = await services.conversations.get_user_conversations(current_user_id)
    return ApiResponse(data=summaries)


# Declared before /{conversation_id} so "subscribe" is not taken for an id
@router.get("/subscribe")
async def subscribe_to_user_conversations(
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    async def subscribe(on_change, on_error):
        return await services.conversations.subscribe_to_user_conversations(current_user_id, on_change, on_error)

    logger.info(f"User {current_user_id} subscribed to conversation updates")
    return StreamingResponse(
        snapshot_stream(subscribe, "conversations", services.settings.SSE_KEEPALIVE_SECONDS),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/{conversation_id}", response_model=ApiResponse[Conversation])
async def get_conversation(
    conversation_id: str,
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    conversation = await services.conversations.get_conversation_for_user(conversation_id, current_user_id)
    return ApiResponse(data=conversation)


@router.get("/{conversation_id}/messages", response_model=ApiResponse[List[ChatMessage]])
async def get_conversation_messages(
    conversation_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    start_after: Optional[str] = Query(None, alias="startAfter"),
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    """Newest first. Pass the last id of a page as ``startAfter`` for the next one."""
    settings = services.settings
    if limit is None:
        limit = settings.DEFAULT_MESSAGE_LIMIT
    limit = min(limit, settings.MAX_MESSAGE_LIMIT)

    await services.messages.ensure_participant(conversation_id, current_user_id)
    messages = await services.messages.get_conversation_messages(
        conversation_id, limit=limit, start_after=start_after
    )
    return ApiResponse(data=messages)


@router.post("/{conversation_id}/mark-all-read", response_model=ApiResponse[MarkAllReadResult])
async def mark_all_as_read(
    conversation_id: str,
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    marked = await services.messages.mark_all_as_read(conversation_id, current_user_id)
    return ApiResponse(
        data=MarkAllReadResult(marked=marked),
        message="All messages marked as read",
    )


@router.get("/{conversation_id}/subscribe")
async def subscribe_to_conversation(
    conversation_id: str,
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    """Server-Sent Events stream of the conversation's messages, oldest first."""
    await services.messages.ensure_participant(conversation_id, current_user_id)

    async def subscribe(on_change, on_error):
        return await services.messages.subscribe_to_conversation(conversation_id, on_change, on_error)

    logger.info(f"User {current_user_id} subscribed to conversation {conversation_id}")
    return StreamingResponse(
        snapshot_stream(subscribe, "messages", services.settings.SSE_KEEPALIVE_SECONDS),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
