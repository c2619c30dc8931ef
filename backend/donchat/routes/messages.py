from fastapi import APIRouter, Depends, status

from donchat.core.auth import get_current_user_id
from donchat.core.dependencies import ChatServices, get_services
from donchat.schemas.base import ApiResponse, ErrorResponse
from donchat.schemas.message import MarkAsReadRequest, MessageCreate, MessageCreated

router = APIRouter(
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
        403: {"model": ErrorResponse, "description": "Caller is not a participant"},
    },
)


@router.post(
    "",
    response_model=ApiResponse[MessageCreated],
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    payload: MessageCreate,
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    """
    Send a message as the current user.

    Connected participants receive ``new_message`` and ``conversation_update``
    over the socket, exactly as if it had been sent there.
    """
    message = await services.delivery.send_message(
        payload.conversation_id,
        current_user_id,
        payload.content,
        payload.message_type,
        payload.metadata,
    )
    return ApiResponse(
        data=MessageCreated(message_id=message.id),
        message="Message sent successfully",
    )


@router.post("/mark-read", response_model=ApiResponse[None])
async def mark_message_as_read(
    payload: MarkAsReadRequest,
    current_user_id: str = Depends(get_current_user_id),
    services: ChatServices = Depends(get_services),
):
    await services.delivery.mark_as_read(payload.conversation_id, payload.message_id, current_user_id)
    return ApiResponse(message="Message marked as read")
