"""
Server-Sent Events over store snapshots.

The live query pushes whole snapshots through a callback; ``snapshot_stream``
turns them into ``data:`` frames for a ``StreamingResponse``. Closing the
generator (client disconnect cancels it) drops the store subscription.
"""
import asyncio
import json
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from pydantic import BaseModel

from donchat.core.errors import ChatError
from donchat.utils.logger import get_logger

logger = get_logger(__name__)

KEEPALIVE_FRAME = ": keep-alive\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

Subscribe = Callable[
    [Callable[[List[BaseModel]], None], Callable[[Exception], None]],
    Awaitable[Callable[[], None]],
]


def format_sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def snapshot_stream(
    subscribe: Subscribe,
    event_type: str,
    keepalive_seconds: Optional[float] = None,
) -> AsyncIterator[str]:
    """
    Yield one ``{"type": event_type, "data": [...]}`` frame per snapshot.

    ``subscribe(on_change, on_error)`` is awaited for the unsubscribe function.
    """
    queue: asyncio.Queue = asyncio.Queue()

    def on_change(items: List[BaseModel]) -> None:
        queue.put_nowait(("snapshot", items))

    def on_error(error: Exception) -> None:
        queue.put_nowait(("error", error))

    unsubscribe = await subscribe(on_change, on_error)
    try:
        while True:
            try:
                kind, value = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
                continue

            if kind == "error":
                code = value.code if isinstance(value, ChatError) else "SUBSCRIPTION_ERROR"
                yield format_sse({"type": "error", "error": code})
                continue

            yield format_sse(
                {
                    "type": event_type,
                    "data": [item.model_dump(mode="json", by_alias=True) for item in value],
                }
            )
    finally:
        unsubscribe()
        logger.debug(f"{event_type} stream closed")
