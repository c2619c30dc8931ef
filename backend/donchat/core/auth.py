from typing import Optional, Sequence

from fastapi import Depends, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from donchat.core.dependencies import ChatServices, get_services
from donchat.core.errors import AuthenticationError, TokenRequiredError
from donchat.core.security import IdentityVerifier
from donchat.utils.logger import get_logger

logger = get_logger(__name__)

# Missing credentials are reported through ChatError, not HTTPBearer's 403
security = HTTPBearer(auto_error=False)

# Custom close code for rejected socket handshakes
WS_AUTH_FAILED = 4001
ORIGIN_NOT_ALLOWED = "ORIGIN_NOT_ALLOWED"


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: ChatServices = Depends(get_services),
) -> str:
    """Resolve the bearer token to the caller's user id."""
    if credentials is None or not credentials.credentials:
        raise TokenRequiredError()
    return services.verifier.verify(credentials.credentials)


def extract_websocket_token(websocket: WebSocket) -> Optional[str]:
    """Token from ``?token=``, an ``Authorization: Bearer`` header or a ``token`` header."""
    token = websocket.query_params.get("token")
    if token:
        return token

    authorization = websocket.headers.get("authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()

    return websocket.headers.get("token") or None


async def authenticate_websocket(
    websocket: WebSocket,
    verifier: IdentityVerifier,
    allowed_origins: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """
    Check the handshake origin and credential before the socket is accepted.

    CORSMiddleware does not see WebSocket scopes, so a browser ``Origin`` outside
    ``allowed_origins`` is refused here. On failure the handshake is closed with
    code 4001 and the error code as reason, and None is returned.
    """
    origin = websocket.headers.get("origin")
    if origin and allowed_origins is not None and "*" not in allowed_origins and origin not in allowed_origins:
        logger.warning(f"WebSocket rejected: origin {origin} not allowed")
        await websocket.close(code=WS_AUTH_FAILED, reason=ORIGIN_NOT_ALLOWED)
        return None

    token = extract_websocket_token(websocket)
    if not token:
        logger.info("WebSocket rejected: no token")
        await websocket.close(code=WS_AUTH_FAILED, reason=TokenRequiredError.code)
        return None

    try:
        return await run_in_threadpool(verifier.verify, token)
    except AuthenticationError as exc:
        logger.info(f"WebSocket rejected: {exc.code}")
        await websocket.close(code=WS_AUTH_FAILED, reason=AuthenticationError.code)
        return None
