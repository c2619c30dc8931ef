import json
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from donchat.core.config import Settings, get_settings
from donchat.core.dependencies import ChatServices
from donchat.core.errors import ChatError
from donchat.core.presence import PresenceRegistry
from donchat.core.security import IdentityVerifier
from donchat.db.document_store import utcnow
from donchat.db.session import create_db_engine, create_session_factory, init_db
from donchat.routes import conversations, messages, websocket
from donchat.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


# Custom JSON encoder that preserves Unicode characters (emojis)
class UnicodeJSONResponse(JSONResponse):
    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    verifier: Optional[IdentityVerifier] = None,
    presence: Optional[PresenceRegistry] = None,
    clock: Callable = utcnow,
) -> FastAPI:
    """
    Build the chat API.

    Every collaborator can be injected; by default settings come from the
    environment, the engine from ``DATABASE_URL`` and the identity verifier
    from ``AUTH_PROVIDER``.
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    engine = engine or create_db_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)
    services = ChatServices.build(
        settings,
        create_session_factory(engine),
        verifier=verifier,
        presence=presence,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        logger.info("Document store ready")
        yield
        engine.dispose()

    app = FastAPI(
        title="DonApp Chat API",
        description="Real-time conversations and messages for the DonApp marketplace",
        version="1.0.0",
        openapi_tags=[
            {"name": "Conversations", "description": "Conversation endpoints"},
            {"name": "Messages", "description": "Message endpoints"},
            {"name": "WebSocket", "description": "WebSocket endpoints"},
        ],
        # Configure default JSON response class to preserve Unicode
        default_response_class=UnicodeJSONResponse,
        lifespan=lifespan,
    )
    app.state.services = services

    register_middleware(app, settings)
    register_exception_handlers(app)

    app.include_router(conversations.router, prefix="/api/chat/conversations", tags=["Conversations"])
    app.include_router(messages.router, prefix="/api/chat/messages", tags=["Messages"])
    app.include_router(websocket.router, prefix="/api/chat", tags=["WebSocket"])

    @app.get("/")
    async def root():
        return {"message": "Welcome to the DonApp Chat API"}

    @app.get("/api/health")
    async def health_check():
        store = await services.store.health_check()
        return {
            "status": store["status"],
            "store": store,
            "connections": len(services.manager.active_connections),
        }

    return app


def register_middleware(app: FastAPI, settings: Settings) -> None:
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming API requests"""
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        client = request.client.host if request.client else "Unknown"
        logger.info(
            f"[{request.method}] {request.url.path} - Status: {response.status_code} "
            f"({duration_ms:.1f} ms, client {client})"
        )
        return response

    # Added after the logging middleware so it wraps it and error responses keep CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return UnicodeJSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.code, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return UnicodeJSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "VALIDATION_ERROR",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return UnicodeJSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on [{request.method}] {request.url.path}")
        return UnicodeJSONResponse(
            status_code=500,
            content={"success": False, "error": "INTERNAL_SERVER_ERROR"},
        )
