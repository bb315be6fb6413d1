import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from whatsapp_store import __version__, service
from whatsapp_store.config import Settings, get_settings
from whatsapp_store.errors import WebhookPayloadError, WhatsAppStoreError
from whatsapp_store.ingestion import ingest_webhook
from whatsapp_store.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from whatsapp_store.metrics import get_metrics, get_metrics_content_type, record_webhook_outcome
from whatsapp_store.schemas import (
    ErrorResponse,
    HealthResponse,
    MessageCreateRequest,
    MessageCreatedResponse,
    MessageDetailResponse,
    MessageResponse,
    MessagesListResponse,
    ProbeResponse,
    StatusUpdateRequest,
    StatusUpdatedResponse,
    UserCreatedResponse,
    UserDetailResponse,
    UserResponse,
    UsersListResponse,
    UserUpsertRequest,
    WebhookResponse,
)
from whatsapp_store.storage import Storage
from whatsapp_store.utils import utc_timestamp

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Open the shared storage handle and create tables.
      A schema failure propagates so the server never starts half-ready.
    - Shutdown: Close the storage handle.
    """
    storage = Storage(app.state.settings.DATABASE_URL)
    storage.create_schema()
    app.state.storage = storage
    logger.info("Connected to database")
    try:
        yield
    finally:
        logger.info("Shutting down server...")
        storage.close()


def get_storage(request: Request) -> Storage:
    """Dependency returning the process-wide storage handle."""
    return request.app.state.storage


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


# =============================================================================
# Exception Handlers
# =============================================================================

async def store_error_handler(request: Request, exc: WhatsAppStoreError) -> JSONResponse:
    """Translate the service error taxonomy into {"error": ...} bodies."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and wrong field types are caller errors (400)."""
    logger.warning(f"Request validation failed: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request"},
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Explicit settings; defaults to the cached environment settings
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="WhatsApp Message Store",
        description="Persists WhatsApp message history, user profiles and webhook deliveries",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(WhatsAppStoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    _register_message_routes(app)
    _register_user_routes(app)
    _register_webhook_routes(app)
    _register_health_routes(app)

    return app


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or malformed input"},
    500: {"model": ErrorResponse, "description": "Storage error"},
}


# =============================================================================
# Messages Routes
# =============================================================================

def _register_message_routes(app: FastAPI) -> None:

    @app.post("/api/messages", response_model=MessageCreatedResponse, responses=ERROR_RESPONSES)
    def create_message(
        body: MessageCreateRequest,
        storage: Storage = Depends(get_storage),
    ) -> MessageCreatedResponse:
        """Store a new message (e.g. an incoming or outgoing WhatsApp message)."""
        message_id = service.create_message(
            storage,
            phone_number=body.phone_number,
            message_text=body.message_text,
            message_type=body.message_type,
        )
        return MessageCreatedResponse(message_id=message_id)

    @app.get("/api/messages", response_model=MessagesListResponse, responses=ERROR_RESPONSES)
    def list_messages(
        phone_number: Annotated[Optional[str], Query(description="Filter by phone number (exact match)")] = None,
        limit: Annotated[Optional[str], Query(description="Maximum number of messages to return")] = None,
        storage: Storage = Depends(get_storage),
        settings: Settings = Depends(get_app_settings),
    ) -> MessagesListResponse:
        """
        List stored messages, newest first.

        Query Parameters:
            - phone_number: only messages for this phone number
            - limit: integer, default 50, clamped to 1..MESSAGES_MAX_LIMIT;
              a non-integer value falls back to the default
        """
        limit_value = service.parse_limit(
            limit,
            default=settings.MESSAGES_DEFAULT_LIMIT,
            maximum=settings.MESSAGES_MAX_LIMIT,
        )
        messages = service.list_messages(storage, phone_number=phone_number, limit=limit_value)
        data = [MessageResponse.model_validate(msg) for msg in messages]
        return MessagesListResponse(messages=data, count=len(data))

    @app.get(
        "/api/messages/{message_id}",
        response_model=MessageDetailResponse,
        responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Message not found"}},
    )
    def get_message(message_id: str, storage: Storage = Depends(get_storage)) -> MessageDetailResponse:
        message = service.get_message(storage, message_id)
        return MessageDetailResponse(message=MessageResponse.model_validate(message))

    @app.put(
        "/api/messages/{message_id}/status",
        response_model=StatusUpdatedResponse,
        responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Message not found"}},
    )
    def update_message_status(
        message_id: str,
        body: StatusUpdateRequest,
        storage: Storage = Depends(get_storage),
    ) -> StatusUpdatedResponse:
        """Update message status (useful for tracking delivery)."""
        service.update_message_status(storage, message_id, body.status)
        return StatusUpdatedResponse()


# =============================================================================
# Users Routes
# =============================================================================

def _register_user_routes(app: FastAPI) -> None:

    @app.post("/api/users", response_model=UserCreatedResponse, responses=ERROR_RESPONSES)
    def upsert_user(
        body: UserUpsertRequest,
        storage: Storage = Depends(get_storage),
    ) -> UserCreatedResponse:
        """
        Store or update a user keyed by phone number.
        Omitted name/email keep their stored values.
        """
        user_id = service.upsert_user(
            storage,
            phone_number=body.phone_number,
            name=body.name,
            email=body.email,
        )
        return UserCreatedResponse(user_id=user_id)

    @app.get("/api/users", response_model=UsersListResponse, responses=ERROR_RESPONSES)
    def list_users(storage: Storage = Depends(get_storage)) -> UsersListResponse:
        users = [UserResponse.model_validate(user) for user in service.list_users(storage)]
        return UsersListResponse(users=users, count=len(users))

    @app.get(
        "/api/users/{phone_number}",
        response_model=UserDetailResponse,
        responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "User not found"}},
    )
    def get_user(phone_number: str, storage: Storage = Depends(get_storage)) -> UserDetailResponse:
        user = service.get_user(storage, phone_number)
        return UserDetailResponse(user=UserResponse.model_validate(user))


# =============================================================================
# Webhook Route
# =============================================================================

def _register_webhook_routes(app: FastAPI) -> None:

    @app.post(
        "/webhook/whatsapp",
        response_model=WebhookResponse,
        responses={500: {"model": ErrorResponse, "description": "Malformed payload"}},
    )
    async def whatsapp_webhook(request: Request, storage: Storage = Depends(get_storage)) -> WebhookResponse:
        """
        Ingest a WhatsApp Business API webhook delivery.

        Always answers 200 once the payload could be walked, even if some
        messages failed to store, so the provider does not retry the whole
        batch. An empty body is treated as an empty payload.
        """
        raw_body = await request.body()
        logger.info("WhatsApp webhook received", extra={"body_size": len(raw_body)})

        try:
            payload = _parse_webhook_body(raw_body)
            result = await run_in_threadpool(ingest_webhook, storage, payload)
        except WebhookPayloadError as e:
            logger.error(f"Error processing WhatsApp webhook: {e}")
            record_webhook_outcome("invalid_payload")
            log_webhook_data(request=request, result="invalid_payload")
            raise WebhookPayloadError("Failed to process webhook") from e

        outcome = "processed" if result.received else "empty"
        record_webhook_outcome(outcome, stored=result.stored, failed=result.failed)
        log_webhook_data(
            request=request,
            result=outcome,
            received=result.received,
            stored=result.stored,
            failed=result.failed,
        )
        return WebhookResponse()


def _parse_webhook_body(raw_body: bytes):
    if not raw_body.strip():
        return {}
    try:
        return json.loads(raw_body)
    except ValueError as e:
        raise WebhookPayloadError(f"Invalid JSON: {e}") from e


# =============================================================================
# Health & Metrics Routes
# =============================================================================

def _register_health_routes(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthResponse)
    def health(storage: Storage = Depends(get_storage)) -> HealthResponse:
        connected = storage.check_health()
        return HealthResponse(
            status="healthy" if connected else "degraded",
            timestamp=utc_timestamp(),
            database="connected" if connected else "disconnected",
        )

    @app.get("/health/live", response_model=ProbeResponse)
    async def health_live() -> ProbeResponse:
        """Liveness check - always returns 200 once the app is running."""
        return ProbeResponse(status="ok")

    @app.get("/health/ready", response_model=ProbeResponse)
    def health_ready(response: Response, storage: Storage = Depends(get_storage)) -> ProbeResponse:
        """Readiness check - 503 unless the database is reachable and the schema applied."""
        if not storage.check_health():
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return ProbeResponse(
                status="not_ready",
                reason="Database not reachable or schema not applied"
            )
        return ProbeResponse(status="ready")

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(content=get_metrics(), media_type=get_metrics_content_type())


app = create_app()
