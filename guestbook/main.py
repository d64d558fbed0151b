import json
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from guestbook.arrangement import ArrangementEngine, ArrangementMode
from guestbook.config import settings
from guestbook.errors import GuestbookError, InvalidBatchShape
from guestbook.logging_utils import RequestLoggingMiddleware, log_operation_data, setup_logging
from guestbook.metrics import get_metrics, get_metrics_content_type, record_operation_outcome
from guestbook.schemas import (
    ErrorResponse,
    HealthResponse,
    MessageCreateRequest,
    MessageEnvelope,
    MessageResponse,
    MessagesListResponse,
    MessageUpdateRequest,
    RearrangeResponse,
)
from guestbook.service import MessageService
from guestbook.storage import check_db_health, dispose_engine, get_db


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Key holding the batch in a PUT /messages body, per board mode
BATCH_KEYS = {
    ArrangementMode.LIST: "order",
    ArrangementMode.SPATIAL: "positions",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager.
    The schema is created lazily on first use, so startup does no database
    work; shutdown releases pooled connections.
    """
    logger.info(f"Guestbook starting in {settings.ARRANGEMENT_MODE} mode")
    yield
    dispose_engine()


app = FastAPI(
    title="Guestbook API",
    description="Open guestbook board with shared list ordering or canvas positions",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(GuestbookError)
async def guestbook_error_handler(request: Request, exc: GuestbookError) -> JSONResponse:
    """Turn typed guestbook failures into {detail, error_type} responses."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_type}: {exc.message}")
    else:
        logger.warning(f"{exc.error_type}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=exc.message, error_type=exc.error_type).model_dump(),
    )


# =============================================================================
# Dependencies
# =============================================================================

def get_arrangement_engine() -> ArrangementEngine:
    return ArrangementEngine(settings.ARRANGEMENT_MODE)


def get_message_service(
    db: Session = Depends(get_db),
    engine: ArrangementEngine = Depends(get_arrangement_engine),
) -> MessageService:
    return MessageService(
        db,
        engine,
        title_placeholder=settings.TITLE_PLACEHOLDER,
        strict_reorder=settings.STRICT_REORDER,
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if DATABASE_URL is set, the database
    is reachable and the messages table exists. Otherwise returns 503.
    """
    if not settings.DATABASE_URL:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="DATABASE_URL not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/messages", response_model=MessagesListResponse)
async def list_messages(
    service: MessageService = Depends(get_message_service),
) -> MessagesListResponse:
    """
    List every message in board order: order_index ASC, then newest first.
    """
    messages = service.list_messages()
    logger.info(f"GET /messages: returned {len(messages)} messages")
    return MessagesListResponse(
        messages=[MessageResponse.model_validate(msg) for msg in messages]
    )


@app.post(
    "/messages",
    response_model=MessageEnvelope,
    responses={400: {"model": ErrorResponse, "description": "Content is empty"}},
)
async def create_message(
    request: Request,
    body: MessageCreateRequest,
    service: MessageService = Depends(get_message_service),
) -> MessageEnvelope:
    """
    Post a new note. The title defaults to the placeholder when blank; the
    arrangement fields are assigned by the board's arrangement engine.
    """
    try:
        message = service.create(body.title, body.content)
    except GuestbookError as e:
        record_operation_outcome("create", e.error_type)
        log_operation_data(request, "create", e.error_type)
        raise

    record_operation_outcome("create", "created")
    log_operation_data(request, "create", "created", message_id=message.id)
    return MessageEnvelope(message=MessageResponse.model_validate(message))


@app.patch(
    "/messages",
    response_model=MessageEnvelope,
    responses={
        400: {"model": ErrorResponse, "description": "Empty content or nothing to update"},
        404: {"model": ErrorResponse, "description": "Message not found"},
    },
)
async def edit_message(
    request: Request,
    body: MessageUpdateRequest,
    service: MessageService = Depends(get_message_service),
) -> MessageEnvelope:
    """Edit the title and/or content of a message. Omitted fields are kept."""
    try:
        message = service.edit(body.id, title=body.title, content=body.content)
    except GuestbookError as e:
        record_operation_outcome("edit", e.error_type)
        log_operation_data(request, "edit", e.error_type, message_id=body.id)
        raise

    record_operation_outcome("edit", "updated")
    log_operation_data(request, "edit", "updated", message_id=message.id)
    return MessageEnvelope(message=MessageResponse.model_validate(message))


@app.put(
    "/messages",
    response_model=RearrangeResponse,
    responses={
        404: {"model": ErrorResponse, "description": "A message in the batch does not exist"},
        422: {"model": ErrorResponse, "description": "Malformed batch"},
    },
)
async def rearrange_messages(
    request: Request,
    service: MessageService = Depends(get_message_service),
) -> RearrangeResponse:
    """
    Apply a rearrangement batch.

    List boards send {"order": [{"id", "order_index"}, ...]}; canvas boards
    send {"positions": [{"id", "pos_x", "pos_y"}, ...]}. The batch is checked
    as a whole before anything is written and committed in one transaction.
    """
    batch_key = BATCH_KEYS[service.engine.mode]
    try:
        try:
            payload = json.loads(await request.body())
        except ValueError as e:
            raise InvalidBatchShape(f"Request body is not valid JSON: {e}") from e
        if not isinstance(payload, dict) or batch_key not in payload:
            raise InvalidBatchShape(f"Request body must be an object with a '{batch_key}' list")

        updated = service.rearrange(payload[batch_key])
    except GuestbookError as e:
        record_operation_outcome("rearrange", e.error_type)
        log_operation_data(request, "rearrange", e.error_type)
        raise

    record_operation_outcome("rearrange", "rearranged")
    log_operation_data(request, "rearrange", "rearranged", count=updated)
    return RearrangeResponse(ok=True, updated=updated)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
