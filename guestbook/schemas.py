"""
Pydantic schemas for request/response validation.

This module contains:
- Rearrangement item models (validated by the message service)
- Request models for create/edit
- Response models for API responses
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, Field, StrictInt

# Arrangement and id columns are 32-bit INTEGER
INT32_MIN = -2**31
INT32_MAX = 2**31 - 1

ColumnInt = Annotated[StrictInt, Field(ge=INT32_MIN, le=INT32_MAX)]


# =============================================================================
# Rearrangement Items
# =============================================================================

class OrderItem(BaseModel):
    """One entry of a list-board reorder: move message `id` to `order_index`."""
    id: ColumnInt = Field(..., description="Message identifier")
    order_index: ColumnInt = Field(..., description="New position in the list")

    model_config = {"extra": "ignore"}


class PositionItem(BaseModel):
    """One entry of a canvas reposition: move message `id` to (pos_x, pos_y)."""
    id: ColumnInt = Field(..., description="Message identifier")
    pos_x: ColumnInt = Field(..., description="Canvas x coordinate in pixels")
    pos_y: ColumnInt = Field(..., description="Canvas y coordinate in pixels")

    model_config = {"extra": "ignore"}


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreateRequest(BaseModel):
    """
    Body of POST /messages.

    Both fields are optional at the schema level; empty content is rejected
    by the message service with a content_required error rather than a
    generic validation error.
    """
    title: Optional[str] = Field(None, description="Note title; blank becomes the placeholder")
    content: Optional[str] = Field(None, description="Note body, required after trimming")

    model_config = {
        "json_schema_extra": {
            "examples": [{"title": "Hi", "content": "Greetings from the board"}]
        }
    }


class MessageUpdateRequest(BaseModel):
    """Body of PATCH /messages. Omitted (or null) fields are left unchanged."""
    id: ColumnInt = Field(..., description="Identifier of the message to edit")
    title: Optional[str] = Field(None, description="New title")
    content: Optional[str] = Field(None, description="New content")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")
    error_type: Optional[str] = Field(None, description="Machine-readable error category")


class MessageResponse(BaseModel):
    """A single board message, including its arrangement fields."""
    id: int
    title: str
    content: str
    order_index: int
    pos_x: int
    pos_y: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MessageEnvelope(BaseModel):
    message: MessageResponse


class MessagesListResponse(BaseModel):
    """Every message on the board, already in display order."""
    messages: list[MessageResponse] = Field(default_factory=list)


class RearrangeResponse(BaseModel):
    ok: bool = True
    updated: int = Field(..., ge=0, description="Number of messages whose arrangement was written")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
