"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming API bodies
- Response models for API responses

Request fields are optional here on purpose: required-field checks live in
the service layer so missing fields come back as 400 with a readable error.
"""

from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreateRequest(BaseModel):
    """Body of POST /api/messages."""
    phone_number: Optional[str] = Field(None, description="Counterparty phone number")
    message_text: Optional[str] = Field(None, description="Message content")
    message_type: Optional[str] = Field(
        None,
        description="Free-text message type, defaults to 'received'"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "phone_number": "+1234567890",
                    "message_text": "Hello from WhatsApp!",
                    "message_type": "received"
                }
            ]
        }
    }


class UserUpsertRequest(BaseModel):
    """Body of POST /api/users."""
    phone_number: Optional[str] = Field(None, description="User phone number (natural key)")
    name: Optional[str] = Field(None, description="Display name, kept when omitted")
    email: Optional[str] = Field(None, description="Email address, kept when omitted")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "phone_number": "+1234567890",
                    "name": "John Doe",
                    "email": "john@example.com"
                }
            ]
        }
    }


class StatusUpdateRequest(BaseModel):
    """Body of PUT /api/messages/{id}/status."""
    status: Optional[str] = Field(None, description="New free-text status, e.g. 'delivered'")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """A stored message as returned by the API."""
    id: int = Field(..., description="Surrogate message id")
    phone_number: str = Field(..., description="Counterparty phone number")
    message_text: str = Field(..., description="Message content")
    message_type: str = Field(..., description="Message type")
    timestamp: str = Field(..., description="Creation time (ISO-8601 UTC)")
    status: str = Field(..., description="Lifecycle status")

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    """A stored user as returned by the API."""
    id: int
    phone_number: str
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: str
    last_message_at: Optional[str] = None

    model_config = {"from_attributes": True}


class MessageCreatedResponse(BaseModel):
    success: bool = True
    message_id: int
    message: str = "Message stored successfully"


class MessageDetailResponse(BaseModel):
    success: bool = True
    message: MessageResponse


class MessagesListResponse(BaseModel):
    """Response model for GET /api/messages."""
    success: bool = True
    messages: list[MessageResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0, description="Number of messages returned")


class StatusUpdatedResponse(BaseModel):
    success: bool = True
    message: str = "Message status updated successfully"


class UserCreatedResponse(BaseModel):
    success: bool = True
    user_id: int
    message: str = "User stored successfully"


class UserDetailResponse(BaseModel):
    success: bool = True
    user: UserResponse


class UsersListResponse(BaseModel):
    """Response model for GET /api/users."""
    success: bool = True
    users: list[UserResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0, description="Number of users returned")


class WebhookResponse(BaseModel):
    """Response model for webhook deliveries."""
    success: bool = True


class HealthResponse(BaseModel):
    """Response model for GET /health."""
    status: str = Field(..., description="Overall health")
    timestamp: str = Field(..., description="Server time (ISO-8601 UTC)")
    database: str = Field(..., description="Database connectivity")


class ProbeResponse(BaseModel):
    """Response model for liveness/readiness checks."""
    status: str = Field(..., description="Probe status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
