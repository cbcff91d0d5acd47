"""
Pydantic schemas for the API.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class ChatStreamRequest(BaseModel):
    """Body of POST /v1/chat/stream."""

    conversation_id: Optional[str] = Field(
        default=None, description="Existing conversation id; omit to start a new one"
    )
    message: str = Field(..., min_length=1, description="The user's message")
    user_id: str = Field(..., min_length=1, description="Requesting user")
    business_profile_id: str = Field(
        ..., min_length=1, description="Business profile whose canon and knowledge apply"
    )

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v


class MessageRecord(BaseModel):
    id: str
    role: str
    content: str
    message_order: Optional[int] = None
    metadata: Optional[dict[str, Any]] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    created_at: Optional[str] = None


class ConversationRecord(BaseModel):
    id: str
    user_id: str
    business_profile_id: Optional[str] = None
    title: str
    status: str = "active"
    message_count: int = 0
    created_at: Optional[str] = None
    last_message_at: Optional[str] = None


class ConversationResponse(BaseModel):
    """Conversation with its ordered messages."""

    conversation: ConversationRecord
    messages: list[MessageRecord]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy", description="Service status")
    version: str = Field(..., description="API version")
    tools: list[str] = Field(default_factory=list, description="Registered tool names")
    cache: dict[str, Any] = Field(default_factory=dict, description="Cache statistics")


class ErrorResponse(BaseModel):
    detail: str
