"""Chat schemas for request/response serialization."""

from __future__ import annotations

from uuid import UUID

from pydantic import Field

from models.message import MessageRole

from .base import BaseModelSchema, BaseSchema


class TurnMessage(BaseSchema):
    """One message of the client-side transcript sent with a turn."""

    role: MessageRole = Field(..., description="Either 'user' or 'assistant'")
    content: str = Field(..., max_length=10000, description="Message content")


class ChatStreamRequest(BaseSchema):
    """Schema for the streaming turn endpoint.

    The last message must be authored by the user; it is the question
    answered by this turn.
    """

    chat_id: UUID | None = Field(None, description="Existing chat ID, null to start a new chat")
    messages: list[TurnMessage] = Field(..., description="Ordered transcript, oldest first")


class MessageResponse(BaseModelSchema):
    """Schema for a persisted chat message."""

    chat_id: UUID
    role: MessageRole
    content: str
    metadata: dict | None = Field(None, validation_alias="message_metadata")


class ChatResponse(BaseModelSchema):
    """Schema for chat summary response."""

    user_id: UUID
    title: str
    metadata: dict | None = Field(None, validation_alias="chat_metadata")
    share_path: str | None = None


class ChatDetailResponse(ChatResponse):
    """Schema for detailed chat response with messages."""

    messages: list[MessageResponse] = Field(default=[], description="Chat messages, oldest first")


class ChatListResponse(BaseSchema):
    """Schema for a paginated list of chats."""

    chats: list[ChatResponse]
    total: int
    page: int
    size: int
    has_next: bool
    has_prev: bool
    total_pages: int


class ChatTitleUpdate(BaseSchema):
    """Schema for renaming a chat."""

    title: str = Field(..., min_length=1, max_length=255)
    metadata: dict | None = Field(None, description="Metadata merged into the chat's metadata")


# Update forward references if needed
ChatDetailResponse.model_rebuild()
