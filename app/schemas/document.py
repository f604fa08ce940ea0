"""Document upload schemas."""

from uuid import UUID

from pydantic import Field

from .base import BaseSchema


class DocumentUploadResponse(BaseSchema):
    """Response after a PDF has been indexed for a chat."""

    chat_id: UUID
    file_name: str
    pages: int = Field(..., ge=0)
    chunks: int = Field(..., ge=0)
