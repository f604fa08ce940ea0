"""
Message model for chat turns.
"""

import enum

from sqlalchemy import Column, Enum, ForeignKey, Index, Text
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel, JSONType


class MessageRole(str, enum.Enum):
    """Message role enumeration."""

    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """
    Represents a single message in a chat. Messages are append-only and
    ordered by ``created_at`` within their chat.
    """

    __tablename__ = "messages"
    __table_args__ = (Index("idx_messages_chat_created", "chat_id", "created_at"),)

    chat_id = Column(UUID(), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    role = Column(
        Enum(MessageRole, values_callable=lambda roles: [r.value for r in roles]),
        nullable=False,
    )
    content = Column(Text, nullable=False)

    # e.g. {"model": "...", "timestamp": 1700000000000, "sources": ["contract.pdf"]}
    message_metadata = Column("metadata", JSONType, nullable=True)

    # Relationships
    chat = relationship("Chat", back_populates="messages")
