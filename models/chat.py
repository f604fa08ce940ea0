"""
Chat model for document-aware conversations.
"""

from sqlalchemy import Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel, JSONType


class Chat(BaseModel):
    """
    Represents a chat owned by exactly one user.

    :ivar user_id: Owning user.
    :ivar title: Display title, derived from the first user message.
    :ivar chat_metadata: Free-form metadata (``share_path``, uploaded ``documents``).
    """

    __tablename__ = "chats"
    __table_args__ = (Index("idx_chats_user_updated", "user_id", "updated_at"),)

    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    # "metadata" is reserved on declarative classes
    chat_metadata = Column("metadata", JSONType, nullable=True)

    # Relationships
    user = relationship("User", back_populates="chats")
    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )

    @property
    def share_path(self) -> str | None:
        return (self.chat_metadata or {}).get("share_path")

    @property
    def is_shared(self) -> bool:
        return bool(self.share_path and self.share_path.startswith("/share/"))
