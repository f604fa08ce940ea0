"""
Models package initialization.
"""

from .base import Base, BaseModel
from .chat import Chat
from .message import Message, MessageRole
from .user import User

__all__ = [
    "Base",
    "BaseModel",
    "User",
    # Chat models
    "Chat",
    "Message",
    "MessageRole",
]
