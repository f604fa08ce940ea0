"""
Provides the User model for the application's database schema.

Users are resolved from the external Clerk identity provider and own
their chats. Deleting a user cascades to every chat and message.

Attributes
----------
clerk_user_id : sqlalchemy.Column
    Unique identifier for the user from the Clerk authentication system.
email : sqlalchemy.Column
    The email address of the user, which must also be unique.
username : sqlalchemy.Column
    The optional username chosen by the user.
is_active : sqlalchemy.Column
    A boolean indicating if the user is active. Defaults to `True`.
"""

from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship

from .base import BaseModel


class User(BaseModel):
    """
    Represents a user entity in the application.

    :ivar clerk_user_id: Unique identifier for the user provided by Clerk.
    :type clerk_user_id: str
    :ivar email: Email address of the user. It must be unique.
    :type email: str
    :ivar username: Username of the user. This is optional.
    :type username: str
    :ivar is_active: Indicates whether the user account is active.
    :type is_active: bool
    """

    __tablename__ = "users"

    clerk_user_id = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    username = Column(String(100))
    is_active = Column(Boolean, default=True)

    # Relationships
    chats = relationship("Chat", back_populates="user", cascade="all, delete-orphan")
