"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, Integer, String, Text

from whatsapp_store.storage import Base
from whatsapp_store.utils import utc_timestamp


class Message(Base):
    """
    SQLAlchemy model for stored WhatsApp messages.

    Table: messages
    Primary Key: id (surrogate, assigned on insert)
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String, nullable=False, index=True)
    message_text = Column(Text, nullable=False)
    message_type = Column(String, nullable=False, default="received", server_default="received")
    timestamp = Column(String, nullable=False, index=True, default=utc_timestamp)  # ISO-8601 UTC, set once
    status = Column(String, nullable=False, default="pending", server_default="pending")


class User(Base):
    """
    SQLAlchemy model for user profiles.

    Table: users
    Natural key: phone_number (unique, upsert target)
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    created_at = Column(String, nullable=False, default=utc_timestamp)
    last_message_at = Column(String, nullable=True)
