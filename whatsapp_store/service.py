"""
Query/command operations behind the HTTP routes.

Every required-field check runs before the storage layer is touched.
Missing entities surface as NotFoundError; storage failures propagate as
StorageError for the HTTP layer to translate.
"""

import logging
from typing import Any, List, Optional

from whatsapp_store.errors import NotFoundError, ValidationError
from whatsapp_store.storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_TYPE = "received"


def parse_limit(raw: Any, default: int = 50, maximum: int = 1000) -> int:
    """
    Parse a ``limit`` query value.

    Absent or non-integer input gives ``default``; anything else is clamped
    to ``1..maximum``.
    """
    if raw is None:
        return default
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        logger.debug(f"Invalid limit {raw!r}, using default {default}")
        return default
    return max(1, min(limit, maximum))


def create_message(
    storage: Storage,
    phone_number: Optional[str],
    message_text: Optional[str],
    message_type: Optional[str] = None,
) -> int:
    if not phone_number or not message_text:
        raise ValidationError("Phone number and message text are required")

    return storage.insert_message(
        phone_number=phone_number,
        message_text=message_text,
        message_type=message_type or DEFAULT_MESSAGE_TYPE,
    )


def list_messages(storage: Storage, phone_number: Optional[str] = None, limit: int = 50) -> List:
    return storage.list_messages(phone_number=phone_number or None, limit=limit)


def parse_message_id(raw: Any) -> Optional[int]:
    """Integer id from a path segment, or None when it cannot name a row."""
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def get_message(storage: Storage, message_id: Any):
    parsed_id = parse_message_id(message_id)
    message = None if parsed_id is None else storage.get_message_by_id(parsed_id)
    if message is None:
        raise NotFoundError("Message not found")
    return message


def update_message_status(storage: Storage, message_id: Any, status: Optional[str]) -> None:
    if not status:
        raise ValidationError("Status is required")

    parsed_id = parse_message_id(message_id)
    if parsed_id is None or not storage.update_message_status(parsed_id, status):
        raise NotFoundError("Message not found")


def upsert_user(
    storage: Storage,
    phone_number: Optional[str],
    name: Optional[str] = None,
    email: Optional[str] = None,
) -> int:
    if not phone_number:
        raise ValidationError("Phone number is required")

    return storage.upsert_user(phone_number=phone_number, name=name, email=email)


def get_user(storage: Storage, phone_number: str):
    user = storage.get_user_by_phone(phone_number)
    if user is None:
        raise NotFoundError("User not found")
    return user


def list_users(storage: Storage) -> List:
    return storage.list_users()
