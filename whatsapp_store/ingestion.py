"""
Webhook ingestion.

Turns a WhatsApp provider webhook payload into message records and stores
them one by one.

Normalized output (list of dicts):
[
  {"phone_number": "15551234567", "message_text": "Hi", "message_type": "received"},
  {"phone_number": "15551234567", "message_text": "Non-text message", "message_type": "received"}
]

Delivery is at-least-once, so a bad entry never aborts the batch: per-entry
storage failures are logged and counted, and only a payload whose shape
cannot be walked raises WebhookPayloadError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, TypedDict

from whatsapp_store.errors import StorageError, ValidationError, WebhookPayloadError
from whatsapp_store.storage import Storage

logger = logging.getLogger(__name__)

NON_TEXT_PLACEHOLDER = "Non-text message"
WEBHOOK_MESSAGE_TYPE = "received"


class NormalizedMessage(TypedDict):
    phone_number: str
    message_text: str
    message_type: str


@dataclass
class IngestResult:
    """Outcome of one webhook delivery."""
    received: int = 0
    stored: int = 0
    failed: int = 0
    message_ids: List[int] = field(default_factory=list)


def normalize_webhook(payload: Any) -> List[NormalizedMessage]:
    """
    Convert a raw webhook payload into insert-ready message records.

    - A missing, null or empty ``messages`` list yields no records.
    - ``text.body`` is used when present, otherwise "Non-text message".
    - Every webhook message is typed "received".
    - A non-object entry becomes a record without a sender, which fails
      alone when stored.

    Raises:
        WebhookPayloadError: payload is not an object, ``messages`` is not a
            list, or one of its entries is null.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook payload must be a JSON object")

    entries = payload.get("messages")
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise WebhookPayloadError("Webhook 'messages' must be a list")

    out: List[NormalizedMessage] = []
    for position, entry in enumerate(entries):
        if entry is None:
            raise WebhookPayloadError(f"Webhook message at position {position} is null")
        if not isinstance(entry, dict):
            # Carries no sender, so storage rejects it on its own
            entry = {}

        sender = entry.get("from")
        out.append({
            "phone_number": "" if sender is None else str(sender),
            "message_text": _text_body(entry.get("text")),
            "message_type": WEBHOOK_MESSAGE_TYPE,
        })

    return out


def ingest_webhook(storage: Storage, payload: Any) -> IngestResult:
    """
    Normalize a payload and store its messages sequentially.

    Entries usually share a phone number, so they are written in order
    rather than concurrently.
    """
    records = normalize_webhook(payload)
    result = IngestResult(received=len(records))

    for record in records:
        try:
            message_id = storage.insert_message(
                phone_number=record["phone_number"],
                message_text=record["message_text"],
                message_type=record["message_type"],
            )
        except (ValidationError, StorageError) as e:
            result.failed += 1
            logger.error(f"Error storing WhatsApp message from '{record['phone_number']}': {e.message}")
            continue
        result.stored += 1
        result.message_ids.append(message_id)

    logger.info(f"Webhook ingested: received={result.received}, stored={result.stored}, failed={result.failed}")
    return result


def _text_body(text: Any) -> str:
    body = text.get("body") if isinstance(text, dict) else None
    return str(body) if body else NON_TEXT_PLACEHOLDER
