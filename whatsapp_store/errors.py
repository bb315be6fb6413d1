"""
Error taxonomy shared by the storage layer, the ingestion normalizer and
the HTTP surface.

Each error carries a client-safe ``message``; the HTTP layer maps the class
to a status code and never exposes anything beyond that message.
"""


class WhatsAppStoreError(Exception):
    """Base class for all service errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WhatsAppStoreError):
    """Caller input missing or malformed."""

    status_code = 400


class NotFoundError(WhatsAppStoreError):
    """Referenced entity does not exist."""

    status_code = 404


class StorageError(WhatsAppStoreError):
    """Database engine failure. The underlying cause is logged, not returned."""

    status_code = 500


class WebhookPayloadError(WhatsAppStoreError):
    """Webhook payload has the wrong shape and cannot be walked at all."""

    status_code = 500
