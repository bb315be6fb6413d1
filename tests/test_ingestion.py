"""
Tests for webhook normalization and ingestion.

Tests cover:
- Payloads without messages (no-op)
- text.body extraction and the "Non-text message" fallback
- Fixed "received" type for webhook messages
- Structural payload errors
- Per-entry failures that do not abort the batch
"""

import pytest

from whatsapp_store.errors import WebhookPayloadError
from whatsapp_store.ingestion import NON_TEXT_PLACEHOLDER, ingest_webhook, normalize_webhook
from whatsapp_store.storage import Storage


class TestNormalizeEmpty:
    """Payloads that carry nothing to store."""

    @pytest.mark.parametrize("payload", [
        {},
        {"messages": None},
        {"messages": []},
        {"object": "whatsapp_business_account"},
    ])
    def test_no_messages(self, payload):
        assert normalize_webhook(payload) == []


class TestNormalizeEntries:
    """Field extraction per entry."""

    def test_text_message(self):
        payload = {"messages": [{"from": "15551234567", "type": "text", "text": {"body": "Oi"}}]}

        assert normalize_webhook(payload) == [
            {"phone_number": "15551234567", "message_text": "Oi", "message_type": "received"}
        ]

    def test_missing_text_uses_placeholder(self):
        """Entry without text.body becomes "Non-text message"."""
        payload = {"messages": [{"from": "15551234567", "type": "image", "image": {"id": "abc"}}]}

        [record] = normalize_webhook(payload)
        assert record["message_text"] == NON_TEXT_PLACEHOLDER == "Non-text message"
        assert record["message_type"] == "received"

    @pytest.mark.parametrize("text", [{}, {"body": ""}, {"body": None}, "plain string", None])
    def test_unusable_text_uses_placeholder(self, text):
        [record] = normalize_webhook({"messages": [{"from": "1", "text": text}]})
        assert record["message_text"] == NON_TEXT_PLACEHOLDER

    def test_type_is_always_received(self):
        """Webhook messages ignore any type carried by the provider."""
        payload = {"messages": [{"from": "1", "type": "sent", "text": {"body": "x"}}]}
        assert normalize_webhook(payload)[0]["message_type"] == "received"

    def test_numeric_sender_is_stringified(self):
        [record] = normalize_webhook({"messages": [{"from": 15551234567, "text": {"body": "x"}}]})
        assert record["phone_number"] == "15551234567"

    def test_missing_sender_yields_empty_phone(self):
        [record] = normalize_webhook({"messages": [{"text": {"body": "x"}}]})
        assert record["phone_number"] == ""

    def test_order_preserved(self):
        payload = {"messages": [
            {"from": "1", "text": {"body": "a"}},
            {"from": "1", "text": {"body": "b"}},
            {"from": "2", "text": {"body": "c"}},
        ]}
        assert [r["message_text"] for r in normalize_webhook(payload)] == ["a", "b", "c"]


class TestNormalizeStructuralErrors:
    """Payload shapes that cannot be walked."""

    @pytest.mark.parametrize("payload", [[], "text", 42, None])
    def test_payload_not_object(self, payload):
        with pytest.raises(WebhookPayloadError):
            normalize_webhook(payload)

    @pytest.mark.parametrize("messages", ["abc", {"from": "1"}, 7])
    def test_messages_not_list(self, messages):
        with pytest.raises(WebhookPayloadError):
            normalize_webhook({"messages": messages})

    def test_null_entry(self):
        with pytest.raises(WebhookPayloadError):
            normalize_webhook({"messages": [{"from": "1"}, None]})

    @pytest.mark.parametrize("entry", [5, "oops", [], True])
    def test_scalar_entry_has_no_sender(self, entry):
        """Non-object entries normalize to a sender-less record instead of failing the payload."""
        records = normalize_webhook({"messages": [{"from": "1", "text": {"body": "x"}}, entry]})

        assert len(records) == 2
        assert records[1] == {"phone_number": "", "message_text": NON_TEXT_PLACEHOLDER, "message_type": "received"}


class TestIngestWebhook:
    """Normalization plus storage."""

    def test_empty_payload_stores_nothing(self, storage):
        result = ingest_webhook(storage, {"messages": []})

        assert (result.received, result.stored, result.failed) == (0, 0, 0)
        assert storage.list_messages() == []

    def test_stores_every_entry(self, storage):
        payload = {"messages": [
            {"from": "+1", "text": {"body": "Hello"}},
            {"from": "+1", "type": "audio"},
        ]}

        result = ingest_webhook(storage, payload)

        assert result.stored == 2
        assert result.failed == 0
        first = storage.get_message_by_id(result.message_ids[0])
        second = storage.get_message_by_id(result.message_ids[1])
        assert (first.message_text, first.message_type) == ("Hello", "received")
        assert (second.message_text, second.message_type) == ("Non-text message", "received")
        assert result.message_ids[0] < result.message_ids[1]

    def test_bad_entry_does_not_abort_batch(self, storage):
        """Entry without a sender fails alone; its neighbours are stored."""
        payload = {"messages": [
            {"from": "+1", "text": {"body": "before"}},
            {"text": {"body": "no sender"}},
            {"from": "+2", "text": {"body": "after"}},
        ]}

        result = ingest_webhook(storage, payload)

        assert (result.received, result.stored, result.failed) == (3, 2, 1)
        assert sorted(m.message_text for m in storage.list_messages()) == ["after", "before"]

    def test_unencodable_text_fails_alone(self, storage):
        """A lone surrogate cannot be bound by the driver; only that entry fails."""
        payload = {"messages": [
            {"from": "+1", "text": {"body": "kept"}},
            {"from": "+1", "text": {"body": "\ud800"}},
            {"from": "+2", "text": {"body": "also kept"}},
        ]}

        result = ingest_webhook(storage, payload)

        assert (result.received, result.stored, result.failed) == (3, 2, 1)
        assert sorted(m.message_text for m in storage.list_messages()) == ["also kept", "kept"]

    def test_scalar_entry_fails_alone(self, storage):
        result = ingest_webhook(storage, {"messages": [{"from": "+1", "text": {"body": "x"}}, 5]})

        assert (result.received, result.stored, result.failed) == (2, 1, 1)

    def test_storage_failures_are_counted(self, tmp_path):
        """Engine errors per entry are swallowed and counted."""
        unmigrated = Storage(f"sqlite:///{tmp_path / 'unmigrated.db'}")
        try:
            result = ingest_webhook(unmigrated, {"messages": [{"from": "+1", "text": {"body": "x"}}]})
        finally:
            unmigrated.close()

        assert (result.received, result.stored, result.failed) == (1, 0, 1)

    def test_structural_error_propagates(self, storage):
        with pytest.raises(WebhookPayloadError):
            ingest_webhook(storage, {"messages": "oops"})
