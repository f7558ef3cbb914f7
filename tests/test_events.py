"""
Tests for message records.

Tests:
- Contact normalization
- Ack level mapping
- Message construction and serialization
"""

from datetime import datetime, timezone

from replybot.bus.events import (
    AutoReplyRecord,
    Message,
    MessageDirection,
    MessageStatus,
    ResponseType,
    normalize_contact,
    status_from_ack,
)


class TestNormalizeContact:
    """Tests for contact identifier normalization."""

    def test_phone_formats_collapse_to_digits(self):
        """Test that punctuation, plus sign and transport suffix are stripped."""
        assert normalize_contact("+1 (555) 010-0000") == "15550100000"
        assert normalize_contact("15550100000@c.us") == "15550100000"
        assert normalize_contact(" 15550100000 ") == "15550100000"

    def test_group_suffix_stripped(self):
        assert normalize_contact("1203630@g.us") == "1203630"

    def test_non_phone_handle_kept(self):
        """Test that non-phone handles are only trimmed."""
        assert normalize_contact("  alice@example.com ") == "alice@example.com"

    def test_empty(self):
        assert normalize_contact("") == ""
        assert normalize_contact(None) == ""


class TestAckStatus:
    """Tests for ack level mapping."""

    def test_known_levels(self):
        assert status_from_ack(0) == MessageStatus.PENDING
        assert status_from_ack(1) == MessageStatus.SENT
        assert status_from_ack(2) == MessageStatus.DELIVERED
        assert status_from_ack(3) == MessageStatus.READ
        assert status_from_ack(-1) == MessageStatus.FAILED

    def test_unknown_level(self):
        assert status_from_ack(7) == MessageStatus.UNKNOWN


class TestMessage:
    """Tests for the Message record."""

    def test_incoming_defaults(self):
        message = Message.incoming("15550001111@c.us", "hi")

        assert message.direction == MessageDirection.INCOMING
        assert message.status == MessageStatus.RECEIVED
        assert message.sender_name == "Unknown"
        assert message.contact == "15550001111"
        assert message.id.startswith("msg_")

    def test_outgoing_contact_is_recipient(self):
        message = Message.outgoing("+1 555 000 2222", "reply")

        assert message.from_me is True
        assert message.status == MessageStatus.SENT
        assert message.contact == "15550002222"

    def test_dict_round_trip_keeps_time_and_enums(self):
        ts = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
        message = Message.outgoing(
            "15550002222",
            "failed reply",
            status=MessageStatus.FAILED,
            error="network down",
            timestamp=ts,
        )

        restored = Message.from_dict(message.to_dict())

        assert restored == message
        assert restored.timestamp == ts

    def test_naive_timestamp_read_as_utc(self):
        data = Message.incoming("1", "x").to_dict()
        data["timestamp"] = "2024-03-01T08:00:00"

        restored = Message.from_dict(data)

        assert restored.timestamp.tzinfo is not None
        assert restored.timestamp.hour == 8

    def test_naive_constructor_timestamp_becomes_utc(self):
        message = Message.incoming("1", "x", timestamp=datetime(2024, 3, 1, 8, 0))

        assert message.timestamp == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

    def test_aware_timestamp_kept(self):
        ts = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

        assert Message.outgoing("1", "x", timestamp=ts).timestamp is ts


class TestAutoReplyRecord:
    """Tests for the auto-reply record."""

    def test_to_dict_uses_wire_names_for_type(self):
        record = AutoReplyRecord(
            sender="1",
            sender_name="Ann",
            request_text="hi",
            response_text="closed",
            response_type=ResponseType.AFTER_HOURS,
        )

        data = record.to_dict()

        assert data["response_type"] == "afterHours"
        assert AutoReplyRecord.from_dict(data).response_type == ResponseType.AFTER_HOURS
