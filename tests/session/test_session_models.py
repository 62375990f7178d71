"""Tests for session and transcript data models."""

from datetime import datetime, timedelta, timezone

import pytest

from connect_chat.core.errors import PayloadError
from connect_chat.session.models import (
    EVENT_PARTICIPANT_JOINED,
    EVENT_PARTICIPANT_LEFT,
    EVENT_TYPING,
    ChatSession,
    ConnectionDetails,
    ItemKind,
    ParticipantRole,
    SendReceipt,
    SessionState,
    TranscriptItem,
    format_timestamp,
    parse_timestamp,
)


class TestTimestamps:
    """Test timestamp parsing and formatting."""

    def test_parse_zulu(self):
        parsed = parse_timestamp("2019-11-08T02:41:28.172Z")
        assert parsed == datetime(2019, 11, 8, 2, 41, 28, 172000, tzinfo=timezone.utc)

    def test_parse_naive_assumes_utc(self):
        parsed = parse_timestamp("2019-11-08T02:41:28")
        assert parsed.tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "yesterday", 12345])
    def test_parse_invalid(self, value):
        with pytest.raises(PayloadError):
            parse_timestamp(value)

    def test_format_uses_milliseconds(self):
        value = datetime(2026, 1, 2, 3, 4, 5, 678900, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2026-01-02T03:04:05.678Z"


class TestTranscriptItem:
    """Test TranscriptItem parsing from the wire format."""

    def test_message(self, wire_item):
        item = TranscriptItem.from_api(wire_item("m1", content="Hi there"))
        assert item.item_id == "m1"
        assert item.kind == ItemKind.MESSAGE
        assert item.role == ParticipantRole.AGENT
        assert item.display_name == "Agent Smith"
        assert item.content == "Hi there"

    @pytest.mark.parametrize(
        "content_type,kind",
        [
            (EVENT_PARTICIPANT_JOINED, ItemKind.PARTICIPANT_JOINED),
            (EVENT_PARTICIPANT_LEFT, ItemKind.PARTICIPANT_LEFT),
            (EVENT_TYPING, ItemKind.EVENT),
        ],
    )
    def test_event_classification(self, wire_item, content_type, kind):
        data = wire_item("e1", item_type="EVENT", content=None, content_type=content_type)
        assert TranscriptItem.from_api(data).kind == kind

    def test_attachment(self, wire_item):
        data = wire_item("a1", item_type="ATTACHMENT", content=None)
        data["Attachments"] = [
            {"AttachmentId": "att-1", "AttachmentName": "receipt.pdf", "Status": "APPROVED"}
        ]
        item = TranscriptItem.from_api(data)
        assert item.kind == ItemKind.ATTACHMENT
        assert item.attachments[0].name == "receipt.pdf"

    def test_receipt_without_id(self, wire_item):
        data = wire_item("x", item_type="MESSAGE_METADATA", content=None)
        del data["Id"]
        data["MessageMetadata"] = {
            "MessageId": "m1",
            "Receipts": [{"RecipientParticipantId": "agent-1", "ReadTimestamp": "2026-03-01T12:00:01.000Z"}],
        }
        item = TranscriptItem.from_api(data)
        assert item.kind == ItemKind.RECEIPT
        assert item.message_id == "m1"
        assert item.item_id.startswith("receipt:m1:")
        assert item.receipts[0].read_at == "2026-03-01T12:00:01.000Z"

    def test_unknown_role_is_tolerated(self, wire_item):
        item = TranscriptItem.from_api(wire_item("m1", role="SOMETHING_NEW"))
        assert item.role == ParticipantRole.UNKNOWN

    @pytest.mark.parametrize("missing", ["Id", "Type", "AbsoluteTime"])
    def test_missing_required_field(self, wire_item, missing):
        data = wire_item("m1")
        del data[missing]
        with pytest.raises(PayloadError):
            TranscriptItem.from_api(data)

    def test_unknown_type(self, wire_item):
        with pytest.raises(PayloadError, match="Unknown item type"):
            TranscriptItem.from_api(wire_item("m1", item_type="HOLOGRAM"))

    def test_not_an_object(self):
        with pytest.raises(PayloadError):
            TranscriptItem.from_api(["not", "an", "item"])

    @pytest.mark.parametrize(
        "field, value",
        [
            ("MessageMetadata", "bogus"),
            ("MessageMetadata", {"MessageId": "m1", "Receipts": "bogus"}),
            ("MessageMetadata", {"MessageId": "m1", "Receipts": [42]}),
            ("Attachments", {"AttachmentId": "att-1"}),
        ],
    )
    def test_nested_fields_must_be_objects(self, wire_item, field, value):
        data = wire_item("x", item_type="MESSAGE_METADATA", content=None)
        data[field] = value
        with pytest.raises(PayloadError):
            TranscriptItem.from_api(data)

    def test_null_receipts_are_empty(self, wire_item):
        data = wire_item("x", item_type="MESSAGE_METADATA", content=None)
        data["MessageMetadata"] = {"MessageId": "m1", "Receipts": None}
        assert TranscriptItem.from_api(data).receipts == []

    def test_sort_key_breaks_ties_by_id(self, make_item):
        a = make_item("b", seconds=1)
        b = make_item("a", seconds=1)
        assert sorted([a, b], key=lambda i: i.sort_key) == [b, a]

    def test_dict_conversion_preserves_fields(self, make_item):
        item = make_item("m1", seconds=3, content="persist me")
        restored = TranscriptItem.from_dict(item.to_dict())
        assert restored == item


class TestConnectionDetails:
    """Test parsing of CreateParticipantConnection responses."""

    def test_from_api(self, connection_response):
        details = ConnectionDetails.from_api(connection_response(token="abc", url="wss://x/y"))
        assert details.connection_token == "abc"
        assert details.websocket_url == "wss://x/y"
        assert details.websocket_expiry is not None

    def test_missing_websocket(self, connection_response):
        data = connection_response()
        del data["Websocket"]
        with pytest.raises(PayloadError, match="Websocket"):
            ConnectionDetails.from_api(data)

    def test_send_receipt(self):
        receipt = SendReceipt.from_api({"Id": "m9", "AbsoluteTime": "2026-03-01T12:00:00.000Z"})
        assert receipt.item_id == "m9"


class TestChatSession:
    """Test the session lifecycle."""

    def test_begin_is_negotiating(self):
        session = ChatSession.begin("ptoken", contact_id="c1")
        assert session.state == SessionState.NEGOTIATING
        assert session.needs_refresh()

    def test_apply_connects(self, connection_response):
        session = ChatSession.begin("ptoken")
        session.apply(ConnectionDetails.from_api(connection_response(expires_in=3600)))
        assert session.state == SessionState.CONNECTED
        assert session.connection_token == "conn-token-1"
        assert not session.needs_refresh()

    def test_needs_refresh_within_margin(self, connection_response):
        session = ChatSession.begin("ptoken")
        session.apply(ConnectionDetails.from_api(connection_response(expires_in=30)))
        assert not session.needs_refresh()
        assert session.needs_refresh(margin=timedelta(seconds=60))

    def test_needs_refresh_after_expiry(self, connection_response):
        session = ChatSession.begin("ptoken")
        session.apply(ConnectionDetails.from_api(connection_response(expires_in=30)))
        later = datetime.now(timezone.utc) + timedelta(minutes=5)
        assert session.needs_refresh(now=later)

    def test_disconnected_is_terminal(self, connection_response):
        session = ChatSession.begin("ptoken")
        session.mark_disconnected()
        assert session.state == SessionState.DISCONNECTED
        with pytest.raises(ValueError):
            session.apply(ConnectionDetails.from_api(connection_response()))
