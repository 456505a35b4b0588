"""Tests for inbound frame validation and outbound frame builders."""
import pytest

from roomcast.chat import events
from roomcast.chat.events import (
    DeleteRoom,
    JoinRoom,
    ListRooms,
    ProtocolViolation,
    SendFeedback,
    SendMessage,
    parse_inbound,
)


class TestParseInbound:
    """Tests for parse_inbound()."""

    def test_send_message(self):
        event = parse_inbound({"event": "send-message", "data": {"content": "hi"}})
        assert isinstance(event, SendMessage)
        assert event.data.content == "hi"

    def test_blank_message_is_rejected(self):
        with pytest.raises(ProtocolViolation, match="content is required"):
            parse_inbound({"event": "send-message", "data": {"content": "   "}})

    def test_missing_message_content_is_rejected(self):
        with pytest.raises(ProtocolViolation):
            parse_inbound({"event": "send-message", "data": {}})

    def test_feedback_payload_object(self):
        event = parse_inbound({"event": "send-feedback", "data": {"payload": {"typing": True}}})
        assert isinstance(event, SendFeedback)
        assert event.data.payload == {"typing": True}

    def test_bare_feedback_is_wrapped(self):
        event = parse_inbound({"event": "send-feedback", "data": "alice is typing"})
        assert event.data.payload == "alice is typing"

    def test_feedback_without_data(self):
        event = parse_inbound({"event": "send-feedback"})
        assert event.data.payload is None

    def test_list_rooms_needs_no_payload(self):
        assert isinstance(parse_inbound({"event": "list-rooms"}), ListRooms)

    def test_join_room_accepts_bare_name(self):
        event = parse_inbound({"event": "join-room", "data": "  dev "})
        assert isinstance(event, JoinRoom)
        assert event.data.name == "dev"

    def test_delete_room_accepts_object(self):
        event = parse_inbound({"event": "delete-room", "data": {"name": "dev"}})
        assert isinstance(event, DeleteRoom)
        assert event.data.name == "dev"

    def test_empty_room_name_is_rejected(self):
        with pytest.raises(ProtocolViolation, match="room name is required"):
            parse_inbound({"event": "join-room", "data": ""})

    def test_long_room_name_is_rejected(self):
        with pytest.raises(ProtocolViolation, match="longer than"):
            parse_inbound({"event": "join-room", "data": "x" * (events.MAX_ROOM_NAME_LENGTH + 1)})

    def test_unknown_event_is_rejected(self):
        with pytest.raises(ProtocolViolation, match="Invalid frame"):
            parse_inbound({"event": "launch-rockets", "data": None})

    def test_missing_event_name_is_rejected(self):
        with pytest.raises(ProtocolViolation):
            parse_inbound({"data": {"content": "hi"}})

    @pytest.mark.parametrize("raw", [[], "send-message", 42, None])
    def test_non_object_frames_are_rejected(self, raw):
        with pytest.raises(ProtocolViolation, match="expected a JSON object"):
            parse_inbound(raw)


class TestOutboundFrames:
    def test_frame_shape(self):
        assert events.client_total(3) == {"event": "client-total", "data": 3}
        assert events.clear_messages() == {"event": "clear-messages", "data": None}

    def test_chat_message_and_feedback(self):
        assert events.chat_message("bob", "hey")["data"] == {"sender": "bob", "content": "hey"}
        assert events.feedback("bob", 1)["data"] == {"sender": "bob", "payload": 1}

    def test_lists_are_copied(self):
        names = ["general"]
        message = events.available_rooms(names)
        names.append("dev")
        assert message["data"] == ["general"]

    def test_error_frame(self):
        assert events.error("nope") == {"event": "error", "data": {"error": "nope"}}
