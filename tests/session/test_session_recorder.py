"""Tests for session recorder."""

import json

import pytest

from connect_chat.session import SessionRecorder
from connect_chat.session.models import EVENT_PARTICIPANT_JOINED, EVENT_TYPING


def _entries(recorder):
    entries = []
    with open(recorder.session_file, "r") as f:
        for line in f:
            data = json.loads(line)
            if data["type"] == "entry":
                entries.append(data["data"])
    return entries


class TestSessionRecorder:
    """Test session recorder functionality."""

    def test_session_initialization(self, tmp_path):
        """Test session recorder initialization."""
        recorder = SessionRecorder(session_dir=tmp_path, contact_id="contact-1")

        assert recorder.session_file.exists()
        assert recorder.session_file.name == "contact-1.jsonl"
        assert recorder.metadata.contact_id == "contact-1"

        with open(recorder.session_file, "r") as f:
            first_line = json.loads(f.readline())
            assert first_line["type"] == "metadata"
            assert first_line["data"]["session_id"] == "contact-1"

    @pytest.mark.asyncio
    async def test_record_items(self, tmp_path, make_item):
        """Test recording transcript items."""
        recorder = SessionRecorder(session_dir=tmp_path)

        await recorder.record_item(make_item("m1", content="Hello"))
        await recorder.record_item(make_item("m2", seconds=1, role="CUSTOMER", content="Hi"))
        await recorder.flush()

        entries = _entries(recorder)
        assert len(entries) == 2
        assert entries[0]["item_id"] == "m1"
        assert entries[0]["kind"] == "message"
        assert entries[1]["role"] == "CUSTOMER"

    @pytest.mark.asyncio
    async def test_buffering(self, tmp_path, make_item):
        """Test that entries are buffered and flushed."""
        recorder = SessionRecorder(session_dir=tmp_path, buffer_size=5)

        for i in range(3):
            await recorder.record_item(make_item(f"m{i}", seconds=i))
        assert len(_entries(recorder)) == 0

        for i in range(3, 5):
            await recorder.record_item(make_item(f"m{i}", seconds=i))
        assert len(_entries(recorder)) == 5

    @pytest.mark.asyncio
    async def test_close_flushes_buffer(self, tmp_path, make_item):
        """Test that close() flushes remaining entries."""
        recorder = SessionRecorder(session_dir=tmp_path, buffer_size=10)
        await recorder.record_item(make_item("m1"))

        await recorder.close()

        assert len(_entries(recorder)) == 1
        with open(recorder.session_file, "r") as f:
            last_line = json.loads(f.readlines()[-1])
        assert last_line["type"] == "metadata_final"
        assert last_line["data"]["end_time"] is not None

    @pytest.mark.asyncio
    async def test_read_items_orders_and_dedups(self, tmp_path, make_item):
        recorder = SessionRecorder(session_dir=tmp_path)
        await recorder.record_item(make_item("late", seconds=10))
        await recorder.record_item(make_item("early", seconds=1))
        await recorder.record_item(make_item("late", seconds=10, content="copy"))

        items = recorder.read_items()
        assert [i.item_id for i in items] == ["early", "late"]
        assert items[1].content == "hello"

    @pytest.mark.asyncio
    async def test_export_markdown(self, tmp_path, make_item):
        """Test exporting session to markdown."""
        recorder = SessionRecorder(
            session_dir=tmp_path, contact_id="contact-1", display_name="Jane"
        )
        await recorder.record_item(
            make_item("j1", item_type="EVENT", content=None, content_type=EVENT_PARTICIPANT_JOINED)
        )
        await recorder.record_item(make_item("m1", seconds=1, content="How can I help?"))
        await recorder.record_item(
            make_item("t1", seconds=2, item_type="EVENT", content=None, content_type=EVENT_TYPING)
        )

        md_file = tmp_path / "export.md"
        markdown = recorder.export_markdown(md_file)

        assert md_file.exists()
        assert "# Chat Transcript: contact-1" in markdown
        assert "**Participant:** Jane" in markdown
        assert "Agent Smith joined the chat" in markdown
        assert "How can I help?" in markdown
        assert "typing" not in markdown

    @pytest.mark.asyncio
    async def test_load_session(self, tmp_path, make_item):
        recorder = SessionRecorder(session_dir=tmp_path, contact_id="contact-1")
        await recorder.record_item(make_item("m1"))
        await recorder.close()

        loaded = SessionRecorder.load_session(recorder.session_file)
        assert loaded.metadata.contact_id == "contact-1"
        assert [i.item_id for i in loaded.read_items()] == ["m1"]

    def test_load_missing_session(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            SessionRecorder.load_session(tmp_path / "nope.jsonl")

    @pytest.mark.asyncio
    async def test_loaded_session_keeps_end_time(self, tmp_path):
        recorder = SessionRecorder(session_dir=tmp_path, contact_id="contact-1")
        await recorder.close()

        loaded = SessionRecorder.load_session(recorder.session_file)
        assert loaded.metadata.end_time is not None

    def test_load_corrupt_session(self, tmp_path):
        session_file = tmp_path / "broken.jsonl"
        session_file.write_text('{"type": "metadata"\n', encoding="utf-8")

        with pytest.raises(ValueError, match="line 1"):
            SessionRecorder.load_session(session_file)

    def test_load_session_without_metadata(self, tmp_path):
        session_file = tmp_path / "empty.jsonl"
        session_file.write_text("", encoding="utf-8")

        with pytest.raises(ValueError, match="missing metadata"):
            SessionRecorder.load_session(session_file)
