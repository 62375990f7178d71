"""Session recorder for persisting reconciled chat transcripts."""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional
import uuid

from .models import ItemKind, SessionMetadata, TranscriptItem

logger = logging.getLogger(__name__)


class SessionRecorder:
    """Records transcript items to JSONL files.

    Features:
    - Async file I/O so the event loop is never blocked
    - JSONL format for easy parsing
    - Export to markdown
    """

    def __init__(
        self,
        session_dir: Optional[Path] = None,
        session_id: Optional[str] = None,
        contact_id: Optional[str] = None,
        participant_id: Optional[str] = None,
        display_name: Optional[str] = None,
        region: Optional[str] = None,
        buffer_size: int = 10,
        _from_load: bool = False,
    ):
        """Initialize session recorder.

        Args:
            session_dir: Directory to store session files (default: ~/.config/connect-chat/sessions)
            session_id: Session identifier (contact id, or generated)
            contact_id: Contact being recorded
            participant_id: Participant id of this client
            display_name: Display name of this client
            region: Service region
            buffer_size: Number of entries to buffer before flushing
            _from_load: Internal flag - skip metadata creation when loading existing session
        """
        if session_dir is None:
            from ..core.config_paths import ConfigPaths

            session_dir = ConfigPaths.get_sessions_dir()
        self.session_dir = Path(session_dir)
        self.session_dir.mkdir(parents=True, exist_ok=True)

        self.session_id = session_id or contact_id or str(uuid.uuid4())
        self.session_file = self.session_dir / f"{self.session_id}.jsonl"

        self.metadata = SessionMetadata(
            session_id=self.session_id,
            start_time=datetime.now(),
            contact_id=contact_id,
            participant_id=participant_id,
            display_name=display_name,
            region=region,
        )

        if not _from_load:
            # Synchronous write for initialization (happens once at startup)
            self._write_line_sync({"type": "metadata", "data": self.metadata.to_dict()})

        self.buffer: List[TranscriptItem] = []
        self.buffer_size = buffer_size
        self._lock = asyncio.Lock()

    async def record_item(self, item: TranscriptItem) -> None:
        """Record a transcript item.

        Args:
            item: Item merged into the transcript
        """
        self.buffer.append(item)

        if len(self.buffer) >= self.buffer_size:
            await self.flush()

    async def flush(self) -> None:
        """Flush buffered entries to disk asynchronously."""
        if not self.buffer:
            return

        async with self._lock:
            # Items leave the buffer only once written
            while self.buffer:
                await self._write_line({"type": "entry", "data": self.buffer[0].to_dict()})
                self.buffer.pop(0)

    async def _write_line(self, data: dict) -> None:
        # Use to_thread to run blocking I/O in thread pool
        await asyncio.to_thread(self._write_line_sync, data)

    def _write_line_sync(self, data: dict) -> None:
        with open(self.session_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(data) + "\n")

    async def close(self) -> None:
        """Close the session and flush remaining entries."""
        await self.flush()

        self.metadata.end_time = datetime.now()

        await self._write_line(
            {"type": "metadata_final", "data": self.metadata.to_dict()}
        )
        logger.debug(f"Closed session recording {self.session_file}")

    def _records(self):
        """Yield the parsed JSON records of the session file in order."""
        with self.session_file.open("r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    raise ValueError(
                        f"Corrupt session file {self.session_file} at line {line_number}"
                    ) from e

    def read_items(self) -> List[TranscriptItem]:
        """Read recorded items back, ordered and without duplicates."""
        # Pending entries are written synchronously since callers are sync
        while self.buffer:
            self._write_line_sync({"type": "entry", "data": self.buffer[0].to_dict()})
            self.buffer.pop(0)

        seen = {}
        for record in self._records():
            if record.get("type") != "entry":
                continue
            item = TranscriptItem.from_dict(record["data"])
            seen.setdefault(item.item_id, item)
        return sorted(seen.values(), key=lambda i: i.sort_key)

    def export_markdown(self, output_path: Optional[Path] = None) -> str:
        """Render the recorded transcript as markdown, optionally writing it to a file."""
        markdown = render_markdown(self.read_items(), self.metadata)
        if output_path is not None:
            Path(output_path).write_text(markdown, encoding="utf-8")
        return markdown

    @classmethod
    def load_session(cls, session_file: Path) -> "SessionRecorder":
        """Reopen a recorded session.

        The latest metadata record wins, so a closed session reports its
        end time.

        Raises:
            FileNotFoundError: If session file doesn't exist
            ValueError: If the file is corrupt or has no metadata
        """
        session_file = Path(session_file)
        if not session_file.is_file():
            raise FileNotFoundError(f"Session file not found: {session_file}")

        recorder = cls(
            session_dir=session_file.parent,
            session_id=session_file.stem,
            _from_load=True,
        )
        metadata = None
        for record in recorder._records():
            if record.get("type") in ("metadata", "metadata_final"):
                metadata = SessionMetadata.from_dict(record["data"])
        if metadata is None:
            raise ValueError(f"Invalid session file {session_file}: missing metadata")

        recorder.session_id = metadata.session_id
        recorder.metadata = metadata
        return recorder


def render_markdown(
    items: List[TranscriptItem], metadata: Optional[SessionMetadata] = None
) -> str:
    """Render transcript items as markdown."""
    lines = []
    if metadata is not None:
        lines.append(f"# Chat Transcript: {metadata.contact_id or metadata.session_id}\n")
        lines.append(
            f"**Started:** {metadata.start_time.strftime('%Y-%m-%d %H:%M:%S')}"
        )
        if metadata.end_time:
            lines.append(
                f"**Ended:** {metadata.end_time.strftime('%Y-%m-%d %H:%M:%S')}"
            )
        if metadata.display_name:
            lines.append(f"**Participant:** {metadata.display_name}")
        lines.append("")
        lines.append("---\n")
    else:
        lines.append("# Chat Transcript\n")

    for item in items:
        time_str = item.absolute_time.strftime("%H:%M:%S")
        who = item.display_name or item.role.value.title()

        if item.kind == ItemKind.MESSAGE:
            lines.append(f"## [{time_str}] {who}\n")
            lines.append(f"{item.content or ''}\n")
        elif item.kind == ItemKind.ATTACHMENT:
            names = ", ".join(a.name or a.attachment_id for a in item.attachments)
            lines.append(f"## [{time_str}] {who}\n")
            lines.append(f"📎 {names}\n")
        elif item.kind == ItemKind.PARTICIPANT_JOINED:
            lines.append(f"*[{time_str}] {who} joined the chat*\n")
        elif item.kind == ItemKind.PARTICIPANT_LEFT:
            lines.append(f"*[{time_str}] {who} left the chat*\n")
        # Typing events and receipts are not part of the readable transcript

    return "\n".join(lines)
