"""Terminal rendering of transcript items."""

from typing import Optional

from rich.console import Console
from rich.text import Text

from ..core.event_channel import ChannelState
from ..session.models import (
    EVENT_CHAT_ENDED,
    EVENT_TYPING,
    ItemKind,
    ParticipantRole,
    TranscriptItem,
)

# Colors per participant role
ROLE_STYLES = {
    ParticipantRole.AGENT: "bold #00D4AA",
    ParticipantRole.CUSTOMER: "bold #4A9EFF",
    ParticipantRole.SYSTEM: "#888888",
    ParticipantRole.CUSTOM_BOT: "bold #7B68EE",
    ParticipantRole.SUPERVISOR: "bold #FFB648",
    ParticipantRole.UNKNOWN: "bold",
}

STATE_MESSAGES = {
    ChannelState.RECONNECTING: ("Connection lost, reconnecting...", "#FFB648"),
    ChannelState.OPEN: ("Connected.", "#00D98C"),
    ChannelState.CLOSED: ("Connection closed.", "#888888"),
}


def render_item(item: TranscriptItem, show_typing: bool = True) -> Optional[Text]:
    """Render an item as a single rich Text line, or None if it is not shown."""
    time_str = item.absolute_time.astimezone().strftime("%H:%M:%S")
    who = item.display_name or item.role.value.title()
    style = ROLE_STYLES.get(item.role, "bold")

    if item.kind == ItemKind.MESSAGE:
        text = Text(f"[{time_str}] ", style="dim")
        text.append(who, style=style)
        text.append(f": {item.content or ''}")
        return text
    if item.kind == ItemKind.ATTACHMENT:
        names = ", ".join(a.name or a.attachment_id for a in item.attachments)
        text = Text(f"[{time_str}] ", style="dim")
        text.append(who, style=style)
        text.append(f" sent an attachment: {names}")
        return text
    if item.kind == ItemKind.PARTICIPANT_JOINED:
        return Text(f"[{time_str}] {who} joined the chat", style="italic #888888")
    if item.kind == ItemKind.PARTICIPANT_LEFT:
        return Text(f"[{time_str}] {who} left the chat", style="italic #888888")
    if item.kind == ItemKind.EVENT:
        if item.content_type == EVENT_CHAT_ENDED:
            return Text(f"[{time_str}] Chat ended", style="bold #FF5C5C")
        if item.content_type == EVENT_TYPING and show_typing:
            return Text(f"{who} is typing...", style="dim italic")
    return None


class TranscriptPrinter:
    """Prints transcript items and channel state changes to a console."""

    def __init__(self, console: Optional[Console] = None, participant_id: Optional[str] = None):
        self.console = console or Console()
        self.participant_id = participant_id

    def print_item(self, item: TranscriptItem) -> None:
        # Our own typing events are noise
        show_typing = item.participant_id != self.participant_id
        text = render_item(item, show_typing=show_typing)
        if text is not None:
            self.console.print(text)

    def print_state(self, state: ChannelState) -> None:
        if state in STATE_MESSAGES:
            message, color = STATE_MESSAGES[state]
            self.console.print(Text(message, style=color))

    def print_error(self, message: str) -> None:
        self.console.print(Text(message, style="bold #FF5C5C"))
