"""Data models for chat sessions and transcripts."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.errors import PayloadError

# Content types used by the participant service
CONTENT_TYPE_TEXT = "text/plain"
CONTENT_TYPE_MARKDOWN = "text/markdown"
EVENT_TYPING = "application/vnd.amazonaws.connect.event.typing"
EVENT_PARTICIPANT_JOINED = "application/vnd.amazonaws.connect.event.participant.joined"
EVENT_PARTICIPANT_LEFT = "application/vnd.amazonaws.connect.event.participant.left"
EVENT_CHAT_ENDED = "application/vnd.amazonaws.connect.event.chat.ended"
EVENT_MESSAGE_DELIVERED = "application/vnd.amazonaws.connect.event.message.delivered"
EVENT_MESSAGE_READ = "application/vnd.amazonaws.connect.event.message.read"

# Wire item types that are channel control frames, not transcript items
CONTROL_ITEM_TYPES = {"CONNECTION_ACK"}


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 timestamp from the service into an aware datetime.

    Raises:
        PayloadError: If the value is not a valid timestamp
    """
    if not isinstance(value, str) or not value:
        raise PayloadError(f"Invalid timestamp: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise PayloadError(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the service does (UTC, millisecond precision)."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise PayloadError(f"Missing required field: {key}")
    return data[key]


def _objects(value: Any, what: str) -> List[Dict[str, Any]]:
    """Return value as a list of JSON objects, treating null as empty."""
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise PayloadError(f"{what} must be a list of objects")
    return value


class SessionState(Enum):
    """Lifecycle state of a chat session."""

    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ItemKind(Enum):
    """Kinds of transcript items."""

    MESSAGE = "message"
    EVENT = "event"
    ATTACHMENT = "attachment"
    PARTICIPANT_JOINED = "participant_joined"
    PARTICIPANT_LEFT = "participant_left"
    RECEIPT = "receipt"


class ParticipantRole(Enum):
    """Role of the participant who produced an item."""

    AGENT = "AGENT"
    CUSTOMER = "CUSTOMER"
    SYSTEM = "SYSTEM"
    CUSTOM_BOT = "CUSTOM_BOT"
    SUPERVISOR = "SUPERVISOR"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ParticipantRole":
        """Map a wire role to an enum member, tolerating new roles."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class Attachment:
    """An attachment referenced by a transcript item."""

    attachment_id: str
    name: Optional[str] = None
    content_type: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Attachment":
        return cls(
            attachment_id=_require(data, "AttachmentId"),
            name=data.get("AttachmentName"),
            content_type=data.get("ContentType"),
            status=data.get("Status"),
        )


@dataclass
class Receipt:
    """Delivery/read receipt for a message."""

    recipient_participant_id: Optional[str] = None
    delivered_at: Optional[str] = None
    read_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Receipt":
        return cls(
            recipient_participant_id=data.get("RecipientParticipantId"),
            delivered_at=data.get("DeliveredTimestamp"),
            read_at=data.get("ReadTimestamp"),
        )


@dataclass
class TranscriptItem:
    """A single item in a contact's transcript.

    Items are ordered by absolute time, with the item id as a tie breaker so
    the order is total and stable.
    """

    item_id: str
    kind: ItemKind
    absolute_time: datetime
    role: ParticipantRole = ParticipantRole.UNKNOWN
    participant_id: Optional[str] = None
    display_name: Optional[str] = None
    content: Optional[str] = None
    content_type: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    receipts: List[Receipt] = field(default_factory=list)
    message_id: Optional[str] = None  # Message a receipt refers to
    contact_id: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        """Key used for the transcript order."""
        return (self.absolute_time, self.item_id)

    @staticmethod
    def classify(item_type: str, content_type: Optional[str]) -> ItemKind:
        """Map the wire Type/ContentType pair to an item kind."""
        if item_type == "MESSAGE":
            return ItemKind.MESSAGE
        if item_type == "ATTACHMENT":
            return ItemKind.ATTACHMENT
        if item_type == "MESSAGE_METADATA":
            return ItemKind.RECEIPT
        if item_type == "EVENT":
            if content_type == EVENT_PARTICIPANT_JOINED:
                return ItemKind.PARTICIPANT_JOINED
            if content_type == EVENT_PARTICIPANT_LEFT:
                return ItemKind.PARTICIPANT_LEFT
            return ItemKind.EVENT
        raise PayloadError(f"Unknown item type: {item_type!r}")

    @classmethod
    def from_api(cls, data: Any) -> "TranscriptItem":
        """Create from a participant service Item structure.

        Raises:
            PayloadError: If the item is malformed
        """
        if not isinstance(data, dict):
            raise PayloadError(f"Transcript item must be an object, got {type(data).__name__}")

        item_type = _require(data, "Type")
        content_type = data.get("ContentType")
        kind = cls.classify(item_type, content_type)

        metadata = data.get("MessageMetadata") or {}
        if not isinstance(metadata, dict):
            raise PayloadError("MessageMetadata must be an object")
        message_id = metadata.get("MessageId")
        receipts = [Receipt.from_api(r) for r in _objects(metadata.get("Receipts"), "Receipts")]

        item_id = data.get("Id")
        if not item_id and kind == ItemKind.RECEIPT and message_id:
            # Receipts pushed on the stream may omit an Id
            item_id = f"receipt:{message_id}:{data.get('AbsoluteTime', '')}"
        if not item_id:
            raise PayloadError("Missing required field: Id")

        return cls(
            item_id=item_id,
            kind=kind,
            absolute_time=parse_timestamp(_require(data, "AbsoluteTime")),
            role=ParticipantRole.parse(data.get("ParticipantRole")),
            participant_id=data.get("ParticipantId"),
            display_name=data.get("DisplayName"),
            content=data.get("Content"),
            content_type=content_type,
            attachments=[
                Attachment.from_api(a) for a in _objects(data.get("Attachments"), "Attachments")
            ],
            receipts=receipts,
            message_id=message_id,
            contact_id=data.get("ContactId"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["kind"] = self.kind.value
        data["role"] = self.role.value
        data["absolute_time"] = format_timestamp(self.absolute_time)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptItem":
        """Create from dictionary."""
        return cls(
            item_id=data["item_id"],
            kind=ItemKind(data["kind"]),
            absolute_time=parse_timestamp(data["absolute_time"]),
            role=ParticipantRole.parse(data.get("role")),
            participant_id=data.get("participant_id"),
            display_name=data.get("display_name"),
            content=data.get("content"),
            content_type=data.get("content_type"),
            attachments=[Attachment(**a) for a in data.get("attachments") or []],
            receipts=[Receipt(**r) for r in data.get("receipts") or []],
            message_id=data.get("message_id"),
            contact_id=data.get("contact_id"),
        )


@dataclass
class TranscriptPage:
    """One page of a transcript fetch."""

    items: List[TranscriptItem]
    next_token: Optional[str] = None
    initial_contact_id: Optional[str] = None


@dataclass
class SendReceipt:
    """Server acknowledgement of a sent message or event."""

    item_id: str
    absolute_time: datetime

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SendReceipt":
        return cls(
            item_id=_require(data, "Id"),
            absolute_time=parse_timestamp(_require(data, "AbsoluteTime")),
        )


@dataclass
class ConnectionDetails:
    """Result of exchanging a participant token."""

    connection_token: str
    connection_expiry: datetime
    websocket_url: str
    websocket_expiry: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Any) -> "ConnectionDetails":
        """Create from a CreateParticipantConnection response.

        Raises:
            PayloadError: If the response lacks the websocket or credentials
        """
        if not isinstance(data, dict):
            raise PayloadError("Connection response must be an object")
        credentials = _require(data, "ConnectionCredentials")
        websocket = _require(data, "Websocket")
        websocket_expiry = websocket.get("ConnectionExpiry")
        return cls(
            connection_token=_require(credentials, "ConnectionToken"),
            connection_expiry=parse_timestamp(_require(credentials, "Expiry")),
            websocket_url=_require(websocket, "Url"),
            websocket_expiry=parse_timestamp(websocket_expiry) if websocket_expiry else None,
        )


@dataclass
class ChatSession:
    """Identifiers and lifecycle state of one chat contact."""

    contact_id: Optional[str]
    participant_id: Optional[str]
    participant_token: str
    state: SessionState = SessionState.NEGOTIATING
    connection_token: Optional[str] = None
    connection_expiry: Optional[datetime] = None
    websocket_url: Optional[str] = None
    websocket_expiry: Optional[datetime] = None

    @classmethod
    def begin(
        cls,
        participant_token: str,
        contact_id: Optional[str] = None,
        participant_id: Optional[str] = None,
    ) -> "ChatSession":
        """Create a session that still has to be negotiated."""
        return cls(
            contact_id=contact_id,
            participant_id=participant_id,
            participant_token=participant_token,
        )

    def apply(self, details: ConnectionDetails) -> None:
        """Install freshly negotiated connection details."""
        if self.state == SessionState.DISCONNECTED:
            raise ValueError("Cannot apply connection details to a disconnected session")
        self.connection_token = details.connection_token
        self.connection_expiry = details.connection_expiry
        self.websocket_url = details.websocket_url
        self.websocket_expiry = details.websocket_expiry
        self.state = SessionState.CONNECTED

    def needs_refresh(
        self, now: Optional[datetime] = None, margin: timedelta = timedelta(0)
    ) -> bool:
        """True when the connection token is missing or expires within margin."""
        if self.connection_token is None or self.connection_expiry is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.connection_expiry - margin <= now

    def mark_disconnected(self) -> None:
        self.state = SessionState.DISCONNECTED
        self.connection_token = None


@dataclass
class SessionMetadata:
    """Metadata for a recorded session."""

    session_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    contact_id: Optional[str] = None
    participant_id: Optional[str] = None
    display_name: Optional[str] = None
    region: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        # Convert datetime to ISO format
        data["start_time"] = self.start_time.isoformat()
        if self.end_time:
            data["end_time"] = self.end_time.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionMetadata":
        """Create from dictionary."""
        data = dict(data)
        data["start_time"] = datetime.fromisoformat(data["start_time"])
        if data.get("end_time"):
            data["end_time"] = datetime.fromisoformat(data["end_time"])
        return cls(**data)
