"""Async HTTP client for the Amazon Connect participant service."""

from __future__ import annotations

import logging
import urllib.parse
import uuid
from typing import Any, Dict, Optional

import httpx

from connect_chat import __version__
from connect_chat.core.errors import (
    AuthExpired,
    NetworkError,
    ParticipantApiError,
    PayloadError,
)
from connect_chat.session.models import (
    CONTENT_TYPE_TEXT,
    ConnectionDetails,
    SendReceipt,
    TranscriptItem,
    TranscriptPage,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_TEMPLATE = "https://participant.connect.{region}.amazonaws.com"
USER_AGENT = f"connect-chat/{__version__}"

# Service limit for GetTranscript MaxResults
MAX_TRANSCRIPT_PAGE = 100

# Error types that mean the bearer token is no longer valid
AUTH_ERROR_TYPES = {"AccessDeniedException", "UnauthorizedException", "ExpiredTokenException"}


def _validate_http_url(url: str) -> None:
    parts = urllib.parse.urlparse(url)
    if parts.scheme not in {"http", "https"}:
        raise ValueError("Only http/https URLs are allowed")
    if not parts.netloc:
        raise ValueError("URL must include a host")


def _error_type(response: httpx.Response, body: Dict[str, Any]) -> Optional[str]:
    raw = response.headers.get("x-amzn-ErrorType") or body.get("__type") or ""
    # Values look like "AccessDeniedException:http://internal.amazon.com/..."
    # or "com.amazonaws.connect#AccessDeniedException"
    raw = raw.split(":", 1)[0]
    return raw.rsplit("#", 1)[-1] or None


def _decode_json(response: httpx.Response) -> Dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as e:
        raise PayloadError(f"Response is not valid JSON (HTTP {response.status_code})") from e
    if not isinstance(data, dict):
        raise PayloadError("Response body must be a JSON object")
    return data


class ParticipantClient:
    """Client for the participant service operations used by a chat customer.

    Every call authenticates with the ``X-Amz-Bearer`` header. Connection
    setup uses the participant token; everything else uses the connection
    token.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            region: Region of the Connect instance
            endpoint: Base URL override (default derived from region)
            timeout: Request timeout in seconds
            client: Pre-built httpx client (mainly for tests)
        """
        self.region = region
        self.endpoint = (endpoint or DEFAULT_ENDPOINT_TEMPLATE.format(region=region)).rstrip("/")
        _validate_http_url(self.endpoint)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.endpoint,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )

    async def __aenter__(self) -> "ParticipantClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, token: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON body and map failures onto the chat error types."""
        try:
            response = await self._client.post(
                path,
                json=body,
                headers={"X-Amz-Bearer": token, "Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Request to {path} failed: {e}") from e

        if response.is_success:
            return _decode_json(response)

        try:
            error_body = _decode_json(response)
        except PayloadError:
            error_body = {}
        error_type = _error_type(response, error_body)
        message = error_body.get("message") or error_body.get("Message") or response.reason_phrase
        logger.debug(f"{path} failed with HTTP {response.status_code} ({error_type})")

        if response.status_code in (401, 403) or error_type in AUTH_ERROR_TYPES:
            raise AuthExpired(f"{error_type or 'Unauthorized'}: {message}")
        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkError(f"HTTP {response.status_code} from {path}: {message}")
        raise ParticipantApiError(
            f"{error_type or 'Error'}: {message}",
            status_code=response.status_code,
            error_type=error_type,
        )

    async def create_connection(
        self, participant_token: str, connect_participant: bool = True
    ) -> ConnectionDetails:
        """Exchange a participant token for a connection token and websocket URL.

        Raises:
            AuthExpired: If the participant token is stale
            NetworkError: On transport failure
            PayloadError: If the response is malformed
        """
        data = await self._post(
            "/participant/connection",
            participant_token,
            {
                "Type": ["WEBSOCKET", "CONNECTION_CREDENTIALS"],
                "ConnectParticipant": connect_participant,
            },
        )
        return ConnectionDetails.from_api(data)

    async def send_message(
        self,
        connection_token: str,
        content: str,
        content_type: str = CONTENT_TYPE_TEXT,
        client_token: Optional[str] = None,
    ) -> SendReceipt:
        """Send a chat message."""
        data = await self._post(
            "/participant/message",
            connection_token,
            {
                "ContentType": content_type,
                "Content": content,
                "ClientToken": client_token or str(uuid.uuid4()),
            },
        )
        return SendReceipt.from_api(data)

    async def send_event(
        self,
        connection_token: str,
        content_type: str,
        content: Optional[str] = None,
        client_token: Optional[str] = None,
    ) -> SendReceipt:
        """Send an event such as typing or a read receipt."""
        body: Dict[str, Any] = {
            "ContentType": content_type,
            "ClientToken": client_token or str(uuid.uuid4()),
        }
        if content is not None:
            body["Content"] = content
        data = await self._post("/participant/event", connection_token, body)
        return SendReceipt.from_api(data)

    async def get_transcript(
        self,
        connection_token: str,
        contact_id: Optional[str] = None,
        max_results: int = 30,
        next_token: Optional[str] = None,
        scan_direction: str = "BACKWARD",
        sort_order: str = "ASCENDING",
        start_position: Optional[Dict[str, Any]] = None,
    ) -> TranscriptPage:
        """Fetch one page of the transcript.

        Args:
            connection_token: Current connection token
            contact_id: Contact to fetch (defaults to the token's contact)
            max_results: Page size, at most 100
            next_token: Token from the previous page
            scan_direction: "BACKWARD" or "FORWARD" from the start position
            sort_order: "ASCENDING" or "DESCENDING" order within the page
            start_position: {"Id": ...}, {"AbsoluteTime": ...} or {"MostRecent": n}
        """
        body: Dict[str, Any] = {
            "MaxResults": max(1, min(max_results, MAX_TRANSCRIPT_PAGE)),
            "ScanDirection": scan_direction,
            "SortOrder": sort_order,
        }
        if contact_id:
            body["ContactId"] = contact_id
        if next_token:
            body["NextToken"] = next_token
        if start_position:
            body["StartPosition"] = start_position

        data = await self._post("/participant/transcript", connection_token, body)
        raw_items = data.get("Transcript")
        if raw_items is None:
            raw_items = []
        if not isinstance(raw_items, list):
            raise PayloadError("Transcript must be a list")

        items = []
        for raw in raw_items:
            if isinstance(raw, dict) and raw.get("Type") == "CONNECTION_ACK":
                continue
            items.append(TranscriptItem.from_api(raw))
        return TranscriptPage(
            items=items,
            next_token=data.get("NextToken") or None,
            initial_contact_id=data.get("InitialContactId"),
        )

    async def disconnect_participant(
        self, connection_token: str, client_token: Optional[str] = None
    ) -> None:
        """Leave the chat."""
        await self._post(
            "/participant/disconnect",
            connection_token,
            {"ClientToken": client_token or str(uuid.uuid4())},
        )
