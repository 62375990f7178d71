"""Client for the developer-owned backend that starts chat contacts.

The backend holds the AWS credentials and performs the signed StartChatContact
call. This client only posts the customer's details to it and reads back the
identifiers the participant service needs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from connect_chat.api.participant_client import USER_AGENT, _validate_http_url
from connect_chat.core.errors import AuthExpired, NetworkError, ParticipantApiError, PayloadError

logger = logging.getLogger(__name__)


@dataclass
class StartedContact:
    """Identifiers returned by StartChatContact."""

    contact_id: str
    participant_id: str
    participant_token: str


def _unwrap(data: Dict[str, Any]) -> Dict[str, Any]:
    # Sample backends wrap the result as {"data": {"startChatResult": {...}}}
    inner = data.get("data")
    if isinstance(inner, dict):
        data = inner.get("startChatResult", inner)
    return data


class ContactInitiator:
    """Starts a chat contact through the developer's backend."""

    def __init__(
        self,
        backend_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        _validate_http_url(backend_url)
        self.backend_url = backend_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": USER_AGENT}
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def start_chat(
        self,
        display_name: str,
        attributes: Optional[Dict[str, str]] = None,
    ) -> StartedContact:
        """Ask the backend to start a contact for this customer.

        Args:
            display_name: Customer name shown to the agent
            attributes: Contact attributes passed to the contact flow

        Returns:
            The new contact's identifiers

        Raises:
            NetworkError: If the backend cannot be reached or fails
            AuthExpired: If the backend rejects the caller
            PayloadError: If the response lacks the expected identifiers
        """
        payload = {
            "ParticipantDetails": {"DisplayName": display_name},
            "Attributes": attributes or {},
        }
        try:
            response = await self._client.post(self.backend_url, json=payload)
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach start-chat backend: {e}") from e

        if response.status_code in (401, 403):
            raise AuthExpired(f"Start-chat backend rejected the request (HTTP {response.status_code})")
        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkError(f"Start-chat backend failed with HTTP {response.status_code}")
        if not response.is_success:
            raise ParticipantApiError(
                f"Start-chat backend returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PayloadError("Start-chat backend returned invalid JSON") from e
        if not isinstance(data, dict):
            raise PayloadError("Start-chat backend response must be an object")

        data = _unwrap(data)
        try:
            contact = StartedContact(
                contact_id=data["ContactId"],
                participant_id=data["ParticipantId"],
                participant_token=data["ParticipantToken"],
            )
        except (KeyError, TypeError) as e:
            raise PayloadError(f"Start-chat response missing field: {e}") from e

        logger.info(f"Started contact {contact.contact_id}")
        return contact
