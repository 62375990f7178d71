"""Exchange of a participant token for streaming connection details."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from connect_chat.api.participant_client import ParticipantClient
from connect_chat.core.errors import AuthExpired
from connect_chat.session.models import ConnectionDetails

logger = logging.getLogger(__name__)


class SessionNegotiator:
    """Turns a participant token into a connection token and websocket URL.

    Negotiation fails closed: an expired participant token, or a response
    whose credentials are already expired, never yields connection details.
    """

    def __init__(
        self,
        client: ParticipantClient,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def negotiate(self, participant_token: str) -> ConnectionDetails:
        """Create a participant connection.

        Args:
            participant_token: Token issued by the contact-initiation call

        Returns:
            Connection token, websocket URL and their expiries

        Raises:
            AuthExpired: If the participant token is stale
            NetworkError: On transport failure
            PayloadError: If the service response is malformed
        """
        if not participant_token:
            raise AuthExpired("No participant token")

        details = await self.client.create_connection(participant_token)

        if details.connection_expiry <= self._clock():
            raise AuthExpired("Service issued an already expired connection token")

        logger.info(f"Negotiated connection, token valid until {details.connection_expiry.isoformat()}")
        return details
