"""HTTP clients for the participant service and the contact-initiation backend."""

from .participant_client import ParticipantClient, DEFAULT_ENDPOINT_TEMPLATE
from .backend import ContactInitiator

__all__ = ["ParticipantClient", "DEFAULT_ENDPOINT_TEMPLATE", "ContactInitiator"]
