"""Resolved runtime settings for a chat session."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

from connect_chat.core.backoff import BackoffPolicy
from connect_chat.config.settings_manager import get_profile, load_config_data

LOGGER = logging.getLogger(__name__)

# Environment variables that override file configuration
ENV_OVERRIDES = {
    "region": "CONNECT_CHAT_REGION",
    "endpoint": "CONNECT_CHAT_ENDPOINT",
    "backend_url": "CONNECT_CHAT_BACKEND_URL",
    "display_name": "CONNECT_CHAT_DISPLAY_NAME",
}


@dataclass(frozen=True)
class ChatSettings:
    """Configuration for one chat client run."""

    region: str = "us-east-1"
    endpoint: Optional[str] = None
    backend_url: Optional[str] = None
    display_name: str = "Customer"
    attributes: Dict[str, str] = field(default_factory=dict)
    request_timeout: float = 10.0
    heartbeat_interval: float = 10.0
    initial_backoff: float = 0.5
    backoff_multiplier: float = 2.0
    max_backoff: float = 30.0
    max_retries: int = 5
    refresh_margin: float = 60.0  # Seconds before expiry to renegotiate
    page_size: int = 30

    def backoff_policy(self) -> BackoffPolicy:
        """Reconnect policy built from these settings."""
        return BackoffPolicy(
            initial_delay=self.initial_backoff,
            multiplier=self.backoff_multiplier,
            max_delay=self.max_backoff,
            max_retries=self.max_retries,
        )

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "ChatSettings":
        """Build settings from a mapping, ignoring unknown keys and casting values."""
        return cls().merged(data)

    def merged(self, data: Dict[str, Any]) -> "ChatSettings":
        """Return a copy with values from data applied over this one."""
        updates: Dict[str, Any] = {}
        for f in fields(self):
            if f.name not in data or data[f.name] is None:
                continue
            value = data[f.name]
            current = getattr(self, f.name)
            try:
                if isinstance(current, bool):
                    value = bool(value)
                elif isinstance(current, int):
                    value = int(value)
                elif isinstance(current, float):
                    value = float(value)
                elif isinstance(current, dict):
                    value = {str(k): str(v) for k, v in dict(value).items()}
                else:
                    value = str(value)
            except (TypeError, ValueError):
                LOGGER.warning("Ignoring invalid value for setting '%s': %r", f.name, value)
                continue
            updates[f.name] = value
        return replace(self, **updates)

    @classmethod
    def resolve(
        cls,
        profile: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ChatSettings":
        """Resolve settings from defaults, config.json, a profile, env and overrides.

        Later layers win. The profile defaults to the config's default_profile.

        Raises:
            KeyError: If the requested profile does not exist
        """
        config = load_config_data()
        settings = cls.from_mapping(config)

        profile_name = profile or config.get("default_profile")
        settings = settings.merged(get_profile(profile_name))

        env = {key: os.getenv(var) for key, var in ENV_OVERRIDES.items()}
        settings = settings.merged(env)

        return settings.merged(overrides or {})
