"""Centralized settings management for connect-chat.

Settings Schema (config.json):
    {
        "region": str,                 # Connect region (e.g., "us-east-1")
        "endpoint": str,               # Participant service endpoint override
        "backend_url": str,            # Start-chat backend URL
        "display_name": str,           # Customer display name
        "default_profile": str,        # Profile from profiles.yaml used by default
        "request_timeout": float,      # HTTP timeout in seconds
        "heartbeat_interval": float,   # Seconds between stream heartbeats
        "max_retries": int,            # Stream reconnect attempts
        ...
    }

Profiles Schema (profiles.yaml):
    profiles:
      support:
        region: eu-west-2
        backend_url: https://example.com/start-chat
        display_name: Jane
        attributes:
          customerTier: gold
"""

import json
from typing import Any, Dict, Optional
import logging

import yaml

from connect_chat.core.config_paths import ConfigPaths

LOGGER = logging.getLogger(__name__)


def load_config_data() -> Dict[str, Any]:
    """Loads configuration data from config.json."""
    config_file = ConfigPaths.get_config_file()
    if not config_file.exists():
        return {}
    try:
        content = config_file.read_text(encoding="utf-8")
        if not content.strip():
            return {}
        data = json.loads(content)
    except (json.JSONDecodeError, IOError) as e:
        LOGGER.warning(
            f"Failed to load config file: {e}. Using empty configuration.",
            exc_info=True,
        )
        return {}
    if not isinstance(data, dict):
        LOGGER.warning("Config file does not contain an object. Using empty configuration.")
        return {}
    return data


def _save_config_data(data: Dict[str, Any]) -> None:
    """Saves the configuration data to config.json."""
    config_file = ConfigPaths.get_config_file()
    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(json.dumps(data, indent=4), encoding="utf-8")
    except IOError as e:
        LOGGER.error(f"Failed to save config file: {e}", exc_info=True)


def get_setting(key: str, default: Any = None) -> Any:
    """Retrieve a setting from the config file."""
    data = load_config_data()
    return data.get(key, default)


def set_settings(updates: Dict[str, Any]) -> None:
    """Load existing settings, apply updates, and save back."""
    data = load_config_data()
    data.update(updates)
    _save_config_data(data)


def load_profiles() -> Dict[str, Dict[str, Any]]:
    """Load named chat profiles from profiles.yaml.

    Returns:
        Mapping of profile name to its settings. Invalid entries are skipped.
    """
    profiles_file = ConfigPaths.get_profiles_file()
    if not profiles_file.exists():
        return {}
    try:
        data = yaml.safe_load(profiles_file.read_text(encoding="utf-8")) or {}
    except (yaml.YAMLError, IOError) as e:
        LOGGER.warning(f"Failed to load profiles file: {e}", exc_info=True)
        return {}

    profiles: Dict[str, Dict[str, Any]] = {}
    for name, profile in (data.get("profiles") or {}).items():
        if not isinstance(profile, dict):
            LOGGER.warning("Invalid profile structure for '%s'", name)
            continue
        profiles[str(name)] = profile
    return profiles


def get_profile(name: Optional[str]) -> Dict[str, Any]:
    """Return a single profile, or an empty dict when name is None.

    Raises:
        KeyError: If the named profile does not exist
    """
    if not name:
        return {}
    profiles = load_profiles()
    if name not in profiles:
        raise KeyError(f"Unknown profile: {name}")
    return profiles[name]
