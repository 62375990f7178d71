"""Configuration utilities for connect-chat."""

from .models import ChatSettings, ENV_OVERRIDES
from .settings_manager import (
    get_setting,
    set_settings,
    load_config_data,
    load_profiles,
    get_profile,
)

__all__ = [
    # Resolved settings
    "ChatSettings",
    "ENV_OVERRIDES",
    # Settings management
    "get_setting",
    "set_settings",
    "load_config_data",
    "load_profiles",
    "get_profile",
]
