"""Centralized configuration path management for connect-chat.

This module provides a single source of truth for all configuration and data
file paths, following XDG Base Directory specification.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class ConfigPaths:
    """Centralized configuration path management.

    All connect-chat configuration and data files are stored in
    ~/.config/connect-chat/ unless CONNECT_CHAT_HOME points elsewhere.
    """

    # XDG-compliant base directory
    BASE_DIR = Path.home() / ".config" / "connect-chat"

    @classmethod
    def _base(cls) -> Path:
        override = os.getenv("CONNECT_CHAT_HOME")
        return Path(override).expanduser() if override else cls.BASE_DIR

    @classmethod
    def get_base_dir(cls) -> Path:
        """Get base configuration directory, creating if needed.

        Returns:
            Path to ~/.config/connect-chat/
        """
        base = cls._base()
        base.mkdir(parents=True, exist_ok=True)
        return base

    @classmethod
    def get_config_file(cls) -> Path:
        """Get path to main configuration file.

        Returns:
            Path to config.json
        """
        return cls.get_base_dir() / "config.json"

    @classmethod
    def get_profiles_file(cls) -> Path:
        """Get path to the chat profiles file.

        Returns:
            Path to profiles.yaml
        """
        return cls.get_base_dir() / "profiles.yaml"

    @classmethod
    def get_sessions_dir(cls) -> Path:
        """Get path to recorded sessions directory.

        Returns:
            Path to sessions/
        """
        sessions_dir = cls.get_base_dir() / "sessions"
        sessions_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Using sessions directory {sessions_dir}")
        return sessions_dir
