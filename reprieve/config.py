"""Configuration management for reprieve.

Loads environment variables (optionally from a .env file) and provides
centralized config access.
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

__version__ = "0.3.0"

CROSS_DEVICE_POLICIES = ("copy", "refuse")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config:
    """Configuration loader with environment variable support."""

    def __init__(self, env_file: Optional[str | Path] = None):
        """Initialize config by loading a .env file.

        Variables already present in the environment always win over the file.

        Args:
            env_file: Explicit .env path (default: nearest .env from the working directory up)
        """
        if env_file is not None:
            load_dotenv(env_file, override=False)
        else:
            load_dotenv(find_dotenv(usecwd=True), override=False)

    @property
    def home_trash(self) -> Path:
        """Get home trash store root.

        Priority:
        1. REPRIEVE_HOME_TRASH environment variable
        2. $XDG_DATA_HOME/Trash
        3. ~/.local/share/Trash

        Returns:
            Absolute path of the home trash
        """
        explicit = os.getenv("REPRIEVE_HOME_TRASH")
        if explicit:
            return Path(explicit).expanduser().absolute()

        data_home = os.getenv("XDG_DATA_HOME") or "~/.local/share"
        return (Path(data_home).expanduser() / "Trash").absolute()

    @property
    def cross_device_policy(self) -> str:
        """Get restore policy for destinations on another volume.

        Returns:
            'copy' (copy, verify, then delete from trash) or 'refuse'

        Raises:
            ValueError: If REPRIEVE_CROSS_DEVICE holds anything else
        """
        policy = os.getenv("REPRIEVE_CROSS_DEVICE", "copy").strip().lower()
        if policy not in CROSS_DEVICE_POLICIES:
            raise ValueError(
                f"REPRIEVE_CROSS_DEVICE must be one of {', '.join(CROSS_DEVICE_POLICIES)}, got {policy!r}"
            )
        return policy

    @property
    def max_name_attempts(self) -> int:
        """Get the bound on entry-name collisions before put gives up.

        Raises:
            ValueError: If REPRIEVE_MAX_NAME_ATTEMPTS is not a positive integer
        """
        raw = os.getenv("REPRIEVE_MAX_NAME_ATTEMPTS", "100")
        try:
            attempts = int(raw)
        except ValueError:
            attempts = 0
        if attempts < 1:
            raise ValueError(f"REPRIEVE_MAX_NAME_ATTEMPTS must be a positive integer, got {raw!r}")
        return attempts

    @property
    def log_level(self) -> str:
        """Get default log level (overridden by -v/-q on the command line)."""
        level = os.getenv("REPRIEVE_LOG_LEVEL", "WARNING").strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"REPRIEVE_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {level!r}")
        return level


# Singleton instance
_config = None


def get_config() -> Config:
    """Get or create singleton Config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config
