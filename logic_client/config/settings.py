"""
Logic Client Configuration Settings

This module contains all configuration constants for the logic client.
Values can be overridden through environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Client configuration settings."""

    # Network settings
    HOST: str = os.environ.get("LOGIC_CLIENT_HOST", "localhost")
    PORT: int = int(os.environ.get("LOGIC_CLIENT_PORT", "14309"))

    # Timing settings
    COMMAND_TIMEOUT: float = float(os.environ.get("LOGIC_CLIENT_COMMAND_TIMEOUT", "5"))
    CONNECT_TIMEOUT: float = float(os.environ.get("LOGIC_CLIENT_CONNECT_TIMEOUT", "5"))

    # Stream settings
    READ_BUFFER_SIZE: int = 65536
    ENCODING: str = "utf-8"

    # Logging settings
    DEBUG: bool = os.environ.get("LOGIC_CLIENT_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("LOGIC_CLIENT_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
