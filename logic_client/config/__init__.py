"""Configuration module for the logic client."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
