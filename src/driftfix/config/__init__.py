"""Configuration module."""

from .settings import GlobalSettings, get_settings, reset_settings

__all__ = ["GlobalSettings", "get_settings", "reset_settings"]
