"""Configuration management."""
from .settings import Settings, SettingsError, load_settings, find_settings_file

__all__ = ["Settings", "SettingsError", "load_settings", "find_settings_file"]
