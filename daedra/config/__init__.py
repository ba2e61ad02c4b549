"""Configuration loading and management."""

from daedra.config.loader import Settings, get_settings, load_tools_config

__all__ = ["Settings", "get_settings", "load_tools_config"]
