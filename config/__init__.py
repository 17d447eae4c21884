"""
Config Package - Centralized Configuration Management
"""

from .settings import ProviderConfig, Settings, get_settings, settings

__all__ = ["ProviderConfig", "Settings", "get_settings", "settings"]
