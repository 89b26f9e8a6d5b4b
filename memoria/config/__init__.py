"""Configuration module -- exports Settings, ProviderConfig and load_settings."""

from memoria.config.loader import load_settings
from memoria.config.settings import ProviderConfig, Settings

__all__ = ["ProviderConfig", "Settings", "load_settings"]
