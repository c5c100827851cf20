"""Service layer helpers."""

from .settings import Settings, SettingsStore

__all__ = ["Settings", "SettingsStore"]
