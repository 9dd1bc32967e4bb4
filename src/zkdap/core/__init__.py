"""Core settings, errors and memory hygiene for ZK data access."""

from zkdap.core.config import Settings, settings, get_settings
from zkdap.core.memory import memory_guard, secret_buffer, wipe

__all__ = [
    "Settings", "settings", "get_settings",
    "memory_guard", "secret_buffer", "wipe",
]
