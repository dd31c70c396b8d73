"""Core utilities for configuration, logging, and domain models."""

from .config import AppSettings, GmailSettings, SyncSettings, load_app_settings
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "GmailSettings",
    "SyncSettings",
    "configure_logging",
    "load_app_settings",
]
