"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field

DEFAULT_SEARCH_KEYWORDS: tuple[str, ...] = (
    "application",
    "interview",
    "assessment",
    "offer",
    "regret",
    "rejection",
)


class GmailSettings(BaseModel):
    """Settings controlling access to the Gmail REST API."""

    client_id: str | None = Field(default=None, description="OAuth client id")
    client_secret: str | None = Field(
        default=None, description="OAuth client secret"
    )
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint used for refresh grants",
    )
    api_base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1",
        description="Gmail REST API base URL",
    )
    timeout_seconds: float = Field(
        default=20.0, gt=0, description="HTTP timeout for provider calls"
    )
    search_window_days: int = Field(
        default=30, ge=1, description="Recency window of the search predicate"
    )
    search_keywords: tuple[str, ...] = Field(
        default=DEFAULT_SEARCH_KEYWORDS,
        description="Keywords OR-ed together in the search predicate",
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./job_inbox.db"), description="SQLite database path"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class SyncSettings(BaseModel):
    """Settings controlling listing bounds and retry pacing."""

    max_messages_per_run: int = Field(
        default=50, ge=1, description="Message references listed per account run"
    )
    page_size: int = Field(
        default=50, ge=1, le=500, description="Maximum results per list request"
    )
    backoff_base_seconds: float = Field(
        default=1.0, gt=0, description="First delay after a rate-limited call"
    )
    backoff_cap_seconds: float = Field(
        default=30.0, gt=0, description="Upper bound for a single backoff delay"
    )
    run_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Wall-clock budget for one run; unbounded when unset",
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    gmail: GmailSettings = Field(default_factory=GmailSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)


ENV_PREFIX = "JOB_INBOX_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _coerce_value(key: str, value: str | None) -> Any:
    if value is None or value == "":
        return None
    lowercase_value = value.lower()
    if lowercase_value == "true":
        return True
    if lowercase_value == "false":
        return False
    if key.endswith("__SEARCH_KEYWORDS"):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    return value


def _collect_env_values(
    env_file: Path | str | None, include_environment: bool
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        _merge_into_tree(collected, path, _coerce_value(key, value))

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "DEFAULT_SEARCH_KEYWORDS",
    "GmailSettings",
    "LoggingSettings",
    "StorageSettings",
    "SyncSettings",
    "load_app_settings",
]
