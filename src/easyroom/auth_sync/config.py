"""Configuration records for the auth sync engine.

All records are frozen dataclasses validated on construction.  Only
:meth:`AuthSyncSettings.from_env` consults the environment; components
receive plain values, never read ``os.environ`` themselves.

Environment variables
---------------------
EASYROOM_AUTH_STORAGE_DIR
    Directory shared by every process for :class:`~easyroom.auth_sync.store.DiskStorage`.
EASYROOM_AUTH_BASE_URL
    Origin used to build return and landing URLs (default ``http://127.0.0.1:8000``).
EASYROOM_AUTH_VERBOSE
    Truthy value enables DEBUG chatter from every component.
EASYROOM_AUTH_GRACE_PERIOD_MS
    Maximum state age before it is treated as absent (default 300000).
EASYROOM_AUTH_POLL_PATHS
    Comma separated list of paths on which polling is allowed.
EASYROOM_SESSION_CHECK_URL
    Backend session verification endpoint; unset disables remote lookups.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final, Mapping

from easyroom.auth_sync.state_store import DEFAULT_GRACE_PERIOD_MS

_TRUTHY: Final[tuple[str, ...]] = ("true", "1", "yes", "y", "on")

DEFAULT_ENABLED_PATHS: Final[tuple[str, ...]] = ("/login", "/auth/callback")
DEFAULT_VERIFIED_PAGE_PATH: Final[str] = "/auth/callback/verified"
DEFAULT_BASE_URL: Final[str] = "http://127.0.0.1:8000"


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class PollingConfig:
    """Backoff and scope of the polling scheduler (intervals in ms)."""

    max_retries: int = 3
    base_interval_ms: int = 2000
    max_interval_ms: int = 30000
    backoff_multiplier: float = 2
    enabled_paths: tuple[str, ...] = DEFAULT_ENABLED_PATHS
    # "no session at all" answers per polling run before giving up early
    session_missing_limit: int = 2

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_interval_ms <= 0 or self.max_interval_ms <= 0:
            raise ValueError("polling intervals must be positive")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.session_missing_limit < 1:
            raise ValueError("session_missing_limit must be >= 1")
        # accept any iterable of paths, store a tuple
        object.__setattr__(self, "enabled_paths", tuple(self.enabled_paths))


@dataclass(frozen=True, slots=True)
class RedirectionConfig:
    """Where hand-offs start and land."""

    base_url: str = DEFAULT_BASE_URL
    verified_page_path: str = DEFAULT_VERIFIED_PAGE_PATH
    auto_redirect_delay_ms: int = 2000
    fallback_enabled: bool = True
    # provider name (lower case) -> path; default is /auth/<provider>
    provider_paths: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.verified_page_path.startswith("/"):
            raise ValueError("verified_page_path must start with '/'")
        if self.auto_redirect_delay_ms < 0:
            raise ValueError("auto_redirect_delay_ms must be >= 0")


@dataclass(frozen=True, slots=True)
class AuthSyncSettings:
    """Everything the composition root needs to build the engine."""

    storage_dir: str | None = None
    verbose: bool = False
    grace_period_ms: int = DEFAULT_GRACE_PERIOD_MS
    session_check_url: str | None = None
    polling: PollingConfig = field(default_factory=PollingConfig)
    redirection: RedirectionConfig = field(default_factory=RedirectionConfig)

    def __post_init__(self) -> None:
        if self.grace_period_ms <= 0:
            raise ValueError("grace_period_ms must be positive")

    @classmethod
    def from_env(cls) -> "AuthSyncSettings":
        paths_raw = os.getenv("EASYROOM_AUTH_POLL_PATHS")
        enabled_paths = (
            tuple(p.strip() for p in paths_raw.split(",") if p.strip())
            if paths_raw
            else DEFAULT_ENABLED_PATHS
        )
        return cls(
            storage_dir=os.getenv("EASYROOM_AUTH_STORAGE_DIR") or None,
            verbose=_truthy(os.getenv("EASYROOM_AUTH_VERBOSE")),
            grace_period_ms=_int_env("EASYROOM_AUTH_GRACE_PERIOD_MS", DEFAULT_GRACE_PERIOD_MS),
            session_check_url=os.getenv("EASYROOM_SESSION_CHECK_URL") or None,
            polling=PollingConfig(enabled_paths=enabled_paths),
            redirection=RedirectionConfig(
                base_url=(os.getenv("EASYROOM_AUTH_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            ),
        )
