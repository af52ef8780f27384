"""Cross-context authentication state synchronisation.

This namespace hosts the **HTTP-agnostic** engine that keeps every execution
context (browser tab, worker process…) sharing one storage namespace in
agreement about who is logged in.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
store
    Key/value storage backends (in-memory, on-disk).
state_store
    Versioned envelope and staleness policy over a storage backend.
registry
    In-process listener fan-out.
polling
    Exponential-backoff polling scheduler.
manager
    AuthStateManager composing store, listeners and polling.
redirection
    Hand-off URLs to and from an external authentication surface.
migration
    One-time conversion of legacy storage keys.
health
    Metrics and alerting.
session_lookup
    HTTP check against the backend session endpoint.
system
    OptimizedAuthSystem facade and its composition root.

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, ManualClock, default_clock  # noqa: F401
from .config import AuthSyncSettings, PollingConfig, RedirectionConfig  # noqa: F401
from .errors import (  # noqa: F401
    AuthSyncError,
    CorruptedDataError,
    MaxRetriesExceededError,
    RedirectionError,
    SessionLookupError,
    SessionMissingError,
    StaleDataError,
    StorageUnavailableError,
    StorageWriteError,
)
from .health import AuthHealthMonitor, HealthAlert  # noqa: F401
from .log_utils import get_sync_logger  # noqa: F401
from .manager import AuthStateManager  # noqa: F401
from .migration import MigrationShim, run_startup_migration  # noqa: F401
from .models import (  # noqa: F401
    AuthResult,
    AuthReturnData,
    AuthState,
    MigrationResult,
    StateEnvelope,
)
from .polling import PollingScheduler  # noqa: F401
from .redirection import RedirectionHandler  # noqa: F401
from .registry import ListenerRegistry  # noqa: F401
from .session_lookup import HttpSessionLookup  # noqa: F401
from .state_store import PersistentStateStore  # noqa: F401
from .store import DiskStorage, MemoryStorage, default_storage  # noqa: F401
from .system import OptimizedAuthSystem, build_auth_system  # noqa: F401
from .timer import AsyncioTimer, ManualTimer  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "ManualClock",
    "default_clock",
    # config
    "AuthSyncSettings",
    "PollingConfig",
    "RedirectionConfig",
    # errors
    "AuthSyncError",
    "CorruptedDataError",
    "MaxRetriesExceededError",
    "RedirectionError",
    "SessionLookupError",
    "SessionMissingError",
    "StaleDataError",
    "StorageUnavailableError",
    "StorageWriteError",
    # models
    "AuthResult",
    "AuthReturnData",
    "AuthState",
    "MigrationResult",
    "StateEnvelope",
    # storage
    "DiskStorage",
    "MemoryStorage",
    "default_storage",
    "PersistentStateStore",
    # engine
    "ListenerRegistry",
    "PollingScheduler",
    "AsyncioTimer",
    "ManualTimer",
    "AuthStateManager",
    "RedirectionHandler",
    "MigrationShim",
    "run_startup_migration",
    "AuthHealthMonitor",
    "HealthAlert",
    "HttpSessionLookup",
    "OptimizedAuthSystem",
    "build_auth_system",
    # logging helpers
    "get_sync_logger",
]
