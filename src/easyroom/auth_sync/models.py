"""Typed records used by the auth sync engine.

Persisted records are serialised with the camelCase field names of the shared
storage contract (``userId``, ``sessionToken``, ``createdAt``…) so that every
client of the same storage origin reads the same shape.  Timestamps are epoch
milliseconds.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, Literal, Mapping

from easyroom.auth_sync.errors import CorruptedDataError

SCHEMA_VERSION: Final[str] = "2.0"

AuthStatus = Literal["unauthenticated", "pending", "authenticated"]
StateSource = Literal["internal", "external_app", "migration"]

AUTH_STATUSES: Final[tuple[str, ...]] = ("unauthenticated", "pending", "authenticated")
STATE_SOURCES: Final[tuple[str, ...]] = ("internal", "external_app", "migration")


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise CorruptedDataError(f"{key} must be a string")
    return value


def _timestamp(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    # bool is an int subclass; a stored true/false is never a timestamp
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CorruptedDataError(f"{key} must be a number")
    if not math.isfinite(value):
        raise CorruptedDataError(f"{key} must be finite")
    return int(value)


@dataclass(frozen=True, slots=True)
class AuthState:
    """Authentication state shared by every execution context."""

    status: AuthStatus
    timestamp: int
    source: StateSource = "internal"
    user_id: str | None = None
    session_token: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.status == "authenticated"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status,
            "timestamp": self.timestamp,
            "source": self.source,
        }
        if self.user_id is not None:
            data["userId"] = self.user_id
        if self.session_token is not None:
            data["sessionToken"] = self.session_token
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "AuthState":
        if not isinstance(data, Mapping):
            raise CorruptedDataError("state is not an object")
        status = data.get("status")
        if status not in AUTH_STATUSES:
            raise CorruptedDataError(f"unknown status {status!r}")
        source = data.get("source", "internal")
        if source not in STATE_SOURCES:
            raise CorruptedDataError(f"unknown source {source!r}")
        return cls(
            status=status,
            timestamp=_timestamp(data, "timestamp"),
            source=source,
            user_id=_optional_str(data, "userId"),
            session_token=_optional_str(data, "sessionToken"),
        )


def states_equal(left: AuthState | None, right: AuthState | None) -> bool:
    """Return *True* when two states describe the same authentication.

    Timestamps are ignored: re-stamping an unchanged state is not a change.
    """
    if left is None or right is None:
        return left is right
    return (
        left.status == right.status
        and left.user_id == right.user_id
        and left.session_token == right.session_token
        and left.source == right.source
    )


@dataclass(frozen=True, slots=True)
class EnvelopeMetadata:
    created_at: int
    updated_at: int
    source: StateSource


@dataclass(frozen=True, slots=True)
class StateEnvelope:
    """Versioned wrapper persisted under the auth state key."""

    version: str
    state: AuthState
    metadata: EnvelopeMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "state": self.state.to_dict(),
            "metadata": {
                "createdAt": self.metadata.created_at,
                "updatedAt": self.metadata.updated_at,
                "source": self.metadata.source,
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StateEnvelope":
        if not isinstance(data, Mapping):
            raise CorruptedDataError("envelope is not an object")
        version = data.get("version")
        if version != SCHEMA_VERSION:
            raise CorruptedDataError(f"unsupported envelope version {version!r}")
        meta = data.get("metadata")
        if not isinstance(meta, Mapping):
            raise CorruptedDataError("envelope metadata missing")
        state = AuthState.from_dict(data.get("state"))
        source = meta.get("source", state.source)
        if source not in STATE_SOURCES:
            raise CorruptedDataError(f"unknown metadata source {source!r}")
        return cls(
            version=version,
            state=state,
            metadata=EnvelopeMetadata(
                created_at=_timestamp(meta, "createdAt"),
                updated_at=_timestamp(meta, "updatedAt"),
                source=source,
            ),
        )


@dataclass(frozen=True, slots=True)
class AuthResult:
    """Outcome of a hand-off with an external auth surface."""

    success: bool
    timestamp: int
    user_id: str | None = None
    session_token: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "timestamp": self.timestamp}
        if self.user_id is not None:
            data["userId"] = self.user_id
        if self.session_token is not None:
            data["sessionToken"] = self.session_token
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "AuthResult":
        if not isinstance(data, Mapping) or not isinstance(data.get("success"), bool):
            raise CorruptedDataError("auth result is malformed")
        return cls(
            success=data["success"],
            timestamp=_timestamp(data, "timestamp"),
            user_id=_optional_str(data, "userId"),
            session_token=_optional_str(data, "sessionToken"),
            error=_optional_str(data, "error"),
        )


@dataclass(frozen=True, slots=True)
class AuthReturnData:
    """Parameters carried back on a hand-off return URL."""

    success: bool
    user_id: str | None = None
    session_token: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class MigrationLog:
    version: str
    timestamp: int
    success: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "success": self.success,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MigrationLog":
        if not isinstance(data, Mapping) or not isinstance(data.get("version"), str):
            raise CorruptedDataError("migration log is malformed")
        return cls(
            version=data["version"],
            timestamp=_timestamp(data, "timestamp"),
            success=bool(data.get("success", False)),
            message=str(data.get("message", "")),
        )


@dataclass(frozen=True, slots=True)
class MigrationResult:
    migration_performed: bool
    success: bool
    legacy_data_found: bool = False
    migrated_state: AuthState | None = None
    error: str | None = None


class PollingPhase(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    CHECKING = "checking"
    STOPPED = "stopped"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class PollingState:
    """In-memory bookkeeping of one polling scheduler (never persisted)."""

    is_active: bool = False
    retry_count: int = 0
    current_interval: int = 0
    last_attempt: int | None = None
    timer_handle: Any = None
    phase: PollingPhase = PollingPhase.IDLE
    stop_reason: str | None = None
    session_missing_count: int = 0
    attempt_delays: list[int] = field(default_factory=list)
