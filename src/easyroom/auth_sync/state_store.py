"""Envelope and staleness policy on top of a :class:`KeyValueStorage`.

:class:`PersistentStateStore` is the only component that touches storage
directly.  Its contract is simple: **nothing here raises**.  Missing storage,
failing writes, unparsable JSON, unknown schema versions and stale states are
all caught, logged, and reported as "absence of state" (``None``) or as a
``False`` write result.

Staleness is judged on ``state.timestamp`` (when the authentication happened),
not on the envelope's ``updatedAt``, and is re-evaluated on every read: no
reader trusts a cached value.  Reads never delete a stale record because a
concurrent writer in another context may have just replaced it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Final

from easyroom.auth_sync.clock import Clock, default_clock, now_ms
from easyroom.auth_sync.errors import (
    CorruptedDataError,
    StaleDataError,
    StorageUnavailableError,
)
from easyroom.auth_sync.log_utils import get_sync_logger
from easyroom.auth_sync.models import (
    SCHEMA_VERSION,
    AuthState,
    EnvelopeMetadata,
    StateEnvelope,
)
from easyroom.auth_sync.store import KeyValueStorage

AUTH_STATE_KEY: Final[str] = "easyroom_auth_state"
MIGRATION_LOG_KEY: Final[str] = "easyroom_migration_log"
RETURN_URL_KEY: Final[str] = "easyroom_auth_return_url"
AUTH_RESULT_KEY: Final[str] = "easyroom_auth_result"
HEALTH_METRICS_KEY: Final[str] = "easyroom_auth_health_metrics"
LEGACY_KEYS: Final[tuple[str, ...]] = (
    "easyroom_auth",
    "easyroom_user",
    "easyroom_token",
    "auth_state",
    "user_session",
)

DEFAULT_GRACE_PERIOD_MS: Final[int] = 5 * 60 * 1000


class PersistentStateStore:
    """Read/write the versioned auth state envelope; never raises."""

    def __init__(
        self,
        storage: KeyValueStorage | None,
        *,
        clock: Clock = default_clock,
        grace_period_ms: int = DEFAULT_GRACE_PERIOD_MS,
        key: str = AUTH_STATE_KEY,
        logger: logging.LoggerAdapter | None = None,
        on_storage_event=None,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self.grace_period_ms = grace_period_ms
        self.key = key
        self._log = logger or get_sync_logger(component="store")
        # (success, operation, error) -> None; wired to the health monitor
        self._on_storage_event = on_storage_event
        if storage is None:
            self._log.warning("%s", StorageUnavailableError())

    @property
    def available(self) -> bool:
        return self._storage is not None

    def _record(self, success: bool, operation: str, error: Exception | None = None) -> None:
        if self._on_storage_event is not None:
            self._on_storage_event(success, operation, error)

    # ------------------------------------------------------------------ #
    # Raw, exception-swallowing helpers                                  #
    # ------------------------------------------------------------------ #
    def read_text(self, key: str) -> str | None:
        if self._storage is None:
            return None
        try:
            return self._storage.get_item(key)
        except Exception as exc:
            self._log.error("Failed to read %s: %s", key, exc)
            self._record(False, "get", exc)
            return None

    def write_text(self, key: str, value: str) -> bool:
        if self._storage is None:
            return False
        try:
            self._storage.set_item(key, value)
        except Exception as exc:
            self._log.error("Failed to write %s: %s", key, exc)
            self._record(False, "set", exc)
            return False
        return True

    def remove(self, key: str) -> bool:
        if self._storage is None:
            return False
        try:
            self._storage.remove_item(key)
        except Exception as exc:
            self._log.error("Failed to remove %s: %s", key, exc)
            self._record(False, "remove", exc)
            return False
        return True

    def read_json(self, key: str) -> Any | None:
        raw = self.read_text(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            self._log.debug("Ignoring unparsable JSON under %s", key)
            return None

    def write_json(self, key: str, value: Any) -> bool:
        try:
            raw = json.dumps(value, separators=(",", ":"), sort_keys=True)
        except (TypeError, ValueError) as exc:
            self._log.error("Refusing to write unserialisable value under %s: %s", key, exc)
            return False
        return self.write_text(key, raw)

    # ------------------------------------------------------------------ #
    # Envelope                                                           #
    # ------------------------------------------------------------------ #
    def read_envelope(self) -> StateEnvelope | None:
        """Return the stored envelope if it parses at the current version."""
        raw = self.read_text(self.key)
        if raw is None:
            return None
        try:
            envelope = StateEnvelope.from_dict(json.loads(raw))
        except (ValueError, CorruptedDataError) as exc:
            # json.JSONDecodeError is a ValueError
            self._log.debug("Treating stored state as absent: %s", CorruptedDataError(str(exc)))
            return None
        return envelope

    def read_state(self) -> AuthState | None:
        envelope = self.read_envelope()
        if envelope is None:
            return None
        age_ms = now_ms(self._clock) - envelope.state.timestamp
        if age_ms > self.grace_period_ms:
            self._log.debug(
                "Treating stored state as absent: %s",
                StaleDataError(age_ms=age_ms, grace_period_ms=self.grace_period_ms),
            )
            return None
        self._record(True, "get")
        return envelope.state

    def write_state(self, state: AuthState) -> bool:
        now = now_ms(self._clock)
        previous = self.read_envelope()
        envelope = StateEnvelope(
            version=SCHEMA_VERSION,
            state=state,
            metadata=EnvelopeMetadata(
                created_at=previous.metadata.created_at if previous else now,
                updated_at=now,
                source=state.source,
            ),
        )
        ok = self.write_json(self.key, envelope.to_dict())
        if ok:
            self._record(True, "set")
        return ok

    def clear_state(self) -> bool:
        ok = self.remove(self.key)
        if ok:
            self._record(True, "remove")
        return ok
