"""One-time conversion of legacy storage keys into the current envelope.

The migration log under ``easyroom_migration_log`` gates the work: once a log
at :data:`~easyroom.auth_sync.models.SCHEMA_VERSION` exists, every further
call is a no-op.  A run is *performed* even when it finds nothing or fails, so
a broken legacy value never makes every startup retry it.

Legacy detection is loose.  The first of
:data:`~easyroom.auth_sync.state_store.LEGACY_KEYS` whose value is a JSON
object with a boolean ``isAuthenticated``, a ``user`` object, a non-empty
string ``token`` or a non-zero numeric ``timestamp`` wins; a key whose name
contains ``token`` and whose value is not JSON is taken as a bare session
token.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from easyroom.auth_sync.clock import now_ms
from easyroom.auth_sync.errors import CorruptedDataError
from easyroom.auth_sync.log_utils import get_sync_logger
from easyroom.auth_sync.manager import AuthStateManager
from easyroom.auth_sync.models import (
    SCHEMA_VERSION,
    AuthState,
    MigrationLog,
    MigrationResult,
)
from easyroom.auth_sync.state_store import LEGACY_KEYS, MIGRATION_LOG_KEY


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_valid_legacy_state(obj: Any) -> bool:
    if not isinstance(obj, Mapping):
        return False
    return (
        isinstance(obj.get("isAuthenticated"), bool)
        or isinstance(obj.get("user"), Mapping)
        or (isinstance(obj.get("token"), str) and bool(obj["token"]))
        or (_is_number(obj.get("timestamp")) and bool(obj["timestamp"]))
    )


class MigrationShim:
    """Idempotent legacy-to-envelope migration for one storage namespace."""

    def __init__(self, manager: AuthStateManager, *, logger: logging.LoggerAdapter | None = None) -> None:
        self.manager = manager
        self._store = manager.store
        self._clock = manager.clock
        self._log = logger or get_sync_logger(component="migration")

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    def migration_log(self) -> MigrationLog | None:
        data = self._store.read_json(MIGRATION_LOG_KEY)
        if data is None:
            return None
        try:
            return MigrationLog.from_dict(data)
        except CorruptedDataError:
            return None

    def is_migration_needed(self) -> bool:
        log = self.migration_log()
        return log is None or log.version != SCHEMA_VERSION

    def migration_status(self) -> dict[str, Any]:
        log = self.migration_log()
        return {
            "current_version": SCHEMA_VERSION,
            "migration_needed": log is None or log.version != SCHEMA_VERSION,
            "last_migration": log.to_dict() if log is not None else None,
        }

    def perform_migration(self) -> MigrationResult:
        """Run the migration once per schema version; never raises."""
        try:
            if not self.is_migration_needed():
                self._log.debug("Migration already performed for version %s", SCHEMA_VERSION)
                return MigrationResult(migration_performed=False, success=True)

            self._log.info("Starting auth state migration")

            if self.manager.get_state() is not None:
                self._write_log(True, "Current-format state already present")
                return MigrationResult(migration_performed=True, success=True, legacy_data_found=False)

            legacy = self._find_legacy_state()
            if legacy is None:
                self._log.info("No legacy data found")
                self._write_log(True, "No legacy data found")
                return MigrationResult(migration_performed=True, success=True, legacy_data_found=False)

            migrated = self._convert(legacy)
            written = self.manager.set_state(migrated)
            self._cleanup_legacy_keys()
            if not written:
                message = "Migrated state could not be persisted"
                self._log.error(message)
                self._write_log(False, message)
                return MigrationResult(
                    migration_performed=True,
                    success=False,
                    legacy_data_found=True,
                    error=message,
                )

            self._write_log(True, "Successfully migrated legacy auth state")
            self._log.info("Migration completed (status=%s)", migrated.status)
            return MigrationResult(
                migration_performed=True,
                success=True,
                legacy_data_found=True,
                migrated_state=migrated,
            )
        except Exception as exc:
            self._log.error("Migration failed: %s", exc)
            self._write_log(False, str(exc) or type(exc).__name__)
            return MigrationResult(migration_performed=True, success=False, error=str(exc))

    # ---------------- internal helpers --------------------------------- #
    def _find_legacy_state(self) -> Mapping[str, Any] | None:
        for key in LEGACY_KEYS:
            raw = self._store.read_text(key)
            if raw is None:
                continue
            try:
                parsed = json.loads(raw)
            except ValueError:
                if "token" in key and raw:
                    self._log.debug("Treating %s as a bare session token", key)
                    return {"token": raw, "timestamp": now_ms(self._clock)}
                continue
            if is_valid_legacy_state(parsed):
                self._log.debug("Found legacy auth data under %s", key)
                return parsed
        return None

    def _convert(self, legacy: Mapping[str, Any]) -> AuthState:
        user = legacy.get("user")
        token = legacy.get("token")
        authenticated = legacy.get("isAuthenticated") is True or bool(user) or bool(token)

        user_id = None
        if isinstance(user, Mapping) and user.get("id") is not None:
            user_id = str(user["id"])
        timestamp = legacy.get("timestamp")
        if not _is_number(timestamp) or not timestamp:
            timestamp = now_ms(self._clock)

        return AuthState(
            status="authenticated" if authenticated else "unauthenticated",
            timestamp=int(timestamp),
            source="migration",
            user_id=user_id,
            session_token=token if isinstance(token, str) and token else None,
        )

    def _cleanup_legacy_keys(self) -> None:
        cleaned = 0
        for key in LEGACY_KEYS:
            if self._store.read_text(key) is None:
                continue
            if self._store.remove(key):
                cleaned += 1
        self._log.info("Cleaned up %s legacy key(s)", cleaned)

    def _write_log(self, success: bool, message: str) -> None:
        log = MigrationLog(
            version=SCHEMA_VERSION,
            timestamp=now_ms(self._clock),
            success=success,
            message=message,
        )
        if not self._store.write_json(MIGRATION_LOG_KEY, log.to_dict()):
            self._log.warning("Migration log could not be written")


def run_startup_migration(manager: AuthStateManager) -> MigrationResult:
    """Run the migration if needed; intended for application startup."""
    shim = MigrationShim(manager)
    if not shim.is_migration_needed():
        return MigrationResult(migration_performed=False, success=True)
    return shim.perform_migration()
