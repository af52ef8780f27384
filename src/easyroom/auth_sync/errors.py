"""Exception types used by the auth sync engine.

Only lightweight, **data-carrying** exceptions live here.  Storage-layer
conditions are recovered inside the engine and normalised to "no state";
they exist as types so that logs, the health monitor and tests can name them.
The two exceptions that are meant to be seen by callers are
:class:`SessionMissingError` (raised by session-lookup collaborators to ask the
poller to fail fast) and :class:`RedirectionError` (raised by
``redirect_to_auth``).
"""

from __future__ import annotations


class AuthSyncError(RuntimeError):
    """Base class for every auth sync error."""

    code: str = "auth_sync_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.code, "message": str(self)}


class StorageUnavailableError(AuthSyncError):
    """No persistent key/value store exists in this environment."""

    code = "storage_unavailable"


class StorageWriteError(AuthSyncError):
    """Writing to the persistent store failed (quota exceeded, disabled, I/O)."""

    code = "storage_write_failure"

    def __init__(self, message: str | None = None, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key

    def to_payload(self) -> dict[str, str]:
        payload = super().to_payload()
        if self.key:
            payload["key"] = self.key
        return payload


class CorruptedDataError(AuthSyncError):
    """Stored value could not be parsed or carries an unknown schema version."""

    code = "corrupted_data"


class StaleDataError(AuthSyncError):
    """Stored state is older than the grace period."""

    code = "stale_data"

    def __init__(self, *, age_ms: int, grace_period_ms: int) -> None:
        super().__init__(f"State is {age_ms}ms old (grace period {grace_period_ms}ms).")
        self.age_ms = age_ms
        self.grace_period_ms = grace_period_ms


class SessionMissingError(AuthSyncError):
    """The session lookup reports that no session exists at all."""

    code = "session_missing"


class SessionLookupError(AuthSyncError):
    """The session lookup failed for a reason worth retrying."""

    code = "session_lookup_failed"


class MaxRetriesExceededError(AuthSyncError):
    """Polling gave up after exhausting its retry budget."""

    code = "max_retries_exceeded"

    def __init__(self, *, retries: int) -> None:
        super().__init__(f"Polling stopped after {retries} attempts.")
        self.retries = retries


class RedirectionError(AuthSyncError):
    """Building or performing the redirect to an auth provider failed."""

    code = "redirection_failed"

    def __init__(self, *, provider: str, message: str | None = None) -> None:
        super().__init__(message or f"Failed to redirect to {provider} authentication.")
        self.provider = provider

    def to_payload(self) -> dict[str, str]:
        payload = super().to_payload()
        payload["provider"] = self.provider
        return payload
