"""Structured logging helpers for auth sync components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking session tokens.  All
helpers ONLY inject the following *non-sensitive* fields:

- ``component`` – Engine part emitting the record (``manager``, ``polling``…)
- ``tab_id``    – Identifier of the execution context (first 8 chars kept)
- ``source``    – Origin of the state being handled (``internal``…)

The adapter also carries the **verbosity** capability: when ``verbose`` is
false, DEBUG records are dropped at the adapter before they reach the
underlying logger.  Callers decide verbosity once at construction time
instead of consulting the environment on every log call.

Usage
-----
>>> from easyroom.auth_sync.log_utils import get_sync_logger
>>> log = get_sync_logger(component="polling", tab_id="4f1c9a7e-...", verbose=True)
>>> log.debug("Scheduling next check in %sms", 2000)
DEBUG easyroom.auth_sync.polling component=polling tab_id=4f1c9a7e ...
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping

BASE_LOGGER_NAME = "easyroom.auth_sync"


class _SyncLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted sync context into log records."""

    extra_keys = ("component", "tab_id", "source")

    def __init__(
        self,
        logger: logging.Logger,
        extra: Mapping[str, Any] | None = None,
        *,
        verbose: bool = False,
    ):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if k == "tab_id" and extra and extra.get("tab_id"):
                extra_clean[k] = str(extra["tab_id"])[:8]
            elif extra and k in extra and extra[k] is not None:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)
        self.verbose = verbose

    def isEnabledFor(self, level: int) -> bool:  # noqa: N802
        if level < logging.INFO and not self.verbose:
            return False
        return super().isEnabledFor(level)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs

    def child(self, component: str) -> "_SyncLoggerAdapter":
        """Return an adapter for *component* sharing context and verbosity."""
        return get_sync_logger(
            component=component,
            tab_id=self.extra.get("tab_id"),
            source=self.extra.get("source"),
            verbose=self.verbose,
        )


def get_sync_logger(
    *,
    component: str,
    tab_id: str | None = None,
    source: str | None = None,
    verbose: bool = False,
    base_logger_name: str = BASE_LOGGER_NAME,
) -> _SyncLoggerAdapter:
    """Return a LoggerAdapter pre-filled with sync context."""
    logger = logging.getLogger(f"{base_logger_name}.{component}")
    return _SyncLoggerAdapter(
        logger,
        {"component": component, "tab_id": tab_id, "source": source},
        verbose=verbose,
    )


def mask_sensitive(value: str | None, keep: int = 4) -> str:
    """Return *value* with everything after the first *keep* chars masked."""
    if not value:
        return "<none>"
    if len(value) <= keep:
        return "*" * len(value)
    return f"{value[:keep]}****"


SyncLogger = _SyncLoggerAdapter
