"""
booking_config -- single public entrypoint for workflow configuration.

Responsibility:
    ``get_config()`` is the only way runtime code obtains a
    ``WorkflowConfig``.  YAML loading and environment overrides live in
    ``booking_config.loader``.

Failure modes:
    - ``FileNotFoundError`` -- the configured YAML file does not exist.
    - ``ValueError`` -- a required key is missing or a value is invalid.
"""

from __future__ import annotations

import threading
from pathlib import Path

from booking_config.loader import load_config
from booking_config.schema import DocumentSettings, SmtpSettings, WorkflowConfig

_cached: WorkflowConfig | None = None
_lock = threading.Lock()


def get_config(path: Path | str | None = None, reload: bool = False) -> WorkflowConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _cached
    with _lock:
        if _cached is None or reload or path is not None:
            _cached = load_config(path)
        return _cached


__all__ = [
    "DocumentSettings",
    "SmtpSettings",
    "WorkflowConfig",
    "get_config",
    "load_config",
]
