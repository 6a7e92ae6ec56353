"""
Configuration Loader (``booking_config.loader``).

Responsibility
--------------
Loads the workflow YAML file, applies ``BOOKING_WORKFLOW_*`` environment
overrides, and parses the result into the frozen ``WorkflowConfig``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys / invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping

import yaml

from booking_config.schema import DocumentSettings, SmtpSettings, WorkflowConfig

ENV_PREFIX = "BOOKING_WORKFLOW_"
CONFIG_PATH_ENV = f"{ENV_PREFIX}CONFIG"

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "booking_workflow.yaml"

# Environment variable suffix -> (section, key).  section None is top level.
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "DATABASE_URL": (None, "database_url"),
    "OPERATIONS_MAILBOX": (None, "operations_mailbox"),
    "SENDER_ADDRESS": (None, "sender_address"),
    "APP_URL": (None, "app_url"),
    "ARTIFACT_ROOT": (None, "artifact_root"),
    "GRACE_DELAY_SECONDS": (None, "grace_delay_seconds"),
    "CLAIM_TIMEOUT_SECONDS": (None, "claim_timeout_seconds"),
    "SWEEP_INTERVAL_SECONDS": (None, "sweep_interval_seconds"),
    "LOGO_PATH": ("document", "logo_path"),
    "SMTP_HOST": ("smtp", "host"),
    "SMTP_PORT": ("smtp", "port"),
    "SMTP_USERNAME": ("smtp", "username"),
    "SMTP_PASSWORD": ("smtp", "password"),
    "SMTP_USE_TLS": ("smtp", "use_tls"),
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str],
) -> dict[str, Any]:
    """Return a copy of ``data`` with ``BOOKING_WORKFLOW_*`` values applied."""
    merged = dict(data)
    for suffix, (section, key) in _ENV_OVERRIDES.items():
        raw = environ.get(f"{ENV_PREFIX}{suffix}")
        if raw is None:
            continue
        if section is None:
            merged[key] = raw
        else:
            nested = dict(merged.get(section) or {})
            nested[key] = raw
            merged[section] = nested
    return merged


def parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def parse_positive(value: Any, name: str, kind: type = float) -> Any:
    try:
        parsed = kind(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return parsed


def parse_document(data: dict[str, Any]) -> DocumentSettings:
    """Parse DocumentSettings from a dict."""
    defaults = DocumentSettings()
    return DocumentSettings(
        title=data.get("title", defaults.title),
        logo_path=data.get("logo_path") or None,
        currency_symbol=data.get("currency_symbol", defaults.currency_symbol),
        acknowledgement=data.get("acknowledgement", defaults.acknowledgement),
        billing_heading=data.get("billing_heading", defaults.billing_heading),
        billing_address=tuple(str(line) for line in data.get("billing_address", ())),
        notice_heading=data.get("notice_heading", defaults.notice_heading),
        notice_text=" ".join(str(data.get("notice_text", "")).split()),
    )


def parse_smtp(data: dict[str, Any]) -> SmtpSettings:
    """Parse SmtpSettings from a dict."""
    defaults = SmtpSettings()
    return SmtpSettings(
        host=data.get("host", defaults.host),
        port=parse_positive(data.get("port", defaults.port), "smtp.port", int),
        username=data.get("username") or None,
        password=data.get("password") or None,
        use_tls=parse_bool(data.get("use_tls", defaults.use_tls), "smtp.use_tls"),
        timeout_seconds=parse_positive(
            data.get("timeout_seconds", defaults.timeout_seconds), "smtp.timeout_seconds",
        ),
    )


def parse_workflow_config(data: dict[str, Any]) -> WorkflowConfig:
    """
    Parse a ``WorkflowConfig`` from a dict.

    Raises:
        ValueError: if a required key is missing or a value is invalid.
    """
    for required in ("operations_mailbox", "sender_address"):
        if not str(data.get(required) or "").strip():
            raise ValueError(f"Configuration key '{required}' is required")

    pattern = data.get("internal_company_pattern") or None
    if pattern is not None:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"internal_company_pattern is not a valid regex: {exc}") from exc

    defaults = WorkflowConfig(operations_mailbox="-", sender_address="-")
    return WorkflowConfig(
        operations_mailbox=str(data["operations_mailbox"]).strip(),
        sender_address=str(data["sender_address"]).strip(),
        database_url=data.get("database_url", defaults.database_url),
        organisation_name=data.get("organisation_name", defaults.organisation_name),
        app_url=str(data.get("app_url", defaults.app_url)).rstrip("/"),
        artifact_namespace=str(
            data.get("artifact_namespace", defaults.artifact_namespace)
        ).strip("/"),
        artifact_root=data.get("artifact_root") or None,
        grace_delay_seconds=parse_positive(
            data.get("grace_delay_seconds", defaults.grace_delay_seconds),
            "grace_delay_seconds",
        ),
        sweep_batch_size=parse_positive(
            data.get("sweep_batch_size", defaults.sweep_batch_size), "sweep_batch_size", int,
        ),
        sweep_interval_seconds=parse_positive(
            data.get("sweep_interval_seconds", defaults.sweep_interval_seconds),
            "sweep_interval_seconds",
        ),
        claim_timeout_seconds=parse_positive(
            data.get("claim_timeout_seconds", defaults.claim_timeout_seconds),
            "claim_timeout_seconds",
        ),
        retry_failed=parse_bool(data.get("retry_failed", defaults.retry_failed), "retry_failed"),
        max_attempts=parse_positive(
            data.get("max_attempts", defaults.max_attempts), "max_attempts", int,
        ),
        internal_company_pattern=pattern,
        document=parse_document(data.get("document") or {}),
        smtp=parse_smtp(data.get("smtp") or {}),
    )


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowConfig:
    """Load configuration from ``path``, ``$BOOKING_WORKFLOW_CONFIG`` or the default file."""
    env = os.environ if environ is None else environ
    config_path = Path(path or env.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    data = apply_env_overrides(load_yaml_file(config_path), env)
    return parse_workflow_config(data)
