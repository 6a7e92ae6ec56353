"""
Tests for workflow configuration loading.

Covers:
- Shipped defaults file parses into a WorkflowConfig
- Parser validation (required keys, positive numbers, booleans, regex)
- BOOKING_WORKFLOW_* environment overrides
- get_config() caching
"""

from __future__ import annotations

import dataclasses

import pytest
import yaml

import booking_config
from booking_config.loader import (
    DEFAULT_CONFIG_PATH,
    apply_env_overrides,
    load_config,
    parse_workflow_config,
)
from booking_config.schema import DocumentSettings, SmtpSettings, WorkflowConfig

MINIMAL = {
    "operations_mailbox": "operations@example.com",
    "sender_address": "noreply@example.com",
}


@pytest.fixture
def config_file(tmp_path):
    def _write(data: dict):
        path = tmp_path / "workflow.yaml"
        path.write_text(yaml.safe_dump(data))
        return path

    return _write


# =========================================================================
# Shipped defaults
# =========================================================================


class TestDefaults:
    def test_default_file_loads(self):
        config = load_config(DEFAULT_CONFIG_PATH, environ={})

        assert isinstance(config, WorkflowConfig)
        assert config.grace_delay_seconds == 30
        assert config.sweep_batch_size == 20
        assert config.artifact_namespace == "booking-forms"
        assert config.retry_failed is True
        assert config.document.currency_symbol == "£"
        assert config.document.billing_address[0] == "Example Media UK"
        assert config.document.notice_text.startswith("*Invoices will be settled")
        assert "\n" not in config.document.notice_text

    def test_schema_is_frozen(self):
        config = parse_workflow_config(MINIMAL)
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.grace_delay_seconds = 1

    def test_minimal_config_uses_schema_defaults(self):
        config = parse_workflow_config(MINIMAL)

        assert config.claim_timeout_seconds == 600
        assert config.max_attempts == 3
        assert config.internal_company_pattern is None
        assert config.document == DocumentSettings()
        assert config.smtp == SmtpSettings()


# =========================================================================
# Validation
# =========================================================================


class TestValidation:
    @pytest.mark.parametrize("missing", ["operations_mailbox", "sender_address"])
    def test_required_keys(self, missing):
        data = {k: v for k, v in MINIMAL.items() if k != missing}
        with pytest.raises(ValueError, match=missing):
            parse_workflow_config(data)

    def test_blank_required_key(self):
        with pytest.raises(ValueError, match="operations_mailbox"):
            parse_workflow_config({**MINIMAL, "operations_mailbox": "  "})

    @pytest.mark.parametrize(
        "key, value",
        [
            ("grace_delay_seconds", 0),
            ("sweep_batch_size", -1),
            ("claim_timeout_seconds", "soon"),
            ("max_attempts", 0),
        ],
    )
    def test_non_positive_numbers_rejected(self, key, value):
        with pytest.raises(ValueError, match=key):
            parse_workflow_config({**MINIMAL, key: value})

    def test_invalid_boolean_rejected(self):
        with pytest.raises(ValueError, match="retry_failed"):
            parse_workflow_config({**MINIMAL, "retry_failed": "maybe"})

    def test_invalid_regex_rejected(self):
        with pytest.raises(ValueError, match="internal_company_pattern"):
            parse_workflow_config({**MINIMAL, "internal_company_pattern": "(unclosed"})

    def test_paths_are_normalized(self):
        config = parse_workflow_config(
            {**MINIMAL, "app_url": "https://app.example.com/", "artifact_namespace": "/forms/"},
        )
        assert config.app_url == "https://app.example.com"
        assert config.artifact_namespace == "forms"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml", environ={})


# =========================================================================
# Environment overrides
# =========================================================================


class TestEnvironmentOverrides:
    def test_top_level_and_nested(self):
        merged = apply_env_overrides(
            {"smtp": {"host": "localhost", "port": 25}},
            {
                "BOOKING_WORKFLOW_GRACE_DELAY_SECONDS": "45",
                "BOOKING_WORKFLOW_SMTP_HOST": "relay.internal",
                "UNRELATED": "x",
            },
        )
        assert merged["grace_delay_seconds"] == "45"
        assert merged["smtp"] == {"host": "relay.internal", "port": 25}
        assert "UNRELATED" not in merged

    def test_overrides_are_parsed(self, config_file):
        path = config_file(MINIMAL)
        config = load_config(
            path,
            environ={
                "BOOKING_WORKFLOW_GRACE_DELAY_SECONDS": "45",
                "BOOKING_WORKFLOW_SMTP_PORT": "587",
                "BOOKING_WORKFLOW_SMTP_USE_TLS": "yes",
                "BOOKING_WORKFLOW_DATABASE_URL": "sqlite:///other.db",
            },
        )
        assert config.grace_delay_seconds == 45.0
        assert config.smtp.port == 587
        assert config.smtp.use_tls is True
        assert config.database_url == "sqlite:///other.db"

    def test_config_path_from_environment(self, config_file):
        path = config_file({**MINIMAL, "organisation_name": "Night Desk"})
        config = load_config(environ={"BOOKING_WORKFLOW_CONFIG": str(path)})
        assert config.organisation_name == "Night Desk"


# =========================================================================
# get_config caching
# =========================================================================


class TestGetConfig:
    def test_explicit_path_reloads(self, config_file, monkeypatch):
        monkeypatch.setattr(booking_config, "_cached", None)
        first = booking_config.get_config(config_file({**MINIMAL, "organisation_name": "A"}))
        assert booking_config.get_config() is first

        second = booking_config.get_config(config_file({**MINIMAL, "organisation_name": "B"}))
        assert second.organisation_name == "B"
