"""
Tests for the immediate approval trigger (ApprovalTrigger via BookingFormWorkflow).

Covers the end-to-end happy path, idempotent repeats, partial delivery,
degraded mode without a ledger, storage failures and missing subject data.
"""

from datetime import timedelta

import pytest

from booking_kernel.domain.ledger import LedgerStatus, build_idempotency_key
from booking_kernel.services.ledger_service import LedgerService
from booking_workflow.services import trigger as trigger_module
from tests.conftest import (
    APPROVAL_TIME,
    APPROVER_ID,
    OPERATIONS_MAILBOX,
    FailingArtifactStore,
    InMemoryDomainData,
    make_subject,
)

KEY = "INV-1_2024-03-01T10:00:00.000Z"
STORED_PATH = "booking-forms/INV-1/BookingForm_Acme_Ltd_Jane_Smith_March_2024.pdf"


def _approve(workflow, subject_id="INV-1", email="alex@example.com", at=APPROVAL_TIME):
    return workflow.on_approval(subject_id, APPROVER_ID, "Alex Approver", email, at)


# =============================================================================
# Happy path and idempotency
# =============================================================================


class TestTriggerHappyPath:
    def test_end_to_end(self, workflow, ledger, store, transport):
        result = _approve(workflow)

        assert result.ok
        assert not result.skipped
        assert not result.degraded
        assert result.error is None
        assert result.idempotency_key == KEY

        entry = ledger.get(result.ledger_id)
        assert entry.idempotency_key == KEY
        assert entry.status == LedgerStatus.COMPLETED
        assert entry.recipient_a_sent_at == APPROVAL_TIME
        assert entry.recipient_b_sent_at == APPROVAL_TIME
        assert entry.error_detail is None
        assert entry.artifact_path == STORED_PATH
        assert entry.attempt_count == 1

        assert [m.to for m in transport.sent] == ["alex@example.com", OPERATIONS_MAILBOX]
        assert [m.idempotency_token for m in transport.sent] == [
            f"{KEY}_recipient_a",
            f"{KEY}_recipient_b",
        ]

    def test_stored_bytes_equal_attachments(self, workflow, store, transport):
        _approve(workflow)

        stored = store.get(STORED_PATH)
        assert stored.startswith(b"%PDF")
        assert all(m.attachments[0].content == stored for m in transport.sent)

    def test_repeat_with_same_key_is_skipped(self, workflow, transport):
        _approve(workflow)
        result = _approve(workflow)

        assert result.ok
        assert result.skipped
        assert len(transport.sent) == 2

    def test_completed_subject_skips_new_approval_time(self, workflow, transport, provider):
        _approve(workflow)
        calls_before = len(provider.calls)

        result = _approve(workflow, at=APPROVAL_TIME + timedelta(minutes=3))

        assert result.skipped
        assert len(transport.sent) == 2
        assert len(provider.calls) == calls_before

    def test_existing_row_for_key_is_left_to_sweeper(self, workflow, ledger, transport):
        ledger_id = ledger.create("INV-1", APPROVER_ID, APPROVAL_TIME, KEY)

        result = _approve(workflow)

        assert result.ok
        assert result.skipped
        assert transport.sent == []
        assert ledger.get(ledger_id).status == LedgerStatus.PENDING

    def test_log_context_is_bound(self, workflow, captured_logs):
        _approve(workflow)

        finished = [r for r in captured_logs() if r["message"] == "booking_form_workflow_finished"]
        assert len(finished) == 1
        assert finished[0]["subject_id"] == "INV-1"
        assert finished[0]["idempotency_key"] == KEY
        assert finished[0]["ok"] is True


# =============================================================================
# Failures
# =============================================================================


class TestTriggerFailures:
    def test_partial_delivery_is_recorded(self, workflow, ledger, transport):
        transport.fail_for[OPERATIONS_MAILBOX] = "mailbox full"

        result = _approve(workflow)

        assert not result.ok
        assert result.error == "Recipient B: mailbox full"
        entry = ledger.get(result.ledger_id)
        assert entry.status == LedgerStatus.FAILED
        assert entry.recipient_a_sent_at == APPROVAL_TIME
        assert entry.recipient_b_sent_at is None
        assert "mailbox full" in entry.error_detail

    def test_approver_failure_does_not_block_operations(self, workflow, ledger, transport):
        transport.raise_for.add("alex@example.com")

        result = _approve(workflow)

        assert not result.ok
        assert [m.to for m in transport.sent] == [OPERATIONS_MAILBOX]
        entry = ledger.get(result.ledger_id)
        assert entry.recipient_a_sent_at is None
        assert entry.recipient_b_sent_at == APPROVAL_TIME
        assert entry.error_detail.startswith("Recipient A: relay refused")

    def test_empty_approver_address(self, workflow, ledger, transport):
        result = _approve(workflow, email="")

        assert not result.ok
        assert "Recipient A address is empty" in result.error
        assert [m.to for m in transport.sent] == [OPERATIONS_MAILBOX]

    def test_storage_failure_still_sends(self, make_workflow, ledger, transport):
        wf = make_workflow(store=FailingArtifactStore())

        result = _approve(wf)

        assert len(transport.sent) == 2
        entry = ledger.get(result.ledger_id)
        assert entry.status == LedgerStatus.FAILED
        assert entry.error_detail == "Storage: bucket unavailable"
        assert entry.artifact_path is None

    def test_storage_and_send_errors_accumulate_in_order(self, make_workflow, transport):
        wf = make_workflow(store=FailingArtifactStore())
        transport.fail_for["alex@example.com"] = "rejected"
        transport.fail_for[OPERATIONS_MAILBOX] = "mailbox full"

        result = _approve(wf)

        assert result.error == (
            "Storage: bucket unavailable; Recipient A: rejected; Recipient B: mailbox full"
        )

    def test_render_failure_marks_row_failed(self, workflow, ledger, transport, monkeypatch):
        def _broken(record, options=None):
            raise RuntimeError("font missing")

        monkeypatch.setattr(trigger_module, "render_booking_form", _broken)

        result = _approve(workflow)

        assert not result.ok
        assert transport.sent == []
        entry = ledger.get(result.ledger_id)
        assert entry.status == LedgerStatus.FAILED
        assert entry.error_detail == "font missing"

    def test_missing_subject_writes_nothing(self, workflow, ledger, transport):
        result = _approve(workflow, subject_id="INV-404")

        assert not result.ok
        assert result.error == "Could not load booking form data for subject INV-404"
        assert ledger.find_open_for_subject("INV-404") == []
        assert ledger.check_completed(build_idempotency_key("INV-404", APPROVAL_TIME)) is None
        assert transport.sent == []

    def test_provider_exception_never_escapes(self, make_workflow):
        class ExplodingProvider(InMemoryDomainData):
            def load_subject(self, subject_id):
                raise ConnectionError("domain database down")

        wf = make_workflow(provider=ExplodingProvider())

        result = _approve(wf)

        assert not result.ok
        assert result.error == "domain database down"

    def test_non_numeric_subject_fields_still_complete(self, workflow, provider, ledger, transport):
        provider.subjects["INV-1"] = make_subject(
            service_days_count="n/a", service_rate_per_day="tbc",
        )

        result = _approve(workflow)

        assert result.ok
        assert ledger.get(result.ledger_id).status == LedgerStatus.COMPLETED
        assert "£0" in transport.sent[0].html_body


# =============================================================================
# Degraded mode
# =============================================================================


class TestTriggerDegradedMode:
    @pytest.fixture
    def degraded_workflow(self, make_workflow, unprovisioned_session_factory, deterministic_clock):
        ledger = LedgerService(unprovisioned_session_factory, clock=deterministic_clock)
        return make_workflow(ledger=ledger)

    def test_runs_without_ledger(self, degraded_workflow, store, transport):
        result = degraded_workflow.on_approval(
            "INV-1", APPROVER_ID, "Alex Approver", "alex@example.com", APPROVAL_TIME,
        )

        assert result.ok
        assert result.degraded
        assert result.ledger_id is None
        assert len(transport.sent) == 2
        assert store.get(STORED_PATH) is not None

    def test_degraded_mode_is_logged(self, degraded_workflow, captured_logs):
        degraded_workflow.on_approval(
            "INV-1", APPROVER_ID, "Alex Approver", "alex@example.com", APPROVAL_TIME,
        )

        logs = captured_logs()
        assert any(r["message"] == "booking_form_degraded_mode" for r in logs)

    def test_ledger_available_reports_capability(self, degraded_workflow, workflow):
        assert workflow.ledger_available() is True
        assert degraded_workflow.ledger_available() is False
