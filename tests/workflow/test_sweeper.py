"""
Tests for PendingSweeper -- deferred processing of open ledger rows.

Rows are created directly through the ledger to stand in for a trigger
that stopped part way (process crash, timeout, partial delivery).
"""

from dataclasses import replace

import pytest
from sqlalchemy.exc import OperationalError

from booking_kernel.domain.ledger import LedgerStatus, build_idempotency_key
from booking_kernel.exceptions import LedgerUnavailableError
from booking_kernel.services.ledger_service import LedgerService
from booking_workflow.domain.records import build_workflow_record
from booking_workflow.renderer import artifact_path
from tests.conftest import APPROVAL_TIME, APPROVER_ID, OPERATIONS_MAILBOX, make_subject

KEY = "INV-1_2024-03-01T10:00:00.000Z"
# Arbitrary bytes: the sweeper must send what is stored, never re-render.
STORED = b"%PDF-1.4 stored at approval time"


@pytest.fixture
def stored_path():
    record = build_workflow_record(make_subject(), "Alex Approver", APPROVAL_TIME)
    return artifact_path("booking-forms", "INV-1", record)


@pytest.fixture
def pending_row(ledger, store, stored_path):
    """A pending row whose trigger stored the document and then stopped."""
    store.put(stored_path, STORED)
    return ledger.create("INV-1", APPROVER_ID, APPROVAL_TIME, KEY)


class TestSweepSelection:
    def test_recent_rows_are_left_alone(self, workflow, pending_row, transport, deterministic_clock):
        deterministic_clock.advance(5)

        result = workflow.sweep()

        assert result.processed == 0
        assert result.errors == ()
        assert transport.sent == []

    def test_nothing_to_do(self, workflow):
        result = workflow.sweep()
        assert result.processed == 0
        assert result.errors == ()

    def test_batch_size_is_respected(
        self, make_workflow, config, ledger, store, provider, deterministic_clock,
    ):
        for i in range(3):
            subject = make_subject(f"INV-{i}")
            provider.subjects[subject.subject_id] = subject
            record = build_workflow_record(subject, "Alex Approver", APPROVAL_TIME)
            store.put(artifact_path("booking-forms", subject.subject_id, record), STORED)
            key = build_idempotency_key(subject.subject_id, APPROVAL_TIME)
            ledger.create(subject.subject_id, APPROVER_ID, APPROVAL_TIME, key)
        deterministic_clock.advance(60)

        wf = make_workflow(config=replace(config, sweep_batch_size=2))
        assert wf.sweep().processed == 2
        assert wf.sweep().processed == 1


class TestSweepProcessing:
    def test_sends_stored_bytes_and_completes(
        self, workflow, ledger, pending_row, transport, stored_path, deterministic_clock,
    ):
        deterministic_clock.advance(40)

        result = workflow.sweep()

        assert result.processed == 1
        assert result.errors == ()
        assert [m.to for m in transport.sent] == ["alex@example.com", OPERATIONS_MAILBOX]
        assert all(m.attachments[0].content == STORED for m in transport.sent)
        assert transport.sent[0].idempotency_token == f"{KEY}_recipient_a"

        entry = ledger.get(pending_row)
        assert entry.status == LedgerStatus.COMPLETED
        assert entry.recipient_a_sent_at == deterministic_clock.now()
        assert entry.recipient_b_sent_at == deterministic_clock.now()
        assert entry.artifact_path == stored_path

    def test_approver_resolved_from_directory(self, workflow, pending_row, transport, deterministic_clock):
        deterministic_clock.advance(40)
        workflow.sweep()

        body = transport.sent[0].html_body
        assert "Dear Alex Approver," in body

    def test_unknown_approver_uses_fallback_name(
        self, workflow, directory, ledger, pending_row, transport, deterministic_clock,
    ):
        directory.users.clear()
        deterministic_clock.advance(40)

        result = workflow.sweep()

        # no address for recipient A, operations copy still goes out
        assert [m.to for m in transport.sent] == [OPERATIONS_MAILBOX]
        assert "Approved By:</strong> Approver ()" in transport.sent[0].html_body
        assert result.processed == 1
        assert ledger.get(pending_row).status == LedgerStatus.FAILED

    def test_second_sweep_does_not_resend(self, workflow, pending_row, transport, deterministic_clock):
        deterministic_clock.advance(40)
        workflow.sweep()
        deterministic_clock.advance(120)

        result = workflow.sweep()

        assert result.processed == 0
        assert len(transport.sent) == 2

    def test_partial_delivery_reported(
        self, workflow, ledger, pending_row, transport, deterministic_clock,
    ):
        transport.fail_for[OPERATIONS_MAILBOX] = "mailbox full"
        deterministic_clock.advance(40)

        result = workflow.sweep()

        assert result.processed == 1
        assert result.errors == ("Subject INV-1: Recipient B: mailbox full",)
        entry = ledger.get(pending_row)
        assert entry.status == LedgerStatus.FAILED
        assert entry.recipient_a_sent_at is not None
        assert entry.recipient_b_sent_at is None

    def test_failed_row_retries_only_undelivered_recipient(
        self, workflow, ledger, pending_row, transport, deterministic_clock, stored_path,
    ):
        ledger.claim(pending_row)
        ledger.update(
            pending_row,
            LedgerStatus.FAILED,
            recipient_a_sent_at=APPROVAL_TIME,
            recipient_b_sent_at=None,
            error_detail="Recipient B: mailbox full",
            artifact_path=stored_path,
        )
        deterministic_clock.advance(60)

        result = workflow.sweep()

        assert result.processed == 1
        assert [m.to for m in transport.sent] == [OPERATIONS_MAILBOX]
        entry = ledger.get(pending_row)
        assert entry.status == LedgerStatus.COMPLETED
        assert entry.recipient_a_sent_at == APPROVAL_TIME
        assert entry.error_detail is None
        assert entry.attempt_count == 2

    def test_stale_processing_row_is_reclaimed(
        self, workflow, ledger, pending_row, transport, deterministic_clock,
    ):
        ledger.claim(pending_row)
        deterministic_clock.advance(60)
        assert workflow.sweep().processed == 0

        deterministic_clock.advance(600)
        result = workflow.sweep()

        assert result.processed == 1
        assert len(transport.sent) == 2
        assert ledger.get(pending_row).status == LedgerStatus.COMPLETED


class TestSweepFailures:
    def test_missing_artifact_fails_row(self, workflow, ledger, transport, deterministic_clock):
        ledger_id = ledger.create("INV-1", APPROVER_ID, APPROVAL_TIME, KEY)
        deterministic_clock.advance(40)

        result = workflow.sweep()

        assert result.processed == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Subject INV-1: Stored booking form not found")
        assert transport.sent == []
        entry = ledger.get(ledger_id)
        assert entry.status == LedgerStatus.FAILED
        assert "Stored booking form not found" in entry.error_detail

    def test_missing_subject_fails_row(self, workflow, ledger, transport, deterministic_clock):
        ledger_id = ledger.create(
            "INV-404", APPROVER_ID, APPROVAL_TIME, build_idempotency_key("INV-404", APPROVAL_TIME),
        )
        deterministic_clock.advance(40)

        result = workflow.sweep()

        assert result.errors == (
            "Subject INV-404: Could not load booking form data for subject INV-404",
        )
        assert ledger.get(ledger_id).status == LedgerStatus.FAILED
        assert transport.sent == []

    def test_one_bad_row_does_not_stop_the_batch(
        self, workflow, ledger, pending_row, transport, deterministic_clock,
    ):
        ledger.create(
            "INV-404", APPROVER_ID, APPROVAL_TIME, build_idempotency_key("INV-404", APPROVAL_TIME),
        )
        deterministic_clock.advance(40)

        result = workflow.sweep()

        assert result.processed == 1
        assert len(result.errors) == 1
        assert ledger.get(pending_row).status == LedgerStatus.COMPLETED

    def test_lost_claim_is_skipped(
        self, workflow, ledger, pending_row, transport, deterministic_clock, monkeypatch,
    ):
        monkeypatch.setattr(ledger, "claim", lambda *args, **kwargs: False)
        deterministic_clock.advance(40)

        result = workflow.sweep()

        assert result.processed == 0
        assert result.errors == ()
        assert transport.sent == []

    def test_exhausted_attempts_are_not_retried(
        self, workflow, ledger, pending_row, transport, deterministic_clock,
    ):
        for _ in range(3):
            ledger.claim(pending_row, expected_status=ledger.get(pending_row).status)
            ledger.update(pending_row, LedgerStatus.FAILED, error_detail="boom")
        deterministic_clock.advance(60)

        assert workflow.sweep().processed == 0
        assert transport.sent == []

    def test_ledger_unavailable(
        self, make_workflow, unprovisioned_session_factory, deterministic_clock, transport,
    ):
        wf = make_workflow(
            ledger=LedgerService(unprovisioned_session_factory, clock=deterministic_clock),
        )

        result = wf.sweep()

        assert result.processed == 0
        assert len(result.errors) == 1
        assert "unavailable" in result.errors[0]
        assert transport.sent == []

    def test_claim_error_leaves_row_to_its_holder(
        self, workflow, ledger, pending_row, transport, deterministic_clock, monkeypatch,
    ):
        real_claim = ledger.claim

        def _claimed_then_locked(*args, **kwargs):
            # the claim lands for another worker, then this connection errors
            real_claim(*args, **kwargs)
            raise OperationalError("UPDATE booking_form_ledger", {}, Exception("database is locked"))

        monkeypatch.setattr(ledger, "claim", _claimed_then_locked)
        deterministic_clock.advance(40)

        result = workflow.sweep()

        assert result.processed == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Subject INV-1:")
        assert transport.sent == []
        assert ledger.get(pending_row).status == LedgerStatus.PROCESSING

    def test_unrecordable_failure_does_not_escape(
        self, workflow, ledger, provider, pending_row, deterministic_clock, monkeypatch,
    ):
        def _broken_provider(subject_id):
            raise RuntimeError("provider down")

        def _ledger_gone(*args, **kwargs):
            raise LedgerUnavailableError("store unreachable", "booking_form_ledger")

        monkeypatch.setattr(provider, "load_subject", _broken_provider)
        monkeypatch.setattr(ledger, "update", _ledger_gone)
        deterministic_clock.advance(40)

        result = workflow.sweep()

        assert result.processed == 0
        assert result.errors == ("Subject INV-1: provider down",)
