"""
Tests for dashboard aggregation and the document timeline.
"""

import random
from datetime import datetime, timedelta
from types import SimpleNamespace

from docflow.models import (
    CarrierSubmission,
    Document,
    DocumentStatus,
    DocumentView,
    SignatureMethod,
    SignatureRequest,
    SignatureRequestStatus,
    SubmissionMethod,
    SubmissionStatus,
)
from docflow.reporting import (
    build_timeline,
    dashboard_stats,
    signature_summary,
    status_counts,
    submission_summary,
)

NOW = datetime(2024, 3, 10, 12, 0, 0)


def _row(status, expires_at=None, signed_at=None):
    return SimpleNamespace(status=status, expires_at=expires_at, signed_at=signed_at)


def _document(status, created_at=NOW - timedelta(days=5)):
    return Document(
        id="doc-1",
        name="Policy renewal",
        document_type="renewal",
        client_id="client-1",
        status=DocumentStatus(status),
        version=3,
        created_at=created_at,
        updated_at=NOW,
    )


class TestSignatureSummary:
    """Tests for signature counters."""

    def test_buckets(self):
        rows = [
            _row("pending_signature", expires_at=NOW + timedelta(days=1)),
            _row("pending_signature", expires_at=NOW - timedelta(days=1)),
            _row("expired"),
            _row("signed", signed_at=NOW),
            _row("approved"),
            _row("cancelled"),
            _row("draft"),
        ]
        summary = signature_summary(rows, NOW)
        assert summary.pending == 1
        assert summary.expired == 2
        assert summary.signed == 2

    def test_partition(self):
        statuses = ["pending_signature", "expired", "signed", "approved"]
        rows = [_row(random.choice(statuses), expires_at=NOW) for _ in range(50)]
        summary = signature_summary(rows, NOW)
        assert summary.total == len(rows)

    def test_order_independent(self):
        rows = [
            _row("pending_signature", expires_at=NOW + timedelta(hours=h - 5))
            for h in range(10)
        ] + [_row("signed"), _row("expired")]
        shuffled = list(rows)
        random.Random(7).shuffle(shuffled)
        assert signature_summary(rows, NOW) == signature_summary(shuffled, NOW)

    def test_pending_link_never_expires(self):
        summary = signature_summary([_row("pending_signature")], NOW + timedelta(days=999))
        assert summary.pending == 1

    def test_accepts_request_dataclasses(self):
        request = SignatureRequest(
            id="r",
            document_id="d",
            sequence=1,
            method=SignatureMethod.EMAIL,
            status=SignatureRequestStatus.PENDING_SIGNATURE,
            created_at=NOW - timedelta(days=8),
            expires_at=NOW - timedelta(days=1),
        )
        assert signature_summary([request], NOW).expired == 1

    def test_empty(self):
        assert signature_summary([], NOW).to_dict() == {"pending": 0, "signed": 0, "expired": 0}


class TestSubmissionSummary:
    def test_buckets(self):
        rows = [_row(s) for s in ["sent", "processing", "approved", "rejected", "rejected"]]
        summary = submission_summary(rows)
        assert summary.to_dict() == {"pending": 2, "approved": 1, "rejected": 2}
        assert summary.total == 5

    def test_enum_statuses(self):
        submission = CarrierSubmission(
            id="s",
            document_id="d",
            sequence=1,
            company_id="migdal",
            method=SubmissionMethod.API,
            status=SubmissionStatus.APPROVED,
            created_at=NOW,
        )
        assert submission_summary([submission]).approved == 1


class TestStatusCounts:
    def test_every_status_present(self):
        counts = status_counts([_document("draft"), _document("draft"), _document("sent")])
        assert set(counts) == {s.value for s in DocumentStatus}
        assert counts["draft"] == 2
        assert counts["sent"] == 1
        assert counts["approved"] == 0

    def test_sums_to_input(self):
        docs = [_document(s) for s in DocumentStatus]
        assert sum(status_counts(docs).values()) == len(docs)


class TestDashboardStats:
    def test_buckets(self):
        yesterday = _document("approved")
        yesterday.updated_at = NOW - timedelta(days=1)
        docs = [
            _document("pending_signature"),
            _document("sent"),
            _document("processing"),
            _document("approved"),
            yesterday,
            _document("rejected"),
            _document("draft"),
        ]

        stats = dashboard_stats(docs, NOW)

        assert stats.to_dict() == {
            "total": 7,
            "pending_signature": 1,
            "awaiting_carrier": 2,
            "completed_today": 1,
        }

    def test_today_is_the_calendar_day_of_now(self):
        docs = [_document("approved")]
        assert dashboard_stats(docs, NOW.replace(hour=0, minute=0)).completed_today == 1
        assert dashboard_stats(docs, NOW.replace(hour=23, minute=59)).completed_today == 1
        assert dashboard_stats(docs, NOW + timedelta(days=1)).completed_today == 0

    def test_order_independent(self):
        docs = [_document(s) for s in DocumentStatus]
        shuffled = list(docs)
        random.Random(7).shuffle(shuffled)
        assert dashboard_stats(shuffled, NOW) == dashboard_stats(docs, NOW)


class TestBuildTimeline:
    """Tests for the workflow timeline."""

    def test_draft(self):
        steps = build_timeline(DocumentView(document=_document("draft")))

        assert [s.status for s in steps] == [
            DocumentStatus.DRAFT,
            DocumentStatus.PENDING_SIGNATURE,
            DocumentStatus.SIGNED,
            DocumentStatus.SENT,
            DocumentStatus.APPROVED,
        ]
        assert steps[0].is_active
        assert not steps[0].is_completed
        assert steps[0].date == NOW - timedelta(days=5)
        assert all(s.date is None for s in steps[1:])
        assert steps[0].label == "Draft"

    def test_pending_send_shows_on_signed_stage(self):
        request = SignatureRequest(
            id="r",
            document_id="doc-1",
            sequence=1,
            method=SignatureMethod.EMAIL,
            status=SignatureRequestStatus.SIGNED,
            created_at=NOW - timedelta(days=3),
            sent_at=NOW - timedelta(days=3),
            signed_at=NOW - timedelta(days=1),
        )
        view = DocumentView(document=_document("pending_send"), signature_request=request)
        steps = build_timeline(view)

        assert steps[2].status == DocumentStatus.PENDING_SEND
        assert steps[2].is_active
        assert steps[2].description == "Queued for submission to the carrier"
        assert steps[2].date == NOW - timedelta(days=1)
        assert steps[1].is_completed
        assert steps[1].date == NOW - timedelta(days=3)
        assert not any(s.is_completed for s in steps[2:])

    def test_approved(self):
        submission = CarrierSubmission(
            id="s",
            document_id="doc-1",
            sequence=1,
            company_id="migdal",
            method=SubmissionMethod.API,
            status=SubmissionStatus.APPROVED,
            created_at=NOW - timedelta(days=1),
            submitted_at=NOW - timedelta(days=1),
            processed_at=NOW,
        )
        steps = build_timeline(DocumentView(document=_document("approved"), submission=submission))

        assert all(s.is_completed for s in steps)
        assert not any(s.is_active for s in steps)
        assert steps[-1].status == DocumentStatus.APPROVED
        assert steps[-1].date == NOW

    def test_rejected(self):
        steps = build_timeline(DocumentView(document=_document("rejected")))
        assert steps[-1].status == DocumentStatus.REJECTED
        assert steps[-1].label == "Rejected"
        assert steps[-1].is_completed

    def test_expired_shows_on_signature_stage(self):
        steps = build_timeline(DocumentView(document=_document("expired")))
        assert steps[1].status == DocumentStatus.EXPIRED
        assert steps[1].is_active
        assert steps[0].is_completed
