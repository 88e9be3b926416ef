"""
Tests for the carrier submission rules.
"""

from datetime import datetime

import pytest

from docflow import submissions
from docflow.catalog import CarrierCatalog
from docflow.exceptions import (
    AlreadyResolvedError,
    InvalidMethodParametersError,
    InvalidTransitionError,
    UnknownCarrierError,
)
from docflow.models import DocumentStatus, SubmissionMethod, SubmissionStatus

NOW = datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture
def catalog():
    return CarrierCatalog.from_dict(
        {"carriers": [{"id": "migdal", "name": "Migdal"}, {"id": "more", "name": "More", "methods": ["email"]}]}  # noqa: E501
    )


def _build(**kwargs):
    params = dict(
        document_id="doc-1",
        sequence=1,
        company_id="migdal",
        method=SubmissionMethod.API,
        include_related=False,
        now=NOW,
    )
    params.update(kwargs)
    return submissions.build_submission(**params)


class TestEnsureCanSubmit:
    @pytest.mark.parametrize("status", ["signed", "pending_send", "rejected"])
    def test_allowed(self, status):
        assert submissions.ensure_can_submit(status) is DocumentStatus.SENT

    @pytest.mark.parametrize("status", ["draft", "pending_signature", "sent", "processing", "approved", "expired"])  # noqa: E501
    def test_rejected(self, status):
        with pytest.raises(InvalidTransitionError):
            submissions.ensure_can_submit(status)


class TestResolveCarrier:
    def test_known(self, catalog):
        assert submissions.resolve_carrier(catalog, "migdal", SubmissionMethod.PORTAL).id == "migdal"

    def test_unknown(self, catalog):
        with pytest.raises(UnknownCarrierError):
            submissions.resolve_carrier(catalog, "acme", SubmissionMethod.API)

    def test_unsupported_method(self, catalog):
        with pytest.raises(InvalidMethodParametersError) as exc_info:
            submissions.resolve_carrier(catalog, "more", SubmissionMethod.API)
        assert exc_info.value.field == "method"


class TestBuildSubmission:
    def test_fields(self):
        submission = _build(include_related=True, cover_note="note", retry_of="s-0")
        assert submission.status == "sent"
        assert submission.created_at == NOW
        assert submission.submitted_at == NOW
        assert submission.processed_at is None
        assert submission.include_related is True
        assert submission.retry_of == "s-0"


class TestProcessingAndResolution:
    def test_needs_processing(self):
        submission = _build()
        assert submissions.needs_processing(submission) is True
        submissions.apply_processing(submission)
        assert submissions.needs_processing(submission) is False

    def test_needs_processing_after_resolution(self):
        submission = _build()
        submissions.apply_resolution(submission, SubmissionStatus.APPROVED, NOW)
        with pytest.raises(AlreadyResolvedError):
            submissions.needs_processing(submission)

    def test_resolve(self):
        submission = _build()
        outcome = submissions.ensure_can_resolve(submission, "rejected")
        submissions.apply_resolution(submission, outcome, NOW, notes="missing signature page")
        assert submission.status == "rejected"
        assert submission.processed_at == NOW
        assert submission.notes == "missing signature page"
        assert submission.reference_number is None

    def test_resolve_twice(self):
        submission = _build()
        submissions.apply_resolution(submission, SubmissionStatus.REJECTED, NOW)
        with pytest.raises(AlreadyResolvedError) as exc_info:
            submissions.ensure_can_resolve(submission, "approved")
        assert exc_info.value.current_status == "rejected"

    def test_invalid_outcome(self):
        with pytest.raises(InvalidMethodParametersError):
            submissions.ensure_can_resolve(_build(), "maybe")

    def test_resolution_path_from_sent(self):
        path = submissions.resolution_path("sent", SubmissionStatus.APPROVED)
        assert path == [DocumentStatus.PROCESSING, DocumentStatus.APPROVED]

    def test_resolution_path_from_processing(self):
        path = submissions.resolution_path("processing", SubmissionStatus.REJECTED)
        assert path == [DocumentStatus.REJECTED]


class TestEnsureCanRetry:
    def test_allowed(self):
        submission = _build()
        submissions.apply_resolution(submission, SubmissionStatus.REJECTED, NOW)
        assert submissions.ensure_can_retry(submission, "rejected", True) is DocumentStatus.SENT

    def test_document_not_rejected(self):
        with pytest.raises(InvalidTransitionError):
            submissions.ensure_can_retry(_build(), "sent", True)

    def test_already_retried(self):
        submission = _build()
        submissions.apply_resolution(submission, SubmissionStatus.REJECTED, NOW)
        with pytest.raises(AlreadyResolvedError):
            submissions.ensure_can_retry(submission, "rejected", False)
