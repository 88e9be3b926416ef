"""
Docflow - Dashboard aggregation.

Pure functions over already-loaded records. Every input row lands in at most
one bucket and the result does not depend on input order.
"""

from collections import Counter
from datetime import datetime
from typing import Any, Iterable, Optional

from .models import (
    DashboardStats,
    Document,
    DocumentStatus,
    DocumentView,
    SignatureSummary,
    SubmissionSummary,
    TimelineStep,
)
from .signatures import compute_is_expired
from .status import STATUS_DISPLAY

S = DocumentStatus


def _value(status: Any) -> str:
    return getattr(status, "value", status)


def signature_summary(requests: Iterable[Any], now: datetime) -> SignatureSummary:
    """Count requests as pending, signed or expired.

    A pending request past its expiry counts as expired even before the sweep
    has run. ``approved`` rows count as signed since approval implies a
    completed signature stage. Anything else (cancelled, draft) is not
    counted.
    """
    summary = SignatureSummary()
    for request in requests:
        status = _value(request.status)
        if status == S.PENDING_SIGNATURE.value:
            if compute_is_expired(request, now):
                summary.expired += 1
            else:
                summary.pending += 1
        elif status == S.EXPIRED.value:
            summary.expired += 1
        elif status in (S.SIGNED.value, S.APPROVED.value):
            summary.signed += 1
    return summary


def submission_summary(submissions: Iterable[Any]) -> SubmissionSummary:
    summary = SubmissionSummary()
    for submission in submissions:
        status = _value(submission.status)
        if status in (S.SENT.value, S.PROCESSING.value):
            summary.pending += 1
        elif status == S.APPROVED.value:
            summary.approved += 1
        elif status == S.REJECTED.value:
            summary.rejected += 1
    return summary


def status_counts(documents: Iterable[Document]) -> dict[str, int]:
    """Number of documents per status, with every status present."""
    counts = Counter(_value(d.status) for d in documents)
    return {status.value: counts.get(status.value, 0) for status in DocumentStatus}


def dashboard_stats(documents: Iterable[Document], now: datetime) -> DashboardStats:
    """Workflow page counters.

    Documents at the carrier are those sent or processing. A document counts
    as completed today when it is approved and was last updated on the same
    calendar day as ``now``.
    """
    stats = DashboardStats()
    today = now.date()
    for document in documents:
        status = _value(document.status)
        stats.total += 1
        if status == S.PENDING_SIGNATURE.value:
            stats.pending_signature += 1
        elif status in (S.SENT.value, S.PROCESSING.value):
            stats.awaiting_carrier += 1
        elif status == S.APPROVED.value and document.updated_at is not None:
            if document.updated_at.date() == today:
                stats.completed_today += 1
    return stats


# Timeline stage of each status. expired sits with pending_signature,
# pending_send with signed, processing with sent.
_STAGES = [S.DRAFT, S.PENDING_SIGNATURE, S.SIGNED, S.SENT, S.APPROVED]
_STAGE_OF = {
    S.DRAFT: 0,
    S.PENDING_SIGNATURE: 1,
    S.EXPIRED: 1,
    S.SIGNED: 2,
    S.PENDING_SEND: 2,
    S.SENT: 3,
    S.PROCESSING: 3,
    S.APPROVED: 4,
    S.REJECTED: 4,
}

_DESCRIPTIONS = {
    S.DRAFT: "Document created",
    S.PENDING_SIGNATURE: "Waiting for the client's signature",
    S.EXPIRED: "Signature request expired",
    S.SIGNED: "Signed by the client",
    S.PENDING_SEND: "Queued for submission to the carrier",
    S.SENT: "Submitted to the carrier",
    S.PROCESSING: "Carrier is processing the document",
    S.APPROVED: "Approved by the carrier",
    S.REJECTED: "Rejected by the carrier",
}


def build_timeline(view: DocumentView) -> list[TimelineStep]:
    """Workflow progress for one document, from draft to the carrier's decision."""
    current = view.document.status
    stage = _STAGE_OF[current]
    finished = current in (S.APPROVED, S.REJECTED)
    request = view.signature_request
    submission = view.submission

    dates: dict[DocumentStatus, Optional[datetime]] = {
        S.DRAFT: view.document.created_at,
        S.PENDING_SIGNATURE: request.sent_at if request else None,
        S.SIGNED: request.signed_at if request else None,
        S.SENT: submission.submitted_at if submission else None,
        S.APPROVED: submission.processed_at if submission else None,
    }

    steps = []
    for index, step_status in enumerate(_STAGES):
        shown = step_status
        if index == stage and current != step_status:
            # The active stage displays the document's actual status
            shown = current
        elif index == len(_STAGES) - 1 and current == S.REJECTED:
            shown = S.REJECTED
        is_completed = index < stage or (finished and index == stage)
        steps.append(
            TimelineStep(
                status=shown,
                label=STATUS_DISPLAY[shown]["label"],
                date=dates[step_status] if index <= stage else None,
                description=_DESCRIPTIONS.get(shown),
                is_active=index == stage and not finished,
                is_completed=is_completed,
            )
        )
    return steps
