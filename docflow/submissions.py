"""
Docflow - Carrier submission subsystem.

Rules for submitting a signed document to a carrier, tracking the carrier's
processing and resolution, and retrying after a rejection. Like the signature
subsystem, nothing here commits.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from .catalog import CarrierCatalog
from .database import CarrierSubmissionModel
from .exceptions import AlreadyResolvedError, InvalidTransitionError
from .models import Carrier, DocumentStatus, SubmissionMethod, SubmissionStatus
from .status import SUBMISSION_ENTRY_STATUSES, ensure_path, ensure_transition
from .validation import InputValidationError, validate_resolution_outcome

Sub = SubmissionStatus

OPEN_STATUSES = frozenset({Sub.SENT, Sub.PROCESSING})


def ensure_can_submit(document_status: str) -> DocumentStatus:
    """The document must be signed, pending send or rejected."""
    if DocumentStatus(document_status) not in SUBMISSION_ENTRY_STATUSES:
        raise InvalidTransitionError(
            current_status=document_status, attempted_status=DocumentStatus.SENT
        )
    return ensure_transition(document_status, DocumentStatus.SENT)


def resolve_carrier(
    catalog: CarrierCatalog, company_id: str, method: SubmissionMethod
) -> Carrier:
    """Look up the carrier and check it accepts ``method``."""
    carrier = catalog.get(company_id)
    if not carrier.supports(method):
        raise InputValidationError(
            f"Carrier {company_id} does not accept {method.value} submissions",
            field="method",
            value=method.value,
        )
    return carrier


def build_submission(
    document_id: str,
    sequence: int,
    company_id: str,
    method: SubmissionMethod,
    include_related: bool,
    now: datetime,
    cover_note: Optional[str] = None,
    retry_of: Optional[str] = None,
    submission_id: Optional[str] = None,
) -> CarrierSubmissionModel:
    return CarrierSubmissionModel(
        id=submission_id or str(uuid4()),
        document_id=document_id,
        sequence=sequence,
        company_id=company_id,
        method=method.value,
        status=Sub.SENT.value,
        include_related=bool(include_related),
        cover_note=cover_note,
        retry_of=retry_of,
        created_at=now,
        submitted_at=now,
    )


def needs_processing(submission: CarrierSubmissionModel) -> bool:
    """True if ``sent``; False if already ``processing`` (idempotent no-op)."""
    if submission.status == Sub.SENT:
        return True
    if submission.status == Sub.PROCESSING:
        return False
    raise AlreadyResolvedError(
        f"Submission {submission.id} is already {submission.status}",
        current_status=submission.status,
    )


def apply_processing(submission: CarrierSubmissionModel) -> None:
    submission.status = Sub.PROCESSING.value


def ensure_can_resolve(submission: CarrierSubmissionModel, outcome: str) -> SubmissionStatus:
    validate_resolution_outcome(getattr(outcome, "value", outcome))
    if Sub(submission.status) not in OPEN_STATUSES:
        raise AlreadyResolvedError(
            f"Submission {submission.id} is already {submission.status}",
            current_status=submission.status,
        )
    return SubmissionStatus(getattr(outcome, "value", outcome))


def resolution_path(document_status: str, outcome: SubmissionStatus) -> list[DocumentStatus]:
    """Document statuses walked by a resolution.

    A carrier may answer before it ever reported processing; the document then
    passes through ``processing`` on the way, each step checked by the table.
    """
    target = DocumentStatus(outcome.value)
    if document_status == DocumentStatus.SENT:
        return ensure_path(document_status, DocumentStatus.PROCESSING, target)
    return ensure_path(document_status, target)


def apply_resolution(
    submission: CarrierSubmissionModel,
    outcome: SubmissionStatus,
    now: datetime,
    reference_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> None:
    submission.status = outcome.value
    submission.processed_at = now
    if reference_number is not None:
        submission.reference_number = reference_number
    if notes is not None:
        submission.notes = notes


def ensure_can_retry(
    submission: CarrierSubmissionModel, document_status: str, is_latest: bool
) -> DocumentStatus:
    """A retry needs a rejected document and its live, rejected submission."""
    if document_status != DocumentStatus.REJECTED:
        raise InvalidTransitionError(
            current_status=document_status, attempted_status=DocumentStatus.SENT
        )
    if not is_latest:
        raise AlreadyResolvedError(
            f"Submission {submission.id} was already retried",
            current_status=submission.status,
        )
    if submission.status != Sub.REJECTED:
        raise InvalidTransitionError(
            current_status=submission.status, attempted_status=DocumentStatus.SENT
        )
    return ensure_transition(document_status, DocumentStatus.SENT)
