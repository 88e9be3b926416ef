"""
Docflow - Document status model.

The transition table below is the single source of truth for status changes.
Everything that moves a document between statuses goes through
``ensure_transition``.
"""

from typing import Union

from .exceptions import InvalidTransitionError
from .models import DocumentStatus

StatusLike = Union[DocumentStatus, str]

S = DocumentStatus

TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    S.DRAFT: frozenset({S.PENDING_SIGNATURE}),
    S.PENDING_SIGNATURE: frozenset({S.SIGNED, S.EXPIRED}),
    S.EXPIRED: frozenset({S.PENDING_SIGNATURE}),
    S.SIGNED: frozenset({S.PENDING_SEND, S.SENT}),
    S.PENDING_SEND: frozenset({S.SENT}),
    S.SENT: frozenset({S.PROCESSING}),
    S.PROCESSING: frozenset({S.APPROVED, S.REJECTED}),
    S.REJECTED: frozenset({S.SENT}),
    S.APPROVED: frozenset(),
}

# Cancelling a pending request puts the document back where it was when the
# request was issued. Not a forward transition.
REVERSIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    S.PENDING_SIGNATURE: frozenset({S.DRAFT, S.EXPIRED}),
}

# Statuses from which a new signature request may be issued.
SIGNATURE_ENTRY_STATUSES = frozenset({S.DRAFT, S.EXPIRED})

# Statuses from which a carrier submission may be created.
SUBMISSION_ENTRY_STATUSES = frozenset({S.SIGNED, S.PENDING_SEND, S.REJECTED})

STATUS_DISPLAY: dict[DocumentStatus, dict[str, str]] = {
    S.DRAFT: {"label": "Draft", "tone": "neutral"},
    S.PENDING_SIGNATURE: {"label": "Pending signature", "tone": "warning"},
    S.SIGNED: {"label": "Signed", "tone": "success"},
    S.PENDING_SEND: {"label": "Pending send", "tone": "info"},
    S.SENT: {"label": "Sent to carrier", "tone": "primary"},
    S.PROCESSING: {"label": "Processing", "tone": "info"},
    S.APPROVED: {"label": "Approved", "tone": "success"},
    S.REJECTED: {"label": "Rejected", "tone": "error"},
    S.EXPIRED: {"label": "Expired", "tone": "muted"},
}

_missing = (set(DocumentStatus) - set(TRANSITIONS)) | (
    set(DocumentStatus) - set(STATUS_DISPLAY)
)
if _missing:
    raise RuntimeError(f"Status tables are missing entries for: {sorted(_missing)}")


def _coerce(status: StatusLike) -> DocumentStatus:
    return status if isinstance(status, DocumentStatus) else DocumentStatus(status)


def is_legal_transition(from_status: StatusLike, to_status: StatusLike) -> bool:
    """Return True if the table allows moving from ``from_status`` to ``to_status``."""
    try:
        source = _coerce(from_status)
        target = _coerce(to_status)
    except ValueError:
        return False
    return target in TRANSITIONS[source]


def allowed_transitions(status: StatusLike) -> frozenset[DocumentStatus]:
    return TRANSITIONS[_coerce(status)]


def is_terminal(status: StatusLike) -> bool:
    return not TRANSITIONS[_coerce(status)]


def is_legal_reversion(from_status: StatusLike, to_status: StatusLike) -> bool:
    """Return True if a cancelled request may put the document back to ``to_status``."""
    try:
        source = _coerce(from_status)
        target = _coerce(to_status)
    except ValueError:
        return False
    return target in REVERSIONS.get(source, frozenset())


def ensure_transition(from_status: StatusLike, to_status: StatusLike) -> DocumentStatus:
    """Validate a transition and return the target status.

    Raises:
        InvalidTransitionError: if the pair is not in the table. The error
            carries both the current and the attempted status.
    """
    if not is_legal_transition(from_status, to_status):
        raise InvalidTransitionError(
            current_status=from_status, attempted_status=to_status
        )
    return _coerce(to_status)


def ensure_path(from_status: StatusLike, *steps: StatusLike) -> list[DocumentStatus]:
    """Validate a chain of transitions, each step against the table."""
    path = []
    current = _coerce(from_status)
    for step in steps:
        current = ensure_transition(current, step)
        path.append(current)
    return path


def display(status: StatusLike) -> dict[str, str]:
    """Label and tone used by dashboards for a status badge."""
    return dict(STATUS_DISPLAY[_coerce(status)])
