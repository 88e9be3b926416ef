"""
Docflow - Signature request subsystem.

Rules for creating, signing, reminding, expiring and cancelling signature
requests. Functions here validate and compute new record values on
SignatureRequestModel instances; they never commit. The lifecycle controller
owns dispatch and persistence.
"""

from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import uuid4

from .database import SignatureRequestModel
from .exceptions import AlreadyResolvedError, InvalidTransitionError
from .models import DocumentStatus, SignatureMethod, SignatureRequestStatus, to_naive_utc
from .status import SIGNATURE_ENTRY_STATUSES, ensure_transition, is_legal_reversion
from .validation import validate_signature_request

R = SignatureRequestStatus

RESENDABLE_STATUSES = frozenset({R.PENDING_SIGNATURE, R.EXPIRED})


def compute_is_expired(request: Any, now: datetime) -> bool:
    """True iff the request has an expiry, it has passed and nobody signed.

    Monotonic in ``now`` for a request that stays unsigned. Derived on read
    and by the sweep only; a received signature is never checked against it.
    """
    expires_at = request.expires_at
    if expires_at is None or request.signed_at is not None:
        return False
    return to_naive_utc(now) > expires_at


def can_resend(request: Any) -> bool:
    return R(request.status) in RESENDABLE_STATUSES


def is_pending(request: Any) -> bool:
    return request.status == R.PENDING_SIGNATURE


def ensure_can_request(document_status: str) -> DocumentStatus:
    """The document must be draft or expired to get a new signature request."""
    if DocumentStatus(document_status) not in SIGNATURE_ENTRY_STATUSES:
        raise InvalidTransitionError(
            current_status=document_status,
            attempted_status=DocumentStatus.PENDING_SIGNATURE,
        )
    return ensure_transition(document_status, DocumentStatus.PENDING_SIGNATURE)


def build_request(
    document_id: str,
    sequence: int,
    method: SignatureMethod,
    recipient_contact: Optional[str],
    expiry_days: int,
    now: datetime,
    previous_document_status: str,
    recipient_name: Optional[str] = None,
    message: Optional[str] = None,
    send_reminders: bool = True,
    request_id: Optional[str] = None,
) -> SignatureRequestModel:
    """Validate parameters and build an unsaved pending request."""
    contact = validate_signature_request(method, recipient_contact, expiry_days, message)
    is_link = method == SignatureMethod.LINK

    return SignatureRequestModel(
        id=request_id or str(uuid4()),
        document_id=document_id,
        sequence=sequence,
        method=method.value,
        status=R.PENDING_SIGNATURE.value,
        recipient_contact=contact,
        recipient_name=recipient_name,
        message=None if is_link else message,
        send_reminders=False if is_link else bool(send_reminders),
        reminders_sent=0,
        previous_document_status=getattr(
            previous_document_status, "value", previous_document_status
        ),
        created_at=now,
        sent_at=now,
        expires_at=None if is_link else now + timedelta(days=expiry_days),
    )


def ensure_can_sign(request: SignatureRequestModel, is_latest: bool) -> None:
    """Check that a signature event can be applied to ``request``.

    Expiry is deliberately not consulted. A request the sweep has already
    expired, and which has not been superseded, rejects the signature as an
    illegal transition; signed, cancelled and superseded requests count as
    already resolved.
    """
    if request.status == R.PENDING_SIGNATURE:
        return
    if request.status == R.SIGNED:
        raise AlreadyResolvedError(
            f"Signature request {request.id} is already signed",
            current_status=request.status,
        )
    if request.status == R.CANCELLED:
        raise AlreadyResolvedError(
            f"Signature request {request.id} was cancelled",
            current_status=request.status,
        )
    if not is_latest:
        raise AlreadyResolvedError(
            f"Signature request {request.id} was superseded",
            current_status=request.status,
        )
    raise InvalidTransitionError(
        current_status=request.status, attempted_status=DocumentStatus.SIGNED
    )


def apply_signed(request: SignatureRequestModel, signed_at: datetime) -> None:
    request.signed_at = signed_at
    request.status = R.SIGNED.value


def apply_reminder(request: SignatureRequestModel) -> None:
    request.reminders_sent = (request.reminders_sent or 0) + 1


def apply_expired(request: SignatureRequestModel) -> None:
    request.status = R.EXPIRED.value


def ensure_can_cancel(request: SignatureRequestModel, document_status: str) -> DocumentStatus:
    """Return the status the document goes back to when ``request`` is cancelled."""
    if request.status != R.PENDING_SIGNATURE:
        raise AlreadyResolvedError(
            f"Signature request {request.id} is not pending",
            current_status=request.status,
        )
    target = request.previous_document_status or DocumentStatus.DRAFT.value
    if not is_legal_reversion(document_status, target):
        raise InvalidTransitionError(
            current_status=document_status, attempted_status=target
        )
    return DocumentStatus(target)


def apply_cancelled(request: SignatureRequestModel) -> None:
    request.status = R.CANCELLED.value


def renewal_expiry_days(request: SignatureRequestModel, default_days: int) -> int:
    """Expiry length of a request, reused when an expired one is renewed."""
    if request.expires_at is None or request.created_at is None:
        return default_days
    return max(0, (request.expires_at - request.created_at).days)
