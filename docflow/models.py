"""
Docflow - Data models for documents, signature requests and carrier submissions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored by the database layer."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DocumentStatus(str, Enum):
    """Status of a document in its lifecycle."""

    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    SIGNED = "signed"
    PENDING_SEND = "pending_send"
    SENT = "sent"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class SignatureMethod(str, Enum):
    """How a signature request reaches the client."""

    EMAIL = "email"
    SMS = "sms"
    LINK = "link"


class SignatureRequestStatus(str, Enum):
    """Status of a single signature request.

    Mirrors the signature-stage subset of DocumentStatus, plus CANCELLED
    which only exists on the request.
    """

    PENDING_SIGNATURE = "pending_signature"
    SIGNED = "signed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SubmissionMethod(str, Enum):
    """How a signed document is delivered to a carrier."""

    EMAIL = "email"
    PORTAL = "portal"
    API = "api"


class SubmissionStatus(str, Enum):
    """Status of a single carrier submission."""

    SENT = "sent"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"


class EventType(str, Enum):
    """Types of events recorded in a document's history."""

    DOCUMENT_CREATED = "document_created"
    STATUS_CHANGED = "status_changed"

    SIGNATURE_REQUESTED = "signature_requested"
    SIGNATURE_REMINDER_SENT = "signature_reminder_sent"
    SIGNATURE_RECEIVED = "signature_received"
    SIGNATURE_EXPIRED = "signature_expired"
    SIGNATURE_CANCELLED = "signature_cancelled"

    QUEUED_FOR_SUBMISSION = "queued_for_submission"
    SUBMISSION_CREATED = "submission_created"
    SUBMISSION_PROCESSING = "submission_processing"
    SUBMISSION_RESOLVED = "submission_resolved"
    SUBMISSION_RETRIED = "submission_retried"


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware timestamp to naive UTC; naive values are taken as UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return to_naive_utc(value)
    if value.endswith("Z"):
        # fromisoformat only accepts a trailing Z from Python 3.11
        value = value[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(value))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Document:
    """
    The tracked artifact whose workflow status this engine manages.
    """

    id: str
    name: str
    document_type: str
    client_id: Optional[str]
    status: DocumentStatus
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_draft(self) -> bool:
        return self.status == DocumentStatus.DRAFT

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "document_type": self.document_type,
            "client_id": self.client_id,
            "status": self.status.value,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Document":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            document_type=data.get("document_type", ""),
            client_id=data.get("client_id"),
            status=DocumentStatus(data.get("status", "draft")),
            version=data.get("version", 1),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class SignatureRequest:
    """
    A single attempt to collect a signature on a document via one method.

    expires_at is only set for email and sms requests. Once signed_at is
    set the expiry no longer applies.
    """

    id: str
    document_id: str
    sequence: int
    method: SignatureMethod
    status: SignatureRequestStatus
    created_at: datetime
    sent_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    recipient_contact: Optional[str] = None
    recipient_name: Optional[str] = None
    message: Optional[str] = None
    send_reminders: bool = False
    signature_link: Optional[str] = None
    reminders_sent: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "sequence": self.sequence,
            "method": self.method.value,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "sent_at": _iso(self.sent_at),
            "signed_at": _iso(self.signed_at),
            "expires_at": _iso(self.expires_at),
            "recipient_contact": self.recipient_contact,
            "recipient_name": self.recipient_name,
            "message": self.message,
            "send_reminders": self.send_reminders,
            "signature_link": self.signature_link,
            "reminders_sent": self.reminders_sent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignatureRequest":
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            sequence=data.get("sequence", 1),
            method=SignatureMethod(data["method"]),
            status=SignatureRequestStatus(data.get("status", "pending_signature")),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            sent_at=_parse_dt(data.get("sent_at")),
            signed_at=_parse_dt(data.get("signed_at")),
            expires_at=_parse_dt(data.get("expires_at")),
            recipient_contact=data.get("recipient_contact"),
            recipient_name=data.get("recipient_name"),
            message=data.get("message"),
            send_reminders=data.get("send_reminders", False),
            signature_link=data.get("signature_link"),
            reminders_sent=data.get("reminders_sent", 0),
        )


@dataclass
class CarrierSubmission:
    """
    A single attempt to deliver a signed document to an insurance carrier.
    """

    id: str
    document_id: str
    sequence: int
    company_id: str
    method: SubmissionMethod
    status: SubmissionStatus
    created_at: datetime
    submitted_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    cover_note: Optional[str] = None
    include_related: bool = False
    retry_of: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.status in (SubmissionStatus.APPROVED, SubmissionStatus.REJECTED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "sequence": self.sequence,
            "company_id": self.company_id,
            "method": self.method.value,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "submitted_at": _iso(self.submitted_at),
            "processed_at": _iso(self.processed_at),
            "reference_number": self.reference_number,
            "notes": self.notes,
            "cover_note": self.cover_note,
            "include_related": self.include_related,
            "retry_of": self.retry_of,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CarrierSubmission":
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            sequence=data.get("sequence", 1),
            company_id=data["company_id"],
            method=SubmissionMethod(data["method"]),
            status=SubmissionStatus(data.get("status", "sent")),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            submitted_at=_parse_dt(data.get("submitted_at")),
            processed_at=_parse_dt(data.get("processed_at")),
            reference_number=data.get("reference_number"),
            notes=data.get("notes"),
            cover_note=data.get("cover_note"),
            include_related=data.get("include_related", False),
            retry_of=data.get("retry_of"),
        )


@dataclass
class DocumentEvent:
    """
    Immutable entry in a document's audit history.
    """

    id: str
    document_id: str
    event_type: EventType
    actor: str
    payload: dict[str, Any]
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "event_type": self.event_type.value,
            "actor": self.actor,
            "payload": self.payload,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentEvent":
        return cls(
            id=data.get("id", ""),
            document_id=data.get("document_id", ""),
            event_type=EventType(data.get("event_type", "status_changed")),
            actor=data.get("actor", ""),
            payload=data.get("payload", {}),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class Carrier:
    """An insurance company from the carrier catalog."""

    id: str
    name: str
    logo: Optional[str] = None
    methods: tuple[SubmissionMethod, ...] = tuple(SubmissionMethod)

    def supports(self, method: SubmissionMethod) -> bool:
        return method in self.methods

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "logo": self.logo,
            "methods": [m.value for m in self.methods],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Carrier":
        methods = data.get("methods")
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            logo=data.get("logo"),
            methods=(
                tuple(SubmissionMethod(m) for m in methods)
                if methods
                else tuple(SubmissionMethod)
            ),
        )


@dataclass
class DocumentView:
    """
    Read model returned by getDocument: the document, its live sub-records
    and the full history of both.
    """

    document: Document
    signature_request: Optional[SignatureRequest] = None
    submission: Optional[CarrierSubmission] = None
    is_expired: bool = False
    signature_requests: list[SignatureRequest] = field(default_factory=list)
    submissions: list[CarrierSubmission] = field(default_factory=list)

    @property
    def status(self) -> DocumentStatus:
        return self.document.status

    @property
    def version(self) -> int:
        return self.document.version

    def to_dict(self) -> dict[str, Any]:
        return {
            "document": self.document.to_dict(),
            "signature_request": (
                self.signature_request.to_dict() if self.signature_request else None
            ),
            "submission": self.submission.to_dict() if self.submission else None,
            "is_expired": self.is_expired,
            "signature_requests": [r.to_dict() for r in self.signature_requests],
            "submissions": [s.to_dict() for s in self.submissions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentView":
        return cls(
            document=Document.from_dict(data["document"]),
            signature_request=(
                SignatureRequest.from_dict(data["signature_request"])
                if data.get("signature_request")
                else None
            ),
            submission=(
                CarrierSubmission.from_dict(data["submission"])
                if data.get("submission")
                else None
            ),
            is_expired=data.get("is_expired", False),
            signature_requests=[
                SignatureRequest.from_dict(r) for r in data.get("signature_requests", [])
            ],
            submissions=[
                CarrierSubmission.from_dict(s) for s in data.get("submissions", [])
            ],
        )


@dataclass
class SignatureSummary:
    """Dashboard counters for signature requests."""

    pending: int = 0
    signed: int = 0
    expired: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.signed + self.expired

    def to_dict(self) -> dict[str, int]:
        return {"pending": self.pending, "signed": self.signed, "expired": self.expired}


@dataclass
class SubmissionSummary:
    """Dashboard counters for carrier submissions."""

    pending: int = 0
    approved: int = 0
    rejected: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.approved + self.rejected

    def to_dict(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "approved": self.approved,
            "rejected": self.rejected,
        }


@dataclass
class DashboardStats:
    """Header counters of the document workflow page."""

    total: int = 0
    pending_signature: int = 0
    awaiting_carrier: int = 0
    completed_today: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending_signature": self.pending_signature,
            "awaiting_carrier": self.awaiting_carrier,
            "completed_today": self.completed_today,
        }


@dataclass
class TimelineStep:
    """One step of a document's workflow timeline."""

    status: DocumentStatus
    label: str
    date: Optional[datetime] = None
    description: Optional[str] = None
    is_active: bool = False
    is_completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "label": self.label,
            "date": _iso(self.date),
            "description": self.description,
            "is_active": self.is_active,
            "is_completed": self.is_completed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimelineStep":
        return cls(
            status=DocumentStatus(data["status"]),
            label=data.get("label", ""),
            date=_parse_dt(data.get("date")),
            description=data.get("description"),
            is_active=data.get("is_active", False),
            is_completed=data.get("is_completed", False),
        )
