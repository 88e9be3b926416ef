"""
Docflow - Document lifecycle controller.

The single mutation surface for documents. Each operation:

1. loads the document and checks the caller's version,
2. lets the signature or submission subsystem validate the change,
3. awaits any outbound delivery,
4. commits status, sub-records and history events with a compare-and-swap
   on the document version.

If delivery fails nothing is written. If the version moved in the meantime
the commit is rolled back and ConcurrentModificationError is raised.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar

from sqlalchemy.orm import Session

from . import reporting, signatures, submissions
from .catalog import CarrierCatalog
from .database import (
    CarrierSubmissionModel,
    Database,
    DocumentModel,
    SignatureRequestModel,
    document_from_model,
    event_from_model,
    signature_request_from_model,
    submission_from_model,
)
from .delivery import CarrierDelivery, ContactDelivery
from .exceptions import (
    AlreadyResolvedError,
    ConcurrentModificationError,
    DeliveryDispatchError,
    NotFoundError,
)
from .models import (
    Carrier,
    CarrierSubmission,
    DashboardStats,
    Document,
    DocumentEvent,
    DocumentStatus,
    DocumentView,
    EventType,
    SignatureMethod,
    SignatureRequest,
    SignatureRequestStatus,
    SignatureSummary,
    SubmissionMethod,
    SubmissionSummary,
    to_naive_utc,
    utcnow,
)
from .status import ensure_path, ensure_transition
from .validation import coerce_signature_method, coerce_submission_method

logger = logging.getLogger("docflow.lifecycle")

T = TypeVar("T")


def _event(event_type: EventType, actor: str, **payload: Any) -> dict:
    return {"event_type": event_type.value, "actor": actor, "payload": payload}


def _status_events(
    current: str, path: Iterable[DocumentStatus], actor: str
) -> List[dict]:
    events = []
    for step in path:
        events.append(
            _event(
                EventType.STATUS_CHANGED,
                actor,
                **{"from": getattr(current, "value", current), "to": step.value},
            )
        )
        current = step
    return events


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class LifecycleController:
    """Owns every document status change.

    Mutators take ``expected_version``. Callers that know the document
    version must pass it; webhook entry points and the expiry sweep pass None
    and the version read at the start of the operation is used for the
    compare-and-swap instead.
    """

    def __init__(
        self,
        database: Database,
        catalog: CarrierCatalog,
        contact_delivery: ContactDelivery,
        carrier_delivery: CarrierDelivery,
        clock: Callable[[], datetime] = utcnow,
        default_expiry_days: int = 7,
        callback_attempts: int = 3,
    ):
        self.db = database
        self.catalog = catalog
        self.contact_delivery = contact_delivery
        self.carrier_delivery = carrier_delivery
        self.clock = clock
        self.default_expiry_days = default_expiry_days
        self.callback_attempts = max(1, callback_attempts)

    # ==================== Internals ====================

    def _load_document(self, session: Session, document_id: str) -> DocumentModel:
        document = self.db.get_document(session, document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def _load_request(self, session: Session, request_id: str) -> SignatureRequestModel:
        request = self.db.get_signature_request(session, request_id)
        if request is None:
            raise NotFoundError(f"Signature request {request_id} not found")
        return request

    def _load_submission(
        self, session: Session, submission_id: str
    ) -> CarrierSubmissionModel:
        submission = self.db.get_submission(session, submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        return submission

    @staticmethod
    def _check_version(document: DocumentModel, expected_version: Optional[int]) -> int:
        if expected_version is not None and expected_version != document.version:
            raise ConcurrentModificationError(
                f"Document {document.id} is at version {document.version}, "
                f"not {expected_version}",
                current_version=document.version,
                current_status=document.status,
            )
        return document.version

    def _stamp(self, document: DocumentModel, now: datetime) -> datetime:
        # updated_at never moves backwards, even if the clock does
        if document.updated_at and document.updated_at > now:
            return document.updated_at
        return now

    def _is_latest(self, session: Session, model: type, record: Any) -> bool:
        return record.sequence == self.db.next_sequence(session, model, record.document_id) - 1

    def _commit(
        self,
        session: Session,
        document_id: str,
        version: int,
        updated_at: datetime,
        status: Optional[DocumentStatus] = None,
        records: Iterable[Any] = (),
        events: Iterable[dict] = (),
    ) -> DocumentModel:
        committed = self.db.commit_transition(
            session,
            document_id,
            version,
            status=status.value if status is not None else None,
            updated_at=updated_at,
            records=records,
            events=events,
        )
        if committed is None:
            current = self._load_document(session, document_id)
            raise ConcurrentModificationError(
                f"Document {document_id} changed while the operation was in flight",
                current_version=current.version,
                current_status=current.status,
            )
        return committed

    @staticmethod
    def _release(session: Session) -> None:
        """End the read transaction before awaiting delivery."""
        session.rollback()

    async def _deliver(self, channel: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except DeliveryDispatchError:
            raise
        except Exception as e:
            raise DeliveryDispatchError(f"{channel} delivery failed: {e}", channel=channel) from e

    async def _dispatch_signature(self, document: Document, request: SignatureRequestModel) -> None:
        link = request.signature_link or await self._deliver(
            "link", self.contact_delivery.generate_signature_link(document, request.id)
        )
        method = SignatureMethod(request.method)
        if method == SignatureMethod.EMAIL:
            await self._deliver(
                "email",
                self.contact_delivery.send_email(
                    request.recipient_contact,
                    document,
                    link,
                    message=request.message,
                    recipient_name=request.recipient_name,
                ),
            )
        elif method == SignatureMethod.SMS:
            await self._deliver(
                "sms",
                self.contact_delivery.send_sms(
                    request.recipient_contact,
                    document,
                    link,
                    message=request.message,
                    recipient_name=request.recipient_name,
                ),
            )
        request.signature_link = link

    async def _dispatch_submission(
        self, document: Document, carrier: Carrier, submission: CarrierSubmissionModel
    ) -> None:
        method = SubmissionMethod(submission.method)
        await self._deliver(
            f"carrier-{method.value}",
            self.carrier_delivery.submit(
                method,
                carrier,
                document,
                submission.id,
                include_related=bool(submission.include_related),
                cover_note=submission.cover_note,
            ),
        )

    async def _run_callback(
        self,
        operation: Callable[[], Awaitable[T]],
        current: Callable[[], T],
        description: str,
    ) -> T:
        """Run a webhook operation idempotently.

        Duplicates resolve to the stored state. Version races are retried by
        re-reading, after which a duplicate is a no-op.
        """
        for attempt in range(self.callback_attempts):
            try:
                return await operation()
            except AlreadyResolvedError as e:
                logger.warning(f"Duplicate {description} ignored: {e.message}")
                return current()
            except ConcurrentModificationError:
                logger.warning(
                    f"Version race on {description}, attempt {attempt + 1}"
                )
                if attempt == self.callback_attempts - 1:
                    raise
        raise AssertionError("unreachable")

    # ==================== Documents ====================

    def create_document(
        self,
        name: str,
        document_type: str = "",
        client_id: Optional[str] = None,
        actor: str = "system",
    ) -> Document:
        """Register a draft document produced by the document-generation side."""
        session = self.db.get_session()
        try:
            now = self.clock()
            doc = self.db.create_document(
                session,
                actor=actor,
                name=name,
                document_type=document_type or "",
                client_id=client_id,
                created_at=now,
                updated_at=now,
            )
            logger.info(f"Document {doc.id} created as draft")
            return document_from_model(doc)
        finally:
            session.close()

    # ==================== Signature requests ====================

    async def create_signature_request(
        self,
        document_id: str,
        method: Any,
        recipient_contact: Optional[str] = None,
        expiry_days: Optional[int] = None,
        expected_version: Optional[int] = None,
        recipient_name: Optional[str] = None,
        message: Optional[str] = None,
        send_reminders: bool = True,
        actor: str = "system",
    ) -> SignatureRequest:
        """Issue a signature request and move the document to pending_signature.

        Raises:
            InvalidMethodParametersError: missing or malformed contact.
            InvalidTransitionError: the document is not draft or expired.
            DeliveryDispatchError: the request could not be delivered.
        """
        if expiry_days is None:
            expiry_days = self.default_expiry_days
        method = coerce_signature_method(method)

        session = self.db.get_session()
        try:
            doc = self._load_document(session, document_id)
            version = self._check_version(doc, expected_version)
            current_status = doc.status
            target = signatures.ensure_can_request(current_status)

            now = self.clock()
            updated_at = self._stamp(doc, now)
            request = signatures.build_request(
                document_id=doc.id,
                sequence=self.db.next_sequence(session, SignatureRequestModel, doc.id),
                method=method,
                recipient_contact=recipient_contact,
                expiry_days=expiry_days,
                now=now,
                previous_document_status=current_status,
                recipient_name=recipient_name,
                message=message,
                send_reminders=send_reminders,
            )
            document = document_from_model(doc)
            self._release(session)

            await self._dispatch_signature(document, request)

            self._commit(
                session,
                document_id,
                version,
                updated_at,
                status=target,
                records=[request],
                events=[
                    _event(
                        EventType.SIGNATURE_REQUESTED,
                        actor,
                        request_id=request.id,
                        method=method.value,
                        expires_at=_iso(request.expires_at),
                    ),
                    *_status_events(current_status, [target], actor),
                ],
            )
            logger.info(
                f"Signature request {request.id} ({method.value}) issued for "
                f"document {document_id}"
            )
            return signature_request_from_model(request)
        finally:
            session.close()

    async def mark_signed(
        self,
        request_id: str,
        signed_at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
        actor: str = "system",
    ) -> SignatureRequest:
        """Record a signature. Expiry is never checked here.

        Raises:
            AlreadyResolvedError: already signed, cancelled or superseded.
            InvalidTransitionError: the request was expired by the sweep.
        """
        session = self.db.get_session()
        try:
            request = self._load_request(session, request_id)
            doc = self._load_document(session, request.document_id)
            version = self._check_version(doc, expected_version)

            signatures.ensure_can_sign(
                request, self._is_latest(session, SignatureRequestModel, request)
            )
            target = ensure_transition(doc.status, DocumentStatus.SIGNED)

            now = self.clock()
            signed_at = to_naive_utc(signed_at) or now
            signatures.apply_signed(request, signed_at)
            self._commit(
                session,
                doc.id,
                version,
                self._stamp(doc, now),
                status=target,
                events=[
                    _event(
                        EventType.SIGNATURE_RECEIVED,
                        actor,
                        request_id=request_id,
                        signed_at=_iso(signed_at),
                    ),
                    *_status_events(doc.status, [target], actor),
                ],
            )
            logger.info(f"Signature request {request_id} signed")
            return signature_request_from_model(self._load_request(session, request_id))
        finally:
            session.close()

    async def signature_callback(
        self, request_id: str, signed_at: Optional[datetime] = None
    ) -> SignatureRequest:
        """Webhook entry point for signature events. Duplicates are no-ops."""
        return await self._run_callback(
            lambda: self.mark_signed(request_id, signed_at, actor="signature-provider"),
            lambda: self.get_signature_request(request_id),
            f"signature callback for {request_id}",
        )

    async def resend_signature_request(
        self,
        request_id: str,
        expected_version: Optional[int] = None,
        actor: str = "system",
    ) -> SignatureRequest:
        """Send a reminder for a pending request, or renew an expired one.

        A pending link request has nothing to send; the same request and link
        are returned unchanged. A pending request whose expiry has passed but
        which the sweep has not reached yet is renewed like an expired one.
        """
        session = self.db.get_session()
        try:
            request = self._load_request(session, request_id)
            doc = self._load_document(session, request.document_id)
            version = self._check_version(doc, expected_version)

            if not signatures.can_resend(request):
                raise AlreadyResolvedError(
                    f"Signature request {request_id} is {request.status} and cannot be resent",
                    current_status=request.status,
                )
            if not self._is_latest(session, SignatureRequestModel, request):
                raise AlreadyResolvedError(
                    f"Signature request {request_id} was superseded",
                    current_status=request.status,
                )

            now = self.clock()
            lapsed = signatures.is_pending(request) and signatures.compute_is_expired(
                request, now
            )
            if signatures.is_pending(request) and not lapsed:
                return await self._send_reminder(session, doc, request, version, now, actor)
            return await self._renew(session, doc, request, version, now, lapsed, actor)
        finally:
            session.close()

    async def _send_reminder(
        self,
        session: Session,
        doc: DocumentModel,
        request: SignatureRequestModel,
        version: int,
        now: datetime,
        actor: str,
    ) -> SignatureRequest:
        if request.method == SignatureMethod.LINK.value:
            return signature_request_from_model(request)

        document_id = doc.id
        updated_at = self._stamp(doc, now)
        document = document_from_model(doc)
        self._release(session)

        await self._dispatch_signature(document, request)

        signatures.apply_reminder(request)
        self._commit(
            session,
            document_id,
            version,
            updated_at,
            events=[
                _event(
                    EventType.SIGNATURE_REMINDER_SENT,
                    actor,
                    request_id=request.id,
                    reminders_sent=request.reminders_sent,
                )
            ],
        )
        logger.info(f"Reminder sent for signature request {request.id}")
        return signature_request_from_model(request)

    async def _renew(
        self,
        session: Session,
        doc: DocumentModel,
        previous: SignatureRequestModel,
        version: int,
        now: datetime,
        lapsed: bool,
        actor: str,
    ) -> SignatureRequest:
        current_status = doc.status
        if lapsed:
            path = ensure_path(
                current_status, DocumentStatus.EXPIRED, DocumentStatus.PENDING_SIGNATURE
            )
        else:
            path = [signatures.ensure_can_request(current_status)]

        request = signatures.build_request(
            document_id=doc.id,
            sequence=previous.sequence + 1,
            method=SignatureMethod(previous.method),
            recipient_contact=previous.recipient_contact,
            expiry_days=signatures.renewal_expiry_days(previous, self.default_expiry_days),
            now=now,
            previous_document_status=DocumentStatus.EXPIRED,
            recipient_name=previous.recipient_name,
            message=previous.message,
            send_reminders=bool(previous.send_reminders),
        )
        previous_id = previous.id
        document_id = doc.id
        updated_at = self._stamp(doc, now)
        document = document_from_model(doc)
        self._release(session)

        await self._dispatch_signature(document, request)

        events = []
        if lapsed:
            signatures.apply_expired(previous)
            events.append(_event(EventType.SIGNATURE_EXPIRED, actor, request_id=previous_id))
        events.append(
            _event(
                EventType.SIGNATURE_REQUESTED,
                actor,
                request_id=request.id,
                method=request.method,
                expires_at=_iso(request.expires_at),
                renewed_from=previous_id,
            )
        )
        events.extend(_status_events(current_status, path, actor))

        self._commit(
            session,
            document_id,
            version,
            updated_at,
            status=path[-1],
            records=[request],
            events=events,
        )
        logger.info(f"Signature request {previous_id} renewed as {request.id}")
        return signature_request_from_model(request)

    async def cancel_signature_request(
        self,
        request_id: str,
        expected_version: Optional[int] = None,
        actor: str = "system",
    ) -> SignatureRequest:
        """Invalidate a pending request; the document returns to its prior status.

        Messages already delivered are not retracted.
        """
        session = self.db.get_session()
        try:
            request = self._load_request(session, request_id)
            doc = self._load_document(session, request.document_id)
            version = self._check_version(doc, expected_version)

            target = signatures.ensure_can_cancel(request, doc.status)
            now = self.clock()
            current_status = doc.status
            signatures.apply_cancelled(request)
            self._commit(
                session,
                doc.id,
                version,
                self._stamp(doc, now),
                status=target,
                events=[
                    _event(EventType.SIGNATURE_CANCELLED, actor, request_id=request_id),
                    _event(
                        EventType.STATUS_CHANGED,
                        actor,
                        **{"from": current_status, "to": target.value, "reverted": True},
                    ),
                ],
            )
            logger.info(f"Signature request {request_id} cancelled")
            return signature_request_from_model(self._load_request(session, request_id))
        finally:
            session.close()

    async def expire_signature_request(
        self,
        request_id: str,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
        actor: str = "expiry-sweep",
    ) -> Optional[SignatureRequest]:
        """Move a lapsed pending request, and its document, to expired.

        Returns None when the request has not lapsed at ``now``.
        """
        session = self.db.get_session()
        try:
            request = self._load_request(session, request_id)
            doc = self._load_document(session, request.document_id)
            version = self._check_version(doc, expected_version)

            if not signatures.is_pending(request):
                raise AlreadyResolvedError(
                    f"Signature request {request_id} is {request.status}",
                    current_status=request.status,
                )
            now = to_naive_utc(now) or self.clock()
            if not signatures.compute_is_expired(request, now):
                return None

            target = ensure_transition(doc.status, DocumentStatus.EXPIRED)
            current_status = doc.status
            signatures.apply_expired(request)
            self._commit(
                session,
                doc.id,
                version,
                self._stamp(doc, now),
                status=target,
                events=[
                    _event(EventType.SIGNATURE_EXPIRED, actor, request_id=request_id),
                    *_status_events(current_status, [target], actor),
                ],
            )
            logger.info(f"Signature request {request_id} expired")
            return signature_request_from_model(self._load_request(session, request_id))
        finally:
            session.close()

    # ==================== Carrier submissions ====================

    async def queue_for_submission(
        self,
        document_id: str,
        expected_version: Optional[int] = None,
        actor: str = "system",
    ) -> Document:
        """Mark a signed document as waiting to be sent (signed -> pending_send)."""
        session = self.db.get_session()
        try:
            doc = self._load_document(session, document_id)
            version = self._check_version(doc, expected_version)
            target = ensure_transition(doc.status, DocumentStatus.PENDING_SEND)
            current_status = doc.status
            committed = self._commit(
                session,
                document_id,
                version,
                self._stamp(doc, self.clock()),
                status=target,
                events=[
                    _event(EventType.QUEUED_FOR_SUBMISSION, actor),
                    *_status_events(current_status, [target], actor),
                ],
            )
            return document_from_model(committed)
        finally:
            session.close()

    async def create_carrier_submission(
        self,
        document_id: str,
        company_id: str,
        method: Any,
        include_related: bool = False,
        cover_note: Optional[str] = None,
        expected_version: Optional[int] = None,
        actor: str = "system",
    ) -> CarrierSubmission:
        """Deliver a signed document to a carrier and move it to sent.

        Raises:
            UnknownCarrierError: ``company_id`` is not in the catalog.
            InvalidTransitionError: the document is not signed, pending_send
                or rejected.
            DeliveryDispatchError: the carrier delivery failed.
        """
        method = coerce_submission_method(method)

        session = self.db.get_session()
        try:
            doc = self._load_document(session, document_id)
            version = self._check_version(doc, expected_version)
            current_status = doc.status
            target = submissions.ensure_can_submit(current_status)
            carrier = submissions.resolve_carrier(self.catalog, company_id, method)

            previous = self.db.get_submissions(session, document_id)
            retry_of = None
            if current_status == DocumentStatus.REJECTED.value and previous:
                retry_of = previous[-1].id

            now = self.clock()
            submission = submissions.build_submission(
                document_id=document_id,
                sequence=self.db.next_sequence(session, CarrierSubmissionModel, document_id),
                company_id=company_id,
                method=method,
                include_related=include_related,
                now=now,
                cover_note=cover_note,
                retry_of=retry_of,
            )
            updated_at = self._stamp(doc, now)
            document = document_from_model(doc)
            self._release(session)

            await self._dispatch_submission(document, carrier, submission)

            self._commit(
                session,
                document_id,
                version,
                updated_at,
                status=target,
                records=[submission],
                events=[
                    _event(
                        EventType.SUBMISSION_CREATED,
                        actor,
                        submission_id=submission.id,
                        company_id=company_id,
                        method=method.value,
                        include_related=bool(include_related),
                        retry_of=retry_of,
                    ),
                    *_status_events(current_status, [target], actor),
                ],
            )
            logger.info(
                f"Document {document_id} submitted to {company_id} via {method.value}"
            )
            return submission_from_model(submission)
        finally:
            session.close()

    async def mark_processing(
        self,
        submission_id: str,
        expected_version: Optional[int] = None,
        actor: str = "carrier",
    ) -> CarrierSubmission:
        """sent -> processing; a no-op if the submission is already processing."""
        session = self.db.get_session()
        try:
            submission = self._load_submission(session, submission_id)
            doc = self._load_document(session, submission.document_id)
            version = self._check_version(doc, expected_version)

            if not submissions.needs_processing(submission):
                return submission_from_model(submission)

            target = ensure_transition(doc.status, DocumentStatus.PROCESSING)
            current_status = doc.status
            submissions.apply_processing(submission)
            self._commit(
                session,
                doc.id,
                version,
                self._stamp(doc, self.clock()),
                status=target,
                events=[
                    _event(
                        EventType.SUBMISSION_PROCESSING, actor, submission_id=submission_id
                    ),
                    *_status_events(current_status, [target], actor),
                ],
            )
            return submission_from_model(self._load_submission(session, submission_id))
        finally:
            session.close()

    async def processing_callback(self, submission_id: str) -> CarrierSubmission:
        """Webhook entry point for a carrier acknowledging receipt."""
        return await self._run_callback(
            lambda: self.mark_processing(submission_id),
            lambda: self.get_submission(submission_id),
            f"processing callback for {submission_id}",
        )

    async def resolve_submission(
        self,
        submission_id: str,
        outcome: Any,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
        actor: str = "carrier",
    ) -> CarrierSubmission:
        """Record the carrier's decision and move the document to approved or rejected.

        Raises:
            AlreadyResolvedError: the submission was already decided.
        """
        session = self.db.get_session()
        try:
            submission = self._load_submission(session, submission_id)
            doc = self._load_document(session, submission.document_id)
            version = self._check_version(doc, expected_version)

            resolved = submissions.ensure_can_resolve(submission, outcome)
            current_status = doc.status
            path = submissions.resolution_path(current_status, resolved)

            now = self.clock()
            submissions.apply_resolution(
                submission, resolved, now, reference_number=reference_number, notes=notes
            )
            self._commit(
                session,
                doc.id,
                version,
                self._stamp(doc, now),
                status=path[-1],
                events=[
                    _event(
                        EventType.SUBMISSION_RESOLVED,
                        actor,
                        submission_id=submission_id,
                        outcome=resolved.value,
                        reference_number=reference_number,
                        notes=notes,
                    ),
                    *_status_events(current_status, path, actor),
                ],
            )
            logger.info(f"Submission {submission_id} {resolved.value}")
            return submission_from_model(self._load_submission(session, submission_id))
        finally:
            session.close()

    async def carrier_callback(
        self,
        submission_id: str,
        outcome: Any,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CarrierSubmission:
        """Webhook entry point for carrier decisions. Duplicates are no-ops."""
        result = await self._run_callback(
            lambda: self.resolve_submission(
                submission_id, outcome, reference_number, notes, actor="carrier"
            ),
            lambda: self.get_submission(submission_id),
            f"carrier callback for {submission_id}",
        )
        requested = getattr(outcome, "value", outcome)
        if result.status.value != requested:
            logger.warning(
                f"Carrier callback for {submission_id} reported {requested} "
                f"but the submission is already {result.status.value}"
            )
        return result

    async def retry_carrier_submission(
        self,
        submission_id: str,
        company_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        actor: str = "system",
    ) -> CarrierSubmission:
        """Resubmit a rejected document.

        Reuses the rejected submission's carrier, method and related-documents
        flag. ``company_id`` redirects the retry to another carrier. The
        rejected submission stays in history unchanged.
        """
        session = self.db.get_session()
        try:
            rejected = self._load_submission(session, submission_id)
            doc = self._load_document(session, rejected.document_id)
            version = self._check_version(doc, expected_version)

            current_status = doc.status
            target = submissions.ensure_can_retry(
                rejected,
                current_status,
                self._is_latest(session, CarrierSubmissionModel, rejected),
            )
            method = SubmissionMethod(rejected.method)
            company = company_id or rejected.company_id
            carrier = submissions.resolve_carrier(self.catalog, company, method)

            now = self.clock()
            submission = submissions.build_submission(
                document_id=doc.id,
                sequence=rejected.sequence + 1,
                company_id=company,
                method=method,
                include_related=bool(rejected.include_related),
                now=now,
                cover_note=rejected.cover_note,
                retry_of=rejected.id,
            )
            document_id = doc.id
            updated_at = self._stamp(doc, now)
            document = document_from_model(doc)
            self._release(session)

            await self._dispatch_submission(document, carrier, submission)

            self._commit(
                session,
                document_id,
                version,
                updated_at,
                status=target,
                records=[submission],
                events=[
                    _event(
                        EventType.SUBMISSION_RETRIED,
                        actor,
                        submission_id=submission.id,
                        retry_of=submission_id,
                        company_id=company,
                        method=method.value,
                    ),
                    *_status_events(current_status, [target], actor),
                ],
            )
            logger.info(f"Submission {submission_id} retried as {submission.id}")
            return submission_from_model(submission)
        finally:
            session.close()

    # ==================== Reads ====================

    def _view(self, session: Session, doc: DocumentModel, now: datetime) -> DocumentView:
        requests = [
            signature_request_from_model(r)
            for r in self.db.get_signature_requests(session, doc.id)
        ]
        subs = [submission_from_model(s) for s in self.db.get_submissions(session, doc.id)]

        live_request = requests[-1] if requests else None
        if live_request and live_request.status == SignatureRequestStatus.CANCELLED:
            live_request = None

        return DocumentView(
            document=document_from_model(doc),
            signature_request=live_request,
            submission=subs[-1] if subs else None,
            is_expired=(
                signatures.compute_is_expired(live_request, now) if live_request else False
            ),
            signature_requests=requests,
            submissions=subs,
        )

    def get_document(self, document_id: str) -> DocumentView:
        session = self.db.get_session()
        try:
            doc = self._load_document(session, document_id)
            return self._view(session, doc, self.clock())
        finally:
            session.close()

    def get_documents(self, document_ids: Iterable[str]) -> List[DocumentView]:
        """Views for ``document_ids``; every id must exist."""
        ids = list(dict.fromkeys(document_ids))
        session = self.db.get_session()
        try:
            found = {d.id: d for d in self.db.list_documents(session, document_ids=ids)}
            missing = [i for i in ids if i not in found]
            if missing:
                raise NotFoundError(f"Documents not found: {', '.join(missing)}")
            now = self.clock()
            return [self._view(session, found[i], now) for i in ids]
        finally:
            session.close()

    def list_documents(
        self,
        status: Optional[str] = None,
        client_id: Optional[str] = None,
        document_type: Optional[str] = None,
        query: Optional[str] = None,
    ) -> List[Document]:
        """Documents ordered by creation time.

        ``query`` is a case-insensitive substring match on name, document type
        and client id.
        """
        session = self.db.get_session()
        try:
            return [
                document_from_model(d)
                for d in self.db.list_documents(
                    session,
                    status=status,
                    client_id=client_id,
                    document_type=document_type,
                    search=query.strip() if query else None,
                )
            ]
        finally:
            session.close()

    def get_signature_request(self, request_id: str) -> SignatureRequest:
        session = self.db.get_session()
        try:
            return signature_request_from_model(self._load_request(session, request_id))
        finally:
            session.close()

    def get_submission(self, submission_id: str) -> CarrierSubmission:
        session = self.db.get_session()
        try:
            return submission_from_model(self._load_submission(session, submission_id))
        finally:
            session.close()

    def pending_signature_requests(self) -> List[SignatureRequest]:
        session = self.db.get_session()
        try:
            return [
                signature_request_from_model(r)
                for r in self.db.get_pending_signature_requests(session)
            ]
        finally:
            session.close()

    def get_events(
        self, document_id: str, limit: int = 100, offset: int = 0
    ) -> List[DocumentEvent]:
        session = self.db.get_session()
        try:
            self._load_document(session, document_id)
            return [
                event_from_model(e)
                for e in self.db.get_events(session, document_id, limit=limit, offset=offset)
            ]
        finally:
            session.close()

    # ==================== Reporting ====================

    def signature_summary(
        self, document_ids: Iterable[str], now: Optional[datetime] = None
    ) -> SignatureSummary:
        """Signature counters over the live request of each document."""
        views = self.get_documents(document_ids)
        live = [v.signature_request for v in views if v.signature_request]
        return reporting.signature_summary(live, to_naive_utc(now) or self.clock())

    def submission_summary(self, document_ids: Iterable[str]) -> SubmissionSummary:
        """Submission counters over the live submission of each document."""
        views = self.get_documents(document_ids)
        return reporting.submission_summary([v.submission for v in views if v.submission])

    def status_counts(self, document_ids: Optional[Iterable[str]] = None) -> dict[str, int]:
        if document_ids is None:
            documents = self.list_documents()
        else:
            documents = [v.document for v in self.get_documents(document_ids)]
        return reporting.status_counts(documents)

    def dashboard_stats(self, now: Optional[datetime] = None) -> DashboardStats:
        """Counters for the workflow page header, "today" taken from the clock."""
        return reporting.dashboard_stats(
            self.list_documents(), to_naive_utc(now) or self.clock()
        )
