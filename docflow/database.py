"""
Database layer for Docflow using SQLAlchemy.
Supports SQLite (default) and PostgreSQL.

Every document mutation is committed through ``commit_transition``, which
performs a compare-and-swap on the document version and writes the touched
sub-records and history events in the same transaction.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    or_,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    CarrierSubmission,
    Document,
    DocumentEvent,
    DocumentStatus,
    EventType,
    SignatureMethod,
    SignatureRequest,
    SignatureRequestStatus,
    SubmissionMethod,
    SubmissionStatus,
    utcnow,
)

Base = declarative_base()


class DocumentModel(Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(255), nullable=False)
    document_type = Column(String(100), default="")
    client_id = Column(String(36), nullable=True)
    status = Column(String(50), default=DocumentStatus.DRAFT.value, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    signature_requests = relationship(
        "SignatureRequestModel",
        back_populates="document",
        order_by="SignatureRequestModel.sequence",
    )
    submissions = relationship(
        "CarrierSubmissionModel",
        back_populates="document",
        order_by="CarrierSubmissionModel.sequence",
    )
    events = relationship("DocumentEventModel", back_populates="document")

    __table_args__ = (
        Index("idx_documents_status", "status"),
        Index("idx_documents_client_id", "client_id"),
    )


class SignatureRequestModel(Base):
    __tablename__ = "signature_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    method = Column(String(20), nullable=False)
    status = Column(String(50), nullable=False)
    recipient_contact = Column(String(255), nullable=True)
    recipient_name = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)
    send_reminders = Column(Boolean, default=False)
    signature_link = Column(Text, nullable=True)
    reminders_sent = Column(Integer, default=0)
    # Document status when the request was issued; a cancel reverts to it.
    previous_document_status = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    sent_at = Column(DateTime, nullable=True)
    signed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    document = relationship("DocumentModel", back_populates="signature_requests")

    __table_args__ = (
        UniqueConstraint("document_id", "sequence", name="uq_signature_request_seq"),
        Index("idx_signature_requests_status", "status"),
    )


class CarrierSubmissionModel(Base):
    __tablename__ = "carrier_submissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    company_id = Column(String(100), nullable=False)
    method = Column(String(20), nullable=False)
    status = Column(String(50), nullable=False)
    include_related = Column(Boolean, default=False)
    cover_note = Column(Text, nullable=True)
    retry_of = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    submitted_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    reference_number = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    document = relationship("DocumentModel", back_populates="submissions")

    __table_args__ = (
        UniqueConstraint("document_id", "sequence", name="uq_carrier_submission_seq"),
    )


class DocumentEventModel(Base):
    __tablename__ = "document_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False)
    event_type = Column(String(100), nullable=False)
    actor = Column(String(255), nullable=False)
    payload = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)

    document = relationship("DocumentModel", back_populates="events")

    __table_args__ = (Index("idx_document_events_document_id", "document_id"),)


class Database:
    """Database interface for Docflow."""

    def __init__(self, database_url: str):
        self.database_url = database_url

        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool if database_url.startswith("sqlite") else None,
        )
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # ==================== Documents ====================

    def create_document(
        self, session: Session, actor: str = "system", **kwargs
    ) -> DocumentModel:
        """Insert a draft document together with its creation event."""
        kwargs.setdefault("status", DocumentStatus.DRAFT.value)
        document = DocumentModel(**kwargs)
        session.add(document)
        session.flush()
        session.add(
            DocumentEventModel(
                document_id=document.id,
                event_type=EventType.DOCUMENT_CREATED.value,
                actor=actor,
                payload={"name": document.name, "document_type": document.document_type},
                created_at=document.created_at,
            )
        )
        session.commit()
        session.refresh(document)
        return document

    def get_document(self, session: Session, document_id: str) -> Optional[DocumentModel]:
        return session.query(DocumentModel).filter(DocumentModel.id == document_id).first()

    def list_documents(
        self,
        session: Session,
        status: Optional[str] = None,
        client_id: Optional[str] = None,
        document_ids: Optional[Iterable[str]] = None,
        document_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[DocumentModel]:
        query = session.query(DocumentModel)
        if status:
            query = query.filter(DocumentModel.status == status)
        if client_id:
            query = query.filter(DocumentModel.client_id == client_id)
        if document_type:
            query = query.filter(DocumentModel.document_type == document_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    DocumentModel.name.ilike(pattern),
                    DocumentModel.document_type.ilike(pattern),
                    DocumentModel.client_id.ilike(pattern),
                )
            )
        if document_ids is not None:
            query = query.filter(DocumentModel.id.in_(list(document_ids)))
        return query.order_by(DocumentModel.created_at).all()

    def commit_transition(
        self,
        session: Session,
        document_id: str,
        expected_version: int,
        status: Optional[str] = None,
        updated_at: Optional[datetime] = None,
        records: Iterable[Base] = (),
        events: Iterable[Dict[str, Any]] = (),
    ) -> Optional[DocumentModel]:
        """Compare-and-swap the document version and persist the change.

        Sub-records already loaded in ``session`` and mutated by the caller are
        flushed in the same transaction; new ``records`` are added. Returns
        None, with everything rolled back, if the stored version no longer
        equals ``expected_version``.
        """
        values: Dict[str, Any] = {
            "version": expected_version + 1,
            "updated_at": updated_at or utcnow(),
        }
        if status is not None:
            values["status"] = status

        matched = (
            session.query(DocumentModel)
            .filter(
                DocumentModel.id == document_id,
                DocumentModel.version == expected_version,
            )
            .update(values, synchronize_session=False)
        )
        if matched != 1:
            session.rollback()
            return None

        session.add_all(list(records))
        for event in events:
            session.add(
                DocumentEventModel(
                    document_id=document_id,
                    created_at=values["updated_at"],
                    **event,
                )
            )
        session.commit()
        document = self.get_document(session, document_id)
        session.refresh(document)
        return document

    # ==================== Signature requests ====================

    def get_signature_request(
        self, session: Session, request_id: str
    ) -> Optional[SignatureRequestModel]:
        return (
            session.query(SignatureRequestModel)
            .filter(SignatureRequestModel.id == request_id)
            .first()
        )

    def get_signature_requests(
        self, session: Session, document_id: str
    ) -> List[SignatureRequestModel]:
        return (
            session.query(SignatureRequestModel)
            .filter(SignatureRequestModel.document_id == document_id)
            .order_by(SignatureRequestModel.sequence)
            .all()
        )

    def get_pending_signature_requests(
        self, session: Session
    ) -> List[SignatureRequestModel]:
        return (
            session.query(SignatureRequestModel)
            .filter(
                SignatureRequestModel.status
                == SignatureRequestStatus.PENDING_SIGNATURE.value
            )
            .order_by(SignatureRequestModel.expires_at)
            .all()
        )

    # ==================== Carrier submissions ====================

    def get_submission(
        self, session: Session, submission_id: str
    ) -> Optional[CarrierSubmissionModel]:
        return (
            session.query(CarrierSubmissionModel)
            .filter(CarrierSubmissionModel.id == submission_id)
            .first()
        )

    def get_submissions(
        self, session: Session, document_id: str
    ) -> List[CarrierSubmissionModel]:
        return (
            session.query(CarrierSubmissionModel)
            .filter(CarrierSubmissionModel.document_id == document_id)
            .order_by(CarrierSubmissionModel.sequence)
            .all()
        )

    def next_sequence(self, session: Session, model: type, document_id: str) -> int:
        """Next per-document sequence number for ``model``."""
        current = (
            session.query(func.max(model.sequence))
            .filter(model.document_id == document_id)
            .scalar()
        )
        return (current or 0) + 1

    # ==================== History ====================

    def get_events(
        self, session: Session, document_id: str, limit: int = 100, offset: int = 0
    ) -> List[DocumentEventModel]:
        return (
            session.query(DocumentEventModel)
            .filter(DocumentEventModel.document_id == document_id)
            .order_by(DocumentEventModel.id)
            .offset(offset)
            .limit(limit)
            .all()
        )


def document_from_model(model: DocumentModel) -> Document:
    return Document(
        id=model.id,
        name=model.name,
        document_type=model.document_type or "",
        client_id=model.client_id,
        status=DocumentStatus(model.status),
        version=model.version,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def signature_request_from_model(model: SignatureRequestModel) -> SignatureRequest:
    return SignatureRequest(
        id=model.id,
        document_id=model.document_id,
        sequence=model.sequence,
        method=SignatureMethod(model.method),
        status=SignatureRequestStatus(model.status),
        created_at=model.created_at,
        sent_at=model.sent_at,
        signed_at=model.signed_at,
        expires_at=model.expires_at,
        recipient_contact=model.recipient_contact,
        recipient_name=model.recipient_name,
        message=model.message,
        send_reminders=bool(model.send_reminders),
        signature_link=model.signature_link,
        reminders_sent=model.reminders_sent or 0,
    )


def submission_from_model(model: CarrierSubmissionModel) -> CarrierSubmission:
    return CarrierSubmission(
        id=model.id,
        document_id=model.document_id,
        sequence=model.sequence,
        company_id=model.company_id,
        method=SubmissionMethod(model.method),
        status=SubmissionStatus(model.status),
        created_at=model.created_at,
        submitted_at=model.submitted_at,
        processed_at=model.processed_at,
        reference_number=model.reference_number,
        notes=model.notes,
        cover_note=model.cover_note,
        include_related=bool(model.include_related),
        retry_of=model.retry_of,
    )


def event_from_model(model: DocumentEventModel) -> DocumentEvent:
    return DocumentEvent(
        id=str(model.id),
        document_id=model.document_id,
        event_type=EventType(model.event_type),
        actor=model.actor,
        payload=model.payload or {},
        created_at=model.created_at,
    )


_database: Optional[Database] = None


def get_database(database_url: str = "sqlite:///./docflow.db") -> Database:
    """Get or create the database instance."""
    global _database
    if _database is None:
        _database = Database(database_url)
        _database.create_tables()
    return _database
