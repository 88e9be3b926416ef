"""
Docflow SDK - HTTP client for the Docflow server.

Provides both synchronous and asynchronous clients. Error bodies returned by
the server are mapped back to the exception classes raised by the lifecycle
controller, so callers handle remote and in-process errors the same way.
"""

from datetime import datetime
from typing import Any, Optional, Union

import httpx

from .exceptions import (
    AlreadyResolvedError,
    ConcurrentModificationError,
    DeliveryDispatchError,
    DocflowError,
    InvalidMethodParametersError,
    InvalidTransitionError,
    NotFoundError,
    UnknownCarrierError,
)
from .models import (
    Carrier,
    CarrierSubmission,
    DashboardStats,
    Document,
    DocumentEvent,
    DocumentStatus,
    DocumentView,
    SignatureMethod,
    SignatureRequest,
    SignatureSummary,
    SubmissionMethod,
    SubmissionStatus,
    SubmissionSummary,
    TimelineStep,
)

MethodLike = Union[SignatureMethod, SubmissionMethod, SubmissionStatus, str]


def _plain(value: MethodLike) -> str:
    return getattr(value, "value", value)


def _body(response: httpx.Response) -> dict:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text}
    return data if isinstance(data, dict) else {"detail": data}


def _error_from_response(response: httpx.Response) -> DocflowError:
    """Rebuild the server-side exception from an error response."""
    data = _body(response)
    status = response.status_code
    message = data.get("message") or str(data.get("detail") or f"Request failed with status {status}")  # noqa: E501
    kind = data.get("error")

    if kind == "InvalidTransitionError":
        return InvalidTransitionError(
            message,
            current_status=data.get("current_status"),
            attempted_status=data.get("attempted_status"),
            status_code=status,
            response=data,
        )
    if kind == "AlreadyResolvedError":
        return AlreadyResolvedError(
            message, current_status=data.get("current_status"), status_code=status, response=data
        )
    if kind == "ConcurrentModificationError":
        return ConcurrentModificationError(
            message,
            current_version=data.get("current_version"),
            current_status=data.get("current_status"),
            status_code=status,
            response=data,
        )
    if kind == "UnknownCarrierError":
        return UnknownCarrierError(data.get("company_id", ""), status_code=status, response=data)
    if kind in ("InvalidMethodParametersError", "InputValidationError"):
        return InvalidMethodParametersError(
            message, field=data.get("field"), status_code=status, response=data
        )
    if kind == "DeliveryDispatchError":
        return DeliveryDispatchError(
            message, channel=data.get("channel"), status_code=status, response=data
        )
    if status == 404:
        return NotFoundError(message, status_code=404, response=data)
    return DocflowError(message, status_code=status, response=data)


def _signature_payload(
    method: MethodLike,
    recipient_contact: Optional[str],
    expiry_days: Optional[int],
    recipient_name: Optional[str],
    message: Optional[str],
    send_reminders: bool,
) -> dict[str, Any]:
    return {
        "method": _plain(method),
        "recipient_contact": recipient_contact,
        "expiry_days": expiry_days,
        "recipient_name": recipient_name,
        "message": message,
        "send_reminders": send_reminders,
    }


def _version_header(version: int) -> dict[str, str]:
    return {"If-Match": str(version)}


class DocflowClient:
    """
    Synchronous client for the Docflow API.

    Example:
        ```python
        client = DocflowClient("http://localhost:8000", api_key="dev-user-key")

        doc = client.create_document("Pension transfer", document_type="transfer")
        request = client.create_signature_request(
            doc.id, doc.version, "email", "client@example.com", expiry_days=7
        )

        view = client.get_document(doc.id)
        print(view.status, view.is_expired)
        ```
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                "X-API-Key": api_key,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def _handle_response(self, response: httpx.Response) -> Any:
        """Handle HTTP response and raise appropriate exceptions."""
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json() if response.content else {}

    # ==================== Discovery ====================

    def discover(self) -> dict:
        """Service metadata, including the status transition table."""
        response = self._client.get("/.well-known/docflow.json")
        return self._handle_response(response)

    # ==================== Documents ====================

    def create_document(
        self, name: str, document_type: str = "", client_id: Optional[str] = None
    ) -> Document:
        response = self._client.post(
            "/api/v1/documents",
            json={"name": name, "document_type": document_type, "client_id": client_id},
        )
        return Document.from_dict(self._handle_response(response))

    def get_document(self, document_id: str) -> DocumentView:
        """
        Retrieve a document with its live signature request and submission.

        Args:
            document_id: The document identifier.

        Returns:
            DocumentView including the derived is_expired flag and the full
            request/submission history.
        """
        response = self._client.get(f"/api/v1/documents/{document_id}")
        return DocumentView.from_dict(self._handle_response(response))

    def list_documents(
        self,
        status: Optional[Union[DocumentStatus, str]] = None,
        client_id: Optional[str] = None,
        document_type: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[Document]:
        params: dict[str, Any] = {}
        if status:
            params["status"] = _plain(status)
        if client_id:
            params["client_id"] = client_id
        if document_type:
            params["document_type"] = document_type
        if query:
            params["query"] = query
        response = self._client.get("/api/v1/documents", params=params)
        return [Document.from_dict(d) for d in self._handle_response(response)]

    def get_events(
        self, document_id: str, limit: int = 100, offset: int = 0
    ) -> list[DocumentEvent]:
        response = self._client.get(
            f"/api/v1/documents/{document_id}/events",
            params={"limit": limit, "offset": offset},
        )
        return [DocumentEvent.from_dict(e) for e in self._handle_response(response)]

    def get_timeline(self, document_id: str) -> list[TimelineStep]:
        response = self._client.get(f"/api/v1/documents/{document_id}/timeline")
        return [TimelineStep.from_dict(s) for s in self._handle_response(response)]

    # ==================== Signature requests ====================

    def create_signature_request(
        self,
        document_id: str,
        version: int,
        method: MethodLike,
        recipient_contact: Optional[str] = None,
        expiry_days: Optional[int] = None,
        recipient_name: Optional[str] = None,
        message: Optional[str] = None,
        send_reminders: bool = True,
    ) -> SignatureRequest:
        """
        Ask the client to sign a document.

        Args:
            document_id: The document to sign.
            version: Last known document version.
            method: email, sms or link.
            recipient_contact: Email address or phone number; omitted for link.
            expiry_days: Days until the request lapses; server default if None.

        Raises:
            InvalidMethodParametersError: contact missing or malformed.
            InvalidTransitionError: document not in draft or expired.
            ConcurrentModificationError: ``version`` is stale.
        """
        response = self._client.post(
            f"/api/v1/documents/{document_id}/signature-requests",
            json=_signature_payload(
                method, recipient_contact, expiry_days, recipient_name, message, send_reminders
            ),
            headers=_version_header(version),
        )
        return SignatureRequest.from_dict(self._handle_response(response))

    def resend_signature_request(self, request_id: str, version: int) -> SignatureRequest:
        response = self._client.post(
            f"/api/v1/signature-requests/{request_id}/resend",
            headers=_version_header(version),
        )
        return SignatureRequest.from_dict(self._handle_response(response))

    def cancel_signature_request(self, request_id: str, version: int) -> SignatureRequest:
        response = self._client.post(
            f"/api/v1/signature-requests/{request_id}/cancel",
            headers=_version_header(version),
        )
        return SignatureRequest.from_dict(self._handle_response(response))

    def signature_callback(
        self, request_id: str, signed_at: Optional[datetime] = None
    ) -> SignatureRequest:
        """Report a completed signature. Safe to repeat."""
        response = self._client.post(
            f"/api/v1/webhooks/signatures/{request_id}",
            json={"signed_at": signed_at.isoformat() if signed_at else None},
        )
        return SignatureRequest.from_dict(self._handle_response(response))

    # ==================== Carrier submissions ====================

    def queue_for_submission(self, document_id: str, version: int) -> Document:
        response = self._client.post(
            f"/api/v1/documents/{document_id}/queue",
            headers=_version_header(version),
        )
        return Document.from_dict(self._handle_response(response))

    def create_carrier_submission(
        self,
        document_id: str,
        version: int,
        company_id: str,
        method: MethodLike,
        include_related: bool = False,
        cover_note: Optional[str] = None,
    ) -> CarrierSubmission:
        response = self._client.post(
            f"/api/v1/documents/{document_id}/submissions",
            json={
                "company_id": company_id,
                "method": _plain(method),
                "include_related": include_related,
                "cover_note": cover_note,
            },
            headers=_version_header(version),
        )
        return CarrierSubmission.from_dict(self._handle_response(response))

    def mark_processing(self, submission_id: str) -> CarrierSubmission:
        response = self._client.post(
            f"/api/v1/webhooks/submissions/{submission_id}/processing"
        )
        return CarrierSubmission.from_dict(self._handle_response(response))

    def carrier_callback(
        self,
        submission_id: str,
        outcome: MethodLike,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CarrierSubmission:
        """Report the carrier's decision. Safe to repeat."""
        response = self._client.post(
            f"/api/v1/webhooks/submissions/{submission_id}",
            json={
                "outcome": _plain(outcome),
                "reference_number": reference_number,
                "notes": notes,
            },
        )
        return CarrierSubmission.from_dict(self._handle_response(response))

    def retry_carrier_submission(
        self, submission_id: str, version: int, company_id: Optional[str] = None
    ) -> CarrierSubmission:
        response = self._client.post(
            f"/api/v1/submissions/{submission_id}/retry",
            json={"company_id": company_id},
            headers=_version_header(version),
        )
        return CarrierSubmission.from_dict(self._handle_response(response))

    # ==================== Reports ====================

    def signature_summary(
        self, document_ids: list[str], now: Optional[datetime] = None
    ) -> SignatureSummary:
        response = self._client.post(
            "/api/v1/reports/signatures",
            json={"document_ids": document_ids, "now": now.isoformat() if now else None},
        )
        data = self._handle_response(response)
        return SignatureSummary(data["pending"], data["signed"], data["expired"])

    def submission_summary(self, document_ids: list[str]) -> SubmissionSummary:
        response = self._client.post(
            "/api/v1/reports/submissions", json={"document_ids": document_ids}
        )
        data = self._handle_response(response)
        return SubmissionSummary(data["pending"], data["approved"], data["rejected"])

    def status_counts(self) -> dict[str, int]:
        response = self._client.get("/api/v1/reports/status-counts")
        return self._handle_response(response)

    def dashboard_stats(self, now: Optional[datetime] = None) -> DashboardStats:
        params = {"now": now.isoformat()} if now else {}
        response = self._client.get("/api/v1/reports/dashboard", params=params)
        return DashboardStats(**self._handle_response(response))

    # ==================== Carriers ====================

    def list_carriers(self) -> list[Carrier]:
        response = self._client.get("/api/v1/carriers")
        return [Carrier.from_dict(c) for c in self._handle_response(response)]

    # ==================== Maintenance ====================

    def run_expiry_sweep(self, now: Optional[datetime] = None) -> dict[str, int]:
        response = self._client.post(
            "/api/v1/maintenance/expiry-sweep",
            json={"now": now.isoformat() if now else None},
        )
        return self._handle_response(response)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "DocflowClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class AsyncDocflowClient:
    """
    Asynchronous client for the Docflow API.

    Example:
        ```python
        async with AsyncDocflowClient("http://localhost:8000", "dev-user-key") as client:
            view = await client.get_document(document_id)
        ```
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-API-Key": api_key,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def _handle_response(self, response: httpx.Response) -> Any:
        """Handle HTTP response and raise appropriate exceptions."""
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json() if response.content else {}

    async def discover(self) -> dict:
        response = await self._client.get("/.well-known/docflow.json")
        return self._handle_response(response)

    async def create_document(
        self, name: str, document_type: str = "", client_id: Optional[str] = None
    ) -> Document:
        response = await self._client.post(
            "/api/v1/documents",
            json={"name": name, "document_type": document_type, "client_id": client_id},
        )
        return Document.from_dict(self._handle_response(response))

    async def get_document(self, document_id: str) -> DocumentView:
        response = await self._client.get(f"/api/v1/documents/{document_id}")
        return DocumentView.from_dict(self._handle_response(response))

    async def list_documents(
        self,
        status: Optional[Union[DocumentStatus, str]] = None,
        client_id: Optional[str] = None,
        document_type: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[Document]:
        params: dict[str, Any] = {}
        if status:
            params["status"] = _plain(status)
        if client_id:
            params["client_id"] = client_id
        if document_type:
            params["document_type"] = document_type
        if query:
            params["query"] = query
        response = await self._client.get("/api/v1/documents", params=params)
        return [Document.from_dict(d) for d in self._handle_response(response)]

    async def get_events(
        self, document_id: str, limit: int = 100, offset: int = 0
    ) -> list[DocumentEvent]:
        response = await self._client.get(
            f"/api/v1/documents/{document_id}/events",
            params={"limit": limit, "offset": offset},
        )
        return [DocumentEvent.from_dict(e) for e in self._handle_response(response)]

    async def get_timeline(self, document_id: str) -> list[TimelineStep]:
        response = await self._client.get(f"/api/v1/documents/{document_id}/timeline")
        return [TimelineStep.from_dict(s) for s in self._handle_response(response)]

    async def create_signature_request(
        self,
        document_id: str,
        version: int,
        method: MethodLike,
        recipient_contact: Optional[str] = None,
        expiry_days: Optional[int] = None,
        recipient_name: Optional[str] = None,
        message: Optional[str] = None,
        send_reminders: bool = True,
    ) -> SignatureRequest:
        response = await self._client.post(
            f"/api/v1/documents/{document_id}/signature-requests",
            json=_signature_payload(
                method, recipient_contact, expiry_days, recipient_name, message, send_reminders
            ),
            headers=_version_header(version),
        )
        return SignatureRequest.from_dict(self._handle_response(response))

    async def resend_signature_request(
        self, request_id: str, version: int
    ) -> SignatureRequest:
        response = await self._client.post(
            f"/api/v1/signature-requests/{request_id}/resend",
            headers=_version_header(version),
        )
        return SignatureRequest.from_dict(self._handle_response(response))

    async def cancel_signature_request(
        self, request_id: str, version: int
    ) -> SignatureRequest:
        response = await self._client.post(
            f"/api/v1/signature-requests/{request_id}/cancel",
            headers=_version_header(version),
        )
        return SignatureRequest.from_dict(self._handle_response(response))

    async def signature_callback(
        self, request_id: str, signed_at: Optional[datetime] = None
    ) -> SignatureRequest:
        response = await self._client.post(
            f"/api/v1/webhooks/signatures/{request_id}",
            json={"signed_at": signed_at.isoformat() if signed_at else None},
        )
        return SignatureRequest.from_dict(self._handle_response(response))

    async def queue_for_submission(self, document_id: str, version: int) -> Document:
        response = await self._client.post(
            f"/api/v1/documents/{document_id}/queue",
            headers=_version_header(version),
        )
        return Document.from_dict(self._handle_response(response))

    async def create_carrier_submission(
        self,
        document_id: str,
        version: int,
        company_id: str,
        method: MethodLike,
        include_related: bool = False,
        cover_note: Optional[str] = None,
    ) -> CarrierSubmission:
        response = await self._client.post(
            f"/api/v1/documents/{document_id}/submissions",
            json={
                "company_id": company_id,
                "method": _plain(method),
                "include_related": include_related,
                "cover_note": cover_note,
            },
            headers=_version_header(version),
        )
        return CarrierSubmission.from_dict(self._handle_response(response))

    async def mark_processing(self, submission_id: str) -> CarrierSubmission:
        response = await self._client.post(
            f"/api/v1/webhooks/submissions/{submission_id}/processing"
        )
        return CarrierSubmission.from_dict(self._handle_response(response))

    async def carrier_callback(
        self,
        submission_id: str,
        outcome: MethodLike,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CarrierSubmission:
        response = await self._client.post(
            f"/api/v1/webhooks/submissions/{submission_id}",
            json={
                "outcome": _plain(outcome),
                "reference_number": reference_number,
                "notes": notes,
            },
        )
        return CarrierSubmission.from_dict(self._handle_response(response))

    async def retry_carrier_submission(
        self, submission_id: str, version: int, company_id: Optional[str] = None
    ) -> CarrierSubmission:
        response = await self._client.post(
            f"/api/v1/submissions/{submission_id}/retry",
            json={"company_id": company_id},
            headers=_version_header(version),
        )
        return CarrierSubmission.from_dict(self._handle_response(response))

    async def signature_summary(
        self, document_ids: list[str], now: Optional[datetime] = None
    ) -> SignatureSummary:
        response = await self._client.post(
            "/api/v1/reports/signatures",
            json={"document_ids": document_ids, "now": now.isoformat() if now else None},
        )
        data = self._handle_response(response)
        return SignatureSummary(data["pending"], data["signed"], data["expired"])

    async def submission_summary(self, document_ids: list[str]) -> SubmissionSummary:
        response = await self._client.post(
            "/api/v1/reports/submissions", json={"document_ids": document_ids}
        )
        data = self._handle_response(response)
        return SubmissionSummary(data["pending"], data["approved"], data["rejected"])

    async def status_counts(self) -> dict[str, int]:
        response = await self._client.get("/api/v1/reports/status-counts")
        return self._handle_response(response)

    async def dashboard_stats(self, now: Optional[datetime] = None) -> DashboardStats:
        params = {"now": now.isoformat()} if now else {}
        response = await self._client.get("/api/v1/reports/dashboard", params=params)
        return DashboardStats(**self._handle_response(response))

    async def list_carriers(self) -> list[Carrier]:
        response = await self._client.get("/api/v1/carriers")
        return [Carrier.from_dict(c) for c in self._handle_response(response)]

    async def run_expiry_sweep(self, now: Optional[datetime] = None) -> dict[str, int]:
        response = await self._client.post(
            "/api/v1/maintenance/expiry-sweep",
            json={"now": now.isoformat() if now else None},
        )
        return self._handle_response(response)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncDocflowClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
