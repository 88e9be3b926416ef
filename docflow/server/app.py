"""
FastAPI application for the Docflow server.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from .. import __version__
from ..catalog import CarrierCatalog
from ..database import get_database
from ..delivery import (
    CarrierDelivery,
    ContactDelivery,
    HttpCarrierDelivery,
    HttpContactDelivery,
    LoggingCarrierDelivery,
    LoggingContactDelivery,
)
from ..exceptions import DocflowError
from ..lifecycle import LifecycleController
from ..models import DocumentStatus
from ..reporting import build_timeline
from ..status import STATUS_DISPLAY, allowed_transitions
from ..sweep import ExpirySweeper, run_expiry_sweep
from .config import ServerConfig

logger = logging.getLogger("docflow.server")

DEFAULT_CATALOG = Path(__file__).resolve().parent.parent / "carriers.yaml"


class DocumentCreate(BaseModel):
    name: str
    document_type: str = ""
    client_id: Optional[str] = None


class DocumentResponse(BaseModel):
    id: str
    name: str
    document_type: str
    client_id: Optional[str] = None
    status: str
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SignatureRequestCreate(BaseModel):
    method: str
    recipient_contact: Optional[str] = None
    recipient_name: Optional[str] = None
    expiry_days: Optional[int] = None
    message: Optional[str] = None
    send_reminders: bool = True


class SignatureCallback(BaseModel):
    signed_at: Optional[datetime] = None


class SubmissionCreate(BaseModel):
    company_id: str
    method: str
    include_related: bool = False
    cover_note: Optional[str] = None


class CarrierCallback(BaseModel):
    outcome: str
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class SubmissionRetry(BaseModel):
    company_id: Optional[str] = None


class SummaryRequest(BaseModel):
    document_ids: List[str] = Field(default_factory=list)
    now: Optional[datetime] = None


class SweepRequest(BaseModel):
    now: Optional[datetime] = None


_event_queues: Dict[str, List[asyncio.Queue]] = {
    "documents": [],
}


def _broadcast_event(channel: str, event_data: Dict[str, Any]):
    """Broadcast event to all subscribers."""
    for queue in _event_queues.get(channel, []):
        try:
            queue.put_nowait(event_data)
        except asyncio.QueueFull:
            pass


def _notify(document_id: str, event_type: str, data: Dict[str, Any]) -> None:
    _broadcast_event(
        "documents",
        {"document_id": document_id, "type": event_type, "data": data},
    )


def _build_deliveries(config: ServerConfig):
    if config.contact_gateway_url:
        contact: ContactDelivery = HttpContactDelivery(
            config.contact_gateway_url, api_key=config.gateway_api_key
        )
    else:
        contact = LoggingContactDelivery(config.signature_link_base_url)

    if config.carrier_gateway_url:
        carrier: CarrierDelivery = HttpCarrierDelivery(
            config.carrier_gateway_url, api_key=config.gateway_api_key
        )
    else:
        carrier = LoggingCarrierDelivery()
    return contact, carrier


def create_app(
    config: Optional[ServerConfig] = None,
    contact_delivery: Optional[ContactDelivery] = None,
    carrier_delivery: Optional[CarrierDelivery] = None,
    catalog: Optional[CarrierCatalog] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Delivery capabilities, the catalog and the clock default to what
    ``config`` describes and can be replaced, mostly for tests.
    """
    if config is None:
        config = ServerConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = get_database(config.database_url)
        carriers = catalog or CarrierCatalog.from_yaml(
            config.carrier_catalog or DEFAULT_CATALOG
        )
        contact, carrier = _build_deliveries(config)
        controller_kwargs: Dict[str, Any] = {}
        if clock is not None:
            controller_kwargs["clock"] = clock
        controller = LifecycleController(
            db,
            carriers,
            contact_delivery or contact,
            carrier_delivery or carrier,
            default_expiry_days=config.default_expiry_days,
            **controller_kwargs,
        )
        sweeper = ExpirySweeper(controller, config.sweep_interval)

        app.state.db = db
        app.state.config = config
        app.state.catalog = carriers
        app.state.controller = controller
        app.state.sweeper = sweeper

        if config.sweep_interval > 0:
            sweeper.start()
        yield
        await sweeper.stop()

    app = FastAPI(
        title="Docflow Server",
        description="Document lifecycle and carrier submission workflow",
        version=__version__,
        debug=config.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DocflowError)
    async def docflow_error_handler(request: Request, exc: DocflowError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    def get_controller() -> LifecycleController:
        return app.state.controller

    def validate_api_key(x_api_key: str = Header(None)) -> str:
        if x_api_key is None or x_api_key not in app.state.config.api_keys:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")
        return x_api_key

    def get_version_header(if_match: str = Header(None)) -> Optional[int]:
        if if_match is None:
            return None
        try:
            return int(if_match.strip('"'))
        except ValueError:
            raise HTTPException(
                status_code=400, detail="If-Match must be an integer version"
            )

    def require_version(if_match: Optional[int] = Depends(get_version_header)) -> int:
        if if_match is None:
            raise HTTPException(status_code=400, detail="If-Match header required")
        return if_match

    @app.get("/.well-known/docflow.json")
    async def discovery():
        return {
            "service": "Docflow",
            "version": __version__,
            "statuses": [s.value for s in DocumentStatus],
            "transitions": {
                s.value: sorted(t.value for t in allowed_transitions(s))
                for s in DocumentStatus
            },
            "display": {s.value: STATUS_DISPLAY[s] for s in DocumentStatus},
            "capabilities": [
                "signature-requests",
                "carrier-submissions",
                "optimistic-concurrency",
                "expiry-sweep",
                "subscriptions",
            ],
            "openApiUrl": "/openapi.json",
        }

    # ==================== Documents ====================

    @app.post("/api/v1/documents", response_model=DocumentResponse)
    async def create_document(
        body: DocumentCreate,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        document = controller.create_document(
            body.name,
            document_type=body.document_type,
            client_id=body.client_id,
            actor=api_key,
        )
        _notify(document.id, "document_created", document.to_dict())
        return document.to_dict()

    @app.get("/api/v1/documents", response_model=List[DocumentResponse])
    async def list_documents(
        status: Optional[str] = Query(None),
        client_id: Optional[str] = Query(None),
        document_type: Optional[str] = Query(None),
        query: Optional[str] = Query(None),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        documents = controller.list_documents(
            status, client_id, document_type=document_type, query=query
        )
        return [d.to_dict() for d in documents]

    @app.get("/api/v1/documents/{document_id}")
    async def get_document(
        document_id: str,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        return controller.get_document(document_id).to_dict()

    @app.get("/api/v1/documents/{document_id}/events")
    async def get_events(
        document_id: str,
        limit: int = Query(100, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        return [
            e.to_dict() for e in controller.get_events(document_id, limit=limit, offset=offset)
        ]

    @app.get("/api/v1/documents/{document_id}/timeline")
    async def get_timeline(
        document_id: str,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        view = controller.get_document(document_id)
        return [step.to_dict() for step in build_timeline(view)]

    # ==================== Signature requests ====================

    @app.post("/api/v1/documents/{document_id}/signature-requests")
    async def create_signature_request(
        document_id: str,
        body: SignatureRequestCreate,
        if_match: int = Depends(require_version),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        request = await controller.create_signature_request(
            document_id,
            body.method,
            recipient_contact=body.recipient_contact,
            expiry_days=body.expiry_days,
            expected_version=if_match,
            recipient_name=body.recipient_name,
            message=body.message,
            send_reminders=body.send_reminders,
            actor=api_key,
        )
        _notify(document_id, "signature_requested", request.to_dict())
        return request.to_dict()

    @app.post("/api/v1/signature-requests/{request_id}/resend")
    async def resend_signature_request(
        request_id: str,
        if_match: int = Depends(require_version),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        request = await controller.resend_signature_request(
            request_id, expected_version=if_match, actor=api_key
        )
        _notify(request.document_id, "signature_resent", request.to_dict())
        return request.to_dict()

    @app.post("/api/v1/signature-requests/{request_id}/cancel")
    async def cancel_signature_request(
        request_id: str,
        if_match: int = Depends(require_version),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        request = await controller.cancel_signature_request(
            request_id, expected_version=if_match, actor=api_key
        )
        _notify(request.document_id, "signature_cancelled", request.to_dict())
        return request.to_dict()

    @app.post("/api/v1/webhooks/signatures/{request_id}")
    async def signature_webhook(
        request_id: str,
        body: Optional[SignatureCallback] = None,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        request = await controller.signature_callback(
            request_id, signed_at=body.signed_at if body else None
        )
        _notify(request.document_id, "signature_received", request.to_dict())
        return request.to_dict()

    # ==================== Carrier submissions ====================

    @app.post("/api/v1/documents/{document_id}/queue", response_model=DocumentResponse)
    async def queue_for_submission(
        document_id: str,
        if_match: int = Depends(require_version),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        document = await controller.queue_for_submission(
            document_id, expected_version=if_match, actor=api_key
        )
        _notify(document_id, "queued_for_submission", document.to_dict())
        return document.to_dict()

    @app.post("/api/v1/documents/{document_id}/submissions")
    async def create_submission(
        document_id: str,
        body: SubmissionCreate,
        if_match: int = Depends(require_version),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        submission = await controller.create_carrier_submission(
            document_id,
            body.company_id,
            body.method,
            include_related=body.include_related,
            cover_note=body.cover_note,
            expected_version=if_match,
            actor=api_key,
        )
        _notify(document_id, "submission_created", submission.to_dict())
        return submission.to_dict()

    @app.post("/api/v1/submissions/{submission_id}/retry")
    async def retry_submission(
        submission_id: str,
        body: Optional[SubmissionRetry] = None,
        if_match: int = Depends(require_version),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        submission = await controller.retry_carrier_submission(
            submission_id,
            company_id=body.company_id if body else None,
            expected_version=if_match,
            actor=api_key,
        )
        _notify(submission.document_id, "submission_retried", submission.to_dict())
        return submission.to_dict()

    @app.post("/api/v1/webhooks/submissions/{submission_id}/processing")
    async def processing_webhook(
        submission_id: str,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        submission = await controller.processing_callback(submission_id)
        _notify(submission.document_id, "submission_processing", submission.to_dict())
        return submission.to_dict()

    @app.post("/api/v1/webhooks/submissions/{submission_id}")
    async def carrier_webhook(
        submission_id: str,
        body: CarrierCallback,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        submission = await controller.carrier_callback(
            submission_id,
            body.outcome,
            reference_number=body.reference_number,
            notes=body.notes,
        )
        _notify(submission.document_id, "submission_resolved", submission.to_dict())
        return submission.to_dict()

    # ==================== Reports ====================

    @app.post("/api/v1/reports/signatures")
    async def signature_report(
        body: SummaryRequest,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        return controller.signature_summary(body.document_ids, now=body.now).to_dict()

    @app.post("/api/v1/reports/submissions")
    async def submission_report(
        body: SummaryRequest,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        return controller.submission_summary(body.document_ids).to_dict()

    @app.get("/api/v1/reports/status-counts")
    async def status_counts(
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        return controller.status_counts()

    @app.get("/api/v1/reports/dashboard")
    async def dashboard(
        now: Optional[datetime] = Query(None),
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        return controller.dashboard_stats(now=now).to_dict()

    # ==================== Carriers ====================

    @app.get("/api/v1/carriers")
    async def list_carriers(api_key: str = Depends(validate_api_key)):
        return [c.to_dict() for c in app.state.catalog.all()]

    @app.get("/api/v1/carriers/{company_id}")
    async def get_carrier(company_id: str, api_key: str = Depends(validate_api_key)):
        return app.state.catalog.get(company_id).to_dict()

    # ==================== Maintenance ====================

    @app.post("/api/v1/maintenance/expiry-sweep")
    async def expiry_sweep(
        body: Optional[SweepRequest] = None,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        report = await run_expiry_sweep(controller, now=body.now if body else None)
        return report.to_dict()

    # ==================== Subscriptions ====================

    @app.get("/api/v1/subscribe/documents/{document_id}")
    async def subscribe_document(
        document_id: str,
        request: Request,
        controller: LifecycleController = Depends(get_controller),
        api_key: str = Depends(validate_api_key),
    ):
        """SSE subscription for document events."""
        controller.get_document(document_id)
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        _event_queues["documents"].append(queue)

        async def event_generator():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=30.0)
                        if event.get("document_id") == document_id:
                            yield {
                                "event": event.get("type", "message"),
                                "data": json.dumps(event.get("data", {})),
                            }
                    except asyncio.TimeoutError:
                        yield {"event": "ping", "data": ""}
            finally:
                _event_queues["documents"].remove(queue)

        return EventSourceResponse(event_generator())

    return app


class DocflowServer:
    """High-level server class for running Docflow."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8000,
        database_url: Optional[str] = None,
        api_keys: Optional[set] = None,
        **kwargs,
    ):
        self.config = ServerConfig(
            host=host,
            port=port,
            database_url=database_url,
            api_keys=api_keys or ServerConfig().api_keys,
            **kwargs,
        )
        self.app = create_app(self.config)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )

    async def run_async(self):
        """Run the server asynchronously."""
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        server = uvicorn.Server(config)
        await server.serve()
