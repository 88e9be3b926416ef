"""
Docflow - Document lifecycle and carrier submission workflow engine.

Tracks insurance documents from draft, through client signature collection,
to submission to an insurance carrier and the carrier's decision.
"""

from .catalog import CarrierCatalog, CatalogError
from .client import AsyncDocflowClient, DocflowClient
from .database import Database, get_database
from .delivery import (
    CarrierDelivery,
    ContactDelivery,
    DeliveryReceipt,
    HttpCarrierDelivery,
    HttpContactDelivery,
    LoggingCarrierDelivery,
    LoggingContactDelivery,
)
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
from .lifecycle import LifecycleController
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
    SubmissionStatus,
    SubmissionSummary,
    TimelineStep,
)
from .reporting import (
    build_timeline,
    dashboard_stats,
    signature_summary,
    status_counts,
    submission_summary,
)
from .signatures import compute_is_expired
from .status import allowed_transitions, is_legal_transition, is_terminal
from .sweep import ExpirySweeper, SweepReport, run_expiry_sweep
from .validation import InputValidationError


def get_server():
    """Lazy import for server components (requires server extras)."""
    try:
        from .server import DocflowServer, ServerConfig, create_app

        return DocflowServer, ServerConfig, create_app
    except ImportError:
        raise ImportError(
            "Server components require the 'server' extras. "
            "Install with: pip install docflow[server]"
        )


__version__ = "0.1.0"
__all__ = [
    "LifecycleController",
    "DocflowClient",
    "AsyncDocflowClient",
    "Database",
    "get_database",
    "CarrierCatalog",
    "CatalogError",
    "ContactDelivery",
    "CarrierDelivery",
    "DeliveryReceipt",
    "HttpContactDelivery",
    "HttpCarrierDelivery",
    "LoggingContactDelivery",
    "LoggingCarrierDelivery",
    "DocflowError",
    "NotFoundError",
    "InvalidTransitionError",
    "InvalidMethodParametersError",
    "InputValidationError",
    "UnknownCarrierError",
    "AlreadyResolvedError",
    "ConcurrentModificationError",
    "DeliveryDispatchError",
    "Document",
    "DocumentStatus",
    "DocumentView",
    "DocumentEvent",
    "EventType",
    "SignatureMethod",
    "SignatureRequest",
    "SignatureRequestStatus",
    "SignatureSummary",
    "SubmissionMethod",
    "SubmissionStatus",
    "SubmissionSummary",
    "DashboardStats",
    "CarrierSubmission",
    "Carrier",
    "TimelineStep",
    "is_legal_transition",
    "allowed_transitions",
    "is_terminal",
    "compute_is_expired",
    "signature_summary",
    "submission_summary",
    "status_counts",
    "dashboard_stats",
    "build_timeline",
    "run_expiry_sweep",
    "ExpirySweeper",
    "SweepReport",
    "get_server",
    "__version__",
]
