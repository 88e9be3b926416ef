"""
Docflow - Custom exceptions for error handling.
"""

from typing import Any, Optional


class DocflowError(Exception):
    """Base exception for all Docflow errors."""

    status_code_default = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code or self.status_code_default
        self.response = response

    def to_dict(self) -> dict[str, Any]:
        """Error body returned by the HTTP server."""
        return {"error": type(self).__name__, "message": self.message}


class NotFoundError(DocflowError):
    """Raised when a document, request or submission does not exist."""

    status_code_default = 404


class InvalidTransitionError(DocflowError):
    """Raised when a status change is not in the legal transition table."""

    status_code_default = 409

    def __init__(
        self,
        message: Optional[str] = None,
        current_status: Optional[str] = None,
        attempted_status: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        current_status = _plain(current_status)
        attempted_status = _plain(attempted_status)
        if message is None:
            message = (
                f"Cannot move from '{current_status}' to '{attempted_status}'"
            )
        super().__init__(message, **kwargs)
        self.current_status = current_status
        self.attempted_status = attempted_status

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["current_status"] = self.current_status
        data["attempted_status"] = self.attempted_status
        return data


class InvalidMethodParametersError(DocflowError):
    """Raised when the contact or options do not fit the delivery method."""

    status_code_default = 422

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class UnknownCarrierError(DocflowError):
    """Raised when a company id is not in the carrier catalog."""

    status_code_default = 422

    def __init__(self, company_id: str, **kwargs: Any) -> None:
        super().__init__(f"Unknown carrier: {company_id}", **kwargs)
        self.company_id = company_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["company_id"] = self.company_id
        return data


class AlreadyResolvedError(DocflowError):
    """Raised when a request or submission has already reached a final state."""

    status_code_default = 409

    def __init__(
        self, message: str, current_status: Optional[str] = None, **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        self.current_status = _plain(current_status)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["current_status"] = self.current_status
        return data


class ConcurrentModificationError(DocflowError):
    """Raised when the caller's document version is stale."""

    status_code_default = 409

    def __init__(
        self,
        message: str = "Version conflict",
        current_version: Optional[int] = None,
        current_status: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.current_version = current_version
        self.current_status = _plain(current_status)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["current_version"] = self.current_version
        data["current_status"] = self.current_status
        return data


class DeliveryDispatchError(DocflowError):
    """Raised when an outbound email, SMS, link or carrier delivery fails."""

    status_code_default = 502

    def __init__(self, message: str, channel: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.channel = channel

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["channel"] = self.channel
        return data


def _plain(status: Any) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)
