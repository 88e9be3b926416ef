"""
Docflow - Delivery capabilities.

The lifecycle controller never talks to email, SMS, e-signature or carrier
systems directly. It awaits one of these interfaces and only commits a
transition once the call returns. Any failure surfaces as
DeliveryDispatchError.

Two implementations are provided: gateway adapters that post JSON to an HTTP
delivery service, and logging adapters for local development.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from .exceptions import DeliveryDispatchError
from .models import Carrier, Document, SubmissionMethod

logger = logging.getLogger("docflow.delivery")


@dataclass
class DeliveryReceipt:
    """Acknowledgement returned by a delivery capability."""

    channel: str
    external_id: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)


class ContactDelivery(ABC):
    """Reaches the client who has to sign a document."""

    @abstractmethod
    async def send_email(
        self,
        to: str,
        document: Document,
        link: str,
        message: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> DeliveryReceipt:
        ...

    @abstractmethod
    async def send_sms(
        self,
        to: str,
        document: Document,
        link: str,
        message: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> DeliveryReceipt:
        ...

    @abstractmethod
    async def generate_signature_link(self, document: Document, request_id: str) -> str:
        ...


class CarrierDelivery(ABC):
    """Delivers a signed document to an insurance carrier."""

    @abstractmethod
    async def submit_via_email(
        self,
        carrier: Carrier,
        document: Document,
        submission_id: str,
        include_related: bool = False,
        cover_note: Optional[str] = None,
    ) -> DeliveryReceipt:
        ...

    @abstractmethod
    async def submit_via_portal(
        self,
        carrier: Carrier,
        document: Document,
        submission_id: str,
        include_related: bool = False,
        cover_note: Optional[str] = None,
    ) -> DeliveryReceipt:
        ...

    @abstractmethod
    async def submit_via_api(
        self,
        carrier: Carrier,
        document: Document,
        submission_id: str,
        include_related: bool = False,
        cover_note: Optional[str] = None,
    ) -> DeliveryReceipt:
        ...

    async def submit(
        self,
        method: SubmissionMethod,
        carrier: Carrier,
        document: Document,
        submission_id: str,
        include_related: bool = False,
        cover_note: Optional[str] = None,
    ) -> DeliveryReceipt:
        """Route to the submit_via_* call matching ``method``."""
        handlers = {
            SubmissionMethod.EMAIL: self.submit_via_email,
            SubmissionMethod.PORTAL: self.submit_via_portal,
            SubmissionMethod.API: self.submit_via_api,
        }
        return await handlers[method](
            carrier,
            document,
            submission_id,
            include_related=include_related,
            cover_note=cover_note,
        )


class _GatewayClient:
    """JSON-over-HTTP gateway with bounded retries.

    Transport errors and 5xx responses are retried with exponential backoff.
    4xx responses fail immediately.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    async def _post(self, path: str, payload: dict[str, Any], channel: str) -> dict:
        url = f"{self.base_url}{path}"
        last_error = ""

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.post(
                        url, json=payload, headers=self._headers()
                    )
                if response.status_code < 400:
                    logger.info(f"{channel} delivery accepted by {url}")
                    return response.json() if response.content else {}
                if response.status_code < 500:
                    raise DeliveryDispatchError(
                        f"{channel} delivery refused: HTTP {response.status_code}",
                        channel=channel,
                        response=response.json() if response.content else None,
                    )
                last_error = f"HTTP {response.status_code}"
            except httpx.TransportError as e:
                last_error = str(e) or type(e).__name__

            logger.warning(
                f"{channel} delivery attempt {attempt + 1} failed: {last_error}"
            )
            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.backoff_seconds * 2**attempt)

        logger.error(f"{channel} delivery failed after {self.max_retries} attempts")
        raise DeliveryDispatchError(
            f"{channel} delivery failed after {self.max_retries} attempts: {last_error}",
            channel=channel,
        )


def _document_payload(document: Document) -> dict[str, Any]:
    return {
        "id": document.id,
        "name": document.name,
        "document_type": document.document_type,
        "client_id": document.client_id,
    }


class HttpContactDelivery(_GatewayClient, ContactDelivery):
    """Contact delivery through an HTTP messaging gateway."""

    async def send_email(
        self,
        to: str,
        document: Document,
        link: str,
        message: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> DeliveryReceipt:
        data = await self._post(
            "/email",
            {
                "to": to,
                "recipient_name": recipient_name,
                "document": _document_payload(document),
                "link": link,
                "message": message,
            },
            channel="email",
        )
        return DeliveryReceipt(channel="email", external_id=data.get("id"), detail=data)

    async def send_sms(
        self,
        to: str,
        document: Document,
        link: str,
        message: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> DeliveryReceipt:
        data = await self._post(
            "/sms",
            {
                "to": to,
                "recipient_name": recipient_name,
                "document": _document_payload(document),
                "link": link,
                "message": message,
            },
            channel="sms",
        )
        return DeliveryReceipt(channel="sms", external_id=data.get("id"), detail=data)

    async def generate_signature_link(self, document: Document, request_id: str) -> str:
        data = await self._post(
            "/links",
            {"document": _document_payload(document), "request_id": request_id},
            channel="link",
        )
        url = data.get("url")
        if not url:
            raise DeliveryDispatchError("Link gateway returned no url", channel="link")
        return url


class HttpCarrierDelivery(_GatewayClient, CarrierDelivery):
    """Carrier delivery through an HTTP submission gateway."""

    async def _submit(
        self,
        method: SubmissionMethod,
        carrier: Carrier,
        document: Document,
        submission_id: str,
        include_related: bool,
        cover_note: Optional[str],
    ) -> DeliveryReceipt:
        channel = f"carrier-{method.value}"
        data = await self._post(
            f"/carriers/{carrier.id}/{method.value}",
            {
                "submission_id": submission_id,
                "carrier": carrier.to_dict(),
                "document": _document_payload(document),
                "include_related": include_related,
                "cover_note": cover_note,
            },
            channel=channel,
        )
        return DeliveryReceipt(channel=channel, external_id=data.get("id"), detail=data)

    async def submit_via_email(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return await self._submit(
            SubmissionMethod.EMAIL, carrier, document, submission_id, include_related, cover_note
        )

    async def submit_via_portal(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return await self._submit(
            SubmissionMethod.PORTAL, carrier, document, submission_id, include_related, cover_note
        )

    async def submit_via_api(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return await self._submit(
            SubmissionMethod.API, carrier, document, submission_id, include_related, cover_note
        )


class LoggingContactDelivery(ContactDelivery):
    """Development stand-in that logs instead of sending."""

    def __init__(self, link_base_url: str = "http://localhost:8000/sign"):
        self.link_base_url = link_base_url.rstrip("/")

    async def send_email(self, to, document, link, message=None, recipient_name=None):
        logger.info(f"[dev] email to {to} for document {document.id}: {link}")
        return DeliveryReceipt(channel="email")

    async def send_sms(self, to, document, link, message=None, recipient_name=None):
        logger.info(f"[dev] sms to {to} for document {document.id}: {link}")
        return DeliveryReceipt(channel="sms")

    async def generate_signature_link(self, document: Document, request_id: str) -> str:
        return f"{self.link_base_url}/{request_id}"


class LoggingCarrierDelivery(CarrierDelivery):
    """Development stand-in that logs instead of submitting."""

    def _log(self, method, carrier, document, submission_id):
        logger.info(
            f"[dev] {method} submission {submission_id} of document "
            f"{document.id} to {carrier.id}"
        )
        return DeliveryReceipt(channel=f"carrier-{method}")

    async def submit_via_email(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return self._log("email", carrier, document, submission_id)

    async def submit_via_portal(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return self._log("portal", carrier, document, submission_id)

    async def submit_via_api(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return self._log("api", carrier, document, submission_id)
