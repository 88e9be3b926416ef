"""
Unit tests for the Docflow server module.

Tests server configuration and the HTTP API end to end.
"""

import os
import tempfile
from datetime import timedelta
from unittest.mock import patch

import pytest

from docflow.server.config import ServerConfig


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        config = ServerConfig()
        assert config.host == "0.0.0.0"
        assert config.port == 8000
        assert config.default_expiry_days == 7
        assert config.sweep_interval == 300.0
        assert config.contact_gateway_url is None
        assert "dev-user-key" in config.api_keys
        assert "signature-provider-key" in config.api_keys

    def test_custom_values(self):
        config = ServerConfig(
            host="127.0.0.1",
            port=9000,
            database_url="postgresql://localhost/test",
            default_expiry_days=14,
            debug=True,
        )
        assert config.host == "127.0.0.1"
        assert config.port == 9000
        assert config.database_url == "postgresql://localhost/test"
        assert config.default_expiry_days == 14
        assert config.debug is True

    def test_from_env(self):
        with patch.dict(
            os.environ,
            {
                "DOCFLOW_PORT": "9999",
                "DOCFLOW_DEBUG": "true",
                "DOCFLOW_SWEEP_INTERVAL": "0",
                "DOCFLOW_DEFAULT_EXPIRY_DAYS": "3",
                "DOCFLOW_API_KEYS": "key-a,key-b",
                "DOCFLOW_CARRIER_GATEWAY_URL": "https://carriers.example.com",
            },
        ):
            config = ServerConfig.from_env()
            assert config.port == 9999
            assert config.debug is True
            assert config.sweep_interval == 0
            assert config.default_expiry_days == 3
            assert config.api_keys == {"key-a", "key-b"}
            assert config.carrier_gateway_url == "https://carriers.example.com"


class TestDocflowAPI:
    """Tests for the HTTP API."""

    HEADERS = {"X-API-Key": "dev-user-key"}
    PROVIDER = {"X-API-Key": "signature-provider-key"}
    CARRIER = {"X-API-Key": "carrier-gateway-key"}

    @pytest.fixture
    def client(self, catalog, contact, carrier, clock):
        from fastapi.testclient import TestClient

        from docflow import database as db_module
        from docflow.server.app import create_app

        with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
            db_path = f.name

        db_module._database = None
        config = ServerConfig(database_url=f"sqlite:///{db_path}", sweep_interval=0)
        app = create_app(
            config,
            contact_delivery=contact,
            carrier_delivery=carrier,
            catalog=catalog,
            clock=clock,
        )
        with TestClient(app) as c:
            yield c

        db_module._database.engine.dispose()
        db_module._database = None
        os.unlink(db_path)

    def _create_document(self, client, **kwargs):
        body = {"name": "Pension transfer", "document_type": "transfer", "client_id": "client-1"}
        body.update(kwargs)
        resp = client.post("/api/v1/documents", json=body, headers=self.HEADERS)
        assert resp.status_code == 200
        return resp.json()

    def _version(self, client, document_id):
        resp = client.get(f"/api/v1/documents/{document_id}", headers=self.HEADERS)
        assert resp.status_code == 200
        return resp.json()["document"]["version"]

    def _request_signature(self, client, document_id, **kwargs):
        body = {"method": "email", "recipient_contact": "a@b.com", "expiry_days": 7}
        body.update(kwargs)
        return client.post(
            f"/api/v1/documents/{document_id}/signature-requests",
            json=body,
            headers={**self.HEADERS, "If-Match": str(self._version(client, document_id))},
        )

    def _sign(self, client, request_id):
        return client.post(f"/api/v1/webhooks/signatures/{request_id}", headers=self.PROVIDER)

    def _submit(self, client, document_id, company_id="migdal", method="api"):
        return client.post(
            f"/api/v1/documents/{document_id}/submissions",
            json={"company_id": company_id, "method": method},
            headers={**self.HEADERS, "If-Match": str(self._version(client, document_id))},
        )

    def test_discovery(self, client):
        resp = client.get("/.well-known/docflow.json")
        assert resp.status_code == 200
        data = resp.json()
        assert "pending_send" in data["statuses"]
        assert data["transitions"]["approved"] == []
        assert data["transitions"]["signed"] == ["pending_send", "sent"]
        assert data["display"]["rejected"]["tone"] == "error"

    def test_requires_api_key(self, client):
        resp = client.get("/api/v1/documents")
        assert resp.status_code == 401
        resp = client.get("/api/v1/documents", headers={"X-API-Key": "wrong"})
        assert resp.status_code == 401

    def test_create_and_get_document(self, client):
        doc = self._create_document(client)
        assert doc["status"] == "draft"
        assert doc["version"] == 1

        resp = client.get(f"/api/v1/documents/{doc['id']}", headers=self.HEADERS)
        view = resp.json()
        assert view["document"]["name"] == "Pension transfer"
        assert view["signature_request"] is None
        assert view["is_expired"] is False

    def test_list_documents_filters(self, client):
        self._create_document(client, client_id="c-1")
        self._create_document(client, client_id="c-2")

        resp = client.get("/api/v1/documents", params={"client_id": "c-2"}, headers=self.HEADERS)
        assert [d["client_id"] for d in resp.json()] == ["c-2"]
        resp = client.get("/api/v1/documents", params={"status": "draft"}, headers=self.HEADERS)
        assert len(resp.json()) == 2

    def test_list_documents_by_type_and_query(self, client):
        self._create_document(client, name="Pension transfer", document_type="transfer")
        self._create_document(client, name="Life policy", document_type="policy")

        resp = client.get(
            "/api/v1/documents", params={"document_type": "policy"}, headers=self.HEADERS
        )
        assert [d["name"] for d in resp.json()] == ["Life policy"]
        resp = client.get("/api/v1/documents", params={"query": "PENSION"}, headers=self.HEADERS)
        assert [d["name"] for d in resp.json()] == ["Pension transfer"]

    def test_unknown_document(self, client):
        resp = client.get("/api/v1/documents/missing", headers=self.HEADERS)
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFoundError"

    def test_mutation_requires_if_match(self, client):
        doc = self._create_document(client)
        resp = client.post(
            f"/api/v1/documents/{doc['id']}/signature-requests",
            json={"method": "link"},
            headers=self.HEADERS,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "If-Match header required"

    def test_malformed_if_match(self, client):
        doc = self._create_document(client)
        resp = client.post(
            f"/api/v1/documents/{doc['id']}/signature-requests",
            json={"method": "link"},
            headers={**self.HEADERS, "If-Match": "abc"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "If-Match must be an integer version"
        assert self._version(client, doc["id"]) == 1

    def test_stale_if_match(self, client):
        doc = self._create_document(client)
        resp = client.post(
            f"/api/v1/documents/{doc['id']}/signature-requests",
            json={"method": "link"},
            headers={**self.HEADERS, "If-Match": "7"},
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "ConcurrentModificationError"
        assert body["current_version"] == 1
        assert body["current_status"] == "draft"

    def test_invalid_contact(self, client, contact):
        doc = self._create_document(client)
        resp = self._request_signature(client, doc["id"], recipient_contact="not-an-email")
        assert resp.status_code == 422
        assert resp.json()["field"] == "recipient_contact"
        assert contact.calls == []

    def test_expiry_days_out_of_range(self, client, contact):
        doc = self._create_document(client)
        resp = self._request_signature(client, doc["id"], expiry_days=10**8)
        assert resp.status_code == 422
        assert resp.json()["field"] == "expiry_days"
        assert contact.calls == []

    def test_delivery_failure(self, client, contact):
        doc = self._create_document(client)
        contact.fail = True

        resp = self._request_signature(client, doc["id"])

        assert resp.status_code == 502
        assert resp.json()["error"] == "DeliveryDispatchError"
        assert resp.json()["channel"] == "email"
        view = client.get(f"/api/v1/documents/{doc['id']}", headers=self.HEADERS).json()
        assert view["document"]["status"] == "draft"
        assert view["document"]["version"] == 1

    def test_invalid_transition(self, client):
        doc = self._create_document(client)
        resp = self._submit(client, doc["id"])
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "InvalidTransitionError"
        assert body["current_status"] == "draft"
        assert body["attempted_status"] == "sent"

    def test_duplicate_signature_webhook(self, client):
        doc = self._create_document(client)
        request = self._request_signature(client, doc["id"]).json()

        first = self._sign(client, request["id"])
        second = self._sign(client, request["id"])

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["signed_at"] == first.json()["signed_at"]
        assert self._version(client, doc["id"]) == 3

    def test_cancel(self, client):
        doc = self._create_document(client)
        request = self._request_signature(client, doc["id"]).json()

        resp = client.post(
            f"/api/v1/signature-requests/{request['id']}/cancel",
            headers={**self.HEADERS, "If-Match": str(self._version(client, doc["id"]))},
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        view = client.get(f"/api/v1/documents/{doc['id']}", headers=self.HEADERS).json()
        assert view["document"]["status"] == "draft"

    def test_unknown_carrier(self, client):
        doc = self._create_document(client)
        request = self._request_signature(client, doc["id"]).json()
        self._sign(client, request["id"])

        resp = self._submit(client, doc["id"], company_id="acme")

        assert resp.status_code == 422
        assert resp.json()["company_id"] == "acme"

    def test_queue_then_submit(self, client, carrier):
        doc = self._create_document(client)
        request = self._request_signature(client, doc["id"]).json()
        self._sign(client, request["id"])

        resp = client.post(
            f"/api/v1/documents/{doc['id']}/queue",
            headers={**self.HEADERS, "If-Match": str(self._version(client, doc["id"]))},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "pending_send"

        resp = self._submit(client, doc["id"], company_id="analyst", method="email")
        assert resp.status_code == 200
        assert carrier.calls[0][:2] == ("email", "analyst")

    def test_carriers(self, client):
        resp = client.get("/api/v1/carriers", headers=self.HEADERS)
        assert [c["id"] for c in resp.json()] == ["migdal", "harel", "analyst"]

        resp = client.get("/api/v1/carriers/analyst", headers=self.HEADERS)
        assert resp.json()["methods"] == ["email"]

        resp = client.get("/api/v1/carriers/acme", headers=self.HEADERS)
        assert resp.status_code == 422

    def test_timeline_and_events(self, client):
        doc = self._create_document(client)
        self._request_signature(client, doc["id"])

        resp = client.get(f"/api/v1/documents/{doc['id']}/timeline", headers=self.HEADERS)
        steps = resp.json()
        assert len(steps) == 5
        assert steps[0]["is_completed"] is True
        assert steps[1]["is_active"] is True
        assert steps[1]["status"] == "pending_signature"

        resp = client.get(f"/api/v1/documents/{doc['id']}/events", headers=self.HEADERS)
        types = [e["event_type"] for e in resp.json()]
        assert "document_created" in types
        assert "signature_requested" in types

    def test_aware_timestamps(self, client):
        doc = self._create_document(client)
        self._request_signature(client, doc["id"], expiry_days=1)

        resp = client.post(
            "/api/v1/reports/signatures",
            json={"document_ids": [doc["id"]], "now": "2024-03-01T10:00:00+00:00"},
            headers=self.HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json() == {"pending": 1, "signed": 0, "expired": 0}

        resp = client.post(
            "/api/v1/maintenance/expiry-sweep",
            json={"now": "2030-01-01T00:00:00Z"},
            headers=self.HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["expired"] == 1

        resp = client.get(
            "/api/v1/reports/dashboard",
            params={"now": "2024-03-01T09:00:00Z"},
            headers=self.HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["total"] == 1
        assert resp.json()["pending_signature"] == 0

    def test_signature_webhook_with_utc_designator(self, client):
        doc = self._create_document(client)
        request = self._request_signature(client, doc["id"]).json()

        resp = client.post(
            f"/api/v1/webhooks/signatures/{request['id']}",
            json={"signed_at": "2024-03-01T09:05:00Z"},
            headers=self.PROVIDER,
        )

        assert resp.status_code == 200
        assert resp.json()["signed_at"] == "2024-03-01T09:05:00"

    def test_dashboard(self, client):
        first = self._create_document(client)
        self._create_document(client)
        self._request_signature(client, first["id"])

        resp = client.get("/api/v1/reports/dashboard", headers=self.HEADERS)

        assert resp.status_code == 200
        assert resp.json() == {
            "total": 2,
            "pending_signature": 1,
            "awaiting_carrier": 0,
            "completed_today": 0,
        }

    def test_debug_follows_config(self, client):
        from docflow.server.app import create_app

        assert client.app.debug is False
        assert create_app(ServerConfig(debug=True)).debug is True

    def test_summary_with_unknown_document(self, client):
        resp = client.post(
            "/api/v1/reports/signatures",
            json={"document_ids": ["missing"]},
            headers=self.HEADERS,
        )
        assert resp.status_code == 404

    def test_end_to_end(self, client, contact, carrier, clock):
        doc = self._create_document(client)
        doc_id = doc["id"]

        first = self._request_signature(client, doc_id).json()
        assert len(contact.sent("email")) == 1

        resp = client.post(
            "/api/v1/maintenance/expiry-sweep",
            json={"now": (clock.now + timedelta(days=8)).isoformat()},
            headers=self.HEADERS,
        )
        assert resp.json() == {"examined": 1, "expired": 1, "skipped": 0}
        view = client.get(f"/api/v1/documents/{doc_id}", headers=self.HEADERS).json()
        assert view["document"]["status"] == "expired"
        assert view["signature_request"]["status"] == "expired"

        resp = client.post(
            f"/api/v1/signature-requests/{first['id']}/resend",
            headers={**self.HEADERS, "If-Match": str(self._version(client, doc_id))},
        )
        renewed = resp.json()
        assert resp.status_code == 200
        assert renewed["id"] != first["id"]
        assert renewed["status"] == "pending_signature"
        assert len(contact.sent("email")) == 2

        assert self._sign(client, renewed["id"]).json()["status"] == "signed"

        submission = self._submit(client, doc_id).json()
        assert submission["status"] == "sent"

        resp = client.post(
            f"/api/v1/webhooks/submissions/{submission['id']}/processing",
            headers=self.CARRIER,
        )
        assert resp.json()["status"] == "processing"

        resp = client.post(
            f"/api/v1/webhooks/submissions/{submission['id']}",
            json={"outcome": "rejected", "notes": "missing page"},
            headers=self.CARRIER,
        )
        assert resp.json()["status"] == "rejected"

        resp = client.post(
            f"/api/v1/submissions/{submission['id']}/retry",
            json={"company_id": "harel"},
            headers={**self.HEADERS, "If-Match": str(self._version(client, doc_id))},
        )
        retry = resp.json()
        assert resp.status_code == 200
        assert retry["company_id"] == "harel"
        assert retry["retry_of"] == submission["id"]
        assert [c[1] for c in carrier.calls] == ["migdal", "harel"]

        resp = client.post(
            "/api/v1/reports/submissions",
            json={"document_ids": [doc_id]},
            headers=self.HEADERS,
        )
        assert resp.json() == {"pending": 1, "approved": 0, "rejected": 0}

        resp = client.post(
            "/api/v1/reports/signatures",
            json={"document_ids": [doc_id]},
            headers=self.HEADERS,
        )
        assert resp.json() == {"pending": 0, "signed": 1, "expired": 0}

        counts = client.get("/api/v1/reports/status-counts", headers=self.HEADERS).json()
        assert counts["sent"] == 1
        assert sum(counts.values()) == 1
