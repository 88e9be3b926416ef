"""
Tests for the signature request rules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from docflow import signatures
from docflow.exceptions import (
    AlreadyResolvedError,
    InvalidMethodParametersError,
    InvalidTransitionError,
)
from docflow.models import DocumentStatus, SignatureMethod, SignatureRequest, SignatureRequestStatus

NOW = datetime(2024, 3, 1, 9, 0, 0)


def _build(method=SignatureMethod.EMAIL, contact="a@b.com", expiry_days=7, **kwargs):
    return signatures.build_request(
        document_id="doc-1",
        sequence=1,
        method=method,
        recipient_contact=contact,
        expiry_days=expiry_days,
        now=NOW,
        previous_document_status="draft",
        **kwargs,
    )


class TestComputeIsExpired:
    """Tests for the derived expiry flag."""

    def test_not_expired_before_deadline(self):
        request = _build()
        assert not signatures.compute_is_expired(request, NOW + timedelta(days=7))

    def test_expired_after_deadline(self):
        request = _build()
        assert signatures.compute_is_expired(request, NOW + timedelta(days=7, seconds=1))

    def test_aware_now(self):
        request = _build()
        deadline = (NOW + timedelta(days=7)).replace(tzinfo=timezone.utc)
        assert not signatures.compute_is_expired(request, deadline)
        later = deadline.astimezone(timezone(timedelta(hours=-4))) + timedelta(seconds=1)
        assert signatures.compute_is_expired(request, later)

    def test_monotonic_in_time(self):
        request = _build(expiry_days=2)
        checks = [
            signatures.compute_is_expired(request, NOW + timedelta(hours=h))
            for h in range(0, 24 * 5, 6)
        ]
        first_true = checks.index(True)
        assert all(checks[first_true:])
        assert not any(checks[:first_true])

    def test_signed_is_never_expired(self):
        request = _build(expiry_days=0)
        signatures.apply_signed(request, NOW)
        assert not signatures.compute_is_expired(request, NOW + timedelta(days=30))

    def test_link_never_expires(self):
        request = _build(method=SignatureMethod.LINK, contact=None)
        assert not signatures.compute_is_expired(request, NOW + timedelta(days=365))

    def test_works_on_dataclass(self):
        request = SignatureRequest(
            id="r",
            document_id="d",
            sequence=1,
            method=SignatureMethod.SMS,
            status=SignatureRequestStatus.PENDING_SIGNATURE,
            created_at=NOW,
            expires_at=NOW,
        )
        assert signatures.compute_is_expired(request, NOW + timedelta(seconds=1))


class TestBuildRequest:
    """Tests for building new requests."""

    def test_email(self):
        request = _build(recipient_name="Dana", message="Please sign")
        assert request.status == "pending_signature"
        assert request.created_at == NOW
        assert request.sent_at == NOW
        assert request.expires_at == NOW + timedelta(days=7)
        assert request.reminders_sent == 0
        assert request.send_reminders is True
        assert request.message == "Please sign"
        assert request.previous_document_status == "draft"
        assert request.id

    def test_link_drops_contact_and_options(self):
        request = _build(method=SignatureMethod.LINK, contact="x@y.com", message="hi")
        assert request.recipient_contact is None
        assert request.expires_at is None
        assert request.message is None
        assert request.send_reminders is False

    def test_negative_expiry(self):
        with pytest.raises(InvalidMethodParametersError):
            _build(expiry_days=-1)

    def test_missing_contact(self):
        with pytest.raises(InvalidMethodParametersError):
            _build(method=SignatureMethod.SMS, contact="")


class TestEnsureCanRequest:
    @pytest.mark.parametrize("status", ["draft", "expired"])
    def test_allowed(self, status):
        assert signatures.ensure_can_request(status) is DocumentStatus.PENDING_SIGNATURE

    @pytest.mark.parametrize("status", ["pending_signature", "signed", "sent", "approved"])
    def test_rejected(self, status):
        with pytest.raises(InvalidTransitionError) as exc_info:
            signatures.ensure_can_request(status)
        assert exc_info.value.current_status == status


class TestEnsureCanSign:
    """Signature events against every request state."""

    def test_pending(self):
        signatures.ensure_can_sign(_build(), is_latest=True)

    def test_signed(self):
        request = _build()
        signatures.apply_signed(request, NOW)
        with pytest.raises(AlreadyResolvedError):
            signatures.ensure_can_sign(request, is_latest=True)

    def test_cancelled(self):
        request = _build()
        signatures.apply_cancelled(request)
        with pytest.raises(AlreadyResolvedError):
            signatures.ensure_can_sign(request, is_latest=True)

    def test_expired_and_superseded(self):
        request = _build()
        signatures.apply_expired(request)
        with pytest.raises(AlreadyResolvedError):
            signatures.ensure_can_sign(request, is_latest=False)

    def test_expired_and_live(self):
        request = _build()
        signatures.apply_expired(request)
        with pytest.raises(InvalidTransitionError):
            signatures.ensure_can_sign(request, is_latest=True)


class TestResendAndCancel:
    def test_can_resend(self):
        request = _build()
        assert signatures.can_resend(request)
        signatures.apply_expired(request)
        assert signatures.can_resend(request)
        signatures.apply_cancelled(request)
        assert not signatures.can_resend(request)

    def test_reminder_counter(self):
        request = _build()
        signatures.apply_reminder(request)
        signatures.apply_reminder(request)
        assert request.reminders_sent == 2

    def test_cancel_target(self):
        request = _build()
        assert signatures.ensure_can_cancel(request, "pending_signature") is DocumentStatus.DRAFT

    def test_cancel_requires_pending(self):
        request = _build()
        signatures.apply_signed(request, NOW)
        with pytest.raises(AlreadyResolvedError):
            signatures.ensure_can_cancel(request, "signed")

    def test_renewal_keeps_expiry_length(self):
        assert signatures.renewal_expiry_days(_build(expiry_days=3), 7) == 3
        link = _build(method=SignatureMethod.LINK, contact=None)
        assert signatures.renewal_expiry_days(link, 7) == 7
