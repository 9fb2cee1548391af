"""Tests for email watermarks and the SMTP email service.

Covers:
- claim_watermark / release_watermark semantics
- Receipts are sent at most once per payment
- Templates render and go out through SMTP when configured
- Unconfigured SMTP sends nothing and releases the claim
"""

from datetime import datetime, timezone
from unittest.mock import patch

from groupcollect.extensions import db
from groupcollect.models.payment import Payment
from groupcollect.services import notification_service
from groupcollect.services.email_service import send_email_sync
from groupcollect.services.notification_service import (
    RECEIPT,
    claim_watermark,
    format_pence,
    release_watermark,
)


class TestWatermarks:

    def test_claim_once(self, seed_event, make_payment):
        payment_id = make_payment(seed_event["event_id"], status=Payment.PAID).id

        first = claim_watermark(payment_id, RECEIPT)
        second = claim_watermark(payment_id, RECEIPT)

        assert first is not None
        assert second is None
        assert db.session.get(Payment, payment_id).receipt_email_sent_at is not None

    def test_release_clears_own_claim(self, seed_event, make_payment):
        payment_id = make_payment(seed_event["event_id"], status=Payment.PAID).id
        claimed_at = claim_watermark(payment_id, RECEIPT)

        release_watermark(payment_id, RECEIPT, claimed_at)

        assert db.session.get(Payment, payment_id).receipt_email_sent_at is None
        assert claim_watermark(payment_id, RECEIPT) is not None

    def test_release_ignores_someone_elses_claim(self, seed_event, make_payment):
        earlier = datetime(2026, 1, 1, tzinfo=timezone.utc)
        payment_id = make_payment(
            seed_event["event_id"], status=Payment.PAID, receipt_email_sent_at=earlier
        ).id

        release_watermark(payment_id, RECEIPT, datetime.now(timezone.utc))

        assert db.session.get(Payment, payment_id).receipt_email_sent_at is not None

    def test_receipt_sent_once(self, seed_event, make_payment, mock_email):
        payment_id = make_payment(seed_event["event_id"], status=Payment.PAID).id

        assert notification_service.send_payment_receipt(payment_id) is True
        assert notification_service.send_payment_receipt(payment_id) is False
        assert mock_email.call_count == 1

    def test_unconfigured_smtp_releases_claim(self, app, seed_event, make_payment, monkeypatch):
        monkeypatch.setitem(app.config, "MAIL_USERNAME", None)
        payment_id = make_payment(seed_event["event_id"], status=Payment.PAID).id

        assert notification_service.send_payment_receipt(payment_id) is False
        assert db.session.get(Payment, payment_id).receipt_email_sent_at is None

    def test_refund_confirmation_needs_refund(self, seed_event, make_payment, mock_email):
        payment_id = make_payment(seed_event["event_id"], status=Payment.PAID).id
        assert notification_service.send_refund_confirmation(payment_id) is False
        mock_email.assert_not_called()


class TestFormatting:

    def test_format_pence(self):
        assert format_pence(500) == "£5.00"
        assert format_pence(1234) == "£12.34"
        assert format_pence(None) == "Free"
        assert format_pence(0) == "Free"


class TestEmailService:

    @patch("groupcollect.services.email_service.smtplib.SMTP")
    def test_sends_rendered_template(self, mock_smtp, app, monkeypatch):
        monkeypatch.setitem(app.config, "MAIL_USERNAME", "noreply@example.com")
        monkeypatch.setitem(app.config, "MAIL_PASSWORD", "secret")

        sent = send_email_sync(
            to="alex@example.com",
            subject="You're in",
            template="emails/payment_receipt.html",
            context={
                "name": "Alex",
                "event_title": "Five-a-side football",
                "amount": "£5.00",
                "event_url": "http://localhost:5000/e/fiveaside1",
            },
        )

        assert sent is True
        server = mock_smtp.return_value.__enter__.return_value
        server.login.assert_called_once_with("noreply@example.com", "secret")
        msg = server.send_message.call_args.args[0]
        assert msg["To"] == "alex@example.com"
        assert msg["Subject"] == "You're in"
        assert "Five-a-side football" in msg.get_payload()[0].get_payload(decode=True).decode()

    @patch("groupcollect.services.email_service.smtplib.SMTP")
    def test_multiple_recipients_and_reply_to(self, mock_smtp, app, monkeypatch):
        monkeypatch.setitem(app.config, "MAIL_USERNAME", "noreply@example.com")
        monkeypatch.setitem(app.config, "MAIL_PASSWORD", "secret")

        send_email_sync(
            to=["sam@example.com", "ops@example.com"],
            subject="Refund requested",
            template="emails/refund_request.html",
            context={
                "event_title": "Five-a-side football",
                "attendee_name": "Alex",
                "attendee_email": "alex@example.com",
                "payment_id": "p1",
                "amount": "£5.00",
                "admin_url": None,
            },
            reply_to="alex@example.com",
        )

        msg = mock_smtp.return_value.__enter__.return_value.send_message.call_args.args[0]
        assert msg["To"] == "sam@example.com, ops@example.com"
        assert msg["Reply-To"] == "alex@example.com"

    @patch("groupcollect.services.email_service.smtplib.SMTP")
    def test_unconfigured_smtp_sends_nothing(self, mock_smtp, app, monkeypatch):
        monkeypatch.setitem(app.config, "MAIL_PASSWORD", None)
        sent = send_email_sync(
            to="alex@example.com",
            subject="Hi",
            template="emails/refund_confirmation.html",
            context={"name": "Alex", "event_title": "Quiz", "amount": "£5.00", "event_url": "x"},
        )
        assert sent is False
        mock_smtp.assert_not_called()
