"""Tests for event creation and the public attendee-facing reads.

Covers:
- POST /api/events (slug, admin link, validation, free events)
- GET /api/events/<slug> (spots left, closed flag)
- GET /api/booking and /api/payment-status
- GET /api/calendar/ics
- POST /e/<slug>/refund-request
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from groupcollect.extensions import db
from groupcollect.models.admin_token import AdminToken
from groupcollect.models.event import Event
from groupcollect.models.payment import Payment


def _create(client, **fields):
    payload = {"title": "Pub quiz", "organiser_name": "Robin"}
    payload.update(fields)
    return client.post(
        "/api/events", data=json.dumps(payload), content_type="application/json"
    )


class TestCreateEvent:

    def test_create_returns_links(self, client, db_session):
        resp = _create(
            client,
            organiser_email="Robin@Example.com",
            price_pence=1200,
            max_spots=20,
            starts_at="2026-12-01T19:00:00Z",
        )
        assert resp.status_code == 201
        data = json.loads(resp.data)
        assert data["ok"] is True
        assert len(data["slug"]) == 10
        assert data["slug"].isalnum() and data["slug"].islower()
        assert data["event_url"].endswith(f"/e/{data['slug']}")
        assert data["admin_url"].endswith(f"/admin/{data['admin_token']}")

        event = db.session.get(Event, data["event_id"])
        assert event.price_pence == 1200
        assert event.max_spots == 20
        assert event.organiser_email == "robin@example.com"
        assert event.starts_at is not None

    def test_admin_link_works_and_lasts_ninety_days(self, client, db_session):
        data = json.loads(_create(client).data)
        assert client.get(f"/admin/{data['admin_token']}").status_code == 200

        admin_token = AdminToken.query.filter_by(token=data["admin_token"]).one()
        expires = admin_token.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        remaining = expires - datetime.now(timezone.utc)
        assert timedelta(days=89) < remaining <= timedelta(days=90)

    def test_zero_price_means_free(self, client, db_session):
        data = json.loads(_create(client, price_pence=0).data)
        event = db.session.get(Event, data["event_id"])
        assert event.price_pence is None
        assert event.is_free

    def test_missing_title_rejected(self, client, db_session):
        resp = _create(client, title="")
        assert resp.status_code == 400
        assert json.loads(resp.data)["code"] == "invalid"
        assert Event.query.count() == 0

    def test_invalid_values_rejected(self, client, db_session):
        for fields in (
            {"organiser_name": None},
            {"organiser_email": "not-an-email"},
            {"price_pence": -100},
            {"max_spots": 0},
            {"starts_at": "next tuesday"},
        ):
            resp = _create(client, **fields)
            assert resp.status_code == 400, fields
        assert Event.query.count() == 0

    def test_empty_body_rejected(self, client, db_session):
        resp = client.post("/api/events", data="", content_type="application/json")
        assert resp.status_code == 400


class TestPublicEventView:

    def test_shows_spots_left(self, client, seed_event, make_payment):
        make_payment(seed_event["event_id"])
        make_payment(seed_event["event_id"], status=Payment.PAID)
        make_payment(seed_event["event_id"], status=Payment.CANCELLED)

        resp = client.get(f"/api/events/{seed_event['slug']}")
        assert resp.status_code == 200
        event = json.loads(resp.data)["event"]
        assert event["title"] == "Five-a-side football"
        assert event["price_pence"] == 500
        assert event["spots_taken"] == 2
        assert event["spots_left"] == 1
        assert event["is_full"] is False
        assert event["is_closed"] is False

    def test_full_event(self, client, seed_event, make_payment):
        for _ in range(3):
            make_payment(seed_event["event_id"])
        event = json.loads(client.get(f"/api/events/{seed_event['slug']}").data)["event"]
        assert event["spots_left"] == 0
        assert event["is_full"] is True

    def test_no_admin_data_exposed(self, client, seed_event):
        body = client.get(f"/api/events/{seed_event['slug']}").data.decode()
        assert seed_event["token"] not in body
        assert "sam@example.com" not in body

    def test_unknown_slug(self, client, db_session):
        resp = client.get("/api/events/missing")
        assert resp.status_code == 404
        assert json.loads(resp.data)["code"] == "event_not_found"


class TestBookingLookup:

    def test_booking_by_session(self, client, seed_event, make_payment):
        make_payment(
            seed_event["event_id"],
            email="alex@example.com",
            status=Payment.PAID,
            stripe_checkout_session_id="cs_1",
        )
        resp = client.get("/api/booking?session_id=cs_1")
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        data = json.loads(resp.data)
        assert data["status"] == "PAID"
        assert data["email"] == "alex@example.com"
        assert data["event"]["slug"] == seed_event["slug"]
        assert seed_event["token"] not in resp.data.decode()

    def test_unknown_session_not_found(self, client, seed_event):
        data = json.loads(client.get("/api/booking?session_id=cs_nope").data)
        assert data["status"] == "NOT_FOUND"

    def test_missing_session_id(self, client, seed_event):
        assert client.get("/api/booking").status_code == 400

    def test_refunded_booking_shows_refunded(self, client, seed_event, make_payment):
        make_payment(
            seed_event["event_id"],
            status=Payment.CANCELLED,
            stripe_checkout_session_id="cs_1",
            refunded_at=datetime.now(timezone.utc),
        )
        data = json.loads(client.get("/api/booking?session_id=cs_1").data)
        assert data["status"] == "REFUNDED"


class TestPaymentStatus:

    def test_latest_status(self, client, seed_event, make_payment):
        make_payment(seed_event["event_id"], email="alex@example.com")
        resp = client.get(
            f"/api/payment-status?event_id={seed_event['event_id']}&email=ALEX@example.com"
        )
        assert resp.status_code == 200
        assert json.loads(resp.data)["status"] == "PLEDGED"

    def test_no_payment(self, client, seed_event):
        resp = client.get(
            f"/api/payment-status?event_id={seed_event['event_id']}&email=who@example.com"
        )
        assert json.loads(resp.data)["status"] == "NONE"

    def test_requires_valid_email(self, client, seed_event):
        resp = client.get(f"/api/payment-status?event_id={seed_event['event_id']}&email=x")
        assert resp.status_code == 400


class TestCalendar:

    def test_ics_for_booking(self, client, seed_event, make_payment):
        make_payment(
            seed_event["event_id"], status=Payment.PAID, stripe_checkout_session_id="cs_1"
        )
        resp = client.get("/api/calendar/ics?session_id=cs_1")
        assert resp.status_code == 200
        assert resp.mimetype == "text/calendar"
        assert 'filename="Five_a_side_football.ics"' in resp.headers["Content-Disposition"]

        body = resp.data.decode()
        assert body.startswith("BEGIN:VCALENDAR\r\n")
        assert "DTSTART:20261107T183000Z" in body
        assert "DTEND:20261107T193000Z" in body
        assert "SUMMARY:Five-a-side football" in body
        assert "mailto:sam@example.com" in body

    def test_event_without_start_time(self, client, seed_event, make_payment):
        seed_event["event"].starts_at = None
        db.session.commit()
        make_payment(seed_event["event_id"], stripe_checkout_session_id="cs_1")

        resp = client.get("/api/calendar/ics?session_id=cs_1")
        assert resp.status_code == 400

    def test_unknown_booking(self, client, seed_event):
        assert client.get("/api/calendar/ics?session_id=cs_nope").status_code == 404


class TestRefundRequest:

    def _request(self, client, slug, session_id="cs_1"):
        return client.post(f"/e/{slug}/refund-request", json={"session_id": session_id})

    def test_paid_booking_emails_organiser(self, client, seed_event, make_payment, mock_email):
        make_payment(
            seed_event["event_id"],
            email="alex@example.com",
            status=Payment.PAID,
            stripe_checkout_session_id="cs_1",
        )
        resp = self._request(client, seed_event["slug"])
        assert resp.status_code == 200

        kwargs = mock_email.call_args.kwargs
        assert kwargs["to"] == ["sam@example.com"]
        assert kwargs["reply_to"] == "alex@example.com"
        assert kwargs["context"]["admin_url"].endswith(f"/admin/{seed_event['token']}")

    def test_ops_email_copied(self, client, app, seed_event, make_payment, mock_email,
                              monkeypatch):
        monkeypatch.setitem(app.config, "OPS_EMAIL", "ops@example.com")
        make_payment(
            seed_event["event_id"], status=Payment.PAID, stripe_checkout_session_id="cs_1"
        )
        self._request(client, seed_event["slug"])
        assert mock_email.call_args.kwargs["to"] == ["sam@example.com", "ops@example.com"]

    def test_unpaid_booking_not_refundable(self, client, seed_event, make_payment, mock_email):
        make_payment(seed_event["event_id"], stripe_checkout_session_id="cs_1")
        resp = self._request(client, seed_event["slug"])
        assert resp.status_code == 409
        assert json.loads(resp.data)["code"] == "not_refundable"
        mock_email.assert_not_called()

    def test_wrong_event_slug(self, client, seed_event, make_payment, mock_email):
        make_payment(
            seed_event["event_id"], status=Payment.PAID, stripe_checkout_session_id="cs_1"
        )
        resp = self._request(client, "otherevent")
        assert resp.status_code == 404
        mock_email.assert_not_called()

    def test_organiser_without_email(self, client, seed_event, make_payment, mock_email):
        seed_event["event"].organiser_email = None
        db.session.commit()
        make_payment(
            seed_event["event_id"], status=Payment.PAID, stripe_checkout_session_id="cs_1"
        )
        resp = self._request(client, seed_event["slug"])
        assert resp.status_code == 400
        mock_email.assert_not_called()

    def test_email_failure_reported(self, client, seed_event, make_payment):
        make_payment(
            seed_event["event_id"], status=Payment.PAID, stripe_checkout_session_id="cs_1"
        )
        with patch(
            "groupcollect.services.notification_service.send_email_sync",
            side_effect=Exception("SMTP down"),
        ):
            resp = self._request(client, seed_event["slug"])
        assert resp.status_code == 502
        assert json.loads(resp.data)["code"] == "notification_failed"
