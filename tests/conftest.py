"""Shared test fixtures for the Group Collect test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_event: a paid, capacity-limited event with a valid admin link
- make_payment: factory for Payment rows in any state
- mock_checkout: stubbed stripe.checkout.Session.create (unique session ids)
- mock_email: stubbed send_email_sync used by the notification service
- send_webhook: posts a Stripe event with signature checking stubbed out
"""

import itertools
import json
import secrets
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from groupcollect import create_app
from groupcollect.extensions import db as _db
from groupcollect.models.admin_token import AdminToken
from groupcollect.models.event import Event
from groupcollect.models.payment import Payment


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_event(app, db_session):
    """Seed an event (£5, 3 spots) with a valid and an expired admin link.

    Returns a dict of the created objects plus plain IDs / tokens.
    """
    event = Event(
        slug="fiveaside1",
        title="Five-a-side football",
        price_pence=500,
        max_spots=3,
        organiser_name="Sam Organiser",
        organiser_email="sam@example.com",
        starts_at=datetime(2026, 11, 7, 18, 30, tzinfo=timezone.utc),
    )
    _db.session.add(event)
    _db.session.flush()

    token = secrets.token_urlsafe(48)
    admin_token = AdminToken(
        event_id=event.id,
        token=token,
        expires_at=datetime.now(timezone.utc) + timedelta(days=90),
    )
    _db.session.add(admin_token)

    expired_token = secrets.token_urlsafe(48)
    _db.session.add(AdminToken(
        event_id=event.id,
        token=expired_token,
        expires_at=datetime.now(timezone.utc) - timedelta(days=1),
    ))

    _db.session.commit()

    return {
        "event": event,
        "event_id": event.id,
        "slug": event.slug,
        "token": token,
        "expired_token": expired_token,
    }


@pytest.fixture
def make_payment(db_session):
    """Factory: make_payment(event_id, email, status=PLEDGED, **columns)."""
    counter = itertools.count(1)

    def _make(event_id, email=None, status=Payment.PLEDGED, **columns):
        n = next(counter)
        payment = Payment(
            event_id=event_id,
            name=columns.pop("name", f"Attendee {n}"),
            email=email or f"attendee{n}@example.com",
            status=status,
            amount_pence=columns.pop("amount_pence", 500),
            **columns,
        )
        if status == Payment.PAID:
            payment.paid_at = payment.paid_at or datetime.now(timezone.utc)
            if payment.amount_pence_captured is None:
                payment.amount_pence_captured = payment.amount_pence
            if payment.stripe_payment_intent_id is None:
                payment.stripe_payment_intent_id = f"pi_test_{n}"
        _db.session.add(payment)
        _db.session.commit()
        return payment

    return _make


@pytest.fixture
def mock_checkout():
    """Stripe Checkout stub returning cs_test_1, cs_test_2, ..."""
    counter = itertools.count(1)

    def _create(**kwargs):
        n = next(counter)
        return MagicMock(
            id=f"cs_test_{n}",
            url=f"https://checkout.stripe.com/c/pay/cs_test_{n}",
        )

    with patch(
        "groupcollect.services.stripe_service.stripe.checkout.Session.create",
        side_effect=_create,
    ) as mock_create:
        yield mock_create


@pytest.fixture
def mock_email():
    with patch(
        "groupcollect.services.notification_service.send_email_sync",
        return_value=True,
    ) as mock_send:
        yield mock_send


@pytest.fixture
def send_webhook(client):
    """Post a Stripe event dict to /stripe/webhooks as if correctly signed."""

    def _send(event):
        with patch(
            "groupcollect.services.stripe_service.stripe.WebhookSignature.verify_header",
            return_value=True,
        ):
            return client.post(
                "/stripe/webhooks",
                data=json.dumps(event),
                content_type="application/json",
                headers={"Stripe-Signature": "t=1700000000,v1=test"},
            )

    return _send


def checkout_event(event_id, event_type, session_id, payment_id=None,
                   amount_total=500, payment_intent="pi_test_webhook"):
    """Build a minimal Stripe checkout.session.* event payload."""
    session = {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": amount_total,
        "payment_intent": payment_intent,
        "client_reference_id": payment_id,
        "metadata": {"payment_id": payment_id} if payment_id else {},
    }
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": session},
    }


@pytest.fixture
def build_checkout_event():
    return checkout_event
