"""Tests that run joins and refunds on real threads.

The shared test app uses in-memory SQLite on a single connection, so these
tests build their own app on a file-backed SQLite database where every
thread gets its own connection.

Covers:
- Bulk refunds run at most REFUND_CONCURRENCY (5) Stripe calls at once
- Simultaneous joins for the last spots never oversell
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from groupcollect import create_app
from groupcollect.config import TestConfig, config_by_name
from groupcollect.extensions import db as _db
from groupcollect.models.event import Event
from groupcollect.models.payment import Payment
from groupcollect.services import capacity, checkout_service, refund_service
from groupcollect.services.errors import EventFull

REFUND_CREATE = "groupcollect.services.stripe_service.stripe.Refund.create"


@pytest.fixture
def threaded_app(tmp_path, monkeypatch):
    """App on a SQLite file, with the production refund concurrency."""

    class FileDbConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'groupcollect.db'}"
        REFUND_CONCURRENCY = 5

    monkeypatch.setitem(config_by_name, "file-db", FileDbConfig)
    app = create_app("file-db")
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()
        _db.engine.dispose()


def _add_event(max_spots):
    event = Event(
        slug="fiveaside1",
        title="Five-a-side football",
        price_pence=500,
        max_spots=max_spots,
        organiser_name="Sam Organiser",
        organiser_email="sam@example.com",
    )
    _db.session.add(event)
    _db.session.commit()
    return event.id


class TestParallelRefunds:

    def test_refund_all_caps_stripe_calls_at_five(self, threaded_app, make_payment, mock_email):
        event_id = _add_event(max_spots=None)
        for _ in range(8):
            make_payment(event_id, status=Payment.PAID)

        lock = threading.Lock()
        in_flight = 0
        peak = 0

        def _slow_refund(**kwargs):
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            time.sleep(0.2)
            with lock:
                in_flight -= 1
            return MagicMock(id=f"re_{kwargs['payment_intent']}")

        with patch(REFUND_CREATE, new=_slow_refund), patch(
            "groupcollect.services.refund_service.ThreadPoolExecutor",
            wraps=ThreadPoolExecutor,
        ) as executor_cls:
            summary = refund_service.refund_all(event_id, "admin-token")

        executor_cls.assert_called_once_with(max_workers=5)
        assert 1 < peak <= 5
        assert summary["attempted"] == 8
        assert summary["refunded"] == 8
        assert summary["failed"] == 0
        assert Payment.query.filter(Payment.stripe_refund_id.isnot(None)).count() == 8
        assert Payment.query.filter_by(status=Payment.PAID).count() == 0
        assert mock_email.call_count == 8


class TestSimultaneousJoins:

    def test_six_joins_for_three_spots(self, threaded_app, mock_checkout):
        event_id = _add_event(max_spots=3)
        barrier = threading.Barrier(6, timeout=10)

        def _join(i):
            with threaded_app.app_context():
                barrier.wait()
                try:
                    checkout_service.pay_and_join(
                        "fiveaside1", f"Player {i}", f"player{i}@example.com"
                    )
                except EventFull:
                    return "full"
                return "joined"

        with ThreadPoolExecutor(max_workers=6) as executor:
            outcomes = [f.result() for f in [executor.submit(_join, i) for i in range(6)]]

        assert outcomes.count("joined") == 3
        assert outcomes.count("full") == 3
        assert capacity.count_active(event_id) == 3
        assert Payment.query.filter(Payment.stripe_checkout_session_id.isnot(None)).count() == 3
