"""End-to-end flow through the HTTP surface: join, pay, reap, refund, rejoin."""

import json
from unittest.mock import MagicMock, patch

from groupcollect.extensions import db
from groupcollect.models.payment import Payment
from groupcollect.services.reaper_service import cleanup_pledges


def _join(client, slug, name, email):
    return client.post(f"/e/{slug}/join", json={"name": name, "email": email})


class TestSingleSpotLifecycle:

    @patch("groupcollect.services.stripe_service.stripe.Refund.create")
    def test_paid_spot_is_freed_by_refund(self, mock_refund, client, seed_event, mock_checkout,
                                          mock_email, send_webhook, build_checkout_event):
        mock_refund.return_value = MagicMock(id="re_a")
        seed_event["event"].max_spots = 1
        db.session.commit()
        slug = seed_event["slug"]

        # A reserves the only spot
        resp = _join(client, slug, "A", "a@example.com")
        assert resp.status_code == 201
        a_id = json.loads(resp.data)["payment_id"]
        assert db.session.get(Payment, a_id).status == Payment.PLEDGED

        # B is turned away
        resp = _join(client, slug, "B", "b@example.com")
        assert resp.status_code == 409
        assert json.loads(resp.data)["code"] == "event_full"

        # Stripe confirms A's payment
        session_id = db.session.get(Payment, a_id).stripe_checkout_session_id
        resp = send_webhook(
            build_checkout_event("evt_a", "checkout.session.completed", session_id, a_id)
        )
        assert resp.status_code == 200
        payment = db.session.get(Payment, a_id)
        assert payment.status == Payment.PAID
        assert payment.paid_at is not None
        assert payment.amount_pence_captured == 500

        # A paid booking is never reaped
        assert cleanup_pledges() == 0

        # Organiser refunds A
        resp = client.post(f"/admin/{seed_event['token']}/payments/{a_id}/refund")
        assert resp.status_code == 200
        payment = db.session.get(Payment, a_id)
        assert payment.status == Payment.CANCELLED
        assert payment.refunded_at is not None
        assert payment.amount_pence_captured == 0
        assert mock_refund.call_count == 1

        # The spot is free again
        resp = _join(client, slug, "B", "b@example.com")
        assert resp.status_code == 201
