"""Checkout service — public "pay and join" flow.

Order of side effects:
  1. Reserve a PLEDGED spot (capacity gate, committed).
  2. Create the Stripe Checkout Session.
  3. Store the session id on the payment.

The reservation is committed before Stripe is called. If Stripe fails, the
PLEDGED row stays behind and the pledge reaper cancels it after 30 minutes.
If we crash after step 2, the webhook can still find the payment through
metadata.payment_id / client_reference_id.
"""

import logging
from datetime import datetime, timezone

from groupcollect.extensions import db
from groupcollect.models.event import Event
from groupcollect.models.payment import Payment
from groupcollect.services import capacity, notification_service, stripe_service
from groupcollect.services.errors import EventClosed, EventNotFound
from groupcollect.services.transitions import assert_valid_transition
from groupcollect.validators import require_email, require_text

logger = logging.getLogger(__name__)


def pay_and_join(slug, name, email):
    """Reserve a spot on the event and start payment.

    Returns (payment_id, checkout_url). checkout_url is None for free events,
    which are confirmed immediately.

    Raises ValidationError, EventNotFound, EventClosed, EventFull,
    AlreadyBooked or PaymentProviderError.
    """
    name = require_text(name, "Name")
    email = require_email(email)

    event = Event.query.filter_by(slug=slug).first()
    if event is None:
        raise EventNotFound()
    if event.is_closed:
        raise EventClosed()

    payment = capacity.reserve_spot(event.id, name, email)

    if event.is_free:
        _confirm_free_payment(payment.id)
        return payment.id, None

    session_id, checkout_url = stripe_service.create_checkout_session(payment, event)
    _store_session_id(payment.id, session_id)

    return payment.id, checkout_url


def _store_session_id(payment_id, session_id):
    """Record the checkout session id, once.

    Only writes while the column is still NULL, so a replayed request can
    never rebind a payment to a different session.
    """
    updated = (
        Payment.query
        .filter(
            Payment.id == payment_id,
            Payment.stripe_checkout_session_id.is_(None),
        )
        .update(
            {Payment.stripe_checkout_session_id: session_id},
            synchronize_session=False,
        )
    )
    db.session.commit()
    if updated:
        logger.info(f"Checkout session {session_id} stored for payment {payment_id}")
    else:
        logger.warning(
            f"Payment {payment_id} already had a checkout session; "
            f"{session_id} not stored"
        )


def _confirm_free_payment(payment_id):
    """No money to collect: PLEDGED -> PAID straight away."""
    payment = db.session.get(Payment, payment_id)
    assert_valid_transition(payment.status, Payment.PAID)

    payment.status = Payment.PAID
    if payment.paid_at is None:
        payment.paid_at = datetime.now(timezone.utc)
    if payment.amount_pence_captured is None:
        payment.amount_pence_captured = 0
    db.session.commit()

    logger.info(f"Free event: payment {payment_id} confirmed without checkout")
    notification_service.send_payment_notifications(payment_id)
