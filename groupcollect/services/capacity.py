"""Capacity & duplicate checks — the single admission-control point.

Spots are never stored as a counter on the event. They are derived from a
live count of PLEDGED + PAID payments, read inside the same transaction that
creates the new payment, with the event row locked (SELECT ... FOR UPDATE).
Two joins racing for the last seat therefore serialize on the event row and
the second one sees the first one's payment. On SQLite, which has no row
locks, they serialize on the database write lock instead.

The partial unique index uq_payments_event_email_active backs the duplicate
rule. If it fires (databases without row locks, or two joins with the same
email), the IntegrityError is reported as AlreadyBooked.
"""

import logging

from sqlalchemy.exc import IntegrityError

from groupcollect.extensions import db
from groupcollect.models.event import Event
from groupcollect.models.payment import Payment
from groupcollect.services.errors import (
    AlreadyBooked,
    EventClosed,
    EventFull,
    EventNotFound,
)

logger = logging.getLogger(__name__)


def lock_event(event_id):
    """Load the event with a row lock held until the transaction ends.

    populate_existing() refreshes an already-loaded instance so the checks
    below never run against stale price / capacity values.
    """
    if db.engine.dialect.name == "sqlite":
        # SQLite ignores FOR UPDATE. A no-op write takes the database write
        # lock instead, which other writers wait on until we commit.
        Event.query.filter_by(id=event_id).update(
            {Event.id: Event.id}, synchronize_session=False
        )
    return (
        Event.query
        .filter_by(id=event_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def count_active(event_id):
    """Number of payments currently occupying a spot."""
    return Payment.query.filter(
        Payment.event_id == event_id,
        Payment.status.in_(Payment.ACTIVE_STATUSES),
    ).count()


def count_paid(event_id):
    return Payment.query.filter_by(
        event_id=event_id, status=Payment.PAID
    ).count()


def find_active_payment(event_id, email):
    return Payment.query.filter(
        Payment.event_id == event_id,
        Payment.email == email,
        Payment.status.in_(Payment.ACTIVE_STATUSES),
    ).first()


def _find_reusable_payment(event_id, email):
    """Most recent CANCELLED, never-refunded payment for this email.

    Refunded rows are kept as they are: their refund metadata is the record
    of money that went back to the attendee.
    """
    return (
        Payment.query
        .filter(
            Payment.event_id == event_id,
            Payment.email == email,
            Payment.status == Payment.CANCELLED,
            Payment.refunded_at.is_(None),
            Payment.stripe_refund_id.is_(None),
        )
        .order_by(Payment.created_at.desc())
        .first()
    )


def reserve_spot(event_id, name, email):
    """Create (or reuse) a PLEDGED payment for `email`, committing on success.

    Args:
        event_id: Event UUID string.
        name: Sanitized attendee name.
        email: Normalised attendee email.

    Returns:
        The committed PLEDGED Payment.

    Raises:
        EventNotFound, EventClosed, EventFull, AlreadyBooked.
    """
    try:
        event = lock_event(event_id)
        if event is None:
            raise EventNotFound()
        if event.is_closed:
            raise EventClosed()

        active = count_active(event.id)
        if event.max_spots is not None and active >= event.max_spots:
            raise EventFull()

        if find_active_payment(event.id, email) is not None:
            raise AlreadyBooked()

        payment = _find_reusable_payment(event.id, email)
        if payment is None:
            payment = Payment(event_id=event.id, email=email)
            db.session.add(payment)
        else:
            # A reused row starts a fresh lifecycle: nothing from the
            # abandoned attempt may leak into the new one.
            payment.stripe_checkout_session_id = None
            payment.stripe_payment_intent_id = None
            payment.paid_at = None
            payment.amount_pence_captured = None
            payment.receipt_email_sent_at = None
            payment.organiser_notification_sent_at = None
            payment.refund_email_sent_at = None
            payment.created_at = db.func.now()

        payment.name = name
        payment.status = Payment.PLEDGED
        payment.amount_pence = event.price_pence
        db.session.flush()
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Duplicate active payment blocked by unique index: event={event_id}")
        raise AlreadyBooked()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        f"Spot reserved: payment={payment.id} event={event_id} "
        f"({active + 1}/{event.max_spots if event.max_spots is not None else 'unlimited'})"
    )
    return payment
