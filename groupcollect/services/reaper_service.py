"""Pledge reaper — returns abandoned checkout spots to the pool.

A pledge that has not been paid within STALE_PLEDGE_AGE is cancelled.
Every row is handled in its own transaction. One bad row is logged and
skipped so it never blocks the rest of the sweep.

Entry points: `flask cleanup-pledges`, the cron endpoint, and the admin
"clean up" action.
"""

import logging
from datetime import datetime, timedelta, timezone

from groupcollect.extensions import db
from groupcollect.models.payment import Payment
from groupcollect.services.transitions import assert_valid_transition

logger = logging.getLogger(__name__)

STALE_PLEDGE_AGE = timedelta(minutes=30)


def find_stale_pledge_ids(now=None, event_id=None):
    now = now or datetime.now(timezone.utc)
    cutoff = now - STALE_PLEDGE_AGE
    query = Payment.query.filter(
        Payment.status == Payment.PLEDGED,
        Payment.created_at < cutoff,
    )
    if event_id is not None:
        query = query.filter(Payment.event_id == event_id)
    return [p.id for p in query.with_entities(Payment.id).all()], cutoff


def _cancel_if_stale(payment_id, cutoff):
    """Cancel one pledge. Returns True if it was cancelled."""
    payment = (
        Payment.query
        .filter_by(id=payment_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    # Paid, cancelled or rejoined since the scan: leave it alone.
    if payment is None or payment.status != Payment.PLEDGED:
        return False
    created_at = payment.created_at
    if created_at is not None and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if created_at is None or created_at >= cutoff:
        return False

    assert_valid_transition(payment.status, Payment.CANCELLED)
    payment.status = Payment.CANCELLED
    return True


def cleanup_pledges(now=None, event_id=None):
    """Cancel PLEDGED payments older than STALE_PLEDGE_AGE.

    Args:
        now: Reference time (defaults to current UTC time).
        event_id: Restrict the sweep to one event.

    Returns:
        Number of payments cancelled.
    """
    payment_ids, cutoff = find_stale_pledge_ids(now=now, event_id=event_id)
    if not payment_ids:
        return 0

    cancelled = 0
    for payment_id in payment_ids:
        try:
            if _cancel_if_stale(payment_id, cutoff):
                db.session.commit()
                cancelled += 1
            else:
                db.session.rollback()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to cancel stale pledge {payment_id}: {e}")

    logger.info(f"Pledge cleanup: {cancelled} of {len(payment_ids)} stale pledges cancelled")
    return cancelled
