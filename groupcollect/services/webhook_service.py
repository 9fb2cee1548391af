"""Webhook service — applies verified Stripe events to payments.

Idempotency has two layers:
  - Ledger: a StripeWebhookEvent row per Stripe event id. It is flushed
    before any payment is touched, in the same transaction, so a concurrent
    duplicate delivery fails on the unique constraint instead of applying
    the event twice. If the mutation fails, the ledger row rolls back with
    it and Stripe's retry gets a clean second attempt.
  - Field-level: paid_at and amount_pence_captured are only set while
    unset, and emails are gated by watermarks.

Business mismatches (unknown payment, illegal transition) are logged and
acknowledged. Only database failures are reported back as errors, since a
Stripe retry can actually fix those.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from groupcollect.extensions import db
from groupcollect.models.payment import Payment
from groupcollect.models.stripe_event import StripeWebhookEvent
from groupcollect.services import notification_service
from groupcollect.services.errors import InvalidTransitionError
from groupcollect.services.transitions import assert_valid_transition

logger = logging.getLogger(__name__)


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Returns (success: bool, message: str).
    """
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        logger.warning("Webhook event without id or type, ignoring")
        return True, "ignored"

    # --- Fast path: already in the ledger ---
    existing = StripeWebhookEvent.query.filter_by(
        stripe_event_id=event_id
    ).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "checkout.session.expired": _handle_checkout_expired,
    }
    handler = handlers.get(event_type)

    # Emails to send once the transaction is committed
    paid_payment_id = None
    try:
        db.session.add(
            StripeWebhookEvent(stripe_event_id=event_id, event_type=event_type)
        )
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Webhook event {event_id} recorded concurrently, skipping")
        return True, "already_processed"

    try:
        if handler:
            paid_payment_id = handler(event)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Webhook event {event_id} recorded concurrently, skipping")
        return True, "already_processed"
    except Exception as e:
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        db.session.rollback()
        return False, "processing_failed"

    if paid_payment_id:
        notification_service.send_payment_notifications(paid_payment_id)

    return True, "processed"


def resolve_payment(session):
    """Find the payment a checkout session belongs to.

    Lookup order: stored session id, then metadata.payment_id, then
    client_reference_id. A fallback hit that is already bound to another
    session belongs to a different checkout attempt and is ignored.
    The returned row is locked for the rest of the transaction.
    """
    session_id = session.get("id")
    if session_id:
        payment = (
            Payment.query
            .filter_by(stripe_checkout_session_id=session_id)
            .with_for_update()
            .first()
        )
        if payment is not None:
            return payment

    metadata = session.get("metadata") or {}
    fallback_id = metadata.get("payment_id") or session.get("client_reference_id")
    if not fallback_id:
        return None

    payment = (
        Payment.query
        .filter_by(id=fallback_id)
        .with_for_update()
        .first()
    )
    if payment is None:
        return None

    if (
        session_id
        and payment.stripe_checkout_session_id
        and payment.stripe_checkout_session_id != session_id
    ):
        logger.warning(
            f"Payment {payment.id} is bound to session "
            f"{payment.stripe_checkout_session_id}, ignoring stale session {session_id}"
        )
        return None

    return payment


def _object_id(value):
    """Stripe sends related objects as an id string, or as a dict when expanded."""
    if isinstance(value, dict):
        return value.get("id")
    return value


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed: PLEDGED -> PAID.

    Returns the payment id when notifications should go out, else None.
    """
    session = event["data"]["object"]
    payment = resolve_payment(session)
    if payment is None:
        logger.warning(
            f"checkout.session.completed for unknown payment (session {session.get('id')})"
        )
        return None

    if payment.status == Payment.PAID:
        logger.info(f"Payment {payment.id} already PAID, nothing to do")
        # Emails may still be outstanding from an earlier failed attempt.
        return payment.id

    try:
        assert_valid_transition(payment.status, Payment.PAID)
    except InvalidTransitionError as e:
        logger.warning(f"Ignoring checkout completion for payment {payment.id}: {e}")
        return None

    payment.status = Payment.PAID
    if payment.paid_at is None:
        payment.paid_at = datetime.now(timezone.utc)
    if payment.amount_pence_captured is None:
        amount_total = session.get("amount_total")
        payment.amount_pence_captured = (
            amount_total if amount_total is not None else payment.amount_pence
        )
    intent_id = _object_id(session.get("payment_intent"))
    if intent_id:
        payment.stripe_payment_intent_id = intent_id
    if session.get("id") and payment.stripe_checkout_session_id is None:
        payment.stripe_checkout_session_id = session["id"]

    db.session.flush()
    logger.info(
        f"Payment {payment.id} marked PAID "
        f"({payment.amount_pence_captured} pence captured)"
    )
    return payment.id


def _handle_checkout_expired(event):
    """Handle checkout.session.expired: cancel the pledge if still PLEDGED."""
    session = event["data"]["object"]
    payment = resolve_payment(session)
    if payment is None:
        logger.info(
            f"checkout.session.expired for unknown payment (session {session.get('id')})"
        )
        return None

    if payment.status != Payment.PLEDGED:
        logger.info(
            f"Checkout expired for payment {payment.id} in status {payment.status}, no-op"
        )
        return None

    assert_valid_transition(payment.status, Payment.CANCELLED)
    payment.status = Payment.CANCELLED
    db.session.flush()
    logger.info(f"Payment {payment.id} cancelled (checkout session expired)")
    return None
