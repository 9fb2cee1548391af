"""Refund service — single and bulk refunds of PAID payments.

A refund runs in one transaction: lock the payment, check it, call Stripe,
then flip it to CANCELLED with the refund metadata. Nothing is written
unless Stripe confirmed the refund. The window between Stripe succeeding
and our commit is the one place money and state can disagree; Stripe's
idempotency key (refund-<payment id>) makes a retry of that window safe.

The refund confirmation email is sent after commit, gated by its watermark.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from flask import current_app

from groupcollect.extensions import db
from groupcollect.models.payment import Payment
from groupcollect.services import notification_service, stripe_service
from groupcollect.services.audit_service import log_admin_action
from groupcollect.services.errors import (
    AlreadyRefunded,
    NotRefundable,
    PaymentNotFound,
    ServiceError,
)
from groupcollect.services.transitions import assert_valid_transition

logger = logging.getLogger(__name__)


def _lock_payment(payment_id):
    return (
        Payment.query
        .filter_by(id=payment_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def refund_payment(event_id, payment_id, admin_token=None):
    """Refund one PAID payment in full.

    Args:
        event_id: Event the payment must belong to.
        payment_id: Payment to refund.
        admin_token: Raw admin token, when triggered from an admin link.
            Used for the audit log only.

    Returns:
        The Stripe refund id.

    Raises:
        PaymentNotFound, AlreadyRefunded, NotRefundable, PaymentProviderError.
    """
    try:
        payment = _lock_payment(payment_id)
        if payment is None or payment.event_id != event_id:
            raise PaymentNotFound()

        # Either field on its own means the money already went back.
        if payment.has_refund_metadata:
            raise AlreadyRefunded()
        if payment.status != Payment.PAID:
            raise NotRefundable()
        if not payment.stripe_payment_intent_id:
            raise NotRefundable("Payment has no Stripe payment to refund")

        refund_id = stripe_service.create_refund(
            payment.stripe_payment_intent_id, payment.id
        )

        assert_valid_transition(payment.status, Payment.CANCELLED)
        payment.status = Payment.CANCELLED
        payment.amount_pence_captured = 0
        payment.paid_at = None
        payment.refunded_at = datetime.now(timezone.utc)
        payment.stripe_refund_id = refund_id

        if admin_token:
            log_admin_action(
                event_id,
                admin_token,
                "payment.refunded",
                {"payment_id": payment.id, "stripe_refund_id": refund_id},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Payment {payment_id} refunded (stripe refund {refund_id})")
    notification_service.send_refund_confirmation(payment_id)
    return refund_id


def _refund_in_worker(app, event_id, payment_id):
    """Run one refund in its own app context (own DB session).

    Returns "refunded", "skipped" or "failed".
    """
    with app.app_context():
        try:
            refund_payment(event_id, payment_id)
            return "refunded"
        except AlreadyRefunded:
            return "skipped"
        except ServiceError as e:
            logger.warning(f"Bulk refund: payment {payment_id} not refunded: {e.message}")
            return "failed"
        except Exception as e:
            logger.error(f"Bulk refund: payment {payment_id} failed: {e}", exc_info=True)
            return "failed"


def refund_all(event_id, admin_token):
    """Refund every PAID payment of an event.

    At most REFUND_CONCURRENCY refunds talk to Stripe at once. Each one is
    independent: a failure never stops the others.

    PAID rows without a Stripe payment intent are left alone and counted
    under skipped_no_charge.

    Returns dict with attempted, refunded, skipped_already_refunded,
    skipped_no_charge, failed.
    """
    paid = (
        Payment.query
        .filter_by(event_id=event_id, status=Payment.PAID)
        .order_by(Payment.created_at)
        .all()
    )
    # Should not happen, but PAID rows with refund metadata must not be refunded again.
    already_refunded = [p.id for p in paid if p.has_refund_metadata]
    # Free bookings and cash marked paid have no Stripe charge to refund.
    no_charge = [
        p.id for p in paid
        if not p.has_refund_metadata and not p.stripe_payment_intent_id
    ]
    to_refund = [
        p.id for p in paid
        if not p.has_refund_metadata and p.stripe_payment_intent_id
    ]
    if already_refunded:
        logger.warning(
            f"Bulk refund on event {event_id}: {len(already_refunded)} PAID "
            f"payments already carry refund metadata"
        )

    # End this session's transaction before the workers open their own.
    db.session.commit()

    results = []
    if to_refund:
        app = current_app._get_current_object()
        max_workers = max(1, current_app.config.get("REFUND_CONCURRENCY", 5))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(_refund_in_worker, app, event_id, payment_id)
                for payment_id in to_refund
            ]
            results = [f.result() for f in futures]

    summary = {
        "attempted": len(to_refund),
        "refunded": results.count("refunded"),
        "skipped_already_refunded": len(already_refunded) + results.count("skipped"),
        "skipped_no_charge": len(no_charge),
        "failed": results.count("failed"),
    }

    log_admin_action(event_id, admin_token, "payments.refund_all", summary)
    db.session.commit()

    logger.info(f"Bulk refund on event {event_id}: {summary}")
    return summary
