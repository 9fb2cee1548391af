"""Notification service — attendee receipts, organiser notices, refund emails.

Each one-time email is guarded by a watermark column on Payment:

    receipt_email_sent_at           — attendee payment receipt
    organiser_notification_sent_at  — "new joiner" notice to the organiser
    refund_email_sent_at            — attendee refund confirmation

Sending is claim -> send -> release-on-failure:
  1. Conditional UPDATE sets the watermark only while it is NULL. If no row
     was updated, someone else already sent (or is sending) it; stop.
  2. Send the email.
  3. If sending failed, clear the watermark again (only if it still holds
     our claim) so a later retry can send it.

These functions never raise. Email trouble is logged and must not undo a
payment or refund that already committed.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from groupcollect.extensions import db
from groupcollect.models.event import Event
from groupcollect.models.payment import Payment
from groupcollect.services import capacity
from groupcollect.services.admin_service import admin_url, current_admin_token
from groupcollect.services.email_service import send_email_sync

logger = logging.getLogger(__name__)

RECEIPT = "receipt_email_sent_at"
ORGANISER_NOTICE = "organiser_notification_sent_at"
REFUND = "refund_email_sent_at"


def format_pence(amount_pence):
    if not amount_pence:
        return "Free"
    return f"£{amount_pence / 100:.2f}"


def event_url(event):
    base = current_app.config["APP_BASE_URL"].rstrip("/")
    return f"{base}/e/{event.slug}"


# ──────────────────────────────────────────────
# Watermarks
# ──────────────────────────────────────────────

def claim_watermark(payment_id, field):
    """Set payments.<field> = now if it is NULL. Returns the timestamp or None."""
    column = getattr(Payment, field)
    now = datetime.now(timezone.utc)
    updated = (
        Payment.query
        .filter(Payment.id == payment_id, column.is_(None))
        .update({column: now}, synchronize_session=False)
    )
    db.session.commit()
    return now if updated == 1 else None


def release_watermark(payment_id, field, claimed_at):
    column = getattr(Payment, field)
    (
        Payment.query
        .filter(Payment.id == payment_id, column == claimed_at)
        .update({column: None}, synchronize_session=False)
    )
    db.session.commit()


def _send_once(payment_id, field, to, subject, template, context):
    """Send one watermarked email. Returns True only if this call sent it."""
    try:
        claimed_at = claim_watermark(payment_id, field)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Could not claim {field} for payment {payment_id}: {e}")
        return False

    if claimed_at is None:
        logger.info(f"{field} already set for payment {payment_id}, not resending")
        return False

    try:
        sent = send_email_sync(to=to, subject=subject, template=template, context=context)
    except Exception as e:
        logger.error(f"Failed to send {template} for payment {payment_id}: {e}")
        sent = False

    if not sent:
        try:
            release_watermark(payment_id, field, claimed_at)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Could not release {field} for payment {payment_id}: {e}")
    return sent


# ──────────────────────────────────────────────
# Emails
# ──────────────────────────────────────────────

def send_payment_receipt(payment_id):
    payment = db.session.get(Payment, payment_id)
    if payment is None or payment.receipt_email_sent_at is not None:
        return False
    event = payment.event
    return _send_once(
        payment_id,
        RECEIPT,
        to=payment.email,
        subject=f"You're in – {event.title}",
        template="emails/payment_receipt.html",
        context={
            "name": payment.name,
            "event_title": event.title,
            "amount": format_pence(payment.amount_pence_captured or payment.amount_pence),
            "event_url": event_url(event),
        },
    )


def send_organiser_notification(payment_id):
    payment = db.session.get(Payment, payment_id)
    if payment is None or payment.organiser_notification_sent_at is not None:
        return False
    event = payment.event
    if not (event.organiser_email or "").strip():
        return False

    spots_filled = capacity.count_active(event.id)
    if event.max_spots is None:
        spots_display = f"{spots_filled} spots filled (unlimited)"
    else:
        spots_display = f"{spots_filled} of {event.max_spots} spots filled"

    return _send_once(
        payment_id,
        ORGANISER_NOTICE,
        to=event.organiser_email,
        subject=f"New joiner – {event.title}",
        template="emails/organiser_new_joiner.html",
        context={
            "organiser_name": event.organiser_name,
            "event_title": event.title,
            "joiner_name": payment.name,
            "joiner_email": payment.email,
            "amount": format_pence(payment.amount_pence),
            "spots_display": spots_display,
        },
    )


def send_payment_notifications(payment_id):
    """Receipt to the attendee + new-joiner notice to the organiser."""
    send_payment_receipt(payment_id)
    send_organiser_notification(payment_id)


def send_refund_confirmation(payment_id):
    payment = db.session.get(Payment, payment_id)
    if payment is None or not payment.is_refunded:
        return False
    if payment.refund_email_sent_at is not None:
        return False
    event = db.session.get(Event, payment.event_id)
    return _send_once(
        payment_id,
        REFUND,
        to=payment.email,
        subject=f"Refund processed – {event.title}",
        template="emails/refund_confirmation.html",
        context={
            "name": payment.name,
            "event_title": event.title,
            "amount": format_pence(payment.amount_pence),
            "event_url": event_url(event),
        },
    )


def send_refund_request(payment, event):
    """Attendee asks for a refund: email the organiser (cc OPS_EMAIL).

    Not watermarked; an attendee may ask more than once. Returns True if
    the email went out.
    """
    recipients = [event.organiser_email]
    ops_email = (current_app.config.get("OPS_EMAIL") or "").strip()
    if ops_email:
        recipients.append(ops_email)

    admin_token = current_admin_token(event.id)
    try:
        sent = send_email_sync(
            to=recipients,
            subject=f"Refund requested – {event.title}",
            template="emails/refund_request.html",
            context={
                "event_title": event.title,
                "attendee_name": payment.name,
                "attendee_email": payment.email,
                "payment_id": payment.id,
                "amount": format_pence(payment.amount_pence),
                "admin_url": admin_url(admin_token.token) if admin_token else None,
            },
            reply_to=payment.email,
        )
    except Exception as e:
        logger.error(f"Failed to send refund request for payment {payment.id}: {e}")
        return False

    if sent:
        logger.info(
            f"Refund request for payment {payment.id} sent to {', '.join(recipients)}"
        )
    return sent
