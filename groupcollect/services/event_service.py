"""Event service — creating events and the public, attendee-facing reads.

Handles:
- create: new event + its first admin link
- public view: what the join page shows (never any admin data)
- booking / payment status lookups used by the page after checkout
- calendar (.ics) file for a booking
- refund request: emails the organiser, moves no money
"""

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone

from flask import current_app

from groupcollect.extensions import db
from groupcollect.models.event import Event
from groupcollect.models.payment import Payment
from groupcollect.services import admin_service, capacity, notification_service
from groupcollect.services.errors import (
    EventNotFound,
    NotificationFailed,
    NotRefundable,
    PaymentNotFound,
    ValidationError,
)
from groupcollect.validators import (
    EMAIL_RE,
    MAX_NAME_LENGTH,
    normalise_email,
    optional_int,
    require_email,
    require_text,
)

logger = logging.getLogger(__name__)

SLUG_ALPHABET = string.ascii_lowercase + string.digits
SLUG_LENGTH = 10
ICS_DEFAULT_DURATION = timedelta(minutes=60)


def generate_slug():
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(SLUG_LENGTH))


def _parse_starts_at(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError("starts_at must be an ISO 8601 date-time")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _aware(value):
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def event_url(slug):
    return f"{current_app.config['APP_BASE_URL'].rstrip('/')}/e/{slug}"


# ──────────────────────────────────────────────
# Create
# ──────────────────────────────────────────────

def create_event(title, organiser_name, organiser_email=None, price_pence=None,
                 max_spots=None, starts_at=None):
    """Create an event and its first admin link.

    Returns dict with event_id, slug, event_url, admin_token, admin_url.
    """
    title = require_text(title, "Title", MAX_NAME_LENGTH)
    organiser_name = require_text(organiser_name, "Organiser name", MAX_NAME_LENGTH)
    if organiser_email:
        organiser_email = require_email(organiser_email)
    else:
        organiser_email = None
    price_pence = optional_int(price_pence, "Price", minimum=0)
    max_spots = optional_int(max_spots, "Max spots", minimum=1)
    starts_at = _parse_starts_at(starts_at)

    slug = generate_slug()
    for _ in range(10):
        if Event.query.filter_by(slug=slug).first() is None:
            break
        slug = generate_slug()
    else:
        raise RuntimeError("Could not generate a unique event slug")

    try:
        event = Event(
            slug=slug,
            title=title,
            organiser_name=organiser_name,
            organiser_email=organiser_email,
            price_pence=price_pence or None,
            max_spots=max_spots,
            starts_at=starts_at,
        )
        db.session.add(event)
        db.session.flush()

        admin_token = admin_service.generate_admin_token(event.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Event created: {event.slug} ({event.title})")
    return {
        "event_id": event.id,
        "slug": event.slug,
        "event_url": event_url(event.slug),
        "admin_token": admin_token.token,
        "admin_url": admin_service.admin_url(admin_token.token),
    }


# ──────────────────────────────────────────────
# Public reads
# ──────────────────────────────────────────────

def get_event_by_slug(slug):
    event = Event.query.filter_by(slug=slug).first()
    if event is None:
        raise EventNotFound()
    return event


def get_public_event_view(slug):
    event = get_event_by_slug(slug)
    spots_taken = capacity.count_active(event.id)
    if event.max_spots is None:
        spots_left = None
        is_full = False
    else:
        spots_left = max(event.max_spots - spots_taken, 0)
        is_full = spots_left == 0

    return {
        "slug": event.slug,
        "title": event.title,
        "organiser_name": event.organiser_name,
        "price_pence": event.price_pence,
        "is_free": event.is_free,
        "max_spots": event.max_spots,
        "spots_taken": spots_taken,
        "spots_left": spots_left,
        "is_full": is_full,
        "is_closed": event.is_closed,
        "starts_at": event.starts_at.isoformat() if event.starts_at else None,
    }


def _payment_for_session(session_id):
    session_id = (session_id or "").strip()
    if not session_id:
        raise ValidationError("session_id is required")
    return Payment.query.filter_by(stripe_checkout_session_id=session_id).first()


def get_booking_by_session(session_id):
    """Booking shown on the page Stripe redirects back to.

    Status is one of PLEDGED, PAID, CANCELLED, REFUNDED or NOT_FOUND.
    """
    payment = _payment_for_session(session_id)
    if payment is None:
        return {"status": "NOT_FOUND"}

    event = payment.event
    return {
        "status": payment.display_status,
        "payment_id": payment.id,
        "name": payment.name,
        "email": payment.email,
        "amount_pence": payment.amount_pence,
        "event": {
            "slug": event.slug,
            "title": event.title,
            "organiser_name": event.organiser_name,
            "starts_at": event.starts_at.isoformat() if event.starts_at else None,
        },
    }


def get_payment_status(event_id, email):
    """Status of the latest payment for (event, email), or NONE."""
    email = normalise_email(email)
    if not event_id or not email or not EMAIL_RE.match(email):
        raise ValidationError("event_id and a valid email are required")

    payment = (
        Payment.query
        .filter_by(event_id=event_id, email=email)
        .order_by(Payment.created_at.desc())
        .first()
    )
    if payment is None:
        return {"status": "NONE"}
    return {"status": payment.display_status, "payment_id": payment.id}


# ──────────────────────────────────────────────
# Calendar
# ──────────────────────────────────────────────

def _ics_date(value):
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _ics_escape(value):
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def build_ics(session_id):
    """Build an iCalendar file for a booking.

    Returns (filename, ics_text). Raises PaymentNotFound, or ValidationError
    when the event has no start time.
    """
    payment = _payment_for_session(session_id)
    if payment is None:
        raise PaymentNotFound("Booking not found")
    event = payment.event
    if event.starts_at is None:
        raise ValidationError("Event has no start time")

    starts_at = _aware(event.starts_at)
    organiser = f"ORGANIZER;CN={_ics_escape(event.organiser_name)}"
    if event.organiser_email:
        organiser += f":mailto:{event.organiser_email}"
    description = f"Event: {event.title}\nOrganiser: {event.organiser_name}"

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Group Collect//Events//EN",
        "CALSCALE:GREGORIAN",
        "BEGIN:VEVENT",
        f"UID:event-{event.id}-{payment.id}@groupcollect",
        f"DTSTAMP:{_ics_date(datetime.now(timezone.utc))}",
        f"DTSTART:{_ics_date(starts_at)}",
        f"DTEND:{_ics_date(starts_at + ICS_DEFAULT_DURATION)}",
        f"SUMMARY:{_ics_escape(event.title)}",
        organiser,
        f"DESCRIPTION:{_ics_escape(description)}",
        f"URL:{event_url(event.slug)}",
        "STATUS:CONFIRMED",
        "SEQUENCE:0",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    filename = "".join(c if c.isalnum() else "_" for c in event.title) + ".ics"
    return filename, "\r\n".join(lines) + "\r\n"


# ──────────────────────────────────────────────
# Refund request
# ──────────────────────────────────────────────

def request_refund(session_id):
    """Ask the organiser to refund a paid booking.

    Only sends an email (to the organiser, copied to OPS_EMAIL if set); the
    refund itself is an admin action.
    """
    payment = _payment_for_session(session_id)
    if payment is None:
        raise PaymentNotFound("Booking not found")
    if payment.is_refunded:
        raise NotRefundable("This booking has already been refunded.")
    if payment.status != Payment.PAID:
        raise NotRefundable("Only paid bookings can be refunded.")

    event = payment.event
    if not event.organiser_email:
        raise ValidationError("The organiser has no email address on file.")

    if not notification_service.send_refund_request(payment, event):
        raise NotificationFailed("Could not send the refund request. Please try again.")
    return True
