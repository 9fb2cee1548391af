"""Admin service — everything an organiser can do through their admin link.

The admin link is a bearer token (AdminToken). resolve_admin_token() is the
only way in: it rejects unknown and expired tokens. Every action that
changes something appends an AdminActionLog row (token stored as a hash)
in the same transaction as the change.

Refunds live in refund_service; the stale pledge sweep in reaper_service.
"""

import csv
import io
import logging
import secrets
from datetime import datetime, timedelta, timezone

from flask import current_app

from groupcollect.extensions import db
from groupcollect.models.admin_token import AdminToken
from groupcollect.models.audit import AdminActionLog
from groupcollect.models.event import Event
from groupcollect.models.payment import Payment
from groupcollect.services import capacity, reaper_service
from groupcollect.services.audit_service import log_admin_action
from groupcollect.services.errors import (
    AdminLinkInvalid,
    CapacityBelowOccupancy,
    EventNotFound,
    PaymentNotFound,
    PriceLocked,
    RefundRequired,
)
from groupcollect.services.transitions import assert_valid_transition
from groupcollect.validators import MAX_NAME_LENGTH, optional_int, require_text

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Tokens
# ──────────────────────────────────────────────

def generate_admin_token(event_id, ttl_days=None):
    """Create a new admin token for an event. Flushes only; caller commits."""
    if ttl_days is None:
        ttl_days = current_app.config.get("ADMIN_TOKEN_TTL_DAYS", 90)
    admin_token = AdminToken(
        event_id=event_id,
        token=secrets.token_urlsafe(48),  # 64-char URL-safe string
        expires_at=datetime.now(timezone.utc) + timedelta(days=ttl_days),
    )
    db.session.add(admin_token)
    db.session.flush()
    return admin_token


def resolve_admin_token(token):
    """Look up a usable admin token.

    Returns the AdminToken. Raises AdminLinkInvalid if the token is empty,
    unknown or expired.
    """
    token = (token or "").strip()
    if not token:
        raise AdminLinkInvalid()
    admin_token = AdminToken.query.filter_by(token=token).first()
    if admin_token is None:
        raise AdminLinkInvalid()
    if admin_token.is_expired:
        raise AdminLinkInvalid("This admin link has expired")
    return admin_token


def current_admin_token(event_id):
    """Newest unexpired token for an event, or None."""
    tokens = (
        AdminToken.query
        .filter_by(event_id=event_id)
        .order_by(AdminToken.created_at.desc(), AdminToken.expires_at.desc())
        .all()
    )
    for admin_token in tokens:
        if not admin_token.is_expired:
            return admin_token
    return None


def admin_url(token):
    base = current_app.config["APP_BASE_URL"].rstrip("/")
    return f"{base}/admin/{token}"


def regenerate_admin_token(event_id, admin_token):
    """Issue a new admin link and expire every other link for the event.

    Both happen in one transaction, so there is never a moment with zero or
    two working links.
    """
    now = datetime.now(timezone.utc)
    try:
        event = capacity.lock_event(event_id)
        if event is None:
            raise EventNotFound()

        new_token = generate_admin_token(event_id)
        (
            AdminToken.query
            .filter(
                AdminToken.event_id == event_id,
                AdminToken.id != new_token.id,
                AdminToken.expires_at > now,
            )
            .update({AdminToken.expires_at: now}, synchronize_session=False)
        )
        log_admin_action(event_id, admin_token, "admin_token.regenerated")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Admin link regenerated for event {event_id}")
    return new_token


# ──────────────────────────────────────────────
# Overview
# ──────────────────────────────────────────────

def get_overview(event_id):
    event = db.session.get(Event, event_id)
    if event is None:
        raise EventNotFound()

    payments = (
        Payment.query
        .filter_by(event_id=event_id)
        .order_by(Payment.created_at)
        .all()
    )
    counts = {status: 0 for status in Payment.STATUSES + [Payment.REFUNDED]}
    for payment in payments:
        counts[payment.display_status] += 1

    active = counts[Payment.PLEDGED] + counts[Payment.PAID]
    collected = sum(p.amount_pence_captured or 0 for p in payments if p.status == Payment.PAID)

    recent_actions = (
        AdminActionLog.query
        .filter_by(event_id=event_id)
        .order_by(AdminActionLog.created_at.desc())
        .limit(10)
        .all()
    )

    return {
        "event": {
            "id": event.id,
            "slug": event.slug,
            "title": event.title,
            "price_pence": event.price_pence,
            "max_spots": event.max_spots,
            "organiser_name": event.organiser_name,
            "organiser_email": event.organiser_email,
            "starts_at": event.starts_at.isoformat() if event.starts_at else None,
            "is_closed": event.is_closed,
            "price_locked": counts[Payment.PAID] > 0,
        },
        "counts": counts,
        "spots_taken": active,
        "spots_left": (
            max(event.max_spots - active, 0) if event.max_spots is not None else None
        ),
        "collected_pence": collected,
        "payments": [p.to_dict() for p in payments],
        "recent_actions": [
            {
                "action_type": log.action_type,
                "metadata": log.metadata_ or {},
                "created_at": log.created_at.isoformat() if log.created_at else None,
            }
            for log in recent_actions
        ],
    }


# ──────────────────────────────────────────────
# Event settings
# ──────────────────────────────────────────────

def _locked_event(event_id):
    event = capacity.lock_event(event_id)
    if event is None:
        raise EventNotFound()
    return event


def update_title(event_id, admin_token, title):
    title = require_text(title, "Title", MAX_NAME_LENGTH)
    try:
        event = _locked_event(event_id)
        if event.title == title:
            db.session.rollback()
            return event
        old_title = event.title
        event.title = title
        log_admin_action(
            event_id, admin_token, "event.title_updated",
            {"old": old_title, "new": title},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return event


def update_price(event_id, admin_token, price_pence):
    """Change the price per spot.

    Locked once any payment is PAID. Re-submitting the current price is
    accepted silently, even while locked.
    """
    price_pence = optional_int(price_pence, "Price", minimum=0)
    try:
        event = _locked_event(event_id)
        if event.price_pence == price_pence:
            db.session.rollback()
            return event
        if capacity.count_paid(event_id) > 0:
            raise PriceLocked()

        old_price = event.price_pence
        event.price_pence = price_pence
        log_admin_action(
            event_id, admin_token, "event.price_updated",
            {"old": old_price, "new": price_pence},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Event {event_id} price changed to {price_pence}")
    return event


def update_max_spots(event_id, admin_token, max_spots):
    """Change capacity. None means unlimited.

    The active count is taken with the event row locked, so a join cannot
    slip in between the check and the update.
    """
    max_spots = optional_int(max_spots, "Max spots", minimum=1)
    try:
        event = _locked_event(event_id)
        if event.max_spots == max_spots:
            db.session.rollback()
            return event
        active = capacity.count_active(event_id)
        if max_spots is not None and max_spots < active:
            raise CapacityBelowOccupancy(
                f"Cannot set max spots below current number of participants ({active})"
            )

        old_max = event.max_spots
        event.max_spots = max_spots
        log_admin_action(
            event_id, admin_token, "event.max_spots_updated",
            {"old": old_max, "new": max_spots, "active": active},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return event


def close_event(event_id, admin_token):
    try:
        event = _locked_event(event_id)
        if event.is_closed:
            db.session.rollback()
            return event
        event.closed_at = datetime.now(timezone.utc)
        log_admin_action(event_id, admin_token, "event.closed")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return event


def reopen_event(event_id, admin_token):
    try:
        event = _locked_event(event_id)
        if not event.is_closed:
            db.session.rollback()
            return event
        event.closed_at = None
        log_admin_action(event_id, admin_token, "event.reopened")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return event


# ──────────────────────────────────────────────
# Payments
# ──────────────────────────────────────────────

def _locked_payment(event_id, payment_id):
    payment = (
        Payment.query
        .filter_by(id=payment_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if payment is None or payment.event_id != event_id:
        raise PaymentNotFound()
    return payment


def cancel_pledge(event_id, admin_token, payment_id):
    """Cancel a pledge.

    Payments charged through Stripe have to go through a refund instead.
    PAID rows with no Stripe charge (free events, cash marked paid) are
    cancelled directly so the spot is freed.
    """
    try:
        payment = _locked_payment(event_id, payment_id)
        if payment.status == Payment.PAID and payment.stripe_payment_intent_id:
            raise RefundRequired()
        if payment.status == Payment.CANCELLED:
            db.session.rollback()
            return payment

        assert_valid_transition(payment.status, Payment.CANCELLED)
        payment.status = Payment.CANCELLED
        log_admin_action(
            event_id, admin_token, "payment.cancelled", {"payment_id": payment.id}
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Pledge {payment_id} cancelled by organiser")
    return payment


def mark_paid(event_id, admin_token, payment_id):
    """Record a payment collected outside Stripe (cash, bank transfer)."""
    try:
        payment = _locked_payment(event_id, payment_id)
        if payment.status == Payment.PAID:
            db.session.rollback()
            return payment

        assert_valid_transition(payment.status, Payment.PAID)
        payment.status = Payment.PAID
        if payment.paid_at is None:
            payment.paid_at = datetime.now(timezone.utc)
        log_admin_action(
            event_id, admin_token, "payment.marked_paid", {"payment_id": payment.id}
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Payment {payment_id} marked paid by organiser")
    return payment


def run_cleanup(event_id, admin_token):
    """Admin "clean up" button: sweep this event's stale pledges."""
    cancelled = reaper_service.cleanup_pledges(event_id=event_id)
    log_admin_action(
        event_id, admin_token, "pledges.cleanup", {"cancelled": cancelled}
    )
    db.session.commit()
    return cancelled


# ──────────────────────────────────────────────
# Export
# ──────────────────────────────────────────────

CSV_COLUMNS = [
    "name",
    "email",
    "status",
    "amount_pence",
    "paid_at",
    "refunded_at",
    "stripe_payment_intent_id",
    "stripe_refund_id",
    "created_at",
]


def _csv_safe(value):
    """Neutralise spreadsheet formulas in user-supplied text."""
    if isinstance(value, str) and value[:1] in ("=", "+", "-", "@"):
        return "'" + value
    return value


def export_payments_csv(event_id):
    """All payments of an event as CSV text, oldest first."""
    payments = (
        Payment.query
        .filter_by(event_id=event_id)
        .order_by(Payment.created_at)
        .all()
    )
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    for p in payments:
        writer.writerow([
            _csv_safe(p.name),
            _csv_safe(p.email),
            p.display_status,
            p.amount_pence if p.amount_pence is not None else "",
            p.paid_at.isoformat() if p.paid_at else "",
            p.refunded_at.isoformat() if p.refunded_at else "",
            p.stripe_payment_intent_id or "",
            p.stripe_refund_id or "",
            p.created_at.isoformat() if p.created_at else "",
        ])
    return output.getvalue()
