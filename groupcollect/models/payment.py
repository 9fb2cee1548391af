"""Payment model (one attendee's reservation of one seat).

status is three-valued: PLEDGED | PAID | CANCELLED. "Refunded" is not a
status. A refunded payment is CANCELLED with refunded_at set, and is exposed
through is_refunded / display_status only. Legal status changes are defined
in services/transitions.py.

The *_sent_at columns are set-once watermarks: presence means the matching
email already went out. They are only written through conditional updates
(see services/notification_service.py).
"""

import uuid

from groupcollect.extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    PLEDGED = "PLEDGED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"  # display value only, never stored

    STATUSES = [PLEDGED, PAID, CANCELLED]
    # Statuses that occupy a spot
    ACTIVE_STATUSES = [PLEDGED, PAID]

    __table_args__ = (
        # At most one active reservation per (event, email).
        db.Index(
            "uq_payments_event_email_active",
            "event_id",
            "email",
            unique=True,
            postgresql_where=db.text("status IN ('PLEDGED', 'PAID')"),
            sqlite_where=db.text("status IN ('PLEDGED', 'PAID')"),
        ),
        db.Index("ix_payments_status_created_at", "status", "created_at"),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(36), db.ForeignKey("events.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)  # trimmed + lowercased
    status = db.Column(
        db.String(20), default=PLEDGED, nullable=False
    )  # PLEDGED | PAID | CANCELLED

    amount_pence = db.Column(
        db.Integer, nullable=True
    )  # snapshot of event price at join time
    amount_pence_captured = db.Column(
        db.Integer, nullable=True
    )  # set once from Stripe, zeroed on refund

    stripe_checkout_session_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # canonical correlation key, e.g. "cs_test_..."
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)
    stripe_refund_id = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Email watermarks ---
    receipt_email_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_email_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    organiser_notification_sent_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )

    # --- Relationships ---
    event = db.relationship("Event", back_populates="payments")

    @property
    def is_active(self):
        """True if this payment occupies a spot."""
        return self.status in self.ACTIVE_STATUSES

    @property
    def is_refunded(self):
        return self.status == self.CANCELLED and self.refunded_at is not None

    @property
    def has_refund_metadata(self):
        return self.refunded_at is not None or self.stripe_refund_id is not None

    @property
    def display_status(self):
        if self.is_refunded:
            return self.REFUNDED
        return self.status

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "status": self.display_status,
            "amount_pence": self.amount_pence,
            "amount_pence_captured": self.amount_pence_captured,
            "created_at": _iso(self.created_at),
            "paid_at": _iso(self.paid_at),
            "refunded_at": _iso(self.refunded_at),
        }

    def __repr__(self):
        return f"<Payment {self.email} ({self.status})>"


def _iso(value):
    return value.isoformat() if value else None
