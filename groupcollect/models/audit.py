"""Admin action log model.

Append-only audit trail of organiser actions taken through an admin link.
Only the SHA-256 hash of the token is stored, never the token itself.
"""

import uuid

from groupcollect.extensions import db


class AdminActionLog(db.Model):
    __tablename__ = "admin_action_logs"

    ACTION_TYPES = [
        "event.closed",
        "event.reopened",
        "event.title_updated",
        "event.price_updated",
        "event.max_spots_updated",
        "payment.cancelled",
        "payment.marked_paid",
        "payment.refunded",
        "payments.refund_all",
        "pledges.cleanup",
        "admin_token.regenerated",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(36), db.ForeignKey("events.id"), nullable=False, index=True
    )
    admin_token_hash = db.Column(db.String(64), nullable=False)
    action_type = db.Column(db.String(64), nullable=False)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid the declarative attribute clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    event = db.relationship("Event", back_populates="action_logs")

    def __repr__(self):
        return f"<AdminActionLog {self.action_type}>"
