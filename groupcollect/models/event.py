"""Event model.

An organiser-defined happening with a public slug. Capacity is never stored
as a counter: seats taken are always derived from a live count of active
payments (see services/capacity.py).
"""

import uuid

from groupcollect.extensions import db


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    slug = db.Column(db.String(100), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    price_pence = db.Column(db.Integer, nullable=True)  # null = free
    max_spots = db.Column(db.Integer, nullable=True)  # null = unlimited
    organiser_name = db.Column(db.String(255), nullable=False)
    organiser_email = db.Column(db.String(255), nullable=True)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # null = open
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    payments = db.relationship(
        "Payment", back_populates="event", lazy="dynamic"
    )
    admin_tokens = db.relationship(
        "AdminToken", back_populates="event", lazy="dynamic"
    )
    action_logs = db.relationship(
        "AdminActionLog", back_populates="event", lazy="dynamic"
    )

    @property
    def is_closed(self):
        return self.closed_at is not None

    @property
    def is_free(self):
        return not self.price_pence

    def __repr__(self):
        return f"<Event {self.slug}>"
