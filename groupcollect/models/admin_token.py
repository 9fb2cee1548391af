"""Admin token model.

Capability link for one event: whoever holds the token can manage the
event. Tokens expire (default 90 days). Old tokens are expired, never
deleted, so rotation keeps a history of every link that was issued.
"""

import uuid
from datetime import datetime, timezone

from groupcollect.extensions import db


class AdminToken(db.Model):
    __tablename__ = "admin_tokens"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(36), db.ForeignKey("events.id"), nullable=False, index=True
    )
    token = db.Column(
        db.String(64), unique=True, nullable=False
    )  # cryptographically random
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    event = db.relationship("Event", back_populates="admin_tokens")

    @property
    def is_expired(self):
        """Check if the token has expired."""
        now = datetime.now(timezone.utc)
        expires = self.expires_at
        # SQLite returns naive datetimes; Postgres returns aware ones.
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now >= expires

    def __repr__(self):
        return f"<AdminToken token={self.token[:8]}... event={self.event_id}>"
