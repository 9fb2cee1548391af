"""Audit helpers for admin-link actions."""

import hashlib
import logging

from groupcollect.extensions import db
from groupcollect.models.audit import AdminActionLog

logger = logging.getLogger(__name__)


def hash_admin_token(token):
    """SHA-256 hex digest of a raw admin token. The raw token is never stored in logs."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def log_admin_action(event_id, admin_token, action_type, metadata=None):
    """Append an AdminActionLog row. Flushes only; the caller commits."""
    if action_type not in AdminActionLog.ACTION_TYPES:
        raise ValueError(f"Unknown admin action type: {action_type}")
    entry = AdminActionLog(
        event_id=event_id,
        admin_token_hash=hash_admin_token(admin_token),
        action_type=action_type,
        metadata_=metadata or {},
    )
    db.session.add(entry)
    db.session.flush()
    logger.info(f"Admin action {action_type} on event {event_id}")
    return entry
