"""
Custom route decorators for access control.

- admin_token_required: resolves the <token> URL segment into an admin link
  for one event. Sets g.admin_token (raw token string), g.admin_link
  (AdminToken row) and g.event.
- admin_rate_limit_key: Flask-Limiter key for admin routes, client IP plus
  a hash of the admin token, so one organiser cannot starve another.
"""

from functools import wraps

from flask import g, jsonify, request
from flask_limiter.util import get_remote_address

from groupcollect.services.admin_service import resolve_admin_token
from groupcollect.services.audit_service import hash_admin_token
from groupcollect.services.errors import AdminLinkInvalid


def admin_token_required(f):
    """Require a valid, unexpired admin token in the URL."""

    @wraps(f)
    def decorated(token, *args, **kwargs):
        try:
            admin_link = resolve_admin_token(token)
        except AdminLinkInvalid as e:
            return jsonify(e.to_dict()), e.status_code

        g.admin_token = admin_link.token
        g.admin_link = admin_link
        g.event = admin_link.event
        return f(*args, **kwargs)

    return decorated


def admin_rate_limit_key():
    token = (request.view_args or {}).get("token") or ""
    return f"{get_remote_address()}:{hash_admin_token(token)}"
