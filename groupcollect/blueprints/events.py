"""Events blueprint — /api/events

Route Map:
  POST /api/events  — Create an event; returns the public and admin links
"""

from flask import Blueprint, jsonify, request

from groupcollect.extensions import limiter
from groupcollect.services import event_service

events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.route("", methods=["POST"])
@limiter.limit("20 per hour")
def create_event():
    """
    Create an event.

    Required fields: title, organiser_name
    Optional fields: organiser_email, price_pence, max_spots, starts_at (ISO 8601)

    Returns: { ok: true, slug, event_url, admin_url, ... } with 201.
    """
    if request.is_json:
        data = request.get_json(silent=True) or {}
    else:
        data = request.form.to_dict()

    if not data:
        return jsonify(ok=False, error="Invalid request.", code="invalid"), 400

    result = event_service.create_event(
        title=data.get("title"),
        organiser_name=data.get("organiser_name"),
        organiser_email=data.get("organiser_email"),
        price_pence=data.get("price_pence"),
        max_spots=data.get("max_spots"),
        starts_at=data.get("starts_at"),
    )
    return jsonify(ok=True, **result), 201
