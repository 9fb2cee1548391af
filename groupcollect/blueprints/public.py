"""Public blueprint — attendee-facing endpoints.

No authentication. The join endpoint is rate limited per IP.

Route Map:
  POST /e/<slug>/join            — Reserve a spot and get the Stripe checkout URL
  POST /e/<slug>/refund-request  — Ask the organiser for a refund (session_id)
  GET  /api/events/<slug>        — Public event view (price, spots left, closed)
  GET  /api/booking              — Booking by ?session_id=
  GET  /api/payment-status       — Latest status by ?event_id=&email=
  GET  /api/calendar/ics         — .ics file for a booking (?session_id=)
"""

from flask import Blueprint, Response, jsonify, request

from groupcollect.extensions import limiter
from groupcollect.services import checkout_service, event_service

public_bp = Blueprint("public", __name__)


def _payload():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


@public_bp.route("/e/<slug>/join", methods=["POST"])
@limiter.limit("10 per minute")
def join(slug):
    """Reserve a spot and return where to pay.

    Returns: { ok, payment_id, checkout_url } — checkout_url is null for
    free events (already confirmed).
    """
    data = _payload()
    payment_id, checkout_url = checkout_service.pay_and_join(
        slug, data.get("name"), data.get("email")
    )
    return jsonify(
        ok=True,
        payment_id=payment_id,
        checkout_url=checkout_url,
        status="PLEDGED" if checkout_url else "PAID",
    ), 201


@public_bp.route("/e/<slug>/refund-request", methods=["POST"])
@limiter.limit("5 per hour")
def refund_request(slug):
    data = _payload()
    booking = event_service.get_booking_by_session(data.get("session_id"))
    if booking["status"] == "NOT_FOUND" or booking["event"]["slug"] != slug:
        return jsonify(ok=False, error="Booking not found", code="payment_not_found"), 404
    event_service.request_refund(data.get("session_id"))
    return jsonify(ok=True)


@public_bp.route("/api/events/<slug>", methods=["GET"])
def event_view(slug):
    return jsonify(ok=True, event=event_service.get_public_event_view(slug))


@public_bp.route("/api/booking", methods=["GET"])
def booking():
    result = event_service.get_booking_by_session(request.args.get("session_id"))
    response = jsonify(ok=True, **result)
    response.headers["Cache-Control"] = "no-store"
    return response


@public_bp.route("/api/payment-status", methods=["GET"])
def payment_status():
    result = event_service.get_payment_status(
        request.args.get("event_id"), request.args.get("email")
    )
    response = jsonify(ok=True, **result)
    response.headers["Cache-Control"] = "no-store"
    return response


@public_bp.route("/api/calendar/ics", methods=["GET"])
def calendar_ics():
    filename, ics_text = event_service.build_ics(request.args.get("session_id"))
    return Response(
        ics_text,
        mimetype="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
