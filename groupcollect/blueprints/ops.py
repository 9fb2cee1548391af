"""Ops blueprint — /ops/*

Support tooling for the people running the service, guarded by the shared
OPS_PASSWORD (sent as the X-Ops-Key header). With OPS_PASSWORD unset every
route answers 404.

Route Map:
  POST /ops/payments/<id>/refund  — Refund a payment without the organiser's link
"""

import hmac
import logging
from functools import wraps

from flask import Blueprint, abort, current_app, jsonify, request

from groupcollect.extensions import db, limiter
from groupcollect.models.payment import Payment
from groupcollect.services import refund_service
from groupcollect.services.errors import PaymentNotFound

logger = logging.getLogger(__name__)

ops_bp = Blueprint("ops", __name__, url_prefix="/ops")


def ops_key_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        password = current_app.config.get("OPS_PASSWORD")
        if not password:
            abort(404)
        supplied = request.headers.get("X-Ops-Key", "")
        if not hmac.compare_digest(supplied.encode("utf-8"), password.encode("utf-8")):
            logger.warning(f"Rejected ops request from {request.remote_addr}")
            return jsonify(ok=False, error="Unauthorized"), 401
        return f(*args, **kwargs)

    return decorated


@ops_bp.route("/payments/<payment_id>/refund", methods=["POST"])
@limiter.limit("10 per minute")
@ops_key_required
def refund_payment(payment_id):
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise PaymentNotFound()
    refund_id = refund_service.refund_payment(payment.event_id, payment.id)
    logger.info(f"Ops refund of payment {payment_id}")
    return jsonify(ok=True, status="REFUNDED", stripe_refund_id=refund_id)
