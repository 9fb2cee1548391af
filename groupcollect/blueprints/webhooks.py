"""Webhooks blueprint — /stripe/webhooks

Stripe's only way into the system. Checkout completions mark pledges PAID,
expiries cancel them. The raw body is needed for signature verification,
so it is read before anything parses it.

Response contract (Stripe only looks at the status code):
  200 {"received": true, "status": ...}  — applied, duplicate, or ignored
  400 {"received": false, "error": ...}  — bad signature or body, never retried usefully
  500 {"received": false, "error": ...}  — database failure, Stripe retries
"""

import logging

import stripe
from flask import Blueprint, jsonify, request

from groupcollect.services.stripe_service import verify_webhook_signature
from groupcollect.services.webhook_service import handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


def _rejected(error, status_code):
    return jsonify({"received": False, "error": error}), status_code


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning(f"Stripe webhook without signature from {request.remote_addr}")
        return _rejected("Missing signature", 400)

    try:
        event = verify_webhook_signature(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe webhook signature rejected: {e}")
        return _rejected("Invalid signature", 400)
    except ValueError:
        logger.warning("Stripe webhook body is not valid JSON")
        return _rejected("Invalid payload", 400)

    if not isinstance(event, dict):
        logger.warning(f"Stripe webhook body is a {type(event).__name__}, expected an object")
        return _rejected("Invalid payload", 400)

    success, message = handle_webhook_event(event)
    if not success:
        logger.error(
            f"Stripe event {event.get('id')} ({event.get('type')}) not applied: {message}"
        )
        return _rejected(message, 500)

    logger.info(f"Stripe event {event.get('id')} ({event.get('type')}): {message}")
    return jsonify({"received": True, "status": message}), 200
