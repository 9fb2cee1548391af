"""Stripe service — every call to the Stripe API goes through here.

Responsible for:
- Creating one-off Checkout Sessions for a payment
- Creating refunds for a captured payment intent
- Verifying webhook signatures

Stripe SDK errors are translated into PaymentProviderError so callers can
tell an unreachable provider apart from a business-rule conflict.
"""

import json
import logging

import stripe
from flask import current_app

from groupcollect.services.errors import PaymentProviderError

logger = logging.getLogger(__name__)


def _configure():
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]


# ──────────────────────────────────────────────
# Checkout
# ──────────────────────────────────────────────

def create_checkout_session(payment, event):
    """Create a Stripe Checkout Session charging payment.amount_pence.

    The payment id travels as both metadata.payment_id and
    client_reference_id so the webhook can find the payment even if the
    session id was never persisted.

    Returns (session_id, session_url).
    Raises PaymentProviderError on any Stripe failure or incomplete session.
    """
    _configure()
    app_base_url = current_app.config["APP_BASE_URL"].rstrip("/")
    currency = current_app.config["CURRENCY"]

    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": event.title},
                        "unit_amount": payment.amount_pence,
                    },
                    "quantity": 1,
                }
            ],
            customer_email=payment.email,
            client_reference_id=payment.id,
            metadata={
                "payment_id": payment.id,
                "event_id": event.id,
                "slug": event.slug,
            },
            success_url=(
                f"{app_base_url}/e/{event.slug}"
                f"?session_id={{CHECKOUT_SESSION_ID}}"
            ),
            cancel_url=f"{app_base_url}/e/{event.slug}?canceled=1",
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for payment {payment.id}: {e}")
        raise PaymentProviderError("Could not start payment (CHECKOUT_FAILED)")

    if not getattr(session, "id", None) or not getattr(session, "url", None):
        logger.error(f"Stripe returned an incomplete checkout session for payment {payment.id}")
        raise PaymentProviderError("Could not start payment (CHECKOUT_FAILED)")

    return session.id, session.url


# ──────────────────────────────────────────────
# Refunds
# ──────────────────────────────────────────────

def create_refund(payment_intent_id, payment_id):
    """Refund a payment intent in full.

    The idempotency key is derived from our payment id, so a retried call
    for the same payment never produces a second refund on Stripe's side.

    Returns the Stripe refund id.
    Raises PaymentProviderError on any Stripe failure.
    """
    _configure()
    try:
        refund = stripe.Refund.create(
            payment_intent=payment_intent_id,
            idempotency_key=f"refund-{payment_id}",
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe refund failed for payment {payment_id}: {e}")
        raise PaymentProviderError(f"Stripe refund failed: {e}")
    return refund.id


# ──────────────────────────────────────────────
# Webhooks
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify a Stripe webhook signature and decode the event.

    Returns the event as a plain dict.
    Raises stripe.SignatureVerificationError on an invalid signature and
    ValueError on a body that is not JSON.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    stripe.WebhookSignature.verify_header(
        payload,
        sig_header,
        webhook_secret,
        tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
    )
    return json.loads(payload)
