"""Admin blueprint — /admin/<token>/*

Organiser management of one event through its admin link. No accounts:
the token in the URL is the credential (see decorators.admin_token_required).
Mutations are rate limited per IP + token hash.

Route Map:
  GET  /admin/<token>                              — Event overview + payments
  GET  /admin/<token>/export.csv                   — Attendee CSV export
  POST /admin/<token>/title                        — Rename event
  POST /admin/<token>/price                        — Change price (locked after first payment)
  POST /admin/<token>/max-spots                    — Change capacity
  POST /admin/<token>/close                        — Stop accepting joins
  POST /admin/<token>/reopen                       — Accept joins again
  POST /admin/<token>/payments/<id>/cancel         — Cancel an unpaid pledge
  POST /admin/<token>/payments/<id>/mark-paid      — Record an offline payment
  POST /admin/<token>/payments/<id>/refund         — Refund one payment
  POST /admin/<token>/refund-all                   — Refund every paid payment
  POST /admin/<token>/cleanup                      — Cancel stale pledges now
  POST /admin/<token>/regenerate                   — New admin link, old one expires
"""

from flask import Blueprint, Response, current_app, g, jsonify, request

from groupcollect.decorators import admin_rate_limit_key, admin_token_required
from groupcollect.extensions import limiter
from groupcollect.services import admin_service, refund_service

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _admin_limit():
    return current_app.config["ADMIN_RATE_LIMIT"]


def admin_limit(f):
    return limiter.limit(_admin_limit, key_func=admin_rate_limit_key)(f)


def _payload():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


# ══════════════════════════════════════════════
#  READ
# ══════════════════════════════════════════════

@admin_bp.route("/<token>", methods=["GET"])
@admin_token_required
def overview():
    data = admin_service.get_overview(g.event.id)
    data["admin_link_expires_at"] = g.admin_link.expires_at.isoformat()
    return jsonify(ok=True, **data)


@admin_bp.route("/<token>/export.csv", methods=["GET"])
@admin_token_required
def export_csv():
    csv_text = admin_service.export_payments_csv(g.event.id)
    return Response(
        csv_text,
        mimetype="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="event-{g.event.slug}.csv"',
        },
    )


# ══════════════════════════════════════════════
#  EVENT SETTINGS
# ══════════════════════════════════════════════

@admin_bp.route("/<token>/title", methods=["POST"])
@admin_limit
@admin_token_required
def update_title():
    event = admin_service.update_title(g.event.id, g.admin_token, _payload().get("title"))
    return jsonify(ok=True, title=event.title)


@admin_bp.route("/<token>/price", methods=["POST"])
@admin_limit
@admin_token_required
def update_price():
    event = admin_service.update_price(
        g.event.id, g.admin_token, _payload().get("price_pence")
    )
    return jsonify(ok=True, price_pence=event.price_pence)


@admin_bp.route("/<token>/max-spots", methods=["POST"])
@admin_limit
@admin_token_required
def update_max_spots():
    event = admin_service.update_max_spots(
        g.event.id, g.admin_token, _payload().get("max_spots")
    )
    return jsonify(ok=True, max_spots=event.max_spots)


@admin_bp.route("/<token>/close", methods=["POST"])
@admin_limit
@admin_token_required
def close_event():
    event = admin_service.close_event(g.event.id, g.admin_token)
    return jsonify(ok=True, is_closed=event.is_closed)


@admin_bp.route("/<token>/reopen", methods=["POST"])
@admin_limit
@admin_token_required
def reopen_event():
    event = admin_service.reopen_event(g.event.id, g.admin_token)
    return jsonify(ok=True, is_closed=event.is_closed)


# ══════════════════════════════════════════════
#  PAYMENTS
# ══════════════════════════════════════════════

@admin_bp.route("/<token>/payments/<payment_id>/cancel", methods=["POST"])
@admin_limit
@admin_token_required
def cancel_pledge(payment_id):
    payment = admin_service.cancel_pledge(g.event.id, g.admin_token, payment_id)
    return jsonify(ok=True, status=payment.display_status)


@admin_bp.route("/<token>/payments/<payment_id>/mark-paid", methods=["POST"])
@admin_limit
@admin_token_required
def mark_paid(payment_id):
    payment = admin_service.mark_paid(g.event.id, g.admin_token, payment_id)
    return jsonify(ok=True, status=payment.display_status)


@admin_bp.route("/<token>/payments/<payment_id>/refund", methods=["POST"])
@admin_limit
@admin_token_required
def refund_payment(payment_id):
    refund_id = refund_service.refund_payment(
        g.event.id, payment_id, admin_token=g.admin_token
    )
    return jsonify(ok=True, status="REFUNDED", stripe_refund_id=refund_id)


@admin_bp.route("/<token>/refund-all", methods=["POST"])
@admin_limit
@admin_token_required
def refund_all():
    summary = refund_service.refund_all(g.event.id, g.admin_token)
    return jsonify(ok=True, **summary)


@admin_bp.route("/<token>/cleanup", methods=["POST"])
@admin_limit
@admin_token_required
def cleanup():
    cancelled = admin_service.run_cleanup(g.event.id, g.admin_token)
    return jsonify(ok=True, cancelled=cancelled)


# ══════════════════════════════════════════════
#  ADMIN LINK
# ══════════════════════════════════════════════

@admin_bp.route("/<token>/regenerate", methods=["POST"])
@admin_limit
@admin_token_required
def regenerate():
    new_token = admin_service.regenerate_admin_token(g.event.id, g.admin_token)
    return jsonify(
        ok=True,
        admin_token=new_token.token,
        admin_url=admin_service.admin_url(new_token.token),
        expires_at=new_token.expires_at.isoformat(),
    )
