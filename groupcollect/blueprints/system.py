"""System blueprint — health check and scheduler hooks.

Route Map:
  GET       /api/health                — ok / degraded / down
  GET/POST  /api/cron/cleanup-pledges  — Run the pledge reaper (needs CRON_SECRET)
"""

import hmac
import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from groupcollect.extensions import db
from groupcollect.services.reaper_service import cleanup_pledges

logger = logging.getLogger(__name__)

system_bp = Blueprint("system", __name__, url_prefix="/api")


@system_bp.route("/health", methods=["GET"])
def health():
    """Database is critical; Stripe and mail config only degrade."""
    checks = {"db": False, "stripe_configured": False, "mail_configured": False}

    try:
        db.session.execute(text("SELECT 1"))
        checks["db"] = True
    except Exception as e:
        db.session.rollback()
        logger.error(f"Health check: database unreachable: {e}")

    checks["stripe_configured"] = bool(
        current_app.config.get("STRIPE_SECRET_KEY")
        and current_app.config.get("STRIPE_WEBHOOK_SECRET")
    )
    checks["mail_configured"] = bool(
        current_app.config.get("MAIL_USERNAME") and current_app.config.get("MAIL_PASSWORD")
    )

    if all(checks.values()):
        status = "ok"
    elif checks["db"]:
        status = "degraded"
    else:
        status = "down"

    response = jsonify(status=status, checks=checks)
    response.headers["Cache-Control"] = "no-store"
    return response, 200 if status != "down" else 503


def _cron_authorized():
    secret = current_app.config.get("CRON_SECRET")
    if not secret:
        return False
    supplied = request.headers.get("X-Cron-Secret") or request.args.get("secret") or ""
    return hmac.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8"))


@system_bp.route("/cron/cleanup-pledges", methods=["GET", "POST"])
def cron_cleanup_pledges():
    if not _cron_authorized():
        logger.warning(f"Rejected cron request from {request.remote_addr}")
        return jsonify(ok=False, error="Unauthorized"), 401

    cancelled = cleanup_pledges()
    return jsonify(ok=True, cancelled=cancelled)
