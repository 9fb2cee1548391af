"""
Email service.

Sends transactional emails over SMTP, rendered from Jinja2 HTML templates.

Usage:
    from groupcollect.services.email_service import send_email_sync

    sent = send_email_sync(
        to="user@example.com",
        subject="Hello",
        template="emails/payment_receipt.html",
        context={"name": "Jane"},
    )

send_email_sync() returns False when SMTP is not configured and raises on
delivery failure. Callers that track "already sent" watermarks rely on that
to know whether the email actually went out.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def _deliver(app, msg):
    """Send a built message over SMTP. Returns False if SMTP is unconfigured."""
    host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    port = app.config.get("MAIL_SMTP_PORT", 587)
    username = app.config.get("MAIL_USERNAME")
    password = app.config.get("MAIL_PASSWORD")

    if not username or not password:
        logger.warning("Email not sent — MAIL_USERNAME or MAIL_PASSWORD not configured.")
        return False

    with smtplib.SMTP(host, port, timeout=30) as server:
        server.ehlo()
        server.starttls()
        server.ehlo()
        server.login(username, password)
        server.send_message(msg)
    logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
    return True


def _build_message(app, to, subject, template, context, reply_to):
    from_name = app.config.get("MAIL_FROM_NAME", "Group Collect")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME", "")

    html_body = render_template(template, **(context or {}))

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(html_body, "html"))
    return msg


def send_email_sync(to, subject, template, context=None, reply_to=None):
    """
    Send a templated HTML email and block until it is handed over.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address.

    Returns True if the message was handed to the SMTP server, False if
    SMTP is not configured. Raises on delivery errors.
    """
    app = current_app._get_current_object()
    msg = _build_message(app, to, subject, template, context, reply_to)
    return _deliver(app, msg)
