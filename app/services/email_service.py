"""
SMTP email transport.

Renders a Jinja2 HTML template and sends it over SMTP. Raises on delivery
failure so callers can record the outcome: see notification_service,
which is the only caller inside the engine.

Usage:
    from app.services.email_service import send_email

    message_id = send_email(
        to="user@example.com",
        subject="Hello",
        template="emails/purchase_confirmation.html",
        context={"customer_name": "Jane"},
    )
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from flask import current_app, render_template

logger = logging.getLogger(__name__)


class EmailNotConfigured(Exception):
    """MAIL_USERNAME / MAIL_PASSWORD are not set: nothing was sent."""


def _send_smtp(app, msg):
    """Send a prepared message via SMTP. Raises on any SMTP error."""
    host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    port = app.config.get("MAIL_SMTP_PORT", 587)
    username = app.config.get("MAIL_USERNAME")
    password = app.config.get("MAIL_PASSWORD")

    if not username or not password:
        raise EmailNotConfigured("MAIL_USERNAME or MAIL_PASSWORD not configured")

    with smtplib.SMTP(host, port, timeout=30) as server:
        server.ehlo()
        server.starttls()
        server.ehlo()
        server.login(username, password)
        server.send_message(msg)
    logger.info(f"Email sent to {msg['To']}: {msg['Subject']}")


def send_email(to, subject, template, context=None, reply_to=None):
    """
    Send a templated HTML email and block until the SMTP server accepts it.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address.

    Returns the Message-ID header of the sent message.
    Raises EmailNotConfigured or smtplib.SMTPException / OSError.
    """
    app = current_app._get_current_object()
    context = context or {}

    from_name = app.config.get("MAIL_FROM_NAME", "Riqle")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME", "")

    html_body = render_template(template, **context)

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)
    msg["Message-ID"] = make_msgid()

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(html_body, "html"))

    _send_smtp(app, msg)
    return msg["Message-ID"]
