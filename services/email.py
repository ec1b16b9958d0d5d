import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Dict, Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import settings

logger = logging.getLogger(__name__)

# Try to import Celery task, fallback to direct execution if not available
try:
    from tasks.email_tasks import send_email_task
    USE_CELERY = True
except ImportError:
    USE_CELERY = False

PLACEHOLDER_PASSWORD = "your-gmail-app-password"

# Jinja2 environment for email templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
    keep_trailing_newline=True,
)


def build_message(to_email: str, subject: str, body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM or settings.SMTP_USERNAME
    msg["To"] = to_email
    msg.set_content(body)
    return msg


def deliver(msg: EmailMessage) -> None:
    """Push a message through the configured SMTP relay."""
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        server.starttls()
        if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)


def smtp_configured() -> bool:
    return bool(settings.SMTP_PASSWORD) and settings.SMTP_PASSWORD != PLACEHOLDER_PASSWORD


def send_email(to_email: str, subject: str, body: str) -> None:
    """
    Send email using Celery if available, otherwise send directly.
    This function returns immediately and doesn't block the request when using Celery.
    """
    if USE_CELERY:
        try:
            send_email_task.delay(to_email, subject, body)
            logger.debug("Email task queued for %s", to_email)
            return
        except Exception as e:
            logger.warning("Celery not available, sending email directly: %s", e)

    # Fallback: send email directly (synchronously)
    _send_email_direct(to_email, subject, body)


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a text template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


def send_templated_email(to_email: str, subject: str, template_path: str, context: Dict[str, Any]) -> None:
    """Render a template and send email via existing send_email path."""
    body = render_template(template_path, context)
    send_email(to_email, subject, body)


def _send_email_direct(to_email: str, subject: str, body: str) -> None:
    """Direct email sending fallback"""
    if not smtp_configured():
        logger.info("SMTP not configured, skipping email to %s (%s)", to_email, subject)
        logger.debug("Email body:\n%s", body)
        return

    try:
        deliver(build_message(to_email, subject, body))
        logger.info("Email sent to %s", to_email)
    except (smtplib.SMTPException, OSError):
        logger.exception("Email sending to %s failed", to_email)
