"""Templated email over SMTP.

Templates live in ``bspcp/templates/email`` and are addressed by id (file
stem). Delivery is best-effort: failures are logged and reported as ``False``
so callers never roll back a committed state change because SMTP was down.
"""

import logging
from email.message import EmailMessage
from pathlib import Path

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, select_autoescape

from bspcp.core.config import Settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

SUBJECTS = {
    "application_received": "BSPCP membership application received",
    "admin_new_application": "New membership application: {full_name}",
    "application_approved": "Your BSPCP membership application has been approved",
    "application_rejected": "Update on your BSPCP membership application",
    "application_more_info": "{subject}",
    "password_reset": "Reset your BSPCP password",
    "payment_request": "BSPCP payment request: upload your proof of payment",
    "payment_verified": "Your BSPCP payment has been verified",
    "payment_rejected": "Your BSPCP proof of payment needs attention",
    "booking_request": "New session request from {client_name}",
    "booking_status": "Your counselling session is {status}",
    "admin_account": "Your BSPCP admin account",
    "generic": "{subject}",
}


class UnknownTemplate(KeyError):
    pass


def render_email(template_id: str, data: dict) -> tuple[str, str]:
    """Return (subject, html) for a template id."""
    if template_id not in SUBJECTS:
        raise UnknownTemplate(template_id)
    subject = SUBJECTS[template_id].format(**data)
    html = _env.get_template(f"{template_id}.html").render({**data, "subject": subject})
    return subject, html


async def send_email(settings: Settings, to: str, subject: str, html: str) -> None:
    """Send an HTML email via SMTP."""
    message = EmailMessage()
    message["From"] = settings.smtp_from
    message["To"] = to
    message["Subject"] = subject
    message.set_content("This message requires an HTML-capable email client.")
    message.add_alternative(html, subtype="html")

    await aiosmtplib.send(
        message,
        hostname=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        start_tls=settings.smtp_start_tls,
    )


async def send_templated_email(settings: Settings, recipient: str, template_id: str, data: dict) -> bool:
    """Render and deliver ``template_id`` to ``recipient``. Never raises on transport errors."""
    subject, html = render_email(template_id, data)
    try:
        await send_email(settings, recipient, subject, html)
    except (aiosmtplib.SMTPException, OSError) as exc:
        logger.error("Failed to send %s email to %s: %s", template_id, recipient, exc)
        return False
    logger.info("Sent %s email to %s", template_id, recipient)
    return True


def frontend_link(settings: Settings, path: str, token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/{path.lstrip('/')}?token={token}"
