import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from config import get_settings

logger = logging.getLogger(__name__)

INVITE_SUBJECT = "You're invited to join a group savings plan"


def email_enabled() -> bool:
    return bool(get_settings().mail_host)


def send_email(
    to_email: str, subject: str, text_body: str, html_body: Optional[str] = None
) -> bool:
    """Send one message over SMTP. Returns False instead of raising on failure."""
    settings = get_settings()
    if not email_enabled():
        logger.info("Email not sent (mail_host not configured): to=%s", to_email)
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to_email
    msg.set_content(text_body or "")
    if html_body:
        msg.add_alternative(html_body, subtype="html")

    try:
        if settings.mail_use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(
                settings.mail_host,
                settings.mail_port,
                context=context,
                timeout=settings.mail_timeout_seconds,
            ) as smtp:
                if settings.mail_username:
                    smtp.login(settings.mail_username, settings.mail_password or "")
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(
                settings.mail_host,
                settings.mail_port,
                timeout=settings.mail_timeout_seconds,
            ) as smtp:
                smtp.ehlo()
                if settings.mail_use_tls:
                    smtp.starttls(context=ssl.create_default_context())
                    smtp.ehlo()
                if settings.mail_username:
                    smtp.login(settings.mail_username, settings.mail_password or "")
                smtp.send_message(msg)
    except (smtplib.SMTPException, OSError):
        logger.exception("Email send failed: to=%s subject=%s", to_email, subject)
        return False
    return True


def invite_url(invite_id: str) -> str:
    return f"{get_settings().app_url.rstrip('/')}/invites/{invite_id}"


def send_invite_email(to_email: str, url: str) -> bool:
    text_body = f"You have been invited to join a group! Click here to accept: {url}"
    html_body = (
        f'<p>You have been invited to join a group! Click <a href="{url}">here</a>'
        " to accept.</p>"
    )
    return send_email(to_email, INVITE_SUBJECT, text_body, html_body)
