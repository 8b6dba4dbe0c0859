"""
Outbound account email (verification, password reset) over SMTP.
Sending is best effort: without SMTP_HOST nothing is sent, and failures are
logged rather than surfaced to the caller.
"""
import smtplib
from email.message import EmailMessage

import structlog

from ..config import settings


log = structlog.get_logger()


def mail_enabled() -> bool:
    return bool(settings.smtp_host and settings.mail_from)


def send_email(to: str, subject: str, body: str) -> bool:
    if not mail_enabled():
        log.info("email_skipped_no_smtp", to=to, subject=subject)
        return False
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to
    msg.set_content(body)
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        log.warning("email_send_failed", to=to, subject=subject, error=str(e))
        return False
    return True


def send_verification_email(to: str, token: str) -> bool:
    link = f"{settings.public_base_url}/verify-email?token={token}"
    return send_email(to, f"Verify your {settings.app_name} email", f"Confirm your email address: {link}")


def send_password_reset_email(to: str, token: str) -> bool:
    link = f"{settings.public_base_url}/reset-password?token={token}"
    return send_email(
        to,
        f"Reset your {settings.app_name} password",
        f"Use this link to choose a new password (valid for one hour): {link}",
    )
