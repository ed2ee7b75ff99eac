import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from flask import current_app


def _build_message(sender: str, to_email: str, subject: str, body: str, html: str = None) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = formataddr((current_app.config.get("SMTP_FROM_NAME") or "", sender))
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def send_email(to_email: str, subject: str, body: str, html: str = None):
    """Send one message over SMTP. Returns (ok, error) and never raises on transport failures."""
    cfg = current_app.config
    host = cfg.get("SMTP_HOST")
    username = cfg.get("SMTP_USERNAME")
    sender = cfg.get("SMTP_FROM_EMAIL") or username

    if not host or not sender:
        return False, "Email not configured"
    if not to_email:
        return False, "No recipient"

    msg = _build_message(sender, to_email, subject, body, html)
    try:
        with smtplib.SMTP(host, cfg.get("SMTP_PORT", 587), timeout=10) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            if username and cfg.get("SMTP_PASSWORD"):
                server.login(username, cfg.get("SMTP_PASSWORD"))
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)
    return True, None
