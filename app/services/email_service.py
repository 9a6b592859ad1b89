from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any

from app.core.config import settings


class EmailDeliveryError(Exception):
    pass


logger = logging.getLogger("uvicorn.error")


def _normalize_email(value: str | None) -> str:
    return str(value or "").strip().lower()


def _mock_send(*, email: str, subject: str) -> dict[str, Any]:
    logger.warning("[EMAIL MOCK] to=%s subject=%s", email, subject)
    return {
        "provider": "mock_email",
        "status": "accepted",
        "message": "Email provider response mocked",
        "sent": False,
        "mocked": True,
    }


def _send_smtp(*, email: str, subject: str, body: str) -> dict[str, Any]:
    host = str(settings.SMTP_HOST or "").strip()
    port = int(settings.SMTP_PORT or 0)
    username = str(settings.SMTP_USER or "").strip()
    password = str(settings.SMTP_PASSWORD or "").strip()
    sender = str(settings.EMAIL_FROM or "").strip()
    use_tls = bool(settings.SMTP_USE_TLS)
    use_ssl = bool(settings.SMTP_USE_SSL)

    if not host or not port or not sender:
        raise EmailDeliveryError("SMTP_HOST, SMTP_PORT and EMAIL_FROM must be configured")
    if use_tls and use_ssl:
        raise EmailDeliveryError("SMTP_USE_TLS and SMTP_USE_SSL cannot both be enabled")

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        if use_ssl:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=15)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=15)
        with smtp as client:
            client.ehlo()
            if use_tls:
                client.starttls()
                client.ehlo()
            if username:
                client.login(username, password)
            client.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(f"Email delivery failed: {exc}") from exc

    return {
        "provider": "smtp",
        "status": "accepted",
        "message": "Email sent",
        "sent": True,
    }


def send_email(*, email: str, subject: str, message: str) -> dict[str, Any]:
    normalized_email = _normalize_email(email)
    if not normalized_email or "@" not in normalized_email:
        raise EmailDeliveryError("Invalid email address")

    provider = str(settings.EMAIL_PROVIDER or "dummy").strip().lower()
    if provider in {"", "dummy", "mock", "console"}:
        return _mock_send(email=normalized_email, subject=subject)
    if provider == "smtp":
        return _send_smtp(email=normalized_email, subject=subject, body=message)
    raise EmailDeliveryError(f"Unsupported email provider: {provider}")
