# Overview: Outgoing email for store notifications (SMTP).

from __future__ import annotations

import smtplib
import ssl
from email.message import EmailMessage

from flask import current_app


class DependencyFailure(Exception):
    """An external collaborator (mail server) could not complete a request."""


def _get_from_email() -> str:
    """
    Decide FROM email:
    - Prefer SMTP_FROM
    - Fallback to SMTP_USER
    """
    from_email = current_app.config.get("SMTP_FROM") or current_app.config.get("SMTP_USER")
    if not from_email:
        raise DependencyFailure("No FROM email configured. Set SMTP_FROM or SMTP_USER.")
    return from_email


def _build_message(to_email: str, subject: str, body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = _get_from_email()
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)
    return msg


def build_frontend_link(link: str | None) -> str | None:
    if not link:
        return None
    frontend = (current_app.config.get("FRONTEND_URL") or "").split(",")[0].strip()
    return f"{frontend.rstrip('/')}{link}"


def send_email(to_email: str, subject: str, body: str) -> None:
    """
    Deliver one email.

    If MAIL_SENDER is configured (a callable taking to_email, subject, body)
    it is used instead of SMTP. Any failure surfaces as DependencyFailure.
    """
    sender = current_app.config.get("MAIL_SENDER")
    if sender is not None:
        try:
            sender(to_email, subject, body)
        except Exception as exc:
            raise DependencyFailure(f"mail sender failed: {exc}") from exc
        return

    host = current_app.config.get("SMTP_HOST")
    port = int(current_app.config.get("SMTP_PORT", 587))
    user = current_app.config.get("SMTP_USER")
    password = current_app.config.get("SMTP_PASSWORD")
    use_tls = current_app.config.get("SMTP_TLS", True)

    if not host:
        raise DependencyFailure("SMTP_HOST is not configured")

    msg = _build_message(to_email, subject, body)

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if use_tls:
                server.starttls(context=ssl.create_default_context())
            if user and password:
                server.login(user, password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise DependencyFailure(f"SMTP delivery to {to_email} failed: {exc}") from exc


def send_store_notification(store, to_email: str, title: str, message: str, link: str | None) -> None:
    full_link = build_frontend_link(link)
    lines = [message]
    if full_link:
        lines.extend(["", full_link])
    lines.extend(["", f"-- {store.name}"])
    send_email(to_email, f"[{store.name}] {title}", "\n".join(lines))
