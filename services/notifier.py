"""
Outbound mail. The auth flows only need send(to, subject, text, html) -> delivery id.

Delivery failures are the caller's to log; they never fail an auth operation,
since the account state is valid and a resend can be requested.
"""
from __future__ import annotations

import logging
import smtplib
import uuid
from html import escape
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

logger = logging.getLogger(__name__)


class Notifier:
    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> str:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Development backend: writes the message to the log instead of sending it."""

    def send(self, to, subject, text, html=None):
        delivery_id = str(uuid.uuid4())
        logger.info("Mail %s to %s: %s\n%s", delivery_id, to, subject, text)
        return delivery_id


class SmtpNotifier(Notifier):
    def __init__(self, host: str, port: int = 587, username: Optional[str] = None,
                 password: Optional[str] = None, use_tls: bool = True,
                 sender: str = "no-reply@localhost", timeout: int = 10):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def send(self, to, subject, text, html=None):
        delivery_id = f"<{uuid.uuid4()}@{self.host}>"
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg["Message-ID"] = delivery_id
        msg.attach(MIMEText(text, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("Mail %s sent to %s", delivery_id, to)
        return delivery_id


def notifier_from_config(config) -> Notifier:
    backend = (config.get("MAIL_BACKEND") or "log").lower()
    if backend == "smtp":
        return SmtpNotifier(
            host=config["SMTP_HOST"],
            port=int(config.get("SMTP_PORT", 587)),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            use_tls=bool(config.get("SMTP_USE_TLS", True)),
            sender=config.get("MAIL_FROM", "no-reply@localhost"),
        )
    return LogNotifier()


def verification_email(user, url: str) -> tuple:
    subject = "Verify your email address"
    text = (
        f"Hi {user.username},\n\n"
        f"Please confirm your email address by opening the link below:\n{url}\n\n"
        "The link expires in 24 hours."
    )
    html = (
        f"<p>Hi {escape(user.username)},</p>"
        f"<p>Please confirm your email address: <a href=\"{url}\">Verify email</a></p>"
        "<p>The link expires in 24 hours.</p>"
    )
    return subject, text, html


def password_reset_email(user, url: str) -> tuple:
    subject = "Reset your password"
    text = (
        f"Hi {user.username},\n\n"
        f"Someone requested a password reset for your account. Open this link to choose a new password:\n{url}\n\n"
        "The link expires in 1 hour. If you did not request it, ignore this email."
    )
    html = (
        f"<p>Hi {escape(user.username)},</p>"
        f"<p><a href=\"{url}\">Reset your password</a> (expires in 1 hour).</p>"
        "<p>If you did not request it, ignore this email.</p>"
    )
    return subject, text, html


def security_notice_email(user, event: str) -> tuple:
    subject = "Security notice for your account"
    text = f"Hi {user.username},\n\n{event}\n\nIf this was not you, reset your password immediately."
    html = f"<p>Hi {escape(user.username)},</p><p>{escape(event)}</p><p>If this was not you, reset your password immediately.</p>"
    return subject, text, html
