"""
auth/notifications.py -- Outbound email for the password reset flow.

NotificationService renders the two messages the subsystem sends and hands
them to a NotificationSender:

  SMTPNotificationSender    -- stdlib smtplib; STARTTLS on the submission
                               port or implicit TLS when smtp_use_tls is off.
  LoggingNotificationSender -- development fallback when no SMTP host is
                               configured. Logs a redacted recipient and the
                               subject only; the body (which holds the reset
                               link) is never logged.

Senders raise on failure. Sends are always submitted to the BackgroundRunner,
which logs the exception; a failed email never changes an HTTP response.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("authguard.notifications")


class NotificationSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


def redact_email(email: str) -> str:
    """Keep the first two characters of the local part: 'alice@x.io' -> 'al***@x.io'."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SMTPNotificationSender:
    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        mail_from: str = "no-reply@authguard.local",
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.mail_from = mail_from
        self.timeout = timeout

    def _message(self, to: str, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body, "html")
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = to
        return msg

    def send(self, to: str, subject: str, body: str) -> None:
        msg = self._message(to, subject, body)
        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.mail_from, [to], msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.mail_from, [to], msg.as_string())


class LoggingNotificationSender:
    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Email (not sent, no SMTP host) to=%s subject=%r", redact_email(to), subject)


def build_sender(settings: Settings) -> NotificationSender:
    if not settings.smtp_host:
        return LoggingNotificationSender()
    return SMTPNotificationSender(
        settings.smtp_host,
        settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        mail_from=settings.mail_from,
    )


_RESET_BODY = """\
<p>Hello,</p>
<p>You requested a password reset. Click the link below to set a new password:</p>
<p><a href="{link}">Reset Password</a></p>
<p>This link is valid for {minutes} minutes.</p>
<p>If you did not request this, please ignore this email.</p>
"""

_CHANGED_BODY = """\
<p>Hello,</p>
<p>This is a confirmation that the password for your account has just been changed.</p>
<p>If you did not make this change, please contact our support team immediately.</p>
"""


class NotificationService:
    def __init__(self, sender: NotificationSender, reset_token_ttl_seconds: int = 900) -> None:
        self.sender = sender
        self.reset_minutes = max(reset_token_ttl_seconds // 60, 1)

    def _deliver(self, to: str, subject: str, body: str) -> None:
        try:
            self.sender.send(to, subject, body)
        except Exception:
            logger.error("Failed to send %r email to %s", subject, redact_email(to))
            raise
        logger.info("Sent %r email to %s", subject, redact_email(to))

    def send_password_reset_email(self, email: str, reset_link: str) -> None:
        body = _RESET_BODY.format(link=reset_link, minutes=self.reset_minutes)
        self._deliver(email, "Reset Your Password", body)

    def send_password_changed_email(self, email: str) -> None:
        self._deliver(email, "Your Password Has Been Changed", _CHANGED_BODY)
