from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

from .errors import DeliveryUnavailable

logger = logging.getLogger(__name__)


def _render_body(code: str) -> str:
    return f"Your code is: {code}\nThis code will expire in 10 minutes. Do not share it."


class EmailSender:
    def send_code(self, to_email: str, code: str, subject: str) -> None:
        raise NotImplementedError


class ConsoleEmailSender(EmailSender):
    def send_code(self, to_email: str, code: str, subject: str) -> None:
        logger.info("[Email] To=%s Subject=%s\n%s", to_email, subject, _render_body(code))


class InMemoryEmailSender(EmailSender):
    def __init__(self, outbox: list[dict]) -> None:
        self._outbox = outbox

    def send_code(self, to_email: str, code: str, subject: str) -> None:
        self._outbox.append(
            {
                "to": to_email,
                "code": code,
                "subject": subject,
            }
        )


class DisabledEmailSender(EmailSender):
    def send_code(self, to_email: str, code: str, subject: str) -> None:
        logger.error("Email transport not configured; dropping %r to %s", subject, to_email)
        raise DeliveryUnavailable("email transport not configured")


class SmtpEmailSender(EmailSender):
    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_addr: str,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from = from_addr
        self._timeout = timeout

    def send_code(self, to_email: str, code: str, subject: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._from
        msg["To"] = to_email
        msg.set_content(_render_body(code))

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.starttls()
                if self._username:
                    server.login(self._username, self._password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("sendmail failed to=%s subject=%r", to_email, subject)
            raise DeliveryUnavailable() from exc


def get_email_sender() -> EmailSender:
    backend = current_app.config.get("EMAIL_BACKEND", "console")
    if backend == "memory":
        outbox = current_app.extensions.setdefault("email_outbox", [])
        return InMemoryEmailSender(outbox)
    if backend == "disabled":
        return DisabledEmailSender()
    if backend == "smtp":
        host = current_app.config.get("SMTP_HOST", "")
        port = int(current_app.config.get("SMTP_PORT", 587))
        username = current_app.config.get("SMTP_USERNAME", "")
        password = current_app.config.get("SMTP_PASSWORD", "")
        from_addr = current_app.config.get("SMTP_FROM") or username
        timeout = float(current_app.config.get("EMAIL_TIMEOUT_SECONDS", 10))

        if not host or not username or not password:
            logger.error("SMTP configuration missing. Set SMTP_HOST/SMTP_USERNAME/SMTP_PASSWORD.")
            return DisabledEmailSender()

        return SmtpEmailSender(host, port, username, password, from_addr, timeout)
    return ConsoleEmailSender()
