"""
Mail transports.

    smtp    — real delivery through smtplib (blocking, run in the thread pool)
    console — logs the envelope and drops the message (development)
    memory  — records messages for assertions (tests)

A transport's send() raises on failure; the Notifier decides what that means.
"""
import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import List, Optional

from services.async_executor import run_blocking

logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass
class MailMessage:
    to: str
    subject: str
    html: str
    sender: str = ""
    text: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)

    def to_email(self) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = self.to
        msg["Subject"] = self.subject
        msg.set_content(self.text or "Deze e-mail bevat HTML-inhoud.")
        msg.add_alternative(self.html, subtype="html")
        for att in self.attachments:
            maintype, _, subtype = att.mime_type.partition("/")
            msg.add_attachment(att.content, maintype=maintype, subtype=subtype, filename=att.filename)
        return msg


class MailTransportError(Exception):
    pass


class SmtpTransport:
    name = "smtp"

    def __init__(self, host: str, port: int, user: str = "", password: str = "",
                 starttls: bool = True, timeout: float = 30.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def _send_sync(self, message: MailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(message.to_email())

    async def send(self, message: MailMessage) -> None:
        try:
            await run_blocking(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise MailTransportError(f"SMTP delivery to {message.to} failed: {e}") from e


class ConsoleTransport:
    name = "console"

    async def send(self, message: MailMessage) -> None:
        names = ", ".join(a.filename for a in message.attachments) or "-"
        logger.info(f"[mail:console] to={message.to} subject={message.subject!r} attachments={names}")


class MemoryTransport:
    """Records messages in memory for test assertions."""
    name = "memory"

    def __init__(self):
        self.sent: list[MailMessage] = []
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Email delivery failed"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    async def send(self, message: MailMessage) -> None:
        if not self.should_succeed:
            raise MailTransportError(self.failure_reason)
        self.sent.append(message)

    def subjects(self) -> list[str]:
        return [m.subject for m in self.sent]

    def to(self, recipient: str) -> list[MailMessage]:
        return [m for m in self.sent if m.to == recipient]

    def reset(self):
        self.sent.clear()
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"


def build_transport(settings):
    backend = (settings.mail_backend or "console").strip().lower()
    if backend == "smtp":
        return SmtpTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            timeout=settings.smtp_timeout_seconds,
        )
    if backend == "memory":
        return MemoryTransport()
    if backend != "console":
        logger.warning(f"Unknown MAIL_BACKEND '{settings.mail_backend}', using console")
    return ConsoleTransport()
