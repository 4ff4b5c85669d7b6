from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Protocol

from buildmart.core.config import Settings, get_settings


logger = logging.getLogger("buildmart.email")


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    body: str
    html: str | None = None
    attachments: list[EmailAttachment] = field(default_factory=list)


class Mailer(Protocol):
    def send(self, message: OutgoingEmail) -> None:
        ...


class LogMailer:
    """Writes outgoing mail to the log instead of delivering it."""

    def __init__(self) -> None:
        self.sent: list[OutgoingEmail] = []

    def send(self, message: OutgoingEmail) -> None:
        self.sent.append(message)
        logger.info(
            "email.logged",
            extra={"event_name": message.subject, "count": len(message.attachments)},
        )


class SmtpMailer:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _build(self, message: OutgoingEmail) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self._settings.email_sender
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.body)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        for attachment in message.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            email.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return email

    def send(self, message: OutgoingEmail) -> None:
        settings = self._settings
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as client:
            if settings.smtp_use_tls:
                client.starttls()
            if settings.smtp_username and settings.smtp_password:
                client.login(settings.smtp_username, settings.smtp_password)
            client.send_message(self._build(message))
        logger.info("email.sent", extra={"event_name": message.subject})


def resolve_recipient(recipient: str, settings: Settings | None = None) -> str:
    """Outside production every message goes to the configured dev address."""
    settings = settings or get_settings()
    if settings.is_production:
        return recipient
    return settings.email_dev_recipient


def build_mailer(settings: Settings | None = None) -> Mailer:
    settings = settings or get_settings()
    if settings.email_backend.lower() == "smtp":
        return SmtpMailer(settings)
    return LogMailer()
