"""
Email service for sending invoices (SMTP, jinja2 templates).
"""

from __future__ import annotations

import os
import smtplib
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.config import Settings, get_settings
from app.core.exceptions import ServiceUnavailableError
from app.core.logging import get_logger

logger = get_logger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "..", "templates", "email")


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    subtype: str = "pdf"


@dataclass
class EmailMessage:
    to: list[str]
    subject: str
    body: str
    html_body: Optional[str] = None
    cc: list[str] = field(default_factory=list)
    attachments: list[EmailAttachment] = field(default_factory=list)


class EmailService:
    """Service for sending emails"""

    def __init__(self, settings: Optional[Settings] = None):
        s = settings or get_settings()
        self.settings = s
        self.smtp_host = s.SMTP_HOST
        self.smtp_port = s.SMTP_PORT
        self.smtp_user = s.SMTP_USER
        self.smtp_password = s.SMTP_PASSWORD
        self.use_tls = s.SMTP_USE_TLS
        self.from_email = str(s.EMAILS_FROM_EMAIL) if s.EMAILS_FROM_EMAIL else None
        self.from_name = s.EMAILS_FROM_NAME
        self.timeout = s.HTTP_TIMEOUT_SECONDS

        self.jinja_env = Environment(
            loader=FileSystemLoader(TEMPLATE_DIR),
            autoescape=select_autoescape(["html"]),
        )

    @property
    def configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def render(self, template: str, **context: Any) -> str:
        return self.jinja_env.get_template(template).render(**context)

    def _build(self, message: EmailMessage, message_id: str) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["From"] = formataddr((self.from_name, self.from_email or ""))
        msg["To"] = ", ".join(message.to)
        if message.cc:
            msg["Cc"] = ", ".join(message.cc)
        msg["Subject"] = message.subject
        msg["Message-ID"] = message_id

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(message.body, "plain", "utf-8"))
        if message.html_body:
            body.attach(MIMEText(message.html_body, "html", "utf-8"))
        msg.attach(body)

        for att in message.attachments:
            part = MIMEApplication(att.content, _subtype=att.subtype)
            part.add_header("Content-Disposition", "attachment", filename=att.filename)
            msg.attach(part)
        return msg

    def send_email(self, message: EmailMessage) -> str:
        """Send via SMTP; returns the Message-ID. Any failure raises ServiceUnavailableError."""
        if not self.configured:
            raise ServiceUnavailableError("Email delivery is not configured", code="email_not_configured")
        if not message.to:
            raise ServiceUnavailableError("No email recipients", code="email_no_recipients")

        message_id = make_msgid(domain=(self.from_email or "localhost").split("@")[-1])
        msg = self._build(message, message_id)
        recipients = list(message.to) + list(message.cc)
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email delivery failed", to=message.to, error=str(e))
            raise ServiceUnavailableError("Email delivery failed", code="email_failed", extra={"reason": str(e)})

        logger.info("Email sent", to=message.to, cc=message.cc, message_id=message_id)
        return message_id


__all__ = ["EmailAttachment", "EmailMessage", "EmailService"]
