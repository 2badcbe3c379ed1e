"""Email delivery for send_email actions."""

from __future__ import annotations

import smtplib
from abc import ABC, abstractmethod
from collections.abc import Mapping
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from string import Template
from typing import Any

from ..core.config import SMTPConfig
from ..core.logger import get_logger

logger = get_logger("services.email")


class EmailSender(ABC):
    """Sends emails on behalf of workflow actions."""

    @abstractmethod
    def send(
        self,
        to: str | list[str],
        subject: str,
        body: str,
        template: str | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send an email and return delivery details.

        ``timeout`` bounds the whole delivery in seconds when given.
        """


def normalise_recipients(to: str | list[str]) -> list[str]:
    """Accept a single address, a comma-separated string or a list."""
    if isinstance(to, str):
        recipients = [part.strip() for part in to.split(",")]
    else:
        recipients = [str(part).strip() for part in to]
    return [address for address in recipients if address]


class SMTPEmailSender(EmailSender):
    """Send mail through an SMTP server.

    Templates are ``string.Template`` texts keyed by name; ``$subject`` and
    ``$body`` are substituted when a template is requested.
    """

    def __init__(self, config: SMTPConfig, templates: Mapping[str, str] | None = None) -> None:
        self.config = config
        self.templates = dict(templates or {})

    def render(self, subject: str, body: str, template: str | None) -> str:
        if not template:
            return body
        if template not in self.templates:
            raise ValueError(f"Unknown email template: {template}")
        return Template(self.templates[template]).safe_substitute(subject=subject, body=body)

    def send(
        self,
        to: str | list[str],
        subject: str,
        body: str,
        template: str | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        recipients = normalise_recipients(to)
        if not recipients:
            raise ValueError("No email recipients given")

        msg = MIMEMultipart()
        msg["From"] = self.config.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(self.render(subject, body, template), "plain", "utf-8"))

        if timeout is not None:
            timeout = min(timeout, self.config.timeout)
        else:
            timeout = self.config.timeout

        with smtplib.SMTP(self.config.host, self.config.port, timeout=timeout) as server:
            if self.config.use_tls:
                server.starttls()
            if self.config.username and self.config.password:
                server.login(self.config.username, self.config.password)
            server.send_message(msg)

        logger.info("Sent email '%s' to %d recipient(s)", subject, len(recipients))
        return {"message_id": msg["Message-ID"], "to": recipients, "subject": subject}
