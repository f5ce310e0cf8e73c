"""
Outbound notification transport.

The campaign driver only knows the ``Notifier`` protocol; the SMTP
implementation is built from environment variables by ``get_notifier`` and
handed in by the router, so tests substitute their own notifier.

Environment variables
---------------------
SMTP_HOST             Mail server host (required to send).
SMTP_PORT             Port (default: 587).
SMTP_USERNAME         Login user; login is skipped when unset.
SMTP_PASSWORD         Login password.
SMTP_SENDER           From address (default: SMTP_USERNAME).
SMTP_ENCRYPTION       "starttls" (default), "ssl", or "none".
SMTP_TIMEOUT_SECONDS  Socket timeout per connection (default: 10).
"""

import logging
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol

from dotenv import load_dotenv

from app.services.errors import ConfigurationError, TransportFailure

load_dotenv()

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, to: str, cc: Optional[str], subject: str, html_body: str) -> None:
        """Deliver one message or raise TransportFailure."""
        ...


@dataclass
class SmtpConfig:
    host: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    sender: Optional[str] = None
    encryption: str = "starttls"
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "SmtpConfig":
        host = os.getenv("SMTP_HOST", "").strip()
        if not host:
            raise ConfigurationError("SMTP_HOST is not configured")
        username = os.getenv("SMTP_USERNAME") or None
        return cls(
            host=host,
            port=int(os.getenv("SMTP_PORT", "587")),
            username=username,
            password=os.getenv("SMTP_PASSWORD") or None,
            sender=os.getenv("SMTP_SENDER") or username,
            encryption=os.getenv("SMTP_ENCRYPTION", "starttls").strip().lower(),
            timeout=float(os.getenv("SMTP_TIMEOUT_SECONDS", "10")),
        )


class SmtpNotifier:
    """Sends each notification over its own SMTP connection."""

    def __init__(self, config: SmtpConfig):
        self.config = config

    def _build_message(self, to: str, cc: Optional[str], subject: str, html_body: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.config.sender or "no-reply@localhost"
        message["To"] = to
        if cc:
            message["Cc"] = cc
        message.set_content("Open this message in an HTML-capable mail client to see the verification link.")
        message.add_alternative(html_body, subtype="html")
        return message

    def _connect(self) -> smtplib.SMTP:
        config = self.config
        if config.encryption == "ssl":
            return smtplib.SMTP_SSL(config.host, config.port, timeout=config.timeout)
        return smtplib.SMTP(config.host, config.port, timeout=config.timeout)

    def send(self, to: str, cc: Optional[str], subject: str, html_body: str) -> None:
        message = self._build_message(to, cc, subject, html_body)
        try:
            with self._connect() as server:
                if self.config.encryption == "starttls":
                    server.starttls()
                if self.config.username and self.config.password:
                    server.login(self.config.username, self.config.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportFailure(f"SMTP delivery to {to} failed: {exc}")


def get_notifier() -> Notifier:
    """FastAPI dependency: the SMTP notifier configured from the environment."""
    return SmtpNotifier(SmtpConfig.from_env())
