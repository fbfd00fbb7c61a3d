"""SMTP email transport.

Sends one message with a single PDF attachment. smtplib is blocking, so
each send runs in a worker thread. Any SMTP or socket failure surfaces
as EmailDeliveryError carrying a readable detail; the caller records it.
"""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.message import EmailMessage
from typing import TYPE_CHECKING, Protocol

import structlog

from lexbill.core.exceptions import EmailDeliveryError

if TYPE_CHECKING:
    from lexbill.core.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


class EmailTransport(Protocol):
    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: bytes,
        filename: str,
    ) -> None: ...


class SmtpEmailTransport:
    """Delivers messages through an SMTP server (SSL or STARTTLS)."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        sender: str,
        *,
        use_ssl: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._sender = sender or user
        self._use_ssl = use_ssl
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpEmailTransport | None:
        """Build a transport, or return None when SMTP is not configured."""
        if not settings.email_configured:
            return None
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.smtp_from,
            use_ssl=settings.smtp_use_ssl,
            timeout=settings.email_timeout_seconds,
        )

    def build_message(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: bytes,
        filename: str,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._sender
        msg["To"] = recipient
        msg.set_content(body)
        msg.add_attachment(attachment, maintype="application", subtype="pdf", filename=filename)
        return msg

    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: bytes,
        filename: str,
    ) -> None:
        msg = self.build_message(recipient, subject, body, attachment, filename)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("email_delivery_failed", recipient=recipient, error=str(exc))
            raise EmailDeliveryError(
                f"Email delivery failed: {exc}",
                details={"recipient": recipient, "error_type": type(exc).__name__},
            ) from exc
        logger.info("email_sent", recipient=recipient, subject=subject)

    def _send_sync(self, msg: EmailMessage) -> None:
        server: smtplib.SMTP
        if self._use_ssl:
            server = smtplib.SMTP_SSL(
                self._host,
                self._port,
                timeout=self._timeout,
                context=ssl.create_default_context(),
            )
        else:
            server = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        with server:
            if not self._use_ssl:
                server.starttls(context=ssl.create_default_context())
            if self._user and self._password:
                server.login(self._user, self._password)
            server.send_message(msg)
