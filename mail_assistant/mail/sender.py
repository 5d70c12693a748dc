"""Outbound mail capability and a minimal SMTP adapter."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Protocol, runtime_checkable

from mail_assistant.config import MailboxSettings, SmtpSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class MailSender(Protocol):
    """Anything that can deliver a plain-text message.

    ``to_address=None`` means the configured administrator.
    """

    async def send(self, subject: str, body: str, to_address: str | None = None) -> None: ...


class SmtpMailSender:
    """Sends plain-text mail through one SMTP relay using the mailbox credentials."""

    def __init__(
        self,
        smtp: SmtpSettings,
        mailbox: MailboxSettings,
        admin_email: str,
    ) -> None:
        self._smtp = smtp
        self._user = mailbox.user
        self._password = mailbox.password
        self._admin_email = admin_email

    async def send(self, subject: str, body: str, to_address: str | None = None) -> None:
        recipient = to_address or self._admin_email
        if not recipient:
            raise ValueError("No recipient given and ADMIN_EMAIL is not configured")
        msg = EmailMessage()
        msg["From"] = formataddr((self._smtp.from_name, self._user))
        msg["To"] = recipient
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.set_content(body)
        await asyncio.to_thread(self._deliver, msg)
        logger.info("Sent email to %s: %r", recipient, subject)

    def _deliver(self, msg: EmailMessage) -> None:
        smtp_cls = smtplib.SMTP_SSL if self._smtp.use_ssl else smtplib.SMTP
        with smtp_cls(self._smtp.host, self._smtp.port, timeout=30) as server:
            if not self._smtp.use_ssl:
                server.starttls()
            server.login(self._user, self._password)
            server.send_message(msg)
