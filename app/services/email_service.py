"""Outbound e-mail notifications.

``EmailNotifier`` is the seam SMTP delivery plugs into.  The default
``LoggingEmailNotifier`` renders the message and writes one log line
per send; it never logs the body, because reset links carry a live
token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from app.core.config import SETTINGS
from app.services.credential_service import mask_email

logger = logging.getLogger(__name__)

_FOOTER = "This is an automated message. Please do not reply to this email."


@dataclass(frozen=True, slots=True)
class EmailMessage:
    to: str
    subject: str
    text: str


@runtime_checkable
class EmailNotifier(Protocol):
    async def send_certificate_issued_email(
        self, to: str, certificate_id: str, certificate_name: str
    ) -> bool: ...

    async def send_password_reset_email(
        self, to: str, reset_token: str, username: str
    ) -> bool: ...


def render_certificate_issued(
    to: str, certificate_id: str, certificate_name: str, *, frontend_url: str
) -> EmailMessage:
    certificate_url = f"{frontend_url}/certificates/{certificate_id}"
    text = "\n".join(
        [
            "Certificate Issued Successfully!",
            "",
            "Congratulations! Your certificate has been issued successfully.",
            "",
            "Certificate Details:",
            f"Name: {certificate_name}",
            f"ID: {certificate_id}",
            "",
            f"View your certificate here: {certificate_url}",
            "",
            _FOOTER,
        ]
    )
    return EmailMessage(
        to=to, subject="Certificate Issued - PIC Certificates", text=text
    )


def render_password_reset(
    to: str, reset_token: str, username: str, *, frontend_url: str
) -> EmailMessage:
    reset_url = f"{frontend_url}/reset-password?token={reset_token}"
    text = "\n".join(
        [
            f"Hi {username},",
            "",
            "We received a request to reset your password.",
            f"Reset it here: {reset_url}",
            "",
            "This link expires soon. If you did not ask for a reset, "
            "you can ignore this message.",
            "",
            _FOOTER,
        ]
    )
    return EmailMessage(
        to=to, subject="Reset Your Password - PIC Certificates", text=text
    )


class LoggingEmailNotifier:
    def __init__(self, frontend_url: str | None = None) -> None:
        self._frontend_url = (frontend_url or SETTINGS.frontend_url).rstrip("/")

    async def _deliver(self, message: EmailMessage) -> bool:
        logger.info(
            "Email sent to=%s subject=%r",
            mask_email(message.to),
            message.subject,
        )
        return True

    async def send_certificate_issued_email(
        self, to: str, certificate_id: str, certificate_name: str
    ) -> bool:
        return await self._deliver(
            render_certificate_issued(
                to, certificate_id, certificate_name, frontend_url=self._frontend_url
            )
        )

    async def send_password_reset_email(
        self, to: str, reset_token: str, username: str
    ) -> bool:
        return await self._deliver(
            render_password_reset(
                to, reset_token, username, frontend_url=self._frontend_url
            )
        )


email_notifier: EmailNotifier = LoggingEmailNotifier()
