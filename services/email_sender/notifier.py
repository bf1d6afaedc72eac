from __future__ import annotations

import logging
import uuid
from typing import Callable, List, Mapping, Optional, Protocol

from services.email_sender.smtp_sender import SmtpSettings, send_email

logger = logging.getLogger(__name__)

Transport = Callable[[str, str], None]


class FreeTextEmailApi(Protocol):
    def generate_free_text_email(self, recipient_ids: List[str], subject: str, body: str) -> List[str]: ...


def parse_recipient_guid(raw: str) -> str:
    """Return the normalized GUID or raise ValueError."""
    value = (raw or "").strip()
    if not value:
        raise ValueError("email recipient GUID is empty")
    try:
        return str(uuid.UUID(value))
    except ValueError as e:
        raise ValueError(f"invalid email recipient GUID format: {value!r}") from e


class EmailNotifier:
    """
    Outcome email side-channel.

    send() never raises: a transport failure is logged and reported as False so
    a notification type is never failed by its email.
    """

    def __init__(self, transport: Optional[Transport] = None, *, label: str = "disabled"):
        self._transport = transport
        self.label = label
        self.sent: List[str] = []

    @property
    def enabled(self) -> bool:
        return self._transport is not None

    def send(self, subject: str, body: str) -> bool:
        if self._transport is None:
            logger.debug("Email disabled, not sending: %s", subject)
            return False
        try:
            self._transport(subject, body)
        except Exception as e:
            logger.error("Failed to send email %r via %s: %s", subject, self.label, e)
            return False
        self.sent.append(subject)
        logger.info("Email sent via %s: %s", self.label, subject)
        return True


def linnworks_transport(client: FreeTextEmailApi, recipient_guid: str) -> Transport:
    def _send(subject: str, body: str) -> None:
        failed = client.generate_free_text_email([recipient_guid], subject, body)
        if failed:
            raise RuntimeError(f"free text email not delivered to: {', '.join(failed)}")

    return _send


def smtp_transport(settings: SmtpSettings, to_list: List[str]) -> Transport:
    def _send(subject: str, body: str) -> None:
        send_email(subject, body, to_list, settings)

    return _send


def build_notifier(
    *,
    enabled: bool,
    backend: str,
    client: Optional[FreeTextEmailApi],
    recipient_guid: str = "",
    email_to: Optional[List[str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> EmailNotifier:
    """
    Choose the email backend.

    A bad recipient or incomplete SMTP settings disable email with an error log;
    they never abort the run.
    """
    if not enabled:
        return EmailNotifier()

    if backend == "smtp":
        try:
            settings = SmtpSettings.from_env(env)
        except RuntimeError as e:
            logger.error("Email disabled: %s", e)
            return EmailNotifier()
        if not email_to:
            logger.error("Email disabled: CHAN_EMAIL_TO is empty")
            return EmailNotifier()
        return EmailNotifier(smtp_transport(settings, list(email_to)), label="smtp")

    try:
        guid = parse_recipient_guid(recipient_guid)
    except ValueError as e:
        logger.error("Email disabled: %s", e)
        return EmailNotifier()
    if client is None:
        logger.error("Email disabled: no Linnworks client for free text email")
        return EmailNotifier()
    return EmailNotifier(linnworks_transport(client, guid), label="linnworks")
