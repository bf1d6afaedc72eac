from __future__ import annotations

import os
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Iterable, List, Mapping, Optional


def _env(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


def parse_recipients(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for v in values:
        for item in (v or "").split(","):
            item = item.strip()
            if item and item not in out:
                out.append(item)
    return out


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    user: str
    password: str
    sender: str

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SmtpSettings":
        """
        Read SMTP settings.
        Required env:
          - SMTP_HOST
          - SMTP_PORT (default 587)
          - SMTP_USER
          - SMTP_PASS
          - SMTP_FROM (fallback: SMTP_USER)
        """
        env = os.environ if env is None else env
        port_raw = _env(env, "SMTP_PORT", "587")
        try:
            port = int(port_raw)
        except ValueError as e:
            raise RuntimeError(f"SMTP_PORT is invalid: {port_raw!r}") from e

        host = _env(env, "SMTP_HOST")
        user = _env(env, "SMTP_USER")
        password = _env(env, "SMTP_PASS")
        sender = _env(env, "SMTP_FROM") or user

        if not host:
            raise RuntimeError("SMTP_HOST is not set")
        if not user:
            raise RuntimeError("SMTP_USER is not set")
        if not password:
            raise RuntimeError("SMTP_PASS is not set")
        return cls(host=host, port=port, user=user, password=password, sender=sender)


def send_email(subject: str, body_text: str, to_list: List[str], settings: SmtpSettings) -> None:
    """Send a UTF-8 plain text email. Raises RuntimeError on any failure."""
    recipients = parse_recipients(to_list or [])
    if not recipients:
        raise RuntimeError("to_list is empty")

    msg = MIMEText(body_text or "", _subtype="plain", _charset="utf-8")
    msg["From"] = settings.sender
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = subject

    try:
        with smtplib.SMTP(settings.host, settings.port, timeout=30) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            server.login(settings.user, settings.password)
            server.sendmail(settings.sender, recipients, msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        raise RuntimeError(f"SMTP send failed: {e}") from e
