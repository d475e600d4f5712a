from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from functools import lru_cache
from pathlib import Path
from typing import Optional, Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import Settings, get_settings


logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates" / "emails"


@dataclass(frozen=True)
class Notification:
    to: str
    subject: str
    body: str


class Notifier(Protocol):
    def send(self, notification: Notification) -> bool: ...


def format_money(cents: int) -> str:
    return f"₹{cents / 100:,.2f}"


@lru_cache(maxsize=1)
def _environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(["html"]),
    )
    env.filters["money"] = format_money
    return env


def render_email(template_name: str, **context: object) -> str:
    return _environment().get_template(template_name).render(**context)


class SmtpNotifier:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _message(self, notification: Notification) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.settings.mail_from
        msg["To"] = notification.to
        msg["Subject"] = notification.subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(notification.body, subtype="html")
        return msg

    def send(self, notification: Notification) -> bool:
        msg = self._message(notification)
        try:
            with smtplib.SMTP(
                self.settings.smtp_host, self.settings.smtp_port, timeout=30
            ) as smtp:
                if self.settings.smtp_starttls:
                    smtp.starttls()
                if self.settings.smtp_username:
                    smtp.login(self.settings.smtp_username, self.settings.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception(f"notify: to={notification.to} delivery failed")
            return False
        logger.info(f"notify: to={notification.to} subject={notification.subject!r}")
        return True


class LogNotifier:
    """Used when no SMTP host is configured: records the mail and reports success."""

    def send(self, notification: Notification) -> bool:
        logger.info(
            f"notify(log-only): to={notification.to} subject={notification.subject!r} "
            f"bytes={len(notification.body)}"
        )
        return True


def build_notifier(settings: Optional[Settings] = None) -> Notifier:
    settings = settings or get_settings()
    if settings.smtp_host:
        return SmtpNotifier(settings)
    return LogNotifier()
