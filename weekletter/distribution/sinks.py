"""
Notification sinks.

A sink delivers one rendered notification for a subject and reports success.
Sinks may raise; the Distributor treats an exception like a False return.
"""

from __future__ import annotations

import os
import smtplib
from email.mime.text import MIMEText
from typing import Protocol

import requests

from weekletter.config import WEBHOOK_TIMEOUT_SECONDS
from weekletter.distribution.messages import Notification
from weekletter.observability.logging import get_logger

logger = get_logger(__name__)


class NotificationSink(Protocol):
    name: str

    def deliver(self, subject_id: str, notification: Notification) -> bool: ...


class LoggingSink:
    """Writes notifications to the log. Useful for dry runs."""

    def __init__(self, name: str = "log"):
        self.name = name

    def deliver(self, subject_id: str, notification: Notification) -> bool:
        logger.info("[%s] %s: %s", subject_id, notification.kind.value, notification.text)
        return True


class WebhookSink:
    """POSTs notifications as JSON, e.g. to a Slack or Telegram bridge."""

    def __init__(
        self,
        url: str,
        name: str = "webhook",
        timeout_seconds: float = WEBHOOK_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.url = url
        self.name = name
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def deliver(self, subject_id: str, notification: Notification) -> bool:
        response = self.session.post(
            self.url,
            json={
                "subject_id": subject_id,
                "kind": notification.kind.value,
                "text": notification.text,
                "created_at": notification.created_at.isoformat(),
            },
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            logger.warning(
                "Webhook %s rejected %s for %s: HTTP %d",
                self.name,
                notification.kind.value,
                subject_id,
                response.status_code,
            )
            return False
        return True


class EmailSink:
    """Sends notifications as plaintext email over SMTP"""

    def __init__(
        self,
        to_email: str,
        name: str = "email",
        smtp_host: str | None = None,
        smtp_port: int | None = None,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        from_email: str | None = None,
    ):
        """
        Environment variables (if params not provided):
        - SMTP_HOST, SMTP_PORT (default 587), SMTP_USER, SMTP_PASSWORD
        - SMTP_FROM_EMAIL (defaults to SMTP_USER)
        """
        self.to_email = to_email
        self.name = name
        self.smtp_host = smtp_host or os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.smtp_port = smtp_port or int(os.getenv("SMTP_PORT", "587"))
        self.smtp_user = smtp_user or os.getenv("SMTP_USER")
        self.smtp_password = smtp_password or os.getenv("SMTP_PASSWORD")
        self.from_email = from_email or os.getenv("SMTP_FROM_EMAIL", self.smtp_user)

        self.enabled = all([self.smtp_host, self.smtp_user, self.smtp_password, self.from_email])
        if not self.enabled:
            logger.warning("SMTP not fully configured for sink %s. Set SMTP_* variables.", name)

    def deliver(self, subject_id: str, notification: Notification) -> bool:
        if not self.enabled:
            logger.error("Email sink %s is not configured, dropping %s", self.name, notification.kind.value)
            return False

        msg = MIMEText(notification.text, "plain", "utf-8")
        msg["Subject"] = f"[weekletter] {subject_id}: {notification.kind.value.replace('_', ' ')}"
        msg["From"] = self.from_email
        msg["To"] = self.to_email

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            server.starttls()
            server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg)

        logger.info("Emailed %s for %s to %s", notification.kind.value, subject_id, self.to_email)
        return True
