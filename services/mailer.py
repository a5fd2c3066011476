"""Outbound mail collaborator.

The core only hands a `MailMessage` to a `Notifier`; delivery happens after
the response is sent (FastAPI background task) and a failed delivery is
logged, never raised back to the request.
"""
import logging
import os
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Optional

import aiosmtplib
from fastapi import BackgroundTasks, Depends

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "no-reply@grievance-portal.local")

SUBJECTS = {
    "account_created": "Your grievance portal account",
    "account_updated": "Your account details were updated",
    "account_deleted": "Your account was removed",
    "password_changed": "Your password was changed",
    "password_reset": "Reset your password",
    "password_reset_by_admin": "Your password was reset by an administrator",
    "complaint_submitted": "Complaint {complaint_id} received",
    "complaint_status_updated": "Complaint {complaint_id} is now {status}",
    "complaint_resolved": "Complaint {complaint_id} has been resolved",
}


@dataclass(frozen=True)
class MailMessage:
    template: str
    recipient: str
    data: dict = field(default_factory=dict)

    def subject(self) -> str:
        try:
            return SUBJECTS[self.template].format(**self.data)
        except (KeyError, IndexError):
            return SUBJECTS.get(self.template, "Grievance portal notification")

    def body(self) -> str:
        lines = [f"Hello {self.data.get('name', '')},".replace(" ,", ","), ""]
        for k, v in self.data.items():
            if k != "name":
                lines.append(f"{k.replace('_', ' ').capitalize()}: {v}")
        return "\n".join(lines)


class Mailer:
    async def send(self, message: MailMessage) -> None:
        raise NotImplementedError


class LogMailer(Mailer):
    """Used when no SMTP relay is configured."""

    async def send(self, message: MailMessage) -> None:
        logger.info("mail '%s' to %s not sent: SMTP is not configured", message.template, message.recipient)


class SmtpMailer(Mailer):
    def __init__(self, host: str, port: int, username: str, password: str, sender: str):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    async def send(self, message: MailMessage) -> None:
        em = EmailMessage()
        em["From"] = self.sender
        em["To"] = message.recipient
        em["Subject"] = message.subject()
        em.set_content(message.body())
        await aiosmtplib.send(
            em,
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.port == 587,
            timeout=15,
        )


async def deliver(mailer: Mailer, message: MailMessage) -> None:
    try:
        await mailer.send(message)
    except Exception as e:  # delivery never fails the request that queued it
        logger.error("mail '%s' to %s failed: %s", message.template, message.recipient, e)
    else:
        if not isinstance(mailer, LogMailer):
            logger.info("mail '%s' sent to %s", message.template, message.recipient)


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        if SMTP_HOST:
            _mailer = SmtpMailer(SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, EMAIL_FROM)
        else:
            _mailer = LogMailer()
    return _mailer


class Notifier:
    def __init__(self, background_tasks: BackgroundTasks, mailer: Mailer):
        self.background_tasks = background_tasks
        self.mailer = mailer

    def send(self, template: str, recipient: str, **data) -> None:
        self.background_tasks.add_task(deliver, self.mailer, MailMessage(template, recipient, data))


def get_notifier(background_tasks: BackgroundTasks, mailer: Mailer = Depends(get_mailer)) -> Notifier:
    return Notifier(background_tasks, mailer)
