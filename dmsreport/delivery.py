"""Outgoing mail, scratch cleanup and the optional Google Chat notice."""

import logging
import mimetypes
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import List, Sequence

import requests

from .config import Settings
from .errors import DeleteError, DeliveryError
from .window import ReportWindow

logger = logging.getLogger(__name__)

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
mimetypes.add_type(XLSX_TYPE, ".xlsx")
mimetypes.add_type("application/vnd.ms-excel", ".xls")

BODY_TEMPLATE = "รายงาน DMS ประจำช่วงเวลา {start} - {end}\n\n(Auto-generated email)"


# ─── Email ─────────────────────────────────────────────────────────────────────
def compose_message(settings: Settings, window: ReportWindow, source_name: str, attachment: Path) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = f"{source_name} {window.label}"
    msg["From"] = settings.mail_user
    msg["To"] = ", ".join(settings.recipients)
    msg.set_content(
        BODY_TEMPLATE.format(start=window.start.strftime("%H:%M"), end=window.end.strftime("%H:%M"))
    )

    ctype, _ = mimetypes.guess_type(attachment.name)
    maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
    with open(attachment, "rb") as f:
        msg.add_attachment(f.read(), maintype=maintype, subtype=subtype, filename=attachment.name)
    return msg


class SmtpMailer:
    def __init__(self, server: str, port: int, user: str, password: str, timeout: float = 60):
        self.server = server
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailer":
        return cls(settings.smtp_server, settings.smtp_port, settings.mail_user, settings.mail_pass)

    def send(self, message: EmailMessage) -> None:
        try:
            if self.port == 465:
                server = smtplib.SMTP_SSL(self.server, self.port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.server, self.port, timeout=self.timeout)
            with server:
                if self.port != 465:
                    server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                refused = server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"Email send failed: {e}") from e
        if refused:
            logger.warning(f"⚠️ Recipients refused: {', '.join(refused)}")
        logger.info(f"📧 Email sent to {message['To']}: {message['Subject']}")


# ─── Cleanup ───────────────────────────────────────────────────────────────────
def delete_file(path: Path) -> None:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return
    except OSError as e:
        raise DeleteError(f"Could not delete {path}: {e}") from e


def cleanup_scratch(directory: Path) -> List[str]:
    """Delete every regular file in ``directory``; returns the warnings."""
    directory = Path(directory)
    warnings: List[str] = []
    if not directory.is_dir():
        return warnings
    for entry in sorted(directory.iterdir()):
        if not entry.is_file():
            continue
        try:
            delete_file(entry)
            logger.info(f"🗑 Deleted {entry.name}")
        except DeleteError as e:
            logger.warning(f"⚠️ {e}")
            warnings.append(str(e))
    return warnings


# ─── Google Chat ───────────────────────────────────────────────────────────────
def notify_chat(webhook: str, title: str, lines: Sequence[str]) -> bool:
    if not webhook:
        logger.info("Google Chat webhook not set; skipping chat send.")
        return False
    payload = {"text": "\n".join([f"*{title}*", *lines])}
    try:
        with requests.Session() as s:
            r = s.post(webhook, headers={"Content-Type": "application/json; charset=UTF-8"}, json=payload, timeout=15)
            r.raise_for_status()
        logger.info(f"Sent chat: {title}")
        return True
    except requests.exceptions.HTTPError as he:
        logger.error(f"Chat failed '{title}': {he.response.status_code} {he.response.text}")
    except requests.exceptions.RequestException as e:
        logger.error(f"Chat error '{title}': {e}")
    return False
