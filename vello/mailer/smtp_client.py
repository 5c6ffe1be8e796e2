from __future__ import annotations

import logging
import smtplib
import socket
import ssl
import time
import uuid
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate
from typing import Callable, List, Optional

from .. import config
from ..crypto import decrypt
from ..errors import EncryptionError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class SmtpSettings:
    smtp_server: str
    smtp_port: int
    use_tls: bool
    sender_email: str
    smtp_username: str
    smtp_password: str  # encrypted
    sender_name: Optional[str] = None


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class EmailOptions:
    to: str
    subject: str
    text: Optional[str] = None
    html: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)


@dataclass
class SendResult:
    success: bool
    message: str


@dataclass
class BatchResult:
    success: bool
    sent: int
    failed: int
    errors: List[dict] = field(default_factory=list)


def _connection_message(exc: Exception) -> str:
    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return "Authentication failed. Please check your email and password."
    if isinstance(exc, (ConnectionRefusedError, socket.timeout, TimeoutError, socket.gaierror)):
        return "Could not connect to SMTP server. Please check server address and port."
    return str(exc) or "Failed to connect to SMTP server"


def _send_message(exc: Exception) -> str:
    text = str(exc)
    code = getattr(exc, "smtp_code", None)
    if code in (550, 554) or "quota" in text.lower() or "limit" in text.lower():
        return "Email quota exceeded. Daily sending limit reached."
    return text or "Failed to send email"


class SmtpClient:
    def __init__(self, settings: SmtpSettings, *, timeout: float | None = None) -> None:
        self.settings = settings
        self.timeout = timeout if timeout is not None else config.SMTP_TIMEOUT_SECONDS
        self._smtp: Optional[smtplib.SMTP] = None

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.settings.use_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _open(self) -> smtplib.SMTP:
        host, port = self.settings.smtp_server, self.settings.smtp_port
        if port == 465:
            return smtplib.SMTP_SSL(host, port, timeout=self.timeout, context=self._tls_context())
        smtp = smtplib.SMTP(host, port, timeout=self.timeout)
        try:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls(context=self._tls_context())
                smtp.ehlo()
        except (smtplib.SMTPException, OSError):
            smtp.close()
            raise
        return smtp

    def connect(self) -> SendResult:
        """Open and authenticate the connection."""
        self.disconnect()
        try:
            password = decrypt(self.settings.smtp_password)
        except EncryptionError as exc:
            return SendResult(False, str(exc))
        try:
            smtp = self._open()
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP connection error: %s", exc)
            return SendResult(False, _connection_message(exc))
        try:
            smtp.login(self.settings.smtp_username, password)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP login error: %s", exc)
            smtp.close()
            return SendResult(False, _connection_message(exc))
        self._smtp = smtp
        return SendResult(True, "SMTP connection established successfully")

    def build_message(self, options: EmailOptions) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        if self.settings.sender_name:
            msg["From"] = formataddr((self.settings.sender_name, self.settings.sender_email))
        else:
            msg["From"] = self.settings.sender_email
        msg["To"] = options.to
        msg["Subject"] = options.subject
        msg["Date"] = formatdate(localtime=True)
        domain = self.settings.sender_email.rpartition("@")[2] or "localhost"
        msg["Message-ID"] = f"<{uuid.uuid4()}@{domain}>"

        body = MIMEMultipart("alternative")
        if options.text:
            body.attach(MIMEText(options.text, "plain", "utf-8"))
        if options.html:
            body.attach(MIMEText(options.html, "html", "utf-8"))
        msg.attach(body)

        for attachment in options.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            part = MIMEBase(maintype, subtype or "octet-stream")
            part.set_payload(attachment.content)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)
        return msg

    def send_email(self, options: EmailOptions) -> SendResult:
        if self._smtp is None:
            connected = self.connect()
            if not connected.success:
                return connected
        msg = self.build_message(options)
        try:
            self._smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email send error for %s: %s", options.to, exc)
            # SMTPException is an OSError too; plain socket errors mean the session is gone
            if isinstance(exc, smtplib.SMTPServerDisconnected) or not isinstance(exc, smtplib.SMTPException):
                self.disconnect()
            return SendResult(False, _send_message(exc))
        return SendResult(True, f"Email sent successfully. Message ID: {msg['Message-ID']}")

    def send_batch(
        self,
        emails: List[EmailOptions],
        on_progress: Optional[ProgressCallback] = None,
        delay: float | None = None,
    ) -> BatchResult:
        connected = self.connect()
        if not connected.success:
            return BatchResult(
                success=False,
                sent=0,
                failed=len(emails),
                errors=[{"email": e.to, "error": connected.message} for e in emails],
            )

        pause = config.SEND_DELAY_SECONDS if delay is None else delay
        sent = failed = 0
        errors: List[dict] = []
        for index, email in enumerate(emails):
            result = self.send_email(email)
            if result.success:
                sent += 1
            else:
                failed += 1
                errors.append({"email": email.to, "error": result.message})
            if on_progress:
                on_progress(sent + failed, len(emails), email.to)
            if index < len(emails) - 1 and pause > 0:
                time.sleep(pause)
        return BatchResult(success=sent > 0, sent=sent, failed=failed, errors=errors)

    def disconnect(self) -> None:
        if self._smtp is None:
            return
        try:
            self._smtp.quit()
        except (smtplib.SMTPException, OSError):
            self._smtp.close()
        self._smtp = None


def check_smtp_connection(settings: SmtpSettings) -> SendResult:
    client = SmtpClient(settings)
    result = client.connect()
    client.disconnect()
    return result
