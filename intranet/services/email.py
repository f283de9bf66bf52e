"""
SMTP delivery for outbound mail.

Sending is best-effort: callers get True/False, never an exception.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Iterable, List, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from intranet.core.config import EmailSettings, settings

logger = logging.getLogger(__name__)


class EmailSender:
    def __init__(self, config: Optional[EmailSettings] = None):
        self.config = config or settings.email

    def build_message(
        self,
        to: List[str],
        subject: str,
        html: str,
        text: Optional[str] = None,
        cc: Optional[List[str]] = None,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.config.from_name, self.config.email_from))
        msg["To"] = ", ".join(to)
        if cc:
            msg["Cc"] = ", ".join(cc)
        if text:
            msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((smtplib.SMTPException, ConnectionError, TimeoutError)),
        reraise=True,
    )
    def _deliver(self, msg: MIMEMultipart, recipients: List[str]) -> None:
        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=30) as server:
            if self.config.use_tls:
                server.starttls()
            server.login(self.config.smtp_user, self.config.smtp_password)
            server.sendmail(self.config.email_from, recipients, msg.as_string())

    def send(
        self,
        to: Iterable[str],
        subject: str,
        html: str,
        text: Optional[str] = None,
        cc: Optional[Iterable[str]] = None,
    ) -> bool:
        to = [addr for addr in to if addr]
        cc = [addr for addr in (cc or []) if addr and addr not in to]
        if not to:
            logger.warning(f"Email '{subject}' skipped: no recipients")
            return False
        if not self.config.enabled:
            logger.warning(f"SMTP not configured; email '{subject}' to {to} not sent")
            return False

        msg = self.build_message(to, subject, html, text, cc)
        try:
            self._deliver(msg, to + cc)
        except Exception as e:
            logger.error(f"Failed to send email '{subject}' to {to}: {e}", exc_info=True)
            return False
        logger.info(f"Email '{subject}' sent", extra={"to": to, "cc": cc})
        return True


email_sender = EmailSender()
