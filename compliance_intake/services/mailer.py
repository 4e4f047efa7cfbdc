"""
Outbound mail over SMTP.

Port 465 connects with implicit TLS, any other port upgrades with STARTTLS.
One connection is opened per send().
"""

import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr

from compliance_intake.config import settings
from compliance_intake.core.errors import MailDeliveryError
from compliance_intake.core.logging import get_logger

log = get_logger(__name__)


class SMTPMailer:
    """Plain-text mail sender."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        from_name: str | None = None,
        timeout: float | None = None,
    ):
        self.host = host if host is not None else settings.smtp_host
        self.port = port or settings.smtp_port
        self.user = user if user is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.from_name = from_name or settings.reminder_from_name
        self.timeout = timeout or settings.smtp_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.port == 465:
            return smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout)
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        smtp.starttls(context=context)
        return smtp

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.from_name, self.user))
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def send(self, to: str, subject: str, body: str) -> None:
        """
        Send one message.

        Raises:
            MailDeliveryError: SMTP not configured, or connect/login/send failed
        """
        if not self.configured:
            raise MailDeliveryError("SMTP is not configured")

        msg = self.build_message(to, subject, body)
        try:
            with self._connect() as smtp:
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(f"Failed to send mail to {to}: {e}") from e

        log.debug("mail_sent", to=to, subject=subject)
