# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Outbound email.

The auth core only ever sends one kind of message: a subject line and a
single action link (verify email, reset password).  When SMTP is not
configured the message is logged instead, with the recipient redacted, so
local development works without a mail relay.
"""

import smtplib
import ssl
from email.message import EmailMessage

from core.config import settings
from core.logger import logger, redact


class Mailer:
    def __init__(self, host: str, port: int, user: str, password: str, sender: str):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    def send(self, to: str, subject: str, link: str) -> None:
        """Send *link* to *to*.  Raises on SMTP failure; callers decide."""
        if not self.is_configured:
            logger.info("Email (dev mode, not sent) to=%s subject=%r", redact(to), subject)
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(f"{subject}\n\nOpen this link to continue:\n{link}\n")
        msg.add_alternative(f'<p>{subject}</p><p><a href="{link}">Continue</a></p>', subtype="html")

        ctx = ssl.create_default_context()
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls(context=ctx)
            if self.user and self.password:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)
        logger.info("Email sent to=%s subject=%r", redact(to), subject)


mailer = Mailer(
    host=settings.smtp_host,
    port=settings.smtp_port,
    user=settings.smtp_user,
    password=settings.smtp_password,
    sender=settings.mail_from,
)
