"""
SMTP client for outbound replies, forwards and reminder notifications.
"""

import html
import smtplib
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

from autoreply.config import settings
from autoreply.core.errors import TransientIOError
from autoreply.core.logging import get_logger
from autoreply.services.imap import build_ssl_context

log = get_logger(__name__)


def text_to_html(text: str) -> str:
    """Escape plain text and keep its line breaks."""
    return html.escape(text or "").replace("\n", "<br>\n")


class SMTPSender:
    """Sends mail as one mailbox account (STARTTLS, or implicit TLS on 465)."""

    def __init__(
        self,
        email: str,
        password: str,
        host: str | None = None,
        port: int | None = None,
        from_header: str | None = None,
    ):
        self.email = email
        self.password = password
        self.host = host or settings.default_smtp_host
        self.port = port or settings.default_smtp_port
        self.from_header = from_header or email

    def build_message(
        self,
        to: str,
        subject: str,
        text: str,
        html_body: str | None = None,
        in_reply_to: str | None = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.from_header
        msg["To"] = to
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=False)
        msg["Message-ID"] = make_msgid(domain=self.email.partition("@")[2] or None)
        if in_reply_to:
            msg["In-Reply-To"] = in_reply_to
            msg["References"] = in_reply_to

        msg.set_content(text)
        msg.add_alternative(html_body or text_to_html(text), subtype="html")
        return msg

    def send(
        self,
        to: str,
        subject: str,
        text: str,
        html_body: str | None = None,
        in_reply_to: str | None = None,
    ) -> str:
        """
        Send one message.

        Returns:
            The Message-ID of the sent message

        Raises:
            TransientIOError: connect, authentication or delivery failed
        """
        msg = self.build_message(to, subject, text, html_body, in_reply_to)
        timeout = settings.mail_timeout_seconds

        try:
            if self.port == 465:
                server = smtplib.SMTP_SSL(self.host, self.port, timeout=timeout, context=build_ssl_context())
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=timeout)
            with server:
                if self.port != 465:
                    server.starttls(context=build_ssl_context())
                server.login(self.email, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            log.error("smtp_send_failed", host=self.host, to=to, error=str(e))
            raise TransientIOError(f"SMTP send failed: {e}") from e

        log.info("smtp_sent", sender=self.email, to=to, subject=subject[:80])
        return msg["Message-ID"]
