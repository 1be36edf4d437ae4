"""
IMAP client for fetching unseen mail from a mailbox account.
"""

import imaplib
import ssl
from email import message_from_bytes
from email.header import decode_header as email_decode_header
from email.utils import parsedate_to_datetime
from typing import Iterator

from autoreply.config import settings
from autoreply.core.errors import ParseFailure, TransientIOError
from autoreply.core.logging import get_logger
from autoreply.core.models import Attachment, InboundMessage

log = get_logger(__name__)


def build_ssl_context() -> ssl.SSLContext:
    """TLS context for mail servers; verification follows IMAP_VERIFY_TLS."""
    context = ssl.create_default_context()
    if not settings.imap_verify_tls:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class IMAPClient:
    """IMAP client for one mailbox, addressed by UID."""

    def __init__(
        self,
        email: str,
        password: str,
        host: str | None = None,
        port: int | None = None,
    ):
        self.email = email
        self.password = password
        self.host = host or settings.default_imap_host
        self.port = port or settings.default_imap_port
        self._conn: imaplib.IMAP4_SSL | None = None

    def connect(self) -> None:
        """Connect and authenticate to IMAP server."""
        log.info("imap_connecting", host=self.host, email=self.email)
        conn = None
        try:
            conn = imaplib.IMAP4_SSL(
                self.host,
                self.port,
                ssl_context=build_ssl_context(),
                timeout=settings.mail_timeout_seconds,
            )
            conn.login(self.email, self.password)
            self._conn = conn
            log.info("imap_connected", email=self.email)
        except (imaplib.IMAP4.error, OSError) as e:
            if conn:
                try:
                    conn.logout()
                except (imaplib.IMAP4.error, OSError):
                    pass
            raise TransientIOError(f"IMAP connect failed for {self.email}: {e}") from e

    def disconnect(self) -> None:
        """Close IMAP connection."""
        if self._conn:
            try:
                self._conn.logout()
            except (imaplib.IMAP4.error, OSError):
                pass
            self._conn = None
            log.info("imap_disconnected", email=self.email)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def search_unseen(self, folder: str = "INBOX") -> list[str]:
        """UIDs of unseen messages in a folder."""
        if not self._conn:
            raise RuntimeError("Not connected to IMAP server")

        try:
            self._conn.select(folder)
            status, data = self._conn.uid("SEARCH", None, "UNSEEN")
        except (imaplib.IMAP4.error, OSError) as e:
            raise TransientIOError(f"IMAP search failed: {e}") from e
        if status != "OK":
            raise TransientIOError(f"IMAP search returned {status}")

        return [uid.decode() for uid in (data[0] or b"").split()]

    def fetch_unseen(self, folder: str = "INBOX") -> Iterator[InboundMessage]:
        """
        Fetch unseen messages without setting the \\Seen flag.

        A message that cannot be fetched or parsed is logged and skipped;
        it stays unseen and is retried on the next poll.

        Yields:
            InboundMessage objects carrying their IMAP uid
        """
        uids = self.search_unseen(folder)
        log.info("imap_fetching", email=self.email, folder=folder, count=len(uids))

        for uid in uids:
            try:
                status, msg_data = self._conn.uid("FETCH", uid, "(BODY.PEEK[])")
            except (imaplib.IMAP4.error, OSError) as e:
                raise TransientIOError(f"IMAP fetch failed: {e}") from e

            if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
                log.warning("imap_fetch_empty", uid=uid)
                continue

            try:
                message = self._parse_email(message_from_bytes(msg_data[0][1]))
            except (ParseFailure, LookupError, UnicodeError) as e:
                log.error("imap_parse_error", error=str(e), uid=uid)
                continue

            message.uid = uid
            yield message

    def mark_seen(self, uid: str) -> None:
        if not self._conn:
            raise RuntimeError("Not connected to IMAP server")
        try:
            self._conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
        except (imaplib.IMAP4.error, OSError) as e:
            raise TransientIOError(f"IMAP store failed: {e}") from e

    def _decode_header(self, header: str) -> str:
        """Decode MIME-encoded email header ('=?UTF-8?B?...?=')."""
        if not header:
            return ""
        decoded_parts = []
        for part, charset in email_decode_header(header):
            if isinstance(part, bytes):
                decoded_parts.append(part.decode(charset or "utf-8", errors="replace"))
            else:
                decoded_parts.append(part)
        return "".join(decoded_parts).replace("\r\n", "").replace("\n", "")

    def _parse_email(self, msg) -> InboundMessage:
        """
        Parse email message into InboundMessage.

        Raises:
            ParseFailure: no usable From header
        """
        sender = self._decode_header(msg.get("From", ""))
        if not InboundMessage._extract_email(sender):
            raise ParseFailure("missing or invalid From header")

        email_date = None
        date_str = msg.get("Date")
        if date_str:
            try:
                email_date = parsedate_to_datetime(date_str)
            except (TypeError, ValueError):
                pass

        body_plain, body_html = self._get_body(msg)

        attachments = []
        if msg.is_multipart():
            for part in msg.walk():
                if "attachment" in part.get("Content-Disposition", ""):
                    attachments.append(Attachment(
                        filename=part.get_filename() or "unnamed",
                        content_type=part.get_content_type(),
                        size_bytes=len(part.get_payload(decode=True) or b""),
                    ))

        return InboundMessage(
            message_id=(msg.get("Message-ID") or "").strip() or None,
            subject=self._decode_header(msg.get("Subject", "")),
            sender=sender,
            recipient=self._decode_header(msg.get("To", "")),
            email_date=email_date,
            body_plain=body_plain,
            body_html=body_html,
            attachments=attachments,
            raw_headers={
                "reply-to": msg.get("Reply-To", ""),
                "in-reply-to": msg.get("In-Reply-To", ""),
                "references": msg.get("References", ""),
            },
        )

    def _get_body(self, msg) -> tuple[str, str]:
        """Extract plain text and HTML body from message."""
        text_plain = ""
        text_html = ""

        parts = msg.walk() if msg.is_multipart() else [msg]
        for part in parts:
            if "attachment" in part.get("Content-Disposition", ""):
                continue

            payload = part.get_payload(decode=True)
            if not payload:
                continue

            charset = part.get_content_charset() or "utf-8"
            try:
                text = payload.decode(charset, errors="ignore")
            except LookupError:
                text = payload.decode("utf-8", errors="ignore")

            content_type = part.get_content_type()
            if content_type == "text/plain":
                text_plain += text
            elif content_type == "text/html":
                text_html += text

        return text_plain.strip(), text_html
