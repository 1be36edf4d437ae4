"""
Builds IMAP/SMTP clients for a mailbox account, decrypting its password.
"""

from autoreply.core.crypto import CredentialCipher
from autoreply.core.models import MailboxAccount
from autoreply.services.imap import IMAPClient
from autoreply.services.smtp import SMTPSender


class MailboxConnector:
    """Credentials are decrypted on every call, never cached."""

    def __init__(self, cipher: CredentialCipher | None = None):
        self._cipher = cipher

    @property
    def cipher(self) -> CredentialCipher:
        if self._cipher is None:
            self._cipher = CredentialCipher()
        return self._cipher

    def imap(self, account: MailboxAccount) -> IMAPClient:
        return IMAPClient(
            email=account.email,
            password=self.cipher.decrypt(account.password_encrypted),
            host=account.imap_host,
            port=account.imap_port,
        )

    def smtp(self, account: MailboxAccount) -> SMTPSender:
        return SMTPSender(
            email=account.email,
            password=self.cipher.decrypt(account.password_encrypted),
            host=account.smtp_host,
            port=account.smtp_port,
            from_header=account.from_header,
        )
