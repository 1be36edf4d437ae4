"""
Abstract base class for inbound message handlers.
"""

from abc import ABC, abstractmethod

from autoreply.core.models import InboundMessage, MailboxAccount, ProcessingResult


class BaseHandler(ABC):
    """Abstract handler interface for processing admitted inbound messages."""

    @abstractmethod
    def can_handle(self, account: MailboxAccount) -> bool:
        """
        Check if this handler owns mail arriving at the given account.

        Args:
            account: Mailbox the message was fetched from

        Returns:
            True if this handler can process mail for this account kind
        """
        pass

    @abstractmethod
    def handle(self, account: MailboxAccount, message: InboundMessage) -> ProcessingResult:
        """
        Process a message the dedup gate has already recorded.

        Must be safe to run again for the same message: the pending-retry
        job re-enters here for messages a failed step left unprocessed.

        Args:
            account: Mailbox the message belongs to
            message: Stored inbound message (id is set)

        Returns:
            ProcessingResult; mark_seen tells the poller whether to flag
            the message \\Seen on the server
        """
        pass
