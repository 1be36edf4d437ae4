"""
Inbound message deduplication.

Two layers must both agree a message is new:
- InFlightGuard: keys currently being handled inside this process.
- The inbound_messages unique constraints on message_id and content_hash.
"""

import hashlib
import threading
from contextlib import contextmanager
from typing import Iterator

from autoreply.core.logging import get_logger
from autoreply.core.models import InboundMessage, MailboxAccount

log = get_logger(__name__)


def content_hash(from_address: str, to_address: str, subject: str, body: str) -> str:
    """SHA-256 hex digest over 'from|to|subject|body'."""
    content = f"{from_address}|{to_address}|{subject}|{body}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class InFlightGuard:
    """Lock-protected set of keys with scoped claims."""

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: set[str] = set()

    @contextmanager
    def claim(self, key: str) -> Iterator[bool]:
        """
        Claim a key for the duration of the with-block.

        Yields True if this caller owns the key, False if another caller
        already holds it. An owned key is released on every exit path.
        """
        with self._lock:
            acquired = key not in self._keys
            if acquired:
                self._keys.add(key)
        try:
            yield acquired
        finally:
            if acquired:
                with self._lock:
                    self._keys.discard(key)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


class DedupGate:
    """Accepts each inbound message at most once."""

    def __init__(self, db, guard: InFlightGuard | None = None):
        self.db = db
        self.guard = guard or InFlightGuard()

    @contextmanager
    def admit(self, account: MailboxAccount, message: InboundMessage) -> Iterator[int | None]:
        """
        Record a message and hold its in-process claim while it is handled.

        Yields the new inbound_messages id, or None when the message is
        already known (in flight here or stored earlier).
        """
        message.content_hash = content_hash(
            message.sender_email,
            account.email,
            message.subject,
            message.body,
        )
        message.account_id = account.id

        with self.guard.claim(message.dedup_key) as claimed:
            if not claimed:
                log.info("duplicate_in_flight", message_id=message.message_id)
                yield None
                return

            inbound_id = self.db.insert_inbound_message(message)
            if inbound_id is None:
                log.info(
                    "duplicate_stored",
                    message_id=message.message_id,
                    content_hash=message.content_hash[:12],
                )
                yield None
                return

            message.id = inbound_id
            yield inbound_id
