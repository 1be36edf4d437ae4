"""
Shared pytest fixtures for autoreply tests.
"""

import copy
import dataclasses
import itertools
import threading
from collections import defaultdict
from datetime import datetime, time, timezone

import pytest

from autoreply.config import settings
from autoreply.core.database import SETTLED_OUTCOMES
from autoreply.core.errors import TransientIOError
from autoreply.core.models import (
    AccountKind,
    Conversation,
    ConversationMessage,
    ConversationStatus,
    InboundMessage,
    MailboxAccount,
    MessageDirection,
    Reminder,
    ReminderType,
    ReplyStatus,
    ScheduledReply,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FakeDatabase:
    """In-memory stand-in for Database with the same method contracts."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.accounts: dict[int, MailboxAccount] = {}
        self.conversations: dict[int, Conversation] = {}
        self.inbound: dict[int, InboundMessage] = {}
        self.outcomes: dict[int, str] = {}
        self.processed_marks: dict[int, int] = defaultdict(int)
        self.messages: list[ConversationMessage] = []
        self.replies: dict[int, ScheduledReply] = {}
        self.reminders: dict[int, Reminder] = {}

    # Test helpers

    def add_account(self, account: MailboxAccount) -> MailboxAccount:
        self.accounts[account.id] = account
        return account

    def add_conversation(self, conversation: Conversation) -> Conversation:
        self.conversations[conversation.id] = conversation
        return conversation

    def add_history(self, conversation_id: int, direction: MessageDirection, body: str, created_at: datetime):
        self.messages.append(ConversationMessage(
            conversation_id=conversation_id,
            direction=direction,
            body=body,
            id=next(self._ids),
            created_at=created_at,
        ))

    def replies_for(self, inbound_id: int) -> list[ScheduledReply]:
        return [r for r in self.replies.values() if r.inbound_message_id == inbound_id]

    def _set_processed(self, inbound_id: int | None, outcome: str) -> None:
        row = self.inbound.get(inbound_id)
        if row and not row.processed:
            row.processed = True
            row.processed_at = utcnow()
            row.error_message = None
            self.outcomes[inbound_id] = outcome
            self.processed_marks[inbound_id] += 1

    # Accounts

    def get_active_accounts(self, kind=None):
        return [a for a in self.accounts.values() if a.is_active and (kind is None or a.kind == kind)]

    def get_account(self, account_id):
        return self.accounts.get(account_id)

    # Inbound messages

    def insert_inbound_message(self, message):
        with self._lock:
            for row in self.inbound.values():
                if message.message_id and row.message_id == message.message_id:
                    return None
                if row.content_hash == message.content_hash:
                    return None
            inbound_id = next(self._ids)
            self.inbound[inbound_id] = dataclasses.replace(
                message,
                id=inbound_id,
                uid=None,
                created_at=utcnow(),
            )
            return inbound_id

    def is_inbound_settled(self, message):
        scheduled = {r.inbound_message_id for r in self.replies.values()}
        for row in self.inbound.values():
            same = (message.message_id and row.message_id == message.message_id) or (
                row.content_hash == message.content_hash
            )
            if same and (self.outcomes.get(row.id) in SETTLED_OUTCOMES or row.id in scheduled):
                return True
        return False

    def mark_inbound_processed(self, inbound_id, outcome):
        self._set_processed(inbound_id, outcome)

    def mark_inbound_error(self, inbound_id, error_message):
        row = self.inbound[inbound_id]
        row.error_message = error_message
        row.retry_count += 1

    def get_pending_inbound(self, older_than, limit=50):
        scheduled = {r.inbound_message_id for r in self.replies.values()}
        rows = [
            copy.copy(row) for row in self.inbound.values()
            if not row.processed
            and row.retry_count < settings.max_retries
            and row.created_at < older_than
            and row.id not in scheduled
        ]
        return sorted(rows, key=lambda r: r.created_at)[:limit]

    # Conversations

    def get_conversation(self, conversation_id):
        return self.conversations.get(conversation_id)

    def find_conversation(self, account_id, counterpart):
        for conversation in self.conversations.values():
            if conversation.account_id == account_id and conversation.counterpart == counterpart.lower():
                return conversation
        return None

    def upsert_merchant_conversation(self, account_id, counterpart, subject):
        conversation = self.find_conversation(account_id, counterpart)
        if conversation is None:
            conversation = self.add_conversation(Conversation(
                id=next(self._ids),
                account_id=account_id,
                counterpart=counterpart.lower(),
                kind=AccountKind.MERCHANT,
            ))
        conversation.status = ConversationStatus.PENDING
        conversation.last_subject = subject
        conversation.reply_sent = False
        return conversation

    def attach_inbound_to_conversation(self, inbound, conversation):
        if not any(m.inbound_message_id == inbound.id for m in self.messages):
            stored = self.inbound.get(inbound.id)
            self.messages.append(ConversationMessage(
                conversation_id=conversation.id,
                direction=MessageDirection.INBOUND,
                body=inbound.body,
                subject=inbound.subject,
                sender=inbound.sender_email,
                inbound_message_id=inbound.id,
                id=next(self._ids),
                created_at=stored.created_at if stored else utcnow(),
            ))
        if inbound.id in self.inbound:
            self.inbound[inbound.id].conversation_id = conversation.id
        conversation.last_subject = inbound.subject
        inbound.conversation_id = conversation.id

    def get_recent_messages(self, conversation_id, limit=5, exclude_inbound_id=None):
        rows = [
            m for m in self.messages
            if m.conversation_id == conversation_id
            and (exclude_inbound_id is None or m.inbound_message_id != exclude_inbound_id)
        ]
        rows.sort(key=lambda m: (m.created_at, m.id))
        return rows[-limit:]

    def has_inbound_since(self, conversation_id, since):
        return any(
            m.conversation_id == conversation_id
            and m.direction == MessageDirection.INBOUND
            and m.created_at > since
            for m in self.messages
        )

    # Scheduled replies

    def schedule_reply(self, reply):
        with self._lock:
            if reply.inbound_message_id is not None and self.replies_for(reply.inbound_message_id):
                return None
            reply.id = next(self._ids)
            reply.status = ReplyStatus.PENDING
            reply.created_at = utcnow()
            self.replies[reply.id] = reply
            return reply.id

    def claim_due_replies(self, now, limit=25):
        with self._lock:
            due = sorted(
                (r for r in self.replies.values() if r.status == ReplyStatus.PENDING and r.due_at <= now),
                key=lambda r: r.due_at,
            )[:limit]
            for reply in due:
                reply.status = ReplyStatus.SENDING
                reply.claimed_at = now
            return due

    def release_stale_claims(self, older_than):
        released = 0
        for reply in self.replies.values():
            if reply.status == ReplyStatus.SENDING and reply.claimed_at < older_than:
                reply.status = ReplyStatus.PENDING
                reply.claimed_at = None
                released += 1
        return released

    def release_claim(self, reply_id, error_message):
        stored = self.replies[reply_id]
        if stored.status == ReplyStatus.SENDING:
            stored.status = ReplyStatus.PENDING
            stored.claimed_at = None
            stored.error_message = error_message

    def fail_reply(self, reply_id, error_message):
        self.replies[reply_id].status = ReplyStatus.FAILED
        self.replies[reply_id].error_message = error_message

    def cancel_reply(self, reply, reason):
        self.replies[reply.id].status = ReplyStatus.CANCELLED
        self.replies[reply.id].error_message = reason
        self._set_processed(reply.inbound_message_id, reason)

    def record_dispatched_reply(self, reply, conversation, subject, sender, sent_at, follow_up_at=None):
        self.messages.append(ConversationMessage(
            conversation_id=conversation.id,
            direction=MessageDirection.OUTBOUND,
            body=reply.body,
            subject=subject,
            sender=sender,
            recipient=conversation.counterpart,
            id=next(self._ids),
            created_at=sent_at,
        ))
        stored = self.replies[reply.id]
        stored.status = ReplyStatus.SENT
        stored.sent_at = sent_at
        self._set_processed(reply.inbound_message_id, "replied")
        conversation.reply_sent = True
        conversation.reply_sent_at = sent_at
        conversation.status = ConversationStatus.AWAITING_RESPONSE
        if follow_up_at is not None:
            self._replace_reply_reminders(conversation.id, follow_up_at)

    # Reminders

    def create_reminder(self, reminder):
        reminder.id = next(self._ids)
        reminder.created_at = utcnow()
        self.reminders[reminder.id] = reminder
        return reminder.id

    def complete_merchant_ingest(self, inbound_id, reminder):
        self.create_reminder(reminder)
        self._set_processed(inbound_id, "forwarded")

    def get_due_reminders(self, now):
        due = [r for r in self.reminders.values() if r.is_due(now)]
        return sorted(due, key=lambda r: r.scheduled_for)

    def mark_reminder_sent(self, reminder, sent_at):
        stored = self.reminders.get(reminder.id)
        if stored is None or stored.is_terminal:
            return False
        stored.sent = True
        stored.sent_at = sent_at
        if stored.reminder_type == ReminderType.FOLLOW_UP:
            self.conversations[stored.conversation_id].follow_up_sent = True
        return True

    def dismiss_reminder(self, reminder_id):
        stored = self.reminders.get(reminder_id)
        if stored is None or stored.is_terminal:
            return False
        stored.dismissed = True
        return True

    def snooze_reminder(self, reminder_id, until):
        stored = self.reminders.get(reminder_id)
        if stored is None or stored.is_terminal:
            return False
        stored.snoozed_until = until
        return True

    def mark_conversation_replied(self, conversation_id, replied_at, follow_up_at):
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return False
        conversation.reply_sent = True
        conversation.reply_sent_at = replied_at
        conversation.status = ConversationStatus.AWAITING_RESPONSE
        self._replace_reply_reminders(conversation_id, follow_up_at)
        return True

    def _replace_reply_reminders(self, conversation_id, follow_up_at):
        for reminder in self.reminders.values():
            if (
                reminder.conversation_id == conversation_id
                and reminder.reminder_type == ReminderType.REPLY_REMINDER
                and not reminder.sent
            ):
                reminder.dismissed = True
        self.create_reminder(Reminder(
            conversation_id=conversation_id,
            reminder_type=ReminderType.FOLLOW_UP,
            scheduled_for=follow_up_at,
        ))

    def get_stats(self):
        return {
            "inbound_total": len(self.inbound),
            "inbound_pending": sum(1 for m in self.inbound.values() if not m.processed),
            "replies_pending": sum(1 for r in self.replies.values() if r.status == ReplyStatus.PENDING),
        }


class FakeCompletion:
    """Records calls; returns a fixed response or raises a fixed error."""

    def __init__(self, response: str = "", error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    def complete(self, system_prompt, prior_turns, new_message, temperature=0.7, max_output_tokens=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "prior_turns": list(prior_turns),
            "new_message": new_message,
        })
        if self.error:
            raise self.error
        return self.response


class FakeSMTP:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    def send(self, to, subject, text, html_body=None, in_reply_to=None):
        if self.fail:
            raise TransientIOError("SMTP send failed: connection refused")
        self.sent.append({"to": to, "subject": subject, "text": text, "in_reply_to": in_reply_to})
        return f"<sent-{len(self.sent)}@test>"


class FakeMailbox:
    """IMAP double: serves unseen messages, records \\Seen flags."""

    def __init__(self, messages: list[InboundMessage] | None = None, fail: bool = False, honor_seen: bool = True):
        self.messages = messages or []
        self.fail = fail
        self.honor_seen = honor_seen
        self.seen: list[str] = []

    def __enter__(self):
        if self.fail:
            raise TransientIOError("IMAP connect failed: timed out")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def fetch_unseen(self, folder="INBOX"):
        for message in self.messages:
            if self.honor_seen and message.uid in self.seen:
                continue
            yield copy.deepcopy(message)

    def mark_seen(self, uid):
        self.seen.append(uid)


class FakeConnector:
    def __init__(self, mailboxes: dict[int, FakeMailbox] | None = None, smtp: FakeSMTP | None = None):
        self.mailboxes = mailboxes or {}
        self.smtp_client = smtp or FakeSMTP()

    def imap(self, account):
        return self.mailboxes.setdefault(account.id, FakeMailbox())

    def smtp(self, account):
        return self.smtp_client


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def smtp() -> FakeSMTP:
    return FakeSMTP()


@pytest.fixture
def connector(smtp) -> FakeConnector:
    return FakeConnector(smtp=smtp)


@pytest.fixture
def account(fake_db) -> MailboxAccount:
    """Agent mailbox for the assignment workflow."""
    return fake_db.add_account(MailboxAccount(
        id=1,
        email="agent@agency.com",
        kind=AccountKind.ASSIGNMENT,
        display_name="Alex Morgan",
        password_encrypted="unused",
        persona="Alex, a senior project manager",
    ))


@pytest.fixture
def merchant_account(fake_db) -> MailboxAccount:
    """Payment-gateway mailbox for the merchant workflow."""
    return fake_db.add_account(MailboxAccount(
        id=2,
        email="merchant@shop.com",
        kind=AccountKind.MERCHANT,
        display_name="Shop Payments",
        password_encrypted="unused",
        notification_email="owner@shop.com",
    ))


@pytest.fixture
def conversation(fake_db, account) -> Conversation:
    return fake_db.add_conversation(Conversation(
        id=100,
        account_id=account.id,
        counterpart="client@example.com",
        counterpart_name="Sam",
        min_delay_minutes=1,
        max_delay_minutes=120,
        timezone="UTC",
        working_hours_start=time(0, 0),
        working_hours_end=time(23, 59),
        context="Website redesign, launch in May",
        last_subject="Project kickoff",
    ))


@pytest.fixture
def make_message():
    """Factory for parsed inbound messages as the IMAP client yields them."""
    counter = itertools.count(1)

    def _make(
        sender: str = "Sam Client <client@example.com>",
        subject: str = "Question about the timeline",
        body: str = "Hi, can we move the launch by a week?",
        message_id: str | None = "auto",
        recipient: str = "agent@agency.com",
    ) -> InboundMessage:
        n = next(counter)
        return InboundMessage(
            uid=str(n),
            message_id=f"<msg-{n}@example.com>" if message_id == "auto" else message_id,
            sender=sender,
            recipient=recipient,
            subject=subject,
            body_plain=body,
            email_date=utcnow(),
        )

    return _make
