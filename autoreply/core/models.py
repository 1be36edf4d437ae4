"""
Data models for inbound mail processing.

Uses dataclasses for clean, typed data structures.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, time
from email.utils import parseaddr
from enum import Enum
from typing import Any


class AccountKind(str, Enum):
    """Which workflow a mailbox belongs to."""

    ASSIGNMENT = "assignment"  # Agent mailbox answering clients
    MERCHANT = "merchant"  # Payment-gateway mailbox forwarded to a human


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    AWAITING_RESPONSE = "awaiting_response"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ReminderType(str, Enum):
    REPLY_REMINDER = "reply_reminder"
    FOLLOW_UP = "follow_up"


class ReplyStatus(str, Enum):
    """Lifecycle of a durable scheduled reply."""

    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EmotionalTone(str, Enum):
    ANGRY = "angry"
    FRUSTRATED = "frustrated"
    CONFUSED = "confused"
    NEUTRAL = "neutral"
    HAPPY = "happy"
    GRATEFUL = "grateful"


def parse_clock(value: str | time | None, default: str = "09:00") -> time:
    """Parse 'HH:MM' (or pass through a time) into a datetime.time."""
    if isinstance(value, time):
        return value
    text = (value or default).strip()
    hours, _, minutes = text.partition(":")
    return time(int(hours), int(minutes or 0))


@dataclass
class Attachment:
    """Attachment metadata (content is not persisted)."""

    filename: str
    content_type: str
    size_bytes: int


@dataclass
class MailboxAccount:
    """Mailbox credentials and settings, owned by the account store."""

    id: int
    email: str
    kind: AccountKind = AccountKind.ASSIGNMENT
    display_name: str = ""
    imap_host: str | None = None
    imap_port: int | None = None
    smtp_host: str | None = None
    smtp_port: int | None = None
    password_encrypted: str = ""
    notification_email: str | None = None
    status: AccountStatus = AccountStatus.ACTIVE
    timezone: str | None = None
    persona: str = ""
    system_prompt: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    @property
    def from_header(self) -> str:
        """Formatted From header, 'Name <address>' when a display name exists."""
        if self.display_name:
            return f'"{self.display_name}" <{self.email}>'
        return self.email


@dataclass
class InboundMessage:
    """A received message, as parsed from IMAP and as stored for dedup."""

    id: int | None = None
    account_id: int | None = None
    uid: str | None = None  # IMAP UID, only meaningful during a poll
    message_id: str | None = None
    sender: str = ""
    recipient: str = ""
    subject: str = ""
    body_plain: str = ""
    body_html: str = ""
    email_date: datetime | None = None
    attachments: list[Attachment] = field(default_factory=list)
    raw_headers: dict[str, Any] = field(default_factory=dict)

    # Persistence / processing state
    content_hash: str = ""
    conversation_id: int | None = None
    processed: bool = False
    processed_at: datetime | None = None
    error_message: str | None = None
    retry_count: int = 0
    created_at: datetime | None = None

    @property
    def body(self) -> str:
        """Get message body, preferring plain text."""
        return self.body_plain or self._strip_html(self.body_html)

    @property
    def sender_email(self) -> str:
        """Extract address from the sender header."""
        return self._extract_email(self.sender)

    @property
    def recipient_email(self) -> str:
        """Extract address from the recipient header."""
        return self._extract_email(self.recipient)

    @property
    def dedup_key(self) -> str:
        """Identity used by the in-process guard."""
        return self.message_id or self.content_hash

    @staticmethod
    def _extract_email(header: str) -> str:
        """Extract email address from header like 'Name <email@example.com>'."""
        if not header:
            return ""
        _, email = parseaddr(header)
        return email.lower() if email else ""

    @staticmethod
    def _strip_html(html: str) -> str:
        """Strip HTML tags from text."""
        if not html:
            return ""
        text = re.sub(r"<[^>]+>", " ", html)
        return re.sub(r"\s+", " ", text).strip()


@dataclass
class Conversation:
    """Assignment or merchant conversation with its reply policy."""

    id: int
    account_id: int
    counterpart: str
    kind: AccountKind = AccountKind.ASSIGNMENT
    status: ConversationStatus = ConversationStatus.ACTIVE
    counterpart_name: str = ""
    min_delay_minutes: int | None = None
    max_delay_minutes: int | None = None
    timezone: str | None = None
    working_hours_start: time | None = None
    working_hours_end: time | None = None
    tone: str | None = None
    context: str = ""
    last_subject: str = ""
    reply_sent: bool = False
    reply_sent_at: datetime | None = None
    follow_up_sent: bool = False

    @property
    def is_active(self) -> bool:
        """Inactive conversations must not receive replies."""
        return self.status != ConversationStatus.INACTIVE


@dataclass
class ConversationMessage:
    """One turn in a conversation's history."""

    conversation_id: int
    direction: MessageDirection
    body: str
    subject: str = ""
    sender: str = ""
    recipient: str = ""
    inbound_message_id: int | None = None
    id: int | None = None
    created_at: datetime | None = None

    @property
    def speaker(self) -> str:
        return "Client" if self.direction == MessageDirection.INBOUND else "Agent"


@dataclass
class Classification:
    """Urgency / tone analysis of one inbound message. Never persisted on its own."""

    urgency_level: int = 5
    emotional_tone: str = EmotionalTone.NEUTRAL.value
    key_topics: list[str] = field(default_factory=list)
    reasoning: str = "Unable to analyze"

    @classmethod
    def neutral(cls, reasoning: str = "Unable to analyze") -> "Classification":
        """Fallback used whenever the AI result is unusable."""
        return cls(reasoning=reasoning)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Classification":
        """Create from the AI response object, clamping and validating fields."""
        try:
            urgency = int(round(float(data.get("urgencyLevel", 5))))
        except (TypeError, ValueError, OverflowError):
            urgency = 5
        urgency = min(10, max(1, urgency))

        tone = str(data.get("emotionalTone") or "neutral").strip().lower()
        if tone not in {t.value for t in EmotionalTone}:
            tone = EmotionalTone.NEUTRAL.value

        topics = data.get("keyTopics")
        if not isinstance(topics, list):
            topics = []

        return cls(
            urgency_level=urgency,
            emotional_tone=tone,
            key_topics=[str(t) for t in topics],
            reasoning=str(data.get("reasoning") or "Standard message"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON storage inside a scheduled reply payload."""
        return {
            "urgencyLevel": self.urgency_level,
            "emotionalTone": self.emotional_tone,
            "keyTopics": self.key_topics,
            "reasoning": self.reasoning,
        }


@dataclass
class ScheduledReply:
    """Durable delayed send. The row is the timer."""

    conversation_id: int
    inbound_message_id: int | None
    due_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    status: ReplyStatus = ReplyStatus.PENDING
    id: int | None = None
    error_message: str | None = None
    claimed_at: datetime | None = None
    sent_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def subject(self) -> str:
        return self.payload.get("subject", "")

    @property
    def body(self) -> str:
        return self.payload.get("body", "")


@dataclass
class Reminder:
    """Reply-needed or follow-up obligation attached to one conversation."""

    conversation_id: int
    reminder_type: ReminderType
    scheduled_for: datetime
    id: int | None = None
    snoozed_until: datetime | None = None
    sent: bool = False
    dismissed: bool = False
    sent_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.sent or self.dismissed

    def is_due(self, now: datetime) -> bool:
        """Same predicate the reminder sweep applies in SQL."""
        if self.is_terminal or self.scheduled_for > now:
            return False
        return self.snoozed_until is None or self.snoozed_until <= now


@dataclass
class ProcessingResult:
    """Result from handling one accepted inbound message."""

    success: bool
    action: str  # e.g. "reply_scheduled", "forwarded", "skipped_no_conversation"
    inbound_id: int | None = None
    mark_seen: bool = False
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class PollOutcome:
    """Per-account result of one poll."""

    account_id: int
    account_email: str = ""
    status: str = "ok"  # ok, busy, error
    fetched: int = 0
    accepted: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "account_email": self.account_email,
            "status": self.status,
            "fetched": self.fetched,
            "accepted": self.accepted,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "errors": self.errors,
            "error": self.error,
        }
