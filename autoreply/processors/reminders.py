"""
Reminder engine for merchant conversations.

reply_reminder: nudges the human to answer a forwarded message.
follow_up: chases the counterpart when they went quiet after our reply.
"""

from datetime import datetime, timedelta, timezone

from autoreply.config import settings
from autoreply.core.database import Database
from autoreply.core.errors import ConfigurationMissingError, TransientIOError
from autoreply.core.logging import bind_context, clear_context, get_logger
from autoreply.core.models import Conversation, MailboxAccount, Reminder, ReminderType
from autoreply.processors.base import BaseProcessor
from autoreply.processors.dispatcher import reply_subject
from autoreply.services.mailbox import MailboxConnector

log = get_logger(__name__)

REPLY_NEEDED_TEMPLATE = """Reminder: a reply is still needed.

Mailbox: {account}
From: {counterpart}
Subject: {subject}

This message was forwarded {hours} hours ago and has not been answered yet."""

FOLLOW_UP_TEMPLATE = """Hi,

I hope this email finds you well. I wanted to follow up on my previous email regarding the payment gateway application.

Could you please provide an update on the status? I'd appreciate any information you can share.

Looking forward to hearing from you.

Best regards"""


class ReminderEngine(BaseProcessor):
    """Processes due reminders and applies operator actions to them."""

    def __init__(
        self,
        db: Database | None = None,
        connector: MailboxConnector | None = None,
    ):
        self.db = db or Database()
        self.connector = connector or MailboxConnector()

    def process(self) -> dict:
        return self.process_reminders()

    def process_reminders(self, now: datetime | None = None) -> dict:
        """
        Sweep due reminders.

        A reminder whose send fails stays unsent and is picked up again by
        the next sweep.
        """
        now = now or datetime.now(timezone.utc)
        reminders = self.db.get_due_reminders(now)

        stats = {"due": len(reminders), "sent": 0, "dismissed": 0, "skipped": 0, "failed": 0}

        for reminder in reminders:
            bind_context(reminder_id=reminder.id, conversation_id=reminder.conversation_id)
            try:
                outcome = self._process_one(reminder, now)
                stats[outcome] += 1
            except (TransientIOError, ConfigurationMissingError) as e:
                log.warning("reminder_send_failed", error=str(e))
                stats["failed"] += 1
            finally:
                clear_context()

        if reminders:
            log.info("reminders_processed", **stats)
        return stats

    def _process_one(self, reminder: Reminder, now: datetime) -> str:
        conversation = self.db.get_conversation(reminder.conversation_id)
        if conversation is None:
            return self._dismiss(reminder, "conversation_missing")

        if reminder.reminder_type == ReminderType.REPLY_REMINDER:
            if conversation.reply_sent:
                return self._dismiss(reminder, "already_replied")
            account = self._account_for(conversation)
            self._send_reply_needed(account, conversation)
        else:
            if conversation.reply_sent_at and self.db.has_inbound_since(conversation.id, conversation.reply_sent_at):
                return self._dismiss(reminder, "counterpart_responded")
            account = self._account_for(conversation)
            self._send_follow_up(account, conversation)

        if not self.db.mark_reminder_sent(reminder, now):
            # Dismissed or sent by someone else while we were sending
            return "skipped"

        log.info("reminder_sent", reminder_type=reminder.reminder_type.value)
        return "sent"

    def snooze(self, reminder_id: int, hours: int) -> bool:
        """Push a reminder back; scheduled_for is left untouched."""
        if hours < 1:
            raise ValueError("Snooze must be at least 1 hour")
        until = datetime.now(timezone.utc) + timedelta(hours=hours)
        snoozed = self.db.snooze_reminder(reminder_id, until)
        log.info("reminder_snoozed", reminder_id=reminder_id, until=until.isoformat(), applied=snoozed)
        return snoozed

    def dismiss(self, reminder_id: int) -> bool:
        dismissed = self.db.dismiss_reminder(reminder_id)
        log.info("reminder_dismissed", reminder_id=reminder_id, applied=dismissed)
        return dismissed

    def mark_replied(self, conversation_id: int) -> bool:
        """The human answered outside the system: stop reply reminders, start a follow-up."""
        now = datetime.now(timezone.utc)
        follow_up_at = now + timedelta(hours=settings.follow_up_hours)
        updated = self.db.mark_conversation_replied(conversation_id, now, follow_up_at)
        log.info("conversation_marked_replied", conversation_id=conversation_id, applied=updated)
        return updated

    def _dismiss(self, reminder: Reminder, reason: str) -> str:
        self.db.dismiss_reminder(reminder.id)
        log.info("reminder_auto_dismissed", reason=reason)
        return "dismissed"

    def _account_for(self, conversation: Conversation) -> MailboxAccount:
        account = self.db.get_account(conversation.account_id)
        if account is None or not account.is_active:
            raise ConfigurationMissingError(f"Mailbox account {conversation.account_id} unavailable")
        return account

    def _send_reply_needed(self, account: MailboxAccount, conversation: Conversation) -> None:
        if not account.notification_email:
            raise ConfigurationMissingError(f"No notification email for {account.email}")

        text = REPLY_NEEDED_TEMPLATE.format(
            account=account.display_name or account.email,
            counterpart=conversation.counterpart,
            subject=conversation.last_subject,
            hours=settings.reply_reminder_hours,
        )
        self.connector.smtp(account).send(
            to=account.notification_email,
            subject=f"REMINDER: Reply needed for {account.display_name or account.email}",
            text=text,
        )

    def _send_follow_up(self, account: MailboxAccount, conversation: Conversation) -> None:
        self.connector.smtp(account).send(
            to=conversation.counterpart,
            subject=reply_subject(conversation.last_subject),
            text=FOLLOW_UP_TEMPLATE,
        )
