"""
Merchant handler: important payment-gateway mail is forwarded to a human
and tracked with a reply reminder.
"""

from datetime import datetime, timedelta, timezone

from autoreply.classifiers import get_importance_filter
from autoreply.config import settings
from autoreply.core.database import Database
from autoreply.core.errors import ConfigurationMissingError, TransientIOError
from autoreply.core.logging import get_logger
from autoreply.core.models import (
    AccountKind,
    InboundMessage,
    MailboxAccount,
    ProcessingResult,
    Reminder,
    ReminderType,
)
from autoreply.handlers.base import BaseHandler
from autoreply.handlers.registry import register_handler
from autoreply.services.mailbox import MailboxConnector

log = get_logger(__name__)

FORWARD_TEMPLATE = """New important email for {account}

From: {sender}
Subject: {subject}
Received: {received}

{body}

--
Forwarded automatically. A reply reminder is due in {hours} hours."""


@register_handler
class MerchantHandler(BaseHandler):
    """Filter, forward and open a reply reminder for merchant mail."""

    def __init__(self, db=None, importance_filter=None, connector=None):
        self._db = db
        self._importance_filter = importance_filter
        self.connector = connector or MailboxConnector()

    @property
    def db(self) -> Database:
        if self._db is None:
            self._db = Database()
        return self._db

    @property
    def importance_filter(self):
        """Lazy-load filter (needs API key)."""
        if self._importance_filter is None:
            self._importance_filter = get_importance_filter()
        return self._importance_filter

    def can_handle(self, account: MailboxAccount) -> bool:
        return account.kind == AccountKind.MERCHANT

    def handle(self, account: MailboxAccount, message: InboundMessage) -> ProcessingResult:
        sender = message.sender_email
        from_gateway = settings.is_payment_gateway_email(sender)
        log.info("merchant_message_checking", sender=sender, from_gateway=from_gateway)

        if not self.importance_filter.is_important(message.subject, message.body):
            self.db.mark_inbound_processed(message.id, "not_important")
            return ProcessingResult(
                success=True,
                action="skipped_not_important",
                inbound_id=message.id,
                mark_seen=False,
                details={"from_gateway": from_gateway},
            )

        conversation = self.db.upsert_merchant_conversation(account.id, sender, message.subject)
        self.db.attach_inbound_to_conversation(message, conversation)

        try:
            self._forward(account, message)
        except (TransientIOError, ConfigurationMissingError) as e:
            self.db.mark_inbound_error(message.id, str(e))
            return ProcessingResult(
                success=False,
                action="forward_failed",
                inbound_id=message.id,
                mark_seen=True,
                error=str(e),
            )

        reminder = Reminder(
            conversation_id=conversation.id,
            reminder_type=ReminderType.REPLY_REMINDER,
            scheduled_for=datetime.now(timezone.utc) + timedelta(hours=settings.reply_reminder_hours),
        )
        self.db.complete_merchant_ingest(message.id, reminder)

        log.info(
            "merchant_message_forwarded",
            inbound_id=message.id,
            conversation_id=conversation.id,
            notify=account.notification_email,
        )
        return ProcessingResult(
            success=True,
            action="forwarded",
            inbound_id=message.id,
            mark_seen=True,
            details={
                "conversation_id": conversation.id,
                "reminder_id": reminder.id,
                "from_gateway": from_gateway,
            },
        )

    def _forward(self, account: MailboxAccount, message: InboundMessage) -> None:
        if not account.notification_email:
            raise ConfigurationMissingError(f"No notification email for {account.email}")

        received = message.email_date or message.created_at or datetime.now(timezone.utc)
        text = FORWARD_TEMPLATE.format(
            account=account.display_name or account.email,
            sender=message.sender,
            subject=message.subject,
            received=received.isoformat(),
            body=message.body,
            hours=settings.reply_reminder_hours,
        )
        self.connector.smtp(account).send(
            to=account.notification_email,
            subject=f"[Merchant] {message.subject}",
            text=text,
        )
