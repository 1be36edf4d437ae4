"""
Assignment handler: client mail to an agent mailbox gets a delayed AI reply.
"""

from autoreply.classifiers import get_classifier, get_reply_writer
from autoreply.config import settings
from autoreply.core.database import Database
from autoreply.core.delay import DelayScheduler
from autoreply.core.errors import ConfigurationMissingError, ReplyGenerationError
from autoreply.core.logging import get_logger
from autoreply.core.models import (
    AccountKind,
    ConversationMessage,
    InboundMessage,
    MailboxAccount,
    MessageDirection,
    ProcessingResult,
    ScheduledReply,
)
from autoreply.handlers.base import BaseHandler
from autoreply.handlers.registry import register_handler

log = get_logger(__name__)


def last_counterpart_at(history: list[ConversationMessage]):
    """Arrival time of the counterpart's most recent earlier message, if any."""
    for turn in reversed(history):
        if turn.direction == MessageDirection.INBOUND:
            return turn.created_at
    return None


@register_handler
class AssignmentHandler(BaseHandler):
    """Classify, write and schedule a reply for each client message."""

    def __init__(self, db=None, classifier=None, reply_writer=None, delay_scheduler=None):
        self._db = db
        self._classifier = classifier
        self._reply_writer = reply_writer
        self.delay_scheduler = delay_scheduler or DelayScheduler()

    @property
    def db(self) -> Database:
        if self._db is None:
            self._db = Database()
        return self._db

    @property
    def classifier(self):
        """Lazy-load classifier (needs API key)."""
        if self._classifier is None:
            self._classifier = get_classifier()
        return self._classifier

    @property
    def reply_writer(self):
        if self._reply_writer is None:
            self._reply_writer = get_reply_writer()
        return self._reply_writer

    def can_handle(self, account: MailboxAccount) -> bool:
        return account.kind == AccountKind.ASSIGNMENT

    def handle(self, account: MailboxAccount, message: InboundMessage) -> ProcessingResult:
        conversation = self.db.find_conversation(account.id, message.sender_email)
        if conversation is None or not conversation.is_active:
            # Left unseen so a human notices mail from an unknown sender
            self.db.mark_inbound_processed(message.id, "no_active_conversation")
            log.info(
                "no_active_conversation",
                inbound_id=message.id,
                sender=message.sender_email,
                account=account.email,
            )
            return ProcessingResult(
                success=True,
                action="skipped_no_conversation",
                inbound_id=message.id,
                mark_seen=False,
            )

        self.db.attach_inbound_to_conversation(message, conversation)
        history = self.db.get_recent_messages(
            conversation.id,
            limit=settings.history_turns,
            exclude_inbound_id=message.id,
        )

        classification = self.classifier.classify(message.body, history)

        try:
            body = self.reply_writer.write_reply(account, conversation, history, message, classification)
        except (ReplyGenerationError, ConfigurationMissingError) as e:
            self.db.mark_inbound_error(message.id, str(e))
            return ProcessingResult(
                success=False,
                action="reply_generation_failed",
                inbound_id=message.id,
                mark_seen=True,
                error=str(e),
            )

        due_at = self.delay_scheduler.schedule(
            classification,
            conversation,
            last_counterpart_at=last_counterpart_at(history),
            account=account,
        )

        reply = ScheduledReply(
            conversation_id=conversation.id,
            inbound_message_id=message.id,
            due_at=due_at,
            payload={
                "subject": message.subject or conversation.last_subject,
                "body": body,
                "in_reply_to": message.message_id,
                "classification": classification.to_dict(),
            },
        )
        reply_id = self.db.schedule_reply(reply)

        return ProcessingResult(
            success=True,
            action="reply_scheduled" if reply_id else "reply_already_scheduled",
            inbound_id=message.id,
            mark_seen=True,
            details={
                "conversation_id": conversation.id,
                "reply_id": reply_id,
                "due_at": due_at.isoformat(),
                "urgency": classification.urgency_level,
                "tone": classification.emotional_tone,
            },
        )
