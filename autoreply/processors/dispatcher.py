"""
Dispatcher for scheduled replies.

A scheduled_replies row is the timer: the sweep claims rows whose due_at has
passed, sends them and records the result.
"""

from datetime import datetime, timedelta, timezone

from autoreply.config import settings
from autoreply.core.database import Database
from autoreply.core.errors import ConfigurationMissingError, DispatchFailureError, TransientIOError
from autoreply.core.logging import bind_context, clear_context, get_logger
from autoreply.core.models import AccountKind, ScheduledReply
from autoreply.processors.base import BaseProcessor
from autoreply.services.mailbox import MailboxConnector

log = get_logger(__name__)


def reply_subject(subject: str) -> str:
    """Prefix 'Re: ' unless the subject already carries it (any case)."""
    subject = (subject or "").strip()
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


class Dispatcher(BaseProcessor):
    """Sends due replies and records them atomically."""

    def __init__(
        self,
        db: Database | None = None,
        connector: MailboxConnector | None = None,
    ):
        self.db = db or Database()
        self.connector = connector or MailboxConnector()

    def process(self) -> dict:
        return self.dispatch_due()

    def recover_stale(self, now: datetime | None = None) -> int:
        """Return replies left in 'sending' by a dead process to the queue."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=settings.stale_claim_minutes)
        released = self.db.release_stale_claims(cutoff)
        if released:
            log.warning("stale_claims_released", count=released)
        return released

    def dispatch_due(self, now: datetime | None = None) -> dict:
        """
        Claim and send every due reply.

        Claims left behind by an earlier sweep that died are released first.

        Returns:
            Statistics dict; failures are listed per reply, never raised
        """
        now = now or datetime.now(timezone.utc)
        self.recover_stale(now)
        replies = self.db.claim_due_replies(now, limit=settings.dispatch_batch_size)

        stats = {"claimed": len(replies), "sent": 0, "cancelled": 0, "failed": 0, "released": 0, "failures": []}

        for reply in replies:
            bind_context(reply_id=reply.id, conversation_id=reply.conversation_id)
            try:
                outcome = self.dispatch_one(reply)
                stats[outcome] += 1
            except DispatchFailureError as e:
                stats["failed"] += 1
                stats["failures"].append({"reply_id": e.reply_id, "reason": e.reason})
            except Exception as e:
                # Nothing went out: the next sweep tries again
                log.error("dispatch_error", error=str(e))
                self._release(reply, str(e))
                stats["released"] += 1
                stats["failures"].append({"reply_id": reply.id, "reason": str(e)})
            finally:
                clear_context()

        if replies:
            log.info(
                "dispatch_complete",
                claimed=stats["claimed"],
                sent=stats["sent"],
                cancelled=stats["cancelled"],
                failed=stats["failed"],
                released=stats["released"],
            )
        return stats

    def dispatch_one(self, reply: ScheduledReply) -> str:
        """
        Send one claimed reply.

        Returns:
            "sent" or "cancelled"

        Raises:
            DispatchFailureError: the account is unusable, SMTP failed or the
                send could not be recorded; the reply is marked failed and
                not retried
        """
        conversation = self.db.get_conversation(reply.conversation_id)
        if conversation is None or not conversation.is_active:
            self.db.cancel_reply(reply, "conversation_inactive")
            return "cancelled"

        account = self.db.get_account(conversation.account_id)
        if account is None or not account.is_active:
            self._fail(reply, "mailbox account unavailable")

        subject = reply_subject(reply.subject or conversation.last_subject)

        try:
            sender = self.connector.smtp(account)
            sender.send(
                to=conversation.counterpart,
                subject=subject,
                text=reply.body,
                in_reply_to=reply.payload.get("in_reply_to"),
            )
        except (TransientIOError, ConfigurationMissingError) as e:
            self._fail(reply, str(e))

        sent_at = datetime.now(timezone.utc)
        follow_up_at = None
        if conversation.kind == AccountKind.MERCHANT:
            follow_up_at = sent_at + timedelta(hours=settings.follow_up_hours)

        try:
            self.db.record_dispatched_reply(
                reply,
                conversation,
                subject=subject,
                sender=account.email,
                sent_at=sent_at,
                follow_up_at=follow_up_at,
            )
        except Exception as e:
            # Delivered: never requeue
            log.error("reply_record_failed", error=str(e), to=conversation.counterpart)
            self._fail(reply, f"sent but not recorded: {e}")

        log.info("reply_sent", to=conversation.counterpart, subject=subject[:80])
        return "sent"

    def queue_reply(self, conversation_id: int, body: str, subject: str | None = None) -> ScheduledReply | None:
        """
        Queue an operator-written reply through the durable send path.

        Returns:
            The scheduled reply (due now), or None if the conversation
            does not exist or is inactive
        """
        conversation = self.db.get_conversation(conversation_id)
        if conversation is None or not conversation.is_active:
            return None

        reply = ScheduledReply(
            conversation_id=conversation.id,
            inbound_message_id=None,
            due_at=datetime.now(timezone.utc),
            payload={"subject": subject or conversation.last_subject, "body": body, "source": "operator"},
        )
        self.db.schedule_reply(reply)
        return reply

    def _fail(self, reply: ScheduledReply, reason: str) -> None:
        try:
            self.db.fail_reply(reply.id, reason)
        except Exception as e:
            log.error("reply_fail_not_recorded", error=str(e))
        raise DispatchFailureError(reply.id, reason)

    def _release(self, reply: ScheduledReply, reason: str) -> None:
        try:
            self.db.release_claim(reply.id, reason)
        except Exception as e:
            # Left in 'sending'; recover_stale picks it up later
            log.error("reply_release_failed", error=str(e))
