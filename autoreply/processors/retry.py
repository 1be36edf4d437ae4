"""
Pending-retry processor.

Re-enters the handler for stored messages that a failed step (AI error, SMTP
forward error, crash) left unprocessed without a scheduled reply.
"""

from datetime import datetime, timedelta, timezone

from autoreply.core.database import Database
from autoreply.core.dedup import InFlightGuard
from autoreply.core.logging import bind_context, clear_context, get_logger
from autoreply.handlers import get_handler
from autoreply.handlers.base import BaseHandler
from autoreply.processors.base import BaseProcessor

log = get_logger(__name__)

# Leave fresh messages to the poll that is still handling them
MIN_AGE = timedelta(minutes=5)


class PendingRetryProcessor(BaseProcessor):
    def __init__(
        self,
        db: Database | None = None,
        guard: InFlightGuard | None = None,
        handlers: list[BaseHandler] | None = None,
    ):
        self.db = db or Database()
        self.guard = guard or InFlightGuard()
        self.handlers = handlers

    def process(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        messages = self.db.get_pending_inbound(older_than=now - MIN_AGE)

        stats = {"pending": len(messages), "retried": 0, "succeeded": 0, "errors": 0, "busy": 0}

        for message in messages:
            with self.guard.claim(message.dedup_key) as claimed:
                if not claimed:
                    stats["busy"] += 1
                    continue

                bind_context(inbound_id=message.id)
                try:
                    account = self.db.get_account(message.account_id)
                    handler = get_handler(account, self.handlers) if account and account.is_active else None
                    if handler is None:
                        self.db.mark_inbound_error(message.id, "mailbox account unavailable")
                        stats["errors"] += 1
                        continue

                    stats["retried"] += 1
                    result = handler.handle(account, message)
                    if result.success:
                        stats["succeeded"] += 1
                    else:
                        stats["errors"] += 1

                except Exception as e:
                    log.error("retry_message_error", error=str(e))
                    self.db.mark_inbound_error(message.id, str(e))
                    stats["errors"] += 1

                finally:
                    clear_context()

        if messages:
            log.info("pending_retry_complete", **stats)
        return stats
