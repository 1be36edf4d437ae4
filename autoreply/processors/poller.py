"""
Mailbox poller.

Fetches unseen mail for each active account, passes every message through the
dedup gate and hands new ones to the handler for the account's kind.
"""

from concurrent.futures import ThreadPoolExecutor

from autoreply.config import settings
from autoreply.core.database import Database
from autoreply.core.dedup import DedupGate, InFlightGuard
from autoreply.core.errors import ConfigurationMissingError, TransientIOError
from autoreply.core.logging import bind_context, clear_context, get_logger
from autoreply.core.models import InboundMessage, MailboxAccount, PollOutcome
from autoreply.handlers import get_handler
from autoreply.handlers.base import BaseHandler
from autoreply.processors.base import BaseProcessor
from autoreply.services.imap import IMAPClient
from autoreply.services.mailbox import MailboxConnector

log = get_logger(__name__)


class MailboxPoller(BaseProcessor):
    """
    Polls mailboxes.

    Distinct accounts are polled concurrently; one account is never polled
    twice at the same time (the second attempt reports "busy").
    """

    def __init__(
        self,
        db: Database | None = None,
        connector: MailboxConnector | None = None,
        gate: DedupGate | None = None,
        handlers: list[BaseHandler] | None = None,
        max_workers: int | None = None,
    ):
        self.db = db or Database()
        self.connector = connector or MailboxConnector()
        self.gate = gate or DedupGate(self.db)
        self.handlers = handlers
        self.max_workers = max_workers or settings.poll_concurrency
        self._accounts_in_flight = InFlightGuard()

    def process(self) -> dict:
        outcomes = self.poll_all()
        stats = {
            "accounts": len(outcomes),
            "fetched": sum(o.fetched for o in outcomes),
            "accepted": sum(o.accepted for o in outcomes),
            "duplicates": sum(o.duplicates for o in outcomes),
            "errors": sum(o.errors for o in outcomes) + sum(1 for o in outcomes if o.status == "error"),
        }
        log.info("poll_complete", **stats)
        return stats

    def poll_all(self) -> list[PollOutcome]:
        """Poll every active account. One account failing never affects the others."""
        accounts = self.db.get_active_accounts()
        if not accounts:
            log.debug("no_active_accounts")
            return []

        workers = max(1, min(self.max_workers, len(accounts)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="poll") as pool:
            futures = [pool.submit(self.poll_account, account) for account in accounts]
            return [future.result() for future in futures]

    def poll_account(self, account: MailboxAccount) -> PollOutcome:
        outcome = PollOutcome(account_id=account.id, account_email=account.email)

        with self._accounts_in_flight.claim(str(account.id)) as claimed:
            if not claimed:
                outcome.status = "busy"
                log.info("poll_account_busy", account=account.email)
                return outcome

            bind_context(account=account.email)
            try:
                if not account.is_active:
                    raise ConfigurationMissingError(f"Account {account.email} is inactive")

                handler = get_handler(account, self.handlers)
                if handler is None:
                    raise ConfigurationMissingError(f"No handler for account kind {account.kind.value}")

                with self.connector.imap(account) as imap:
                    for message in imap.fetch_unseen():
                        outcome.fetched += 1
                        self._handle_message(account, handler, imap, message, outcome)

            except (TransientIOError, ConfigurationMissingError) as e:
                outcome.status = "error"
                outcome.error = str(e)
                log.error("poll_account_failed", error=str(e))

            except Exception as e:
                outcome.status = "error"
                outcome.error = str(e)
                log.error("poll_account_crashed", error=str(e), exc_info=True)

            finally:
                log.info("poll_account_complete", **outcome.to_dict())
                clear_context()

        return outcome

    def _handle_message(
        self,
        account: MailboxAccount,
        handler: BaseHandler,
        imap: IMAPClient,
        message: InboundMessage,
        outcome: PollOutcome,
    ) -> None:
        with self.gate.admit(account, message) as inbound_id:
            if inbound_id is None:
                outcome.duplicates += 1
                # Stored and acted on earlier but the flag never landed
                if message.uid and self.db.is_inbound_settled(message):
                    imap.mark_seen(message.uid)
                    log.info("duplicate_flagged_seen", message_id=message.message_id)
                return

            outcome.accepted += 1
            try:
                bind_context(inbound_id=inbound_id)
                result = handler.handle(account, message)
            except (TransientIOError, ConfigurationMissingError):
                raise
            except Exception as e:
                # Stored but unprocessed: the pending-retry job picks it up
                log.error("handle_message_error", error=str(e), inbound_id=inbound_id)
                self.db.mark_inbound_error(inbound_id, str(e))
                outcome.errors += 1
                return

            if not result.success:
                outcome.errors += 1
            elif result.action.startswith("skipped"):
                outcome.skipped += 1

            if result.mark_seen and message.uid:
                imap.mark_seen(message.uid)

            log.info(
                "message_handled",
                action=result.action,
                success=result.success,
                mark_seen=result.mark_seen,
            )
