"""
APScheduler job runner: polling, reply dispatch, reminder sweep, pending retry.
"""

import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from autoreply.config import settings
from autoreply.core.dedup import DedupGate, InFlightGuard
from autoreply.core.logging import get_logger
from autoreply.processors import Dispatcher, MailboxPoller, PendingRetryProcessor, ReminderEngine

log = get_logger(__name__)

# Global scheduler instance
_scheduler: BackgroundScheduler | None = None

# Processors are shared between scheduled jobs and manual triggers so the
# in-flight guards see every caller
_message_guard = InFlightGuard()
_processors: dict[str, object] = {}
_processors_lock = threading.Lock()


def _get(name: str, factory):
    with _processors_lock:
        if name not in _processors:
            _processors[name] = factory()
        return _processors[name]


def get_poller() -> MailboxPoller:
    def build():
        poller = MailboxPoller()
        poller.gate = DedupGate(poller.db, guard=_message_guard)
        return poller

    return _get("poller", build)


def get_dispatcher() -> Dispatcher:
    return _get("dispatcher", Dispatcher)


def get_reminder_engine() -> ReminderEngine:
    return _get("reminders", ReminderEngine)


def get_retry_processor() -> PendingRetryProcessor:
    return _get("retry", lambda: PendingRetryProcessor(guard=_message_guard))


def _run_job(job: str, processor) -> dict | None:
    log.debug("scheduled_job_starting", job=job)
    try:
        stats = processor.process()
        log.debug("scheduled_job_complete", job=job)
        return stats
    except Exception as e:
        log.error("scheduled_job_error", job=job, error=str(e))
        return None


def poll_mailboxes_job():
    """Fetch unseen mail for every active account."""
    _run_job("poll_mailboxes", get_poller())


def dispatch_replies_job():
    """Send scheduled replies whose due time has passed."""
    _run_job("dispatch_replies", get_dispatcher())


def process_reminders_job():
    _run_job("process_reminders", get_reminder_engine())


def retry_pending_job():
    """Re-run handlers for stored messages a failed step left unprocessed."""
    _run_job("retry_pending", get_retry_processor())


def start_scheduler() -> BackgroundScheduler:
    """
    Start the background scheduler.

    Replies stuck in 'sending' from a previous process are released first.
    Every job runs at most one instance at a time; missed runs coalesce.

    Returns:
        The scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        log.warning("scheduler_already_running")
        return _scheduler

    try:
        get_dispatcher().recover_stale()
    except Exception as e:
        log.error("stale_claim_recovery_failed", error=str(e))

    _scheduler = BackgroundScheduler(job_defaults={"max_instances": 1, "coalesce": True})

    _scheduler.add_job(
        poll_mailboxes_job,
        trigger=IntervalTrigger(minutes=settings.poll_interval_minutes),
        id="poll_mailboxes",
        name="Poll mailboxes",
        replace_existing=True,
    )
    _scheduler.add_job(
        dispatch_replies_job,
        trigger=IntervalTrigger(seconds=settings.dispatch_interval_seconds),
        id="dispatch_replies",
        name="Dispatch due replies",
        replace_existing=True,
    )
    _scheduler.add_job(
        process_reminders_job,
        trigger=IntervalTrigger(minutes=settings.reminder_interval_minutes),
        id="process_reminders",
        name="Process due reminders",
        replace_existing=True,
    )
    _scheduler.add_job(
        retry_pending_job,
        trigger=IntervalTrigger(minutes=settings.retry_interval_minutes),
        id="retry_pending",
        name="Retry unprocessed messages",
        replace_existing=True,
    )

    _scheduler.start()
    log.info(
        "scheduler_started",
        poll_minutes=settings.poll_interval_minutes,
        dispatch_seconds=settings.dispatch_interval_seconds,
        reminder_minutes=settings.reminder_interval_minutes,
        retry_minutes=settings.retry_interval_minutes,
    )

    return _scheduler


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("scheduler_stopped")


def get_scheduler() -> BackgroundScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler


def run_now(job: str = "poll_mailboxes") -> dict | None:
    """Run one job synchronously in the calling thread."""
    processors = {
        "poll_mailboxes": get_poller,
        "dispatch_replies": get_dispatcher,
        "process_reminders": get_reminder_engine,
        "retry_pending": get_retry_processor,
    }
    if job not in processors:
        raise ValueError(f"Unknown job: {job}")
    return _run_job(job, processors[job]())
