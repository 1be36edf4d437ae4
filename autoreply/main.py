"""
FastAPI management surface for the auto-reply pipeline.
"""

from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import BaseModel, Field

from autoreply import __version__
from autoreply.config import settings
from autoreply.core.database import Database
from autoreply.core.logging import configure_logging, get_logger
from autoreply.scheduler import (
    get_dispatcher,
    get_poller,
    get_reminder_engine,
    get_scheduler,
    run_now,
    start_scheduler,
    stop_scheduler,
)

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging(log_level=settings.log_level, json_output=settings.json_logs)
    log.info("application_starting", version=__version__)

    db = Database()
    db.init_schema()

    if settings.scheduler_enabled:
        start_scheduler()
    else:
        log.info("scheduler_disabled", reason="use the management endpoints to run jobs")

    yield

    if settings.scheduler_enabled:
        stop_scheduler()
    log.info("application_stopped")


app = FastAPI(
    title="Auto-Reply Service",
    description="Inbound mail processing with delayed replies and reminders",
    version=__version__,
    lifespan=lifespan,
)


# Request/Response Models

class PollRequest(BaseModel):
    account_id: int | None = None  # Poll one account synchronously


class SnoozeRequest(BaseModel):
    hours: int = Field(default=1, ge=1)


class QueueReplyRequest(BaseModel):
    body: str = Field(min_length=1)
    subject: str | None = None


class StatsResponse(BaseModel):
    inbound_total: int = 0
    inbound_pending: int = 0
    inbound_errors: int = 0
    replies_pending: int = 0
    replies_sent: int = 0
    replies_failed: int = 0
    reminders_open: int = 0


# Endpoints

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "scheduler_running": get_scheduler() is not None,
    }


@app.get("/stats", response_model=StatsResponse)
def get_stats():
    """Get processing statistics."""
    return StatsResponse(**Database().get_stats())


@app.post("/poll")
def trigger_poll(request: PollRequest, background_tasks: BackgroundTasks):
    """
    Poll mailboxes now.

    With account_id the single account is polled inline and its outcome
    returned; otherwise every active account is polled in the background.
    """
    if request.account_id is None:
        background_tasks.add_task(run_now, "poll_mailboxes")
        return {"status": "poll_started"}

    poller = get_poller()
    account = poller.db.get_account(request.account_id)
    if account is None:
        raise HTTPException(status_code=404, detail=f"Account {request.account_id} not found")
    return poller.poll_account(account).to_dict()


@app.post("/dispatch")
async def trigger_dispatch(background_tasks: BackgroundTasks):
    """Send every reply whose due time has passed."""
    background_tasks.add_task(run_now, "dispatch_replies")
    return {"status": "dispatch_started"}


@app.post("/reminders/process")
async def trigger_reminders(background_tasks: BackgroundTasks):
    background_tasks.add_task(run_now, "process_reminders")
    return {"status": "reminders_started"}


@app.post("/reminders/{reminder_id}/snooze")
def snooze_reminder(reminder_id: int, request: SnoozeRequest):
    if not get_reminder_engine().snooze(reminder_id, request.hours):
        raise HTTPException(status_code=404, detail=f"Reminder {reminder_id} not found or already closed")
    return {"status": "snoozed", "reminder_id": reminder_id, "hours": request.hours}


@app.post("/reminders/{reminder_id}/dismiss")
def dismiss_reminder(reminder_id: int):
    if not get_reminder_engine().dismiss(reminder_id):
        raise HTTPException(status_code=404, detail=f"Reminder {reminder_id} not found or already closed")
    return {"status": "dismissed", "reminder_id": reminder_id}


@app.post("/conversations/{conversation_id}/replied")
def mark_conversation_replied(conversation_id: int):
    """Record that a human answered outside the system."""
    if not get_reminder_engine().mark_replied(conversation_id):
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    return {"status": "marked_replied", "conversation_id": conversation_id}


@app.post("/conversations/{conversation_id}/reply")
def queue_conversation_reply(conversation_id: int, request: QueueReplyRequest):
    """Queue an operator-written reply; the next dispatch sweep sends it."""
    reply = get_dispatcher().queue_reply(conversation_id, request.body, request.subject)
    if reply is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found or inactive")
    return {"status": "queued", "reply_id": reply.id, "due_at": reply.due_at.isoformat()}
