"""Scheduled pipeline processors."""

from autoreply.processors.base import BaseProcessor
from autoreply.processors.dispatcher import Dispatcher, reply_subject
from autoreply.processors.poller import MailboxPoller
from autoreply.processors.reminders import ReminderEngine
from autoreply.processors.retry import PendingRetryProcessor

__all__ = [
    "BaseProcessor",
    "Dispatcher",
    "MailboxPoller",
    "PendingRetryProcessor",
    "ReminderEngine",
    "reply_subject",
]
