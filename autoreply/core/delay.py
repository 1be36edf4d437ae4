"""
Reply timing: urgency -> delay -> working-hours-aware send time.

Pure computation. The random source and "now" are injected so callers and
tests control them; nothing here touches the network or the database.
"""

import random
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from autoreply.config import settings
from autoreply.core.logging import get_logger
from autoreply.core.models import Classification, Conversation, MailboxAccount, parse_clock

log = get_logger(__name__)

# (minimum urgency, band start minutes, band end minutes), checked top-down
URGENCY_BANDS: list[tuple[int, int, int]] = [
    (9, 10, 20),
    (7, 30, 60),
    (5, 60, 120),
    (3, 120, 240),
    (1, 240, 360),
]

QUICK_REPLY_WINDOW = timedelta(minutes=10)
QUICK_REPLY_FLOOR_MINUTES = 20
URGENT_BYPASS_LEVEL = 8
START_JITTER_MINUTES = 30
ROUND_OFFSETS = [n for n in range(-7, 8) if n != 0]


@dataclass
class DelayPolicy:
    """Per-conversation timing settings with defaults filled in."""

    min_minutes: int
    max_minutes: int
    timezone: str
    start: time
    end: time

    @classmethod
    def from_conversation(
        cls,
        conversation: Conversation,
        account: MailboxAccount | None = None,
    ) -> "DelayPolicy":
        """Conversation settings first, then the account's timezone, then defaults."""
        low = conversation.min_delay_minutes
        high = conversation.max_delay_minutes
        if low is None:
            low = settings.default_min_delay_minutes
        if high is None:
            high = settings.default_max_delay_minutes
        low, high = max(0, min(low, high)), max(0, max(low, high))

        return cls(
            min_minutes=low,
            max_minutes=high,
            timezone=(
                conversation.timezone
                or (account.timezone if account else None)
                or settings.default_timezone
            ),
            start=parse_clock(conversation.working_hours_start, settings.default_working_hours_start),
            end=parse_clock(conversation.working_hours_end, settings.default_working_hours_end),
        )

    def clamp(self, minutes: float) -> int:
        return min(self.max_minutes, max(self.min_minutes, max(1, int(round(minutes)))))


def within_window(moment: time, start: time, end: time) -> bool:
    """Inclusive window check; start > end means the window crosses midnight."""
    if start <= end:
        return start <= moment <= end
    return moment >= start or moment <= end


class DelayScheduler:
    """Turns a classification into an absolute UTC send time."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def base_delay(
        self,
        urgency: int,
        policy: DelayPolicy,
        last_counterpart_at: datetime | None = None,
        now: datetime | None = None,
    ) -> float:
        """Urgency band with random width, clamped, with the quick-reply floor."""
        now = now or datetime.now(timezone.utc)

        low, high = URGENCY_BANDS[-1][1:]
        for threshold, band_low, band_high in URGENCY_BANDS:
            if urgency >= threshold:
                low, high = band_low, band_high
                break

        delay = self.rng.uniform(low, high)
        delay = max(policy.min_minutes, min(policy.max_minutes, delay))

        # Counterpart wrote moments ago
        if last_counterpart_at and now - last_counterpart_at < QUICK_REPLY_WINDOW:
            delay = max(delay, min(QUICK_REPLY_FLOOR_MINUTES, policy.max_minutes))

        return delay

    def humanize(self, minutes: float, policy: DelayPolicy) -> int:
        """±10% jitter, nudge off round half-hours, keep within policy bounds."""
        jittered = int(round(minutes * self.rng.uniform(0.9, 1.1)))
        if jittered > 60 and jittered % 30 == 0:
            jittered += self.rng.choice(ROUND_OFFSETS)
        return policy.clamp(jittered)

    def compute_delay(
        self,
        classification: Classification,
        policy: DelayPolicy,
        last_counterpart_at: datetime | None = None,
        now: datetime | None = None,
    ) -> int:
        """Delay in whole minutes before working-hours projection."""
        base = self.base_delay(classification.urgency_level, policy, last_counterpart_at, now)
        return self.humanize(base, policy)

    def project_working_hours(
        self,
        candidate: datetime,
        urgency: int,
        policy: DelayPolicy,
    ) -> datetime:
        """Move an off-hours send time to the next window start (+0-30 min)."""
        if urgency >= URGENT_BYPASS_LEVEL:
            return candidate

        try:
            tz = ZoneInfo(policy.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            log.warning("unknown_timezone", timezone=policy.timezone)
            return candidate

        local = candidate.astimezone(tz)
        if within_window(local.time(), policy.start, policy.end):
            return candidate

        window_start = datetime.combine(local.date(), policy.start, tzinfo=tz)
        if local >= window_start:
            window_start = datetime.combine(local.date() + timedelta(days=1), policy.start, tzinfo=tz)

        target = window_start + timedelta(minutes=self.rng.randint(0, START_JITTER_MINUTES))
        return target.astimezone(timezone.utc)

    def schedule(
        self,
        classification: Classification,
        conversation: Conversation,
        last_counterpart_at: datetime | None = None,
        now: datetime | None = None,
        account: MailboxAccount | None = None,
    ) -> datetime:
        """
        Compute when to send the reply.

        Args:
            classification: Urgency/tone of the message being answered
            conversation: Conversation carrying delay and working-hours policy
            last_counterpart_at: When the counterpart's previous message arrived
            now: Reference time (timezone-aware), defaults to current UTC time
            account: Mailbox account; its timezone applies when the
                conversation has none

        Returns:
            Timezone-aware UTC datetime
        """
        now = now or datetime.now(timezone.utc)
        policy = DelayPolicy.from_conversation(conversation, account)
        delay = self.compute_delay(classification, policy, last_counterpart_at, now)
        candidate = now + timedelta(minutes=delay)
        due_at = self.project_working_hours(candidate, classification.urgency_level, policy)

        log.debug(
            "reply_time_computed",
            conversation_id=conversation.id,
            urgency=classification.urgency_level,
            delay_minutes=delay,
            projected=due_at != candidate,
            due_at=due_at.isoformat(),
        )
        return due_at.astimezone(timezone.utc)
