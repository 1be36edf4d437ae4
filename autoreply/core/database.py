"""
Database repository for the inbound pipeline.

Every public method is one short committed transaction, so a crash between
pipeline steps leaves a resumable state instead of a torn write.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json

from autoreply.config import settings
from autoreply.core.logging import get_logger
from autoreply.core.models import (
    AccountKind,
    AccountStatus,
    Conversation,
    ConversationMessage,
    ConversationStatus,
    InboundMessage,
    MailboxAccount,
    MessageDirection,
    Reminder,
    ReminderType,
    ReplyStatus,
    ScheduledReply,
)

log = get_logger(__name__)

# Inbound outcomes that mean the handler acted on the message
SETTLED_OUTCOMES = ("replied", "forwarded")

SCHEMA_SQL = """
-- mailbox_accounts: owned by the account store, read-only here
CREATE TABLE IF NOT EXISTS mailbox_accounts (
    id SERIAL PRIMARY KEY,
    email VARCHAR(255) UNIQUE NOT NULL,
    kind VARCHAR(20) NOT NULL DEFAULT 'assignment',
    display_name VARCHAR(255),
    imap_host VARCHAR(255),
    imap_port INTEGER,
    smtp_host VARCHAR(255),
    smtp_port INTEGER,
    password_encrypted TEXT,
    notification_email VARCHAR(255),
    status VARCHAR(20) NOT NULL DEFAULT 'active',
    timezone VARCHAR(64),
    persona TEXT,
    system_prompt TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- conversations: assignment (created externally) or merchant (upserted on ingest)
CREATE TABLE IF NOT EXISTS conversations (
    id SERIAL PRIMARY KEY,
    account_id INTEGER NOT NULL REFERENCES mailbox_accounts(id) ON DELETE CASCADE,
    kind VARCHAR(20) NOT NULL DEFAULT 'assignment',
    counterpart VARCHAR(255) NOT NULL,
    counterpart_name VARCHAR(255),
    status VARCHAR(30) NOT NULL DEFAULT 'active',
    min_delay INTEGER,
    max_delay INTEGER,
    timezone VARCHAR(64),
    working_hours_start TIME,
    working_hours_end TIME,
    tone VARCHAR(50),
    context TEXT,
    last_subject TEXT,
    reply_sent BOOLEAN DEFAULT FALSE,
    reply_sent_at TIMESTAMPTZ,
    follow_up_sent BOOLEAN DEFAULT FALSE,
    follow_up_sent_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE (account_id, counterpart)
);

-- inbound_messages: dedup record, one row per message identity
CREATE TABLE IF NOT EXISTS inbound_messages (
    id SERIAL PRIMARY KEY,
    account_id INTEGER REFERENCES mailbox_accounts(id),
    message_id VARCHAR(512) UNIQUE,
    content_hash CHAR(64) UNIQUE NOT NULL,
    sender VARCHAR(255),
    recipient VARCHAR(255),
    subject TEXT,
    body TEXT,
    body_html TEXT,
    email_date TIMESTAMPTZ,
    conversation_id INTEGER REFERENCES conversations(id),
    processed BOOLEAN DEFAULT FALSE,
    processed_at TIMESTAMPTZ,
    outcome VARCHAR(50),
    error_message TEXT,
    retry_count INTEGER DEFAULT 0,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_inbound_processed ON inbound_messages(processed, created_at);

-- conversation_messages: history used for prior turns
CREATE TABLE IF NOT EXISTS conversation_messages (
    id SERIAL PRIMARY KEY,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    direction VARCHAR(10) NOT NULL,
    inbound_message_id INTEGER UNIQUE REFERENCES inbound_messages(id),
    subject TEXT,
    sender VARCHAR(255),
    recipient VARCHAR(255),
    body TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_conv_messages ON conversation_messages(conversation_id, created_at);

-- scheduled_replies: durable delayed sends
CREATE TABLE IF NOT EXISTS scheduled_replies (
    id SERIAL PRIMARY KEY,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    inbound_message_id INTEGER UNIQUE REFERENCES inbound_messages(id),
    due_at TIMESTAMPTZ NOT NULL,
    payload JSONB NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    error_message TEXT,
    claimed_at TIMESTAMPTZ,
    sent_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_replies_due ON scheduled_replies(status, due_at);

-- reminders: reply-needed and follow-up obligations
CREATE TABLE IF NOT EXISTS reminders (
    id SERIAL PRIMARY KEY,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    reminder_type VARCHAR(20) NOT NULL,
    scheduled_for TIMESTAMPTZ NOT NULL,
    snoozed_until TIMESTAMPTZ,
    sent BOOLEAN DEFAULT FALSE,
    dismissed BOOLEAN DEFAULT FALSE,
    sent_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_reminders_due ON reminders(sent, dismissed, scheduled_for);
"""

CONVERSATION_COLUMNS = """
    id, account_id, kind, counterpart, counterpart_name, status, min_delay, max_delay,
    timezone, working_hours_start, working_hours_end, tone, context, last_subject,
    reply_sent, reply_sent_at, follow_up_sent
"""

INBOUND_COLUMNS = """
    id, account_id, message_id, content_hash, sender, recipient, subject, body,
    body_html, email_date, conversation_id, processed, processed_at, error_message,
    retry_count, created_at
"""

REPLY_COLUMNS = """
    id, conversation_id, inbound_message_id, due_at, payload, status, error_message,
    claimed_at, sent_at, created_at
"""

REMINDER_COLUMNS = """
    id, conversation_id, reminder_type, scheduled_for, snoozed_until, sent, dismissed,
    sent_at, created_at
"""


class Database:
    """PostgreSQL operations for accounts, messages, replies and reminders."""

    def __init__(self, connection_string: str | None = None):
        """
        Initialize database connection.

        Args:
            connection_string: PostgreSQL connection URL. Uses settings if not provided.
        """
        self.connection_string = connection_string or settings.database_url

    @contextmanager
    def get_connection(self) -> Generator[psycopg.Connection, None, None]:
        """Get a database connection; work that is not committed is rolled back on close."""
        conn = psycopg.connect(
            self.connection_string,
            row_factory=dict_row,
            connect_timeout=settings.db_connect_timeout,
        )
        try:
            yield conn
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Initialize database schema (create tables if not exist)."""
        with self.get_connection() as conn:
            conn.execute(SCHEMA_SQL)
            conn.commit()
            log.info("database_schema_initialized")

    # ------------------------------------------------------------------
    # Account store (read-only)
    # ------------------------------------------------------------------

    def get_active_accounts(self, kind: AccountKind | None = None) -> list[MailboxAccount]:
        sql = "SELECT * FROM mailbox_accounts WHERE status = %s"
        params: list[Any] = [AccountStatus.ACTIVE.value]
        if kind:
            sql += " AND kind = %s"
            params.append(kind.value)
        sql += " ORDER BY id"

        with self.get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._row_to_account(row) for row in rows]

    def get_account(self, account_id: int) -> MailboxAccount | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM mailbox_accounts WHERE id = %s",
                (account_id,),
            ).fetchone()
            return self._row_to_account(row) if row else None

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def insert_inbound_message(self, message: InboundMessage) -> int | None:
        """
        Insert the dedup record for a newly seen message.

        Returns:
            The new row id, or None if message_id or content_hash already exists.
        """
        sql = """
        INSERT INTO inbound_messages (
            account_id, message_id, content_hash, sender, recipient, subject,
            body, body_html, email_date
        ) VALUES (
            %(account_id)s, %(message_id)s, %(content_hash)s, %(sender)s, %(recipient)s,
            %(subject)s, %(body)s, %(body_html)s, %(email_date)s
        )
        ON CONFLICT DO NOTHING
        RETURNING id
        """

        params = {
            "account_id": message.account_id,
            "message_id": message.message_id or None,
            "content_hash": message.content_hash,
            "sender": message.sender_email,
            "recipient": message.recipient_email,
            "subject": message.subject,
            "body": message.body,
            "body_html": message.body_html,
            "email_date": message.email_date,
        }

        with self.get_connection() as conn:
            result = conn.execute(sql, params).fetchone()
            conn.commit()

            if not result:
                return None
            log.info("inbound_message_inserted", inbound_id=result["id"], message_id=message.message_id)
            return result["id"]

    def is_inbound_settled(self, message: InboundMessage) -> bool:
        """
        Whether the stored copy of a message was accepted by its handler.

        Accepted means replied to, forwarded, or holding a scheduled reply.
        Messages closed out without action do not count.
        """
        sql = """
        SELECT 1
        FROM inbound_messages m
        WHERE (m.message_id = %(message_id)s OR m.content_hash = %(content_hash)s)
          AND (
              (m.processed AND m.outcome = ANY(%(outcomes)s))
              OR EXISTS (SELECT 1 FROM scheduled_replies r WHERE r.inbound_message_id = m.id)
          )
        LIMIT 1
        """

        params = {
            "message_id": message.message_id or None,
            "content_hash": message.content_hash,
            "outcomes": list(SETTLED_OUTCOMES),
        }

        with self.get_connection() as conn:
            return conn.execute(sql, params).fetchone() is not None

    def mark_inbound_processed(self, inbound_id: int, outcome: str) -> None:
        """Mark a message handled without a reply (not actionable, forwarded...)."""
        with self.get_connection() as conn:
            conn.execute(
                """
                UPDATE inbound_messages
                SET processed = TRUE, processed_at = NOW(), outcome = %s, error_message = NULL
                WHERE id = %s AND processed = FALSE
                """,
                (outcome, inbound_id),
            )
            conn.commit()
            log.info("inbound_marked_processed", inbound_id=inbound_id, outcome=outcome)

    def mark_inbound_error(self, inbound_id: int, error_message: str) -> None:
        with self.get_connection() as conn:
            conn.execute(
                """
                UPDATE inbound_messages
                SET error_message = %s, retry_count = COALESCE(retry_count, 0) + 1
                WHERE id = %s
                """,
                (error_message, inbound_id),
            )
            conn.commit()
            log.warning("inbound_marked_error", inbound_id=inbound_id, error=error_message)

    def get_pending_inbound(self, older_than: datetime, limit: int = 50) -> list[InboundMessage]:
        """
        Unprocessed messages that never got a scheduled reply.

        These were interrupted by a crash or a failed step and are retried
        until max_retries.
        """
        sql = f"""
        SELECT {INBOUND_COLUMNS}
        FROM inbound_messages m
        WHERE m.processed = FALSE
          AND COALESCE(m.retry_count, 0) < %s
          AND m.created_at < %s
          AND NOT EXISTS (
              SELECT 1 FROM scheduled_replies r WHERE r.inbound_message_id = m.id
          )
        ORDER BY m.created_at ASC
        LIMIT %s
        """

        with self.get_connection() as conn:
            rows = conn.execute(sql, (settings.max_retries, older_than, limit)).fetchall()
            return [self._row_to_inbound(row) for row in rows]

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def get_conversation(self, conversation_id: int) -> Conversation | None:
        with self.get_connection() as conn:
            row = conn.execute(
                f"SELECT {CONVERSATION_COLUMNS} FROM conversations WHERE id = %s",
                (conversation_id,),
            ).fetchone()
            return self._row_to_conversation(row) if row else None

    def find_conversation(self, account_id: int, counterpart: str) -> Conversation | None:
        with self.get_connection() as conn:
            row = conn.execute(
                f"""
                SELECT {CONVERSATION_COLUMNS} FROM conversations
                WHERE account_id = %s AND counterpart = %s
                """,
                (account_id, counterpart.lower()),
            ).fetchone()
            return self._row_to_conversation(row) if row else None

    def upsert_merchant_conversation(
        self,
        account_id: int,
        counterpart: str,
        subject: str,
    ) -> Conversation:
        """Open (or reopen) the merchant conversation for a new inbound message."""
        sql = f"""
        INSERT INTO conversations (account_id, kind, counterpart, status, last_subject)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (account_id, counterpart) DO UPDATE
        SET status = EXCLUDED.status,
            last_subject = EXCLUDED.last_subject,
            reply_sent = FALSE,
            updated_at = NOW()
        RETURNING {CONVERSATION_COLUMNS}
        """

        with self.get_connection() as conn:
            row = conn.execute(sql, (
                account_id,
                AccountKind.MERCHANT.value,
                counterpart.lower(),
                ConversationStatus.PENDING.value,
                subject,
            )).fetchone()
            conn.commit()
            return self._row_to_conversation(row)

    def attach_inbound_to_conversation(self, inbound: InboundMessage, conversation: Conversation) -> None:
        """Append the message to the conversation history and link the dedup row."""
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO conversation_messages (
                    conversation_id, direction, inbound_message_id, subject, sender, recipient, body
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (inbound_message_id) DO NOTHING
                """,
                (
                    conversation.id,
                    MessageDirection.INBOUND.value,
                    inbound.id,
                    inbound.subject,
                    inbound.sender_email,
                    inbound.recipient_email,
                    inbound.body,
                ),
            )
            conn.execute(
                "UPDATE inbound_messages SET conversation_id = %s WHERE id = %s",
                (conversation.id, inbound.id),
            )
            conn.execute(
                "UPDATE conversations SET last_subject = %s, updated_at = NOW() WHERE id = %s",
                (inbound.subject, conversation.id),
            )
            conn.commit()

        inbound.conversation_id = conversation.id

    def get_recent_messages(
        self,
        conversation_id: int,
        limit: int = 5,
        exclude_inbound_id: int | None = None,
    ) -> list[ConversationMessage]:
        """Last N turns, oldest first, optionally excluding the message being answered."""
        sql = """
        SELECT * FROM (
            SELECT id, conversation_id, direction, inbound_message_id, subject, sender,
                   recipient, body, created_at
            FROM conversation_messages
            WHERE conversation_id = %s
              AND (%s::INTEGER IS NULL OR inbound_message_id IS DISTINCT FROM %s)
            ORDER BY created_at DESC, id DESC
            LIMIT %s
        ) recent
        ORDER BY created_at ASC, id ASC
        """

        with self.get_connection() as conn:
            rows = conn.execute(
                sql, (conversation_id, exclude_inbound_id, exclude_inbound_id, limit)
            ).fetchall()
            return [self._row_to_message(row) for row in rows]

    def has_inbound_since(self, conversation_id: int, since: datetime) -> bool:
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM conversation_messages
                WHERE conversation_id = %s AND direction = %s AND created_at > %s
                LIMIT 1
                """,
                (conversation_id, MessageDirection.INBOUND.value, since),
            ).fetchone()
            return row is not None

    # ------------------------------------------------------------------
    # Scheduled replies
    # ------------------------------------------------------------------

    def schedule_reply(self, reply: ScheduledReply) -> int | None:
        """Persist a delayed send. Returns None if the inbound message already has one."""
        sql = """
        INSERT INTO scheduled_replies (conversation_id, inbound_message_id, due_at, payload)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (inbound_message_id) DO NOTHING
        RETURNING id
        """

        with self.get_connection() as conn:
            result = conn.execute(sql, (
                reply.conversation_id,
                reply.inbound_message_id,
                reply.due_at,
                Json(reply.payload),
            )).fetchone()
            conn.commit()

            if not result:
                return None
            reply.id = result["id"]
            log.info(
                "reply_scheduled",
                reply_id=reply.id,
                conversation_id=reply.conversation_id,
                due_at=reply.due_at.isoformat(),
            )
            return reply.id

    def claim_due_replies(self, now: datetime, limit: int = 25) -> list[ScheduledReply]:
        """Atomically move due pending replies to 'sending' and return them."""
        sql = f"""
        UPDATE scheduled_replies
        SET status = %s, claimed_at = %s
        WHERE id IN (
            SELECT id FROM scheduled_replies
            WHERE status = %s AND due_at <= %s
            ORDER BY due_at ASC
            LIMIT %s
            FOR UPDATE SKIP LOCKED
        )
        RETURNING {REPLY_COLUMNS}
        """

        with self.get_connection() as conn:
            rows = conn.execute(sql, (
                ReplyStatus.SENDING.value,
                now,
                ReplyStatus.PENDING.value,
                now,
                limit,
            )).fetchall()
            conn.commit()
            replies = [self._row_to_reply(row) for row in rows]
            return sorted(replies, key=lambda r: r.due_at)

    def release_stale_claims(self, older_than: datetime) -> int:
        """Return replies stuck in 'sending' (process died mid-send) to 'pending'."""
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE scheduled_replies
                SET status = %s, claimed_at = NULL
                WHERE status = %s AND claimed_at < %s
                """,
                (ReplyStatus.PENDING.value, ReplyStatus.SENDING.value, older_than),
            )
            conn.commit()
            return cursor.rowcount

    def release_claim(self, reply_id: int, error_message: str) -> None:
        """Put one claimed reply back to 'pending' for the next sweep."""
        with self.get_connection() as conn:
            conn.execute(
                """
                UPDATE scheduled_replies
                SET status = %s, claimed_at = NULL, error_message = %s
                WHERE id = %s AND status = %s
                """,
                (ReplyStatus.PENDING.value, error_message, reply_id, ReplyStatus.SENDING.value),
            )
            conn.commit()
            log.warning("reply_claim_released", reply_id=reply_id, error=error_message)

    def fail_reply(self, reply_id: int, error_message: str) -> None:
        with self.get_connection() as conn:
            conn.execute(
                "UPDATE scheduled_replies SET status = %s, error_message = %s WHERE id = %s",
                (ReplyStatus.FAILED.value, error_message, reply_id),
            )
            conn.commit()
            log.warning("reply_marked_failed", reply_id=reply_id, error=error_message)

    def cancel_reply(self, reply: ScheduledReply, reason: str) -> None:
        """Abandon a reply and close out its inbound message in one transaction."""
        with self.get_connection() as conn:
            conn.execute(
                "UPDATE scheduled_replies SET status = %s, error_message = %s WHERE id = %s",
                (ReplyStatus.CANCELLED.value, reason, reply.id),
            )
            if reply.inbound_message_id:
                conn.execute(
                    """
                    UPDATE inbound_messages
                    SET processed = TRUE, processed_at = NOW(), outcome = %s
                    WHERE id = %s
                    """,
                    (reason, reply.inbound_message_id),
                )
            conn.commit()
            log.info("reply_cancelled", reply_id=reply.id, reason=reason)

    def record_dispatched_reply(
        self,
        reply: ScheduledReply,
        conversation: Conversation,
        subject: str,
        sender: str,
        sent_at: datetime,
        follow_up_at: datetime | None = None,
    ) -> None:
        """
        Record a sent reply.

        The outbound history row, the reply status, the inbound processed flag,
        the conversation reply state and (merchant) reminder changes commit
        together or not at all.
        """
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO conversation_messages (
                    conversation_id, direction, subject, sender, recipient, body, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    conversation.id,
                    MessageDirection.OUTBOUND.value,
                    subject,
                    sender,
                    conversation.counterpart,
                    reply.body,
                    sent_at,
                ),
            )
            conn.execute(
                """
                UPDATE scheduled_replies
                SET status = %s, sent_at = %s, error_message = NULL
                WHERE id = %s
                """,
                (ReplyStatus.SENT.value, sent_at, reply.id),
            )
            if reply.inbound_message_id:
                conn.execute(
                    """
                    UPDATE inbound_messages
                    SET processed = TRUE, processed_at = %s, outcome = 'replied', error_message = NULL
                    WHERE id = %s
                    """,
                    (sent_at, reply.inbound_message_id),
                )
            conn.execute(
                """
                UPDATE conversations
                SET reply_sent = TRUE, reply_sent_at = %s, status = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (sent_at, ConversationStatus.AWAITING_RESPONSE.value, conversation.id),
            )
            if follow_up_at is not None:
                self._replace_reply_reminders_with_follow_up(conn, conversation.id, follow_up_at)
            conn.commit()

        log.info("reply_recorded", reply_id=reply.id, conversation_id=conversation.id)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def create_reminder(self, reminder: Reminder) -> int:
        with self.get_connection() as conn:
            result = conn.execute(
                """
                INSERT INTO reminders (conversation_id, reminder_type, scheduled_for)
                VALUES (%s, %s, %s)
                RETURNING id
                """,
                (reminder.conversation_id, reminder.reminder_type.value, reminder.scheduled_for),
            ).fetchone()
            conn.commit()
            reminder.id = result["id"]
            log.info(
                "reminder_created",
                reminder_id=reminder.id,
                reminder_type=reminder.reminder_type.value,
                scheduled_for=reminder.scheduled_for.isoformat(),
            )
            return reminder.id

    def complete_merchant_ingest(self, inbound_id: int, reminder: Reminder) -> None:
        """Create the reply reminder and close the inbound message together."""
        with self.get_connection() as conn:
            result = conn.execute(
                """
                INSERT INTO reminders (conversation_id, reminder_type, scheduled_for)
                VALUES (%s, %s, %s)
                RETURNING id
                """,
                (reminder.conversation_id, reminder.reminder_type.value, reminder.scheduled_for),
            ).fetchone()
            conn.execute(
                """
                UPDATE inbound_messages
                SET processed = TRUE, processed_at = NOW(), outcome = 'forwarded', error_message = NULL
                WHERE id = %s
                """,
                (inbound_id,),
            )
            conn.commit()
            reminder.id = result["id"]

    def get_due_reminders(self, now: datetime) -> list[Reminder]:
        sql = f"""
        SELECT {REMINDER_COLUMNS}
        FROM reminders
        WHERE sent = FALSE
          AND dismissed = FALSE
          AND scheduled_for <= %s
          AND (snoozed_until IS NULL OR snoozed_until <= %s)
        ORDER BY scheduled_for ASC
        """

        with self.get_connection() as conn:
            rows = conn.execute(sql, (now, now)).fetchall()
            return [self._row_to_reminder(row) for row in rows]

    def mark_reminder_sent(self, reminder: Reminder, sent_at: datetime) -> bool:
        """Terminal transition; False if the reminder was already sent or dismissed."""
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE reminders SET sent = TRUE, sent_at = %s
                WHERE id = %s AND sent = FALSE AND dismissed = FALSE
                """,
                (sent_at, reminder.id),
            )
            if cursor.rowcount and reminder.reminder_type == ReminderType.FOLLOW_UP:
                conn.execute(
                    """
                    UPDATE conversations
                    SET follow_up_sent = TRUE, follow_up_sent_at = %s, updated_at = NOW()
                    WHERE id = %s
                    """,
                    (sent_at, reminder.conversation_id),
                )
            conn.commit()
            return cursor.rowcount > 0

    def dismiss_reminder(self, reminder_id: int) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET dismissed = TRUE WHERE id = %s AND sent = FALSE AND dismissed = FALSE",
                (reminder_id,),
            )
            conn.commit()
            return cursor.rowcount > 0

    def snooze_reminder(self, reminder_id: int, until: datetime) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET snoozed_until = %s WHERE id = %s AND sent = FALSE AND dismissed = FALSE",
                (until, reminder_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def mark_conversation_replied(
        self,
        conversation_id: int,
        replied_at: datetime,
        follow_up_at: datetime,
    ) -> bool:
        """A human replied outside the system: close reply reminders, start follow-up."""
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE conversations
                SET reply_sent = TRUE, reply_sent_at = %s, status = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (replied_at, ConversationStatus.AWAITING_RESPONSE.value, conversation_id),
            )
            if not cursor.rowcount:
                conn.rollback()
                return False
            self._replace_reply_reminders_with_follow_up(conn, conversation_id, follow_up_at)
            conn.commit()
            return True

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get processing statistics."""
        sql = """
        SELECT
            (SELECT COUNT(*) FROM inbound_messages) AS inbound_total,
            (SELECT COUNT(*) FROM inbound_messages WHERE processed = FALSE) AS inbound_pending,
            (SELECT COUNT(*) FROM inbound_messages WHERE error_message IS NOT NULL) AS inbound_errors,
            (SELECT COUNT(*) FROM scheduled_replies WHERE status = 'pending') AS replies_pending,
            (SELECT COUNT(*) FROM scheduled_replies WHERE status = 'sent') AS replies_sent,
            (SELECT COUNT(*) FROM scheduled_replies WHERE status = 'failed') AS replies_failed,
            (SELECT COUNT(*) FROM reminders WHERE sent = FALSE AND dismissed = FALSE) AS reminders_open
        """

        with self.get_connection() as conn:
            row = conn.execute(sql).fetchone()
            return dict(row) if row else {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _replace_reply_reminders_with_follow_up(
        conn: psycopg.Connection,
        conversation_id: int,
        follow_up_at: datetime,
    ) -> None:
        conn.execute(
            """
            UPDATE reminders SET dismissed = TRUE
            WHERE conversation_id = %s AND reminder_type = %s AND sent = FALSE
            """,
            (conversation_id, ReminderType.REPLY_REMINDER.value),
        )
        conn.execute(
            """
            INSERT INTO reminders (conversation_id, reminder_type, scheduled_for)
            VALUES (%s, %s, %s)
            """,
            (conversation_id, ReminderType.FOLLOW_UP.value, follow_up_at),
        )

    @staticmethod
    def _row_to_account(row: dict[str, Any]) -> MailboxAccount:
        return MailboxAccount(
            id=row["id"],
            email=row["email"],
            kind=AccountKind(row["kind"]) if row.get("kind") else AccountKind.ASSIGNMENT,
            display_name=row.get("display_name") or "",
            imap_host=row.get("imap_host"),
            imap_port=row.get("imap_port"),
            smtp_host=row.get("smtp_host"),
            smtp_port=row.get("smtp_port"),
            password_encrypted=row.get("password_encrypted") or "",
            notification_email=row.get("notification_email"),
            status=AccountStatus(row["status"]) if row.get("status") else AccountStatus.INACTIVE,
            timezone=row.get("timezone"),
            persona=row.get("persona") or "",
            system_prompt=row.get("system_prompt") or "",
        )

    @staticmethod
    def _row_to_inbound(row: dict[str, Any]) -> InboundMessage:
        return InboundMessage(
            id=row["id"],
            account_id=row["account_id"],
            message_id=row["message_id"],
            content_hash=row["content_hash"] or "",
            sender=row["sender"] or "",
            recipient=row["recipient"] or "",
            subject=row["subject"] or "",
            body_plain=row["body"] or "",
            body_html=row["body_html"] or "",
            email_date=row["email_date"],
            conversation_id=row["conversation_id"],
            processed=row["processed"],
            processed_at=row["processed_at"],
            error_message=row["error_message"],
            retry_count=row["retry_count"] or 0,
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_conversation(row: dict[str, Any]) -> Conversation:
        return Conversation(
            id=row["id"],
            account_id=row["account_id"],
            kind=AccountKind(row["kind"]) if row["kind"] else AccountKind.ASSIGNMENT,
            counterpart=row["counterpart"],
            counterpart_name=row["counterpart_name"] or "",
            status=ConversationStatus(row["status"]),
            min_delay_minutes=row["min_delay"],
            max_delay_minutes=row["max_delay"],
            timezone=row["timezone"],
            working_hours_start=row["working_hours_start"],
            working_hours_end=row["working_hours_end"],
            tone=row["tone"],
            context=row["context"] or "",
            last_subject=row["last_subject"] or "",
            reply_sent=row["reply_sent"] or False,
            reply_sent_at=row["reply_sent_at"],
            follow_up_sent=row["follow_up_sent"] or False,
        )

    @staticmethod
    def _row_to_message(row: dict[str, Any]) -> ConversationMessage:
        return ConversationMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            direction=MessageDirection(row["direction"]),
            inbound_message_id=row["inbound_message_id"],
            subject=row["subject"] or "",
            sender=row["sender"] or "",
            recipient=row["recipient"] or "",
            body=row["body"] or "",
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_reply(row: dict[str, Any]) -> ScheduledReply:
        return ScheduledReply(
            id=row["id"],
            conversation_id=row["conversation_id"],
            inbound_message_id=row["inbound_message_id"],
            due_at=row["due_at"],
            payload=row["payload"] or {},
            status=ReplyStatus(row["status"]),
            error_message=row["error_message"],
            claimed_at=row["claimed_at"],
            sent_at=row["sent_at"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_reminder(row: dict[str, Any]) -> Reminder:
        return Reminder(
            id=row["id"],
            conversation_id=row["conversation_id"],
            reminder_type=ReminderType(row["reminder_type"]),
            scheduled_for=row["scheduled_for"],
            snoozed_until=row["snoozed_until"],
            sent=row["sent"],
            dismissed=row["dismissed"],
            sent_at=row["sent_at"],
            created_at=row["created_at"],
        )
