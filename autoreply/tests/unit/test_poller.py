"""Unit tests for the mailbox poller and IMAP parsing."""

import threading
from email.message import EmailMessage

import pytest

from autoreply.core.errors import ParseFailure, TransientIOError
from autoreply.core.models import ProcessingResult
from autoreply.handlers.base import BaseHandler
from autoreply.processors.poller import MailboxPoller
from autoreply.services.imap import IMAPClient
from autoreply.tests.conftest import FakeConnector, FakeMailbox


class StubHandler(BaseHandler):
    """Returns a fixed result for every message."""

    def __init__(self, result=None, error=None):
        self.result = result or ProcessingResult(success=True, action="reply_scheduled", mark_seen=True)
        self.error = error
        self.handled = []

    def can_handle(self, account):
        return True

    def handle(self, account, message):
        self.handled.append(message)
        if self.error:
            raise self.error
        return self.result


class TestMailboxPoller:
    """Tests for MailboxPoller.poll_account."""

    def make_poller(self, fake_db, mailbox, handler, account_id=1):
        return MailboxPoller(
            db=fake_db,
            connector=FakeConnector({account_id: mailbox}),
            handlers=[handler],
        )

    def test_accepted_messages_are_handled_and_flagged(self, fake_db, account, make_message):
        mailbox = FakeMailbox([make_message(), make_message(body="second")])
        handler = StubHandler()

        outcome = self.make_poller(fake_db, mailbox, handler).poll_account(account)

        assert outcome.status == "ok"
        assert outcome.fetched == 2
        assert outcome.accepted == 2
        assert mailbox.seen == ["1", "2"]
        assert len(handler.handled) == 2

    def test_skipped_messages_stay_unseen(self, fake_db, account, make_message):
        mailbox = FakeMailbox([make_message()])
        handler = StubHandler(ProcessingResult(success=True, action="skipped_no_conversation", mark_seen=False))

        outcome = self.make_poller(fake_db, mailbox, handler).poll_account(account)

        assert outcome.skipped == 1
        assert mailbox.seen == []

    def test_duplicates_are_not_handled_again(self, fake_db, account, make_message):
        """A message still unseen on the server is fetched again but handled once."""
        mailbox = FakeMailbox([make_message()])
        handler = StubHandler(ProcessingResult(success=True, action="skipped_no_conversation", mark_seen=False))
        poller = self.make_poller(fake_db, mailbox, handler)

        poller.poll_account(account)
        second = poller.poll_account(account)

        assert second.fetched == 1
        assert second.duplicates == 1
        assert second.accepted == 0
        assert len(handler.handled) == 1
        assert mailbox.seen == []

    def test_stored_but_unflagged_message_is_flagged_next_poll(self, fake_db, account, make_message):
        """A lost \\Seen flag is repaired once the stored copy was acted on."""

        class ForwardingHandler(StubHandler):
            def handle(self, account, message):
                fake_db.mark_inbound_processed(message.id, "forwarded")
                return super().handle(account, message)

        class FlakySeenMailbox(FakeMailbox):
            failed = False

            def mark_seen(self, uid):
                if not self.failed:
                    self.failed = True
                    raise TransientIOError("IMAP store failed: connection reset")
                super().mark_seen(uid)

        mailbox = FlakySeenMailbox([make_message()])
        handler = ForwardingHandler()
        poller = self.make_poller(fake_db, mailbox, handler)

        first = poller.poll_account(account)
        assert first.status == "error"
        assert mailbox.seen == []

        second = poller.poll_account(account)

        assert second.status == "ok"
        assert second.duplicates == 1
        assert mailbox.seen == ["1"]
        assert len(handler.handled) == 1

    def test_duplicate_closed_without_action_stays_unseen(self, fake_db, account, make_message):
        class NoConversationHandler(StubHandler):
            def handle(self, account, message):
                fake_db.mark_inbound_processed(message.id, "no_active_conversation")
                return super().handle(account, message)

        mailbox = FakeMailbox([make_message()])
        handler = NoConversationHandler(ProcessingResult(success=True, action="skipped_no_conversation", mark_seen=False))
        poller = self.make_poller(fake_db, mailbox, handler)

        poller.poll_account(account)
        second = poller.poll_account(account)

        assert second.duplicates == 1
        assert mailbox.seen == []

    def test_handler_crash_is_recorded(self, fake_db, account, make_message):
        mailbox = FakeMailbox([make_message(), make_message(body="other")])
        handler = StubHandler(error=ValueError("bad data"))

        outcome = self.make_poller(fake_db, mailbox, handler).poll_account(account)

        assert outcome.status == "ok"
        assert outcome.errors == 2
        assert mailbox.seen == []
        assert all(row.retry_count == 1 for row in fake_db.inbound.values())
        assert all(not row.processed for row in fake_db.inbound.values())

    def test_connect_failure_is_error_outcome(self, fake_db, account):
        outcome = self.make_poller(fake_db, FakeMailbox(fail=True), StubHandler()).poll_account(account)

        assert outcome.status == "error"
        assert "IMAP connect failed" in outcome.error

    def test_inactive_account_is_error_outcome(self, fake_db, account):
        account.is_active = False
        outcome = self.make_poller(fake_db, FakeMailbox(), StubHandler()).poll_account(account)

        assert outcome.status == "error"
        assert "inactive" in outcome.error

    def test_missing_handler_is_error_outcome(self, fake_db, account):
        poller = MailboxPoller(db=fake_db, connector=FakeConnector(), handlers=[])
        outcome = poller.poll_account(account)

        assert outcome.status == "error"
        assert "No handler" in outcome.error

    def test_concurrent_poll_of_same_account_is_busy(self, fake_db, account, make_message):
        entered = threading.Event()
        release = threading.Event()

        class BlockingHandler(StubHandler):
            def handle(self, account, message):
                entered.set()
                release.wait(timeout=5)
                return super().handle(account, message)

        poller = self.make_poller(fake_db, FakeMailbox([make_message()]), BlockingHandler())
        results = []
        worker = threading.Thread(target=lambda: results.append(poller.poll_account(account)))
        worker.start()
        assert entered.wait(timeout=5)

        busy = poller.poll_account(account)
        release.set()
        worker.join(timeout=5)

        assert busy.status == "busy"
        assert busy.fetched == 0
        assert results[0].status == "ok"

    def test_poll_all_isolates_failing_account(self, fake_db, account, merchant_account, make_message):
        connector = FakeConnector({
            account.id: FakeMailbox([make_message()]),
            merchant_account.id: FakeMailbox(fail=True),
        })
        poller = MailboxPoller(db=fake_db, connector=connector, handlers=[StubHandler()], max_workers=2)

        outcomes = {o.account_id: o for o in poller.poll_all()}

        assert outcomes[account.id].status == "ok"
        assert outcomes[account.id].accepted == 1
        assert outcomes[merchant_account.id].status == "error"

    def test_unexpected_error_stays_with_its_account(self, monkeypatch, fake_db, account, merchant_account, make_message):
        insert = fake_db.insert_inbound_message

        def insert_or_fail(message):
            if message.account_id == merchant_account.id:
                raise RuntimeError("server closed the connection unexpectedly")
            return insert(message)

        monkeypatch.setattr(fake_db, "insert_inbound_message", insert_or_fail)
        connector = FakeConnector({
            account.id: FakeMailbox([make_message()]),
            merchant_account.id: FakeMailbox([make_message(recipient=merchant_account.email)]),
        })
        poller = MailboxPoller(db=fake_db, connector=connector, handlers=[StubHandler()], max_workers=2)

        outcomes = {o.account_id: o for o in poller.poll_all()}

        assert outcomes[account.id].status == "ok"
        assert outcomes[account.id].accepted == 1
        assert outcomes[merchant_account.id].status == "error"
        assert "connection" in outcomes[merchant_account.id].error

    def test_process_aggregates(self, fake_db, account, make_message):
        poller = self.make_poller(fake_db, FakeMailbox([make_message()]), StubHandler())

        stats = poller.process()

        assert stats == {"accounts": 1, "fetched": 1, "accepted": 1, "duplicates": 0, "errors": 0}


class TestIMAPParsing:
    """Tests for IMAPClient._parse_email."""

    @pytest.fixture
    def client(self):
        return IMAPClient("agent@agency.com", "secret", host="imap.test", port=993)

    def test_parses_multipart_message(self, client):
        msg = EmailMessage()
        msg["From"] = "Thanh Nguyen <thanh@example.vn>"
        msg["To"] = "agent@agency.com"
        msg["Subject"] = "Urgent!! need refund"
        msg["Message-ID"] = "<abc@example.vn>"
        msg["Date"] = "Tue, 10 Mar 2026 09:15:00 +0700"
        msg.set_content("Please refund my order.")
        msg.add_alternative("<p>Please refund my order.</p>", subtype="html")
        msg.add_attachment(b"%PDF-1.4", maintype="application", subtype="pdf", filename="invoice.pdf")

        message = client._parse_email(msg)

        assert message.sender_email == "thanh@example.vn"
        assert message.message_id == "<abc@example.vn>"
        assert message.subject == "Urgent!! need refund"
        assert message.body_plain == "Please refund my order."
        assert "<p>" in message.body_html
        assert message.email_date.utcoffset().total_seconds() == 7 * 3600
        assert [a.filename for a in message.attachments] == ["invoice.pdf"]

    def test_decode_encoded_header(self, client):
        header = "=?utf-8?q?Th=C3=A0nh_Nguy=E1=BB=85n?= <thanh@example.vn>"
        decoded = client._decode_header(header)
        assert decoded.startswith("Thành Nguyễn")
        assert decoded.endswith("<thanh@example.vn>")

    def test_missing_message_id_is_none(self, client):
        msg = EmailMessage()
        msg["From"] = "client@example.com"
        msg["Subject"] = "Hi"
        msg.set_content("Hello")

        assert client._parse_email(msg).message_id is None

    def test_missing_from_raises(self, client):
        msg = EmailMessage()
        msg["Subject"] = "No sender"
        msg.set_content("Hello")

        with pytest.raises(ParseFailure):
            client._parse_email(msg)

    def test_latin1_body(self, client):
        msg = EmailMessage()
        msg["From"] = "client@example.com"
        msg.set_content("Café ouvert", charset="latin-1")

        assert client._parse_email(msg).body_plain == "Café ouvert"
