"""
Tests for mailsink/modules/message_session.py

SECURITY STORY: Acceptance must never fail because of message content.
Only a storage failure is allowed to reach the transport.
"""

import unittest
from unittest.mock import MagicMock

from mailsink.modules.content_policy import PARSE_FAILED_PLACEHOLDER, ContentPolicy
from mailsink.modules.email_data import STATUS_OVERSIZED, STATUS_PARSE_FAILED
from mailsink.modules.message_session import MessageSession
from mailsink.modules.storage import EmailStorage, StorageError
from mailsink.utils.metrics import Metrics

SIMPLE_MESSAGE = "From: a@x.com\r\nTo: b@y.com\r\nSubject: hi\r\n\r\nHello"


class TestMessageSession(unittest.TestCase):

    def setUp(self):
        self.storage = MagicMock(spec=EmailStorage)
        self.storage.save.return_value = "stored-id"
        self.metrics = Metrics()
        self.session = MessageSession(self.storage, ContentPolicy(), self.metrics)

    def _saved_record(self):
        self.storage.save.assert_called_once()
        return self.storage.save.call_args[0][0]

    def test_mail_rcpt_data(self):
        self.session.mail("env@x.com")
        self.session.rcpt("rcpt@y.com")

        result = self.session.data(SIMPLE_MESSAGE)

        self.assertEqual(result, "stored-id")
        record = self._saved_record()
        self.assertEqual(record.sender, "a@x.com")
        self.assertEqual(record.body, "Hello")
        self.assertEqual(self.metrics.messages_accepted, 1)
        self.assertEqual(len(self.metrics.processing_time_ms), 1)

    def test_last_recipient_wins(self):
        self.session.mail("env@x.com")
        self.session.rcpt("first@y.com")
        self.session.rcpt("second@y.com")

        self.session.data("Subject: no addresses\r\n\r\nbody")

        self.assertEqual(self._saved_record().recipient, "second@y.com")

    def test_envelope_is_reset_after_data(self):
        self.session.accept("env@x.com", "rcpt@y.com", SIMPLE_MESSAGE)

        self.assertEqual(self.session.sender, "")
        self.assertEqual(self.session.recipient, "")

    def test_mail_starts_a_new_transaction(self):
        self.session.rcpt("stale@y.com")
        self.session.mail("env@x.com")
        self.assertEqual(self.session.recipient, "")

    def test_unparseable_message_is_still_stored(self):
        result = self.session.accept("env@x.com", "rcpt@y.com", "no headers at all")

        self.assertEqual(result, "stored-id")
        record = self._saved_record()
        self.assertEqual(record.body, PARSE_FAILED_PLACEHOLDER)
        self.assertEqual(record.raw_content, "no headers at all")
        self.assertEqual(self.metrics.outcomes[STATUS_PARSE_FAILED], 1)

    def test_oversized_message_is_counted(self):
        session = MessageSession(self.storage, ContentPolicy(email_size_limit=10), self.metrics)

        session.accept("env@x.com", "rcpt@y.com", SIMPLE_MESSAGE)

        self.assertEqual(self.metrics.outcomes[STATUS_OVERSIZED], 1)

    def test_redacted_attachments_are_counted(self):
        raw = (
            "From: a@x.com\r\n"
            'Content-Type: multipart/mixed; boundary="b1"\r\n'
            "\r\n"
            "--b1\r\n"
            "Content-Type: application/octet-stream\r\n"
            'Content-Disposition: attachment; filename="big.bin"\r\n'
            "\r\n"
            "0123456789\r\n"
            "--b1--\r\n"
        )
        session = MessageSession(self.storage, ContentPolicy(attachment_size_limit=5), self.metrics)

        session.accept("", "", raw)

        self.assertEqual(self.metrics.outcomes["redacted_attachment"], 1)

    def test_storage_failure_propagates(self):
        self.storage.save.side_effect = StorageError("all backends failed")

        with self.assertRaises(StorageError):
            self.session.accept("env@x.com", "rcpt@y.com", SIMPLE_MESSAGE)

        self.assertEqual(self.metrics.errors_count["storage"], 1)
        self.assertEqual(self.metrics.messages_accepted, 0)
        self.assertEqual(self.session.sender, "")

    def test_works_without_metrics(self):
        session = MessageSession(self.storage)
        self.assertEqual(session.accept("a", "b", SIMPLE_MESSAGE), "stored-id")


if __name__ == '__main__':
    unittest.main()
