"""
Unit tests for mailsink/modules/email_parser.py

SECURITY STORY: email_parser.py is the boundary between raw, untrusted
message bytes and everything that gets stored. These tests validate that:

  1. raw_content is preserved exactly, whatever the input
  2. transport noise in front of the headers does not break parsing
  3. the From/To line-scan fallback only fills what the parser missed
  4. unreadable input surfaces as EmailParsingError, nothing else
"""

import base64
import unittest

from mailsink.modules.email_parser import (
    EmailParser,
    EmailParsingError,
    decode_raw,
    encode_raw,
    find_header_start,
    first_non_empty,
    parse_email,
    recipient_from_lines,
    sender_from_lines,
    unfold_header,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

SIMPLE_MESSAGE = "From: a@x.com\r\nTo: b@y.com\r\nSubject: hi\r\n\r\nHello"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _alternative_message() -> str:
    return (
        "From: Alice <alice@example.com>\r\n"
        "To: bob@example.com\r\n"
        "Subject: both\r\n"
        "MIME-Version: 1.0\r\n"
        'Content-Type: multipart/alternative; boundary="b1"\r\n'
        "\r\n"
        "--b1\r\n"
        "Content-Type: text/plain; charset=utf-8\r\n"
        "Content-Transfer-Encoding: base64\r\n"
        "\r\n"
        "SGVsbG8=\r\n"
        "--b1\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        "Content-Transfer-Encoding: base64\r\n"
        "\r\n"
        f"{_b64(b'<p>Hi</p>')}\r\n"
        "--b1--\r\n"
    )


def _attachment_message() -> str:
    return (
        "From: Alice <alice@example.com>\r\n"
        "To: bob@example.com\r\n"
        "Subject: picture\r\n"
        "MIME-Version: 1.0\r\n"
        'Content-Type: multipart/mixed; boundary="b1"\r\n'
        "\r\n"
        "--b1\r\n"
        "Content-Type: text/plain\r\n"
        "\r\n"
        "see attached\r\n"
        "--b1\r\n"
        "Content-Type: image/png\r\n"
        'Content-Disposition: attachment; filename="pic.png"\r\n'
        "Content-Transfer-Encoding: base64\r\n"
        "\r\n"
        f"{_b64(PNG_BYTES)}\r\n"
        "--b1--\r\n"
    )


class TestBasicExtraction(unittest.TestCase):
    """Typical messages"""

    def setUp(self):
        self.parser = EmailParser()

    def test_simple_message(self):
        parsed = self.parser.parse(SIMPLE_MESSAGE)

        self.assertEqual(parsed.sender, "a@x.com")
        self.assertEqual(parsed.recipient, "b@y.com")
        self.assertEqual(parsed.subject, "hi")
        self.assertIn("Hello", parsed.body_text)
        self.assertEqual(parsed.attachments, ())

    def test_alternative_bodies(self):
        parsed = self.parser.parse(_alternative_message())

        self.assertEqual(parsed.body_text, "Hello")
        self.assertEqual(parsed.body_html, "<p>Hi</p>")

    def test_attachment(self):
        parsed = self.parser.parse(_attachment_message())

        self.assertEqual(len(parsed.attachments), 1)
        attachment = parsed.attachments[0]
        self.assertEqual(attachment.filename, "pic.png")
        self.assertEqual(attachment.content_type, "image/png")
        self.assertEqual(attachment.data[:4], b"\x89PNG")
        self.assertEqual(parsed.body_text, "see attached")

    def test_headers_kept_verbatim(self):
        raw = (
            "From: =?utf-8?q?Ann?= <ann@x.com>\r\n"
            "To: b@y.com\r\n"
            "Subject: a folded\r\n subject line\r\n"
            "Date: Mon, 1 Jan 2024 10:00:00 +0000\r\n"
            "\r\n"
            "body"
        )
        parsed = self.parser.parse(raw)

        self.assertEqual(parsed.sender, "=?utf-8?q?Ann?= <ann@x.com>")
        self.assertEqual(parsed.subject, "a folded subject line")
        self.assertEqual(parsed.date, "Mon, 1 Jan 2024 10:00:00 +0000")

    def test_parse_email_wrapper(self):
        self.assertEqual(parse_email(SIMPLE_MESSAGE).subject, "hi")


class TestRawPreservation(unittest.TestCase):
    """raw_content is the exact object that was received"""

    def test_str_input_is_preserved(self):
        raw = _attachment_message()
        self.assertIs(EmailParser().parse(raw).raw_content, raw)

    def test_bytes_input_is_preserved(self):
        raw = b"From: a@x.com\nTo: b@y.com\n\ncaf\xe9 latin-1 body\n"
        parsed = EmailParser().parse(raw)

        self.assertIs(parsed.raw_content, raw)
        self.assertEqual(parsed.sender, "a@x.com")

    def test_eight_bit_latin1_body_decodes_with_declared_charset(self):
        raw = (
            b"From: a@x.com\r\n"
            b"Content-Type: text/plain; charset=iso-8859-1\r\n"
            b"Content-Transfer-Encoding: 8bit\r\n"
            b"\r\n"
            b"caf\xe9"
        )
        parsed = EmailParser().parse(raw)

        self.assertEqual(parsed.body_text, "café")
        self.assertIs(parsed.raw_content, raw)

    def test_utf8_bytes_body(self):
        raw = "From: a@x.com\r\nSubject: café\r\n\r\nnaïve".encode("utf-8")
        parsed = EmailParser().parse(raw)

        self.assertEqual(parsed.subject, "café")
        self.assertEqual(parsed.body_text, "naïve")

    def test_decode_raw_codecs(self):
        self.assertEqual(decode_raw("plain"), ("plain", "utf-8"))
        self.assertEqual(decode_raw("naïve".encode("utf-8")), ("naïve", "utf-8"))
        self.assertEqual(decode_raw(b"caf\xe9"), ("caf\xe9", "latin-1"))

    def test_encode_raw_restores_received_bytes(self):
        raw = b"From: a@x.com\r\n\r\ncaf\xe9 \xff\x80"
        self.assertEqual(encode_raw(*decode_raw(raw)), raw)
        self.assertEqual(encode_raw("text", "utf-8"), "text")

    def test_line_endings_untouched(self):
        raw = "From: a@x.com\r\nTo: b@y.com\n\r\nmixed\rendings\n"
        self.assertEqual(EmailParser().parse(raw).raw_content, raw)

    def test_parsing_is_repeatable(self):
        parser = EmailParser()
        first = parser.parse(_attachment_message())
        second = parser.parse(_attachment_message())

        self.assertEqual(first.body_text, second.body_text)
        self.assertEqual(first.body_html, second.body_html)
        self.assertEqual(first.attachments, second.attachments)


class TestTransportNoise(unittest.TestCase):
    """Junk in front of the real header block"""

    def test_banner_before_headers_is_skipped(self):
        raw = (
            "220 relay ready\r\n"
            "Received: from mx.example.com\r\n"
            "From: Alice <a@x.com>\r\n"
            "To: b@y.com\r\n"
            "Subject: noisy\r\n"
            "\r\n"
            "body"
        )
        parsed = EmailParser().parse(raw)

        self.assertEqual(parsed.subject, "noisy")
        self.assertEqual(parsed.sender, "Alice <a@x.com>")
        self.assertIs(parsed.raw_content, raw)

    def test_leading_blank_lines_are_skipped(self):
        raw = "\r\n\r\nFrom: a@x.com\r\nTo: b@y.com\r\nSubject: hi\r\n\r\nHello"
        parsed = EmailParser().parse(raw)

        self.assertEqual(parsed.sender, "a@x.com")
        self.assertEqual(parsed.recipient, "b@y.com")
        self.assertEqual(parsed.subject, "hi")
        self.assertEqual(parsed.body_text, "Hello")
        self.assertIs(parsed.raw_content, raw)

    def test_find_header_start(self):
        lines = ["noise", "MIME-Version: 1.0", "Subject: x", "", "Received: in body"]
        self.assertEqual(find_header_start(lines), 1)

    def test_find_header_start_ignores_body(self):
        lines = ["Subject: x", "", "Received: quoted in body"]
        self.assertEqual(find_header_start(lines), 0)

    def test_find_header_start_bracket_from(self):
        lines = ["junk", "From: A <a@x.com>"]
        self.assertEqual(find_header_start(lines), 1)
        self.assertEqual(find_header_start(["From: a@x.com"]), 0)


class TestHeaderFallback(unittest.TestCase):
    """Line-scan fallback for From/To"""

    def test_fallback_fills_missing_headers(self):
        raw = (
            "Subject: hi\r\n"
            "this line breaks the header block\r\n"
            "From: a@x.com\r\n"
            "To: b@y.com\r\n"
            "\r\n"
            "body"
        )
        parsed = EmailParser().parse(raw)

        self.assertEqual(parsed.subject, "hi")
        self.assertEqual(parsed.sender, "a@x.com")
        self.assertEqual(parsed.recipient, "b@y.com")

    def test_sender_scan_skips_bracket_lines(self):
        lines = ["From: a@x.com", "From: B <b@x.com>"]
        self.assertEqual(sender_from_lines(lines), "a@x.com")

    def test_sender_scan_last_match_wins(self):
        self.assertEqual(sender_from_lines(["From: one", "From: two"]), "two")

    def test_scan_is_bounded(self):
        lines = ["X-Pad: y"] * 25 + ["To: late@x.com"]
        self.assertEqual(recipient_from_lines(lines), "")

    def test_first_non_empty(self):
        self.assertEqual(first_non_empty([lambda: "", lambda: "b", lambda: "c"]), "b")
        self.assertEqual(first_non_empty([lambda: ""]), "")

    def test_unfold_header(self):
        self.assertEqual(unfold_header("a\r\n\tb"), "a b")
        self.assertEqual(unfold_header(None), "")


class TestParseFailures(unittest.TestCase):
    """Input with no header block at all"""

    def test_empty_input(self):
        with self.assertRaises(EmailParsingError):
            EmailParser().parse("")

    def test_whitespace_only(self):
        with self.assertRaises(EmailParsingError):
            EmailParser().parse(b"\r\n\r\n")

    def test_no_headers(self):
        with self.assertRaises(EmailParsingError):
            EmailParser().parse("just some words without any header")

    def test_wrong_type(self):
        with self.assertRaises(TypeError):
            EmailParser().parse(12345)


if __name__ == '__main__':
    unittest.main()
