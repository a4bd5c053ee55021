"""
Tests for mailsink/modules/transfer_decoder.py

SECURITY STORY: The decoder sees whatever a sender claims in
Content-Transfer-Encoding. It must never raise, whatever the claim.
"""

import base64
import os
import unittest

from mailsink.modules.transfer_decoder import decode_transfer


class TestBase64(unittest.TestCase):
    """base64 bodies"""

    def test_decodes_simple_value(self):
        self.assertEqual(decode_transfer(b"SGVsbG8=", "base64"), b"Hello")

    def test_round_trips_random_bytes(self):
        for size in (1, 2, 3, 57, 58, 1000):
            payload = os.urandom(size)
            encoded = base64.encodebytes(payload)
            self.assertEqual(decode_transfer(encoded, "base64"), payload)

    def test_ignores_line_wrapping(self):
        payload = b"x" * 200
        wrapped = base64.encodebytes(payload).replace(b"\n", b"\r\n")
        self.assertEqual(decode_transfer(wrapped, "base64"), payload)

    def test_token_is_case_insensitive_substring(self):
        self.assertEqual(decode_transfer(b"SGVsbG8=", " BASE64 "), b"Hello")
        self.assertEqual(decode_transfer(b"SGVsbG8=", "x-base64"), b"Hello")

    def test_malformed_base64_is_returned_unchanged(self):
        data = b"!!!this is not base64!!!"
        self.assertEqual(decode_transfer(data, "base64"), data)

    def test_bad_padding_is_returned_unchanged(self):
        self.assertEqual(decode_transfer(b"SGVsbG8", "base64"), b"SGVsbG8")


class TestQuotedPrintable(unittest.TestCase):
    """quoted-printable bodies"""

    def test_decodes_escapes(self):
        self.assertEqual(decode_transfer(b"caf=C3=A9", "quoted-printable"), "café".encode("utf-8"))

    def test_soft_line_breaks_are_joined(self):
        self.assertEqual(decode_transfer(b"Hel=\r\nlo", "Quoted-Printable"), b"Hello")


class TestPassThrough(unittest.TestCase):
    """Encodings that need no decoding, or that nobody has heard of"""

    def test_identity_encodings(self):
        for token in ("7bit", "8bit", "binary", "", None, "x-uuencode"):
            with self.subTest(token=token):
                self.assertEqual(decode_transfer(b"SGVsbG8=", token), b"SGVsbG8=")

    def test_empty_data(self):
        self.assertEqual(decode_transfer(b"", "base64"), b"")
        self.assertEqual(decode_transfer(b"", "quoted-printable"), b"")


if __name__ == '__main__':
    unittest.main()
