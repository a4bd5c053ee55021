"""
Email Parser Module
Handles parsing of raw RFC-5322 messages into structured Email objects

PATTERN RECOGNITION: Header extraction is an ordered fallback chain. The
structured parser runs first; when it yields nothing for From or To, a
line scan over the first lines of the raw input gets a second chance. Each
stage is a plain function so it can be tested on its own.

SECURITY STORY: Mail relayed through other systems often arrives with
transport noise (an mbox "From " envelope line, proxy banners) in front of
the real headers. The parser looks for the first line that clearly belongs
to an RFC-5322 header block and starts there, but raw_content always keeps
every byte that was received.
"""

import email
import logging
import re
from email.message import Message
from typing import Callable, Optional, Sequence, Tuple

from .email_data import Email, RawContent
from .mime_walker import MimeWalker
from ..utils.security_validators import HEADER_FALLBACK_LINES, MAX_MIME_DEPTH, MAX_MIME_PARTS

_FOLDED_LINE = re.compile(r"\r?\n[ \t]+")


class EmailParsingError(Exception):
    """Raised when no RFC-5322 header block can be read from the input"""


def find_header_start(lines: Sequence[str]) -> int:
    """
    Return the index of the first line that looks like a real header

    A line qualifies when it contains ``Received:`` or ``MIME-Version:``, or
    a ``From:`` with an angle-bracket address. Only the prospective header
    block is scanned (up to the first blank line); when nothing qualifies
    the whole input is treated as headers from offset zero.
    """
    seen_content = False
    for index, line in enumerate(lines):
        if not line.strip():
            if seen_content:
                break
            continue
        seen_content = True
        if "Received:" in line or "MIME-Version:" in line:
            return index
        if "From:" in line and "<" in line:
            return index
    return 0


def unfold_header(value) -> str:
    """Join folded continuation lines with a single space"""
    if value is None:
        return ""
    text = str(value)
    return _FOLDED_LINE.sub(" ", text).strip()


def header_from_message(message: Message, name: str) -> str:
    """First stage: the value the structured parser found"""
    return unfold_header(message.get(name))


def sender_from_lines(lines: Sequence[str]) -> str:
    """
    Second stage for From: a ``From:`` line without an angle-bracket address

    Some senders emit From lines the structured parser drops; the last such
    line within the scanned region wins.
    """
    found = ""
    for line in lines[:HEADER_FALLBACK_LINES]:
        if line.startswith("From:") and "<" not in line:
            found = line[len("From:"):].strip()
    return found


def recipient_from_lines(lines: Sequence[str]) -> str:
    """Second stage for To: the trimmed remainder of a ``To:`` line"""
    found = ""
    for line in lines[:HEADER_FALLBACK_LINES]:
        if line.startswith("To:"):
            found = line[len("To:"):].strip()
    return found


def first_non_empty(stages: Sequence[Callable[[], str]]) -> str:
    """Run *stages* in order and return the first non-empty result"""
    for stage in stages:
        value = stage()
        if value:
            return value
    return ""


class EmailParser:
    """
    Parses raw message content into Email objects

    MAINTENANCE WISDOM: The parser never applies size policy. It always
    attempts a full decode; what gets persisted is decided by ContentPolicy.
    This keeps the parser deterministic and easy to test.
    """

    def __init__(
        self,
        max_mime_parts: int = MAX_MIME_PARTS,
        max_mime_depth: int = MAX_MIME_DEPTH
    ):
        self.max_mime_parts = max_mime_parts
        self.max_mime_depth = max_mime_depth
        self.logger = logging.getLogger("EmailParser")

    def parse(self, raw_content: RawContent) -> Email:
        """
        Parse raw message content

        Args:
            raw_content: The message exactly as received (str or bytes)

        Returns:
            Email whose raw_content is the very object passed in

        Raises:
            EmailParsingError: if no header could be read at all
        """
        text, source_encoding = decode_raw(raw_content)
        if not text.strip():
            raise EmailParsingError("Message is empty")

        lines = text.split("\n")
        # Leading blank lines would end the header block before it starts
        first_content = next(i for i, line in enumerate(lines) if line.strip())
        start = max(find_header_start(lines), first_content)
        message = email.message_from_string("\n".join(lines[start:]))

        if not message.keys():
            raise EmailParsingError("No RFC-5322 header block found")

        for defect in message.defects:
            self.logger.debug("Message defect: %s", type(defect).__name__)

        sender = first_non_empty([
            lambda: header_from_message(message, "From"),
            lambda: sender_from_lines(lines),
        ])
        recipient = first_non_empty([
            lambda: header_from_message(message, "To"),
            lambda: recipient_from_lines(lines),
        ])

        walked = MimeWalker(
            message,
            max_parts=self.max_mime_parts,
            max_depth=self.max_mime_depth,
            source_encoding=source_encoding,
        ).walk()

        return Email(
            sender=sender,
            recipient=recipient,
            subject=header_from_message(message, "Subject"),
            date=header_from_message(message, "Date"),
            body_text=walked.body_text,
            body_html=walked.body_html,
            attachments=tuple(walked.attachments),
            raw_content=raw_content,
        )


def parse_email(raw_content: RawContent, parser: Optional[EmailParser] = None) -> Email:
    """Module-level convenience wrapper around EmailParser.parse"""
    return (parser or EmailParser()).parse(raw_content)


def decode_raw(raw_content: RawContent) -> Tuple[str, str]:
    """
    Return the text to parse and the codec that maps it back to the received bytes

    SECURITY STORY: latin-1 maps every byte to one code point, so 8-bit mail
    that is not UTF-8 survives as text and can be stored and re-encoded to
    exactly the bytes that arrived.
    """
    if isinstance(raw_content, (bytes, bytearray)):
        data = bytes(raw_content)
        try:
            return data.decode("utf-8"), "utf-8"
        except UnicodeDecodeError:
            return data.decode("latin-1"), "latin-1"
    if isinstance(raw_content, str):
        return raw_content, "utf-8"
    raise TypeError(f"raw_content must be str or bytes, not {type(raw_content).__name__}")


def encode_raw(text: str, encoding: str = "utf-8") -> RawContent:
    """Inverse of decode_raw: text stored under *encoding* back to parser input"""
    if encoding == "utf-8":
        return text
    return text.encode(encoding)
