"""
Content Policy Module
Decides what gets persisted for a message: parsed content, a size-limit
placeholder, or a degraded "parsing failed" record

SECURITY STORY: Two ceilings protect storage and the parser:
1. Raw-message ceiling - checked before any parsing cost is paid
2. Attachment ceiling  - oversized payloads are replaced by a text
   placeholder that still names the file and its original size

The parser itself knows nothing about either ceiling.
"""

import logging
from dataclasses import replace
from typing import Iterable, Optional, Tuple

from .email_data import (
    STATUS_OVERSIZED,
    STATUS_PARSE_FAILED,
    Attachment,
    Email,
    EmailRecord,
    RawContent,
)
from .email_parser import EmailParser, EmailParsingError, decode_raw
from .html_renderer import render_email_html
from ..utils.config import PolicyConfig
from ..utils.sanitization import sanitize_for_logging
from ..utils.security_validators import (
    DEFAULT_ATTACHMENT_SIZE_LIMIT,
    DEFAULT_EMAIL_SIZE_LIMIT,
    is_oversized,
)

PARSE_FAILED_PLACEHOLDER = "Email parsing failed"


def size_limit_placeholder(limit: int) -> str:
    """Body stored in place of a message larger than *limit* bytes"""
    return f"Limit of this service is {limit // 1024}kb only"


def redaction_placeholder(filename: str, size: int, limit: int) -> bytes:
    """Text stored in place of an attachment payload larger than *limit*"""
    name = filename or "unnamed attachment"
    return (
        f"[attachment redacted: {name} was {size} bytes, "
        f"exceeding the {limit} byte limit]"
    ).encode("utf-8")


def raw_size(raw_content: RawContent) -> int:
    """Size of the raw message in bytes as it went over the wire"""
    if isinstance(raw_content, (bytes, bytearray)):
        return len(raw_content)
    return len(raw_content.encode("utf-8", errors="surrogateescape"))


class ContentPolicy:
    """
    Applies the size ceilings around EmailParser

    MAINTENANCE WISDOM: Ceilings are plain constructor arguments, never
    module globals, so tests can exercise exact boundary values.
    """

    def __init__(
        self,
        email_size_limit: int = DEFAULT_EMAIL_SIZE_LIMIT,
        attachment_size_limit: int = DEFAULT_ATTACHMENT_SIZE_LIMIT,
        parser: Optional[EmailParser] = None
    ):
        self.email_size_limit = email_size_limit
        self.attachment_size_limit = attachment_size_limit
        self.parser = parser or EmailParser()
        self.logger = logging.getLogger("ContentPolicy")

    @classmethod
    def from_config(cls, config: PolicyConfig, parser: Optional[EmailParser] = None) -> "ContentPolicy":
        return cls(
            email_size_limit=config.email_size_limit,
            attachment_size_limit=config.attachment_size_limit,
            parser=parser,
        )

    def is_oversized(self, raw_content: RawContent) -> bool:
        return is_oversized(raw_size(raw_content), self.email_size_limit)

    @property
    def size_limit_message(self) -> str:
        return size_limit_placeholder(self.email_size_limit)

    def redact_attachments(self, attachments: Iterable[Attachment]) -> Tuple[Attachment, ...]:
        """
        Replace oversized payloads with a redaction placeholder

        Filename, content type and Content-ID are kept so the stored row
        still identifies the original part.
        """
        kept = []
        for attachment in attachments:
            if is_oversized(attachment.size, self.attachment_size_limit):
                self.logger.warning(
                    "Attachment %s exceeds max size (%d bytes); storing placeholder",
                    sanitize_for_logging(attachment.filename),
                    attachment.size,
                )
                attachment = replace(
                    attachment,
                    data=redaction_placeholder(
                        attachment.filename, attachment.size, self.attachment_size_limit
                    ),
                )
            kept.append(attachment)
        return tuple(kept)

    def build_record(self, sender: str, recipient: str, raw_content: RawContent) -> EmailRecord:
        """
        Build the record to persist for one accepted message

        Args:
            sender: Envelope sender (MAIL FROM)
            recipient: Envelope recipient (RCPT TO)
            raw_content: The message exactly as received

        Returns:
            EmailRecord; never raises for content problems
        """
        if self.is_oversized(raw_content):
            self.logger.info(
                f"Message from {sanitize_for_logging(sender)} exceeds "
                f"{self.email_size_limit} bytes; storing size-limit placeholder"
            )
            return self.oversized_record(sender, recipient, raw_content)

        try:
            parsed = self.parser.parse(raw_content)
        except EmailParsingError as e:
            self.logger.warning(
                f"Could not parse message from {sanitize_for_logging(sender)}: {e}; "
                f"storing raw content only"
            )
            return self.degraded_record(sender, recipient, raw_content)

        return self.parsed_record(parsed, sender, recipient)

    def parsed_record(self, parsed: Email, sender: str = "", recipient: str = "") -> EmailRecord:
        """Record for a successfully parsed message; envelope fills empty headers"""
        attachments = self.redact_attachments(parsed.attachments)
        redacted = sum(
            1 for before, after in zip(parsed.attachments, attachments) if before is not after
        )
        raw_content, raw_encoding = decode_raw(parsed.raw_content)
        return EmailRecord(
            sender=parsed.sender or sender,
            recipient=parsed.recipient or recipient,
            subject=parsed.subject,
            date=parsed.date,
            body=parsed.body_text,
            html_body=render_email_html(parsed),
            raw_content=raw_content,
            raw_encoding=raw_encoding,
            attachments=attachments,
            redacted_attachments=redacted,
        )

    def oversized_record(self, sender: str, recipient: str, raw_content: RawContent) -> EmailRecord:
        placeholder = self.size_limit_message
        text, raw_encoding = decode_raw(raw_content)
        return EmailRecord(
            sender=sender,
            recipient=recipient,
            subject="",
            date="",
            body=placeholder,
            html_body=placeholder,
            raw_content=text,
            raw_encoding=raw_encoding,
            status=STATUS_OVERSIZED,
        )

    def degraded_record(self, sender: str, recipient: str, raw_content: RawContent) -> EmailRecord:
        text, raw_encoding = decode_raw(raw_content)
        return EmailRecord(
            sender=sender,
            recipient=recipient,
            subject="",
            date="",
            body=PARSE_FAILED_PLACEHOLDER,
            html_body=PARSE_FAILED_PLACEHOLDER,
            raw_content=text,
            raw_encoding=raw_encoding,
            status=STATUS_PARSE_FAILED,
        )
