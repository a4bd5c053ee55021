"""
Email Data Model
Contains the dataclasses produced by the parser and consumed by storage
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

RawContent = Union[str, bytes]

DISPOSITION_ATTACHMENT = "attachment"
DISPOSITION_INLINE = "inline"

STATUS_PARSED = "parsed"
STATUS_OVERSIZED = "oversized"
STATUS_PARSE_FAILED = "parse_failed"


@dataclass(frozen=True)
class Attachment:
    """
    A non-text MIME part kept from a message

    ``data`` is always the decoded payload; the transfer encoding has been
    removed exactly once, during extraction.
    """
    filename: str
    content_type: str
    data: bytes
    content_id: str = ""
    disposition: str = DISPOSITION_ATTACHMENT

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_inline_image(self) -> bool:
        """True when this part can satisfy a ``cid:`` reference"""
        return self.disposition == DISPOSITION_INLINE and bool(self.content_id)


@dataclass(frozen=True)
class Email:
    """
    Result of parsing one raw message

    Header values are kept as received (unfolded, otherwise untouched).
    ``raw_content`` is the exact object given to the parser.
    """
    sender: str
    recipient: str
    subject: str
    date: str
    body_text: str
    body_html: str
    attachments: Tuple[Attachment, ...]
    raw_content: RawContent


@dataclass(frozen=True)
class EmailRecord:
    """
    The persisted shape of a message, built by ContentPolicy

    ``html_body`` is the rendered, self-contained HTML. ``email_id`` is
    assigned by a storage backend, never by the parser.
    """
    sender: str
    recipient: str
    subject: str
    date: str
    body: str
    html_body: str
    raw_content: str
    attachments: Tuple[Attachment, ...] = field(default_factory=tuple)
    email_id: Optional[str] = None
    # Codec that turns raw_content back into the received bytes
    raw_encoding: str = "utf-8"
    # Ingestion bookkeeping, not persisted
    status: str = STATUS_PARSED
    redacted_attachments: int = 0
