"""
MIME Structure Walker
Turns a parsed message into (plain body, HTML body, attachments)

PATTERN RECOGNITION: The stdlib parser has already split the message on its
boundaries; this module only decides what each part *is*. Every part falls
into exactly one class:

  - attachment:   Content-Disposition "attachment", or "inline" with a filename
  - inline text:  text/plain or text/html that is not an attachment
  - inline image: image/* carrying a Content-ID that is not an attachment
  - anything else is ignored

SECURITY STORY: Walking is bounded by MAX_MIME_PARTS and MAX_MIME_DEPTH so a
message with thousands of nested containers costs a fixed amount of work.
"""

import logging
from dataclasses import dataclass, field
from email.message import Message
from email.utils import collapse_rfc2231_value
from typing import Dict, List, Optional, Tuple

from .email_data import Attachment, DISPOSITION_ATTACHMENT, DISPOSITION_INLINE
from .transfer_decoder import decode_transfer
from ..utils.sanitization import sanitize_for_logging
from ..utils.security_validators import MAX_MIME_DEPTH, MAX_MIME_PARTS

TEXT_PLAIN = "text/plain"
TEXT_HTML = "text/html"


@dataclass
class WalkResult:
    """Bodies and attachments collected from one message"""
    body_text: str = ""
    body_html: str = ""
    attachments: List[Attachment] = field(default_factory=list)


def parse_content_type(value: Optional[str]) -> Tuple[str, Dict[str, str]]:
    """
    Split a Content-Type header into a media type and its parameters

    Malformed or missing values yield the implicit ``text/plain``.
    Duplicate parameters are tolerated; the last one wins.

    Example:
        >>> parse_content_type('multipart/mixed; boundary="b1"')
        ('multipart/mixed', {'boundary': 'b1'})
    """
    holder = Message()
    if value:
        holder["Content-Type"] = str(value)

    media_type = holder.get_content_type()
    params: Dict[str, str] = {}
    for key, param_value in (holder.get_params(failobj=[]) or [])[1:]:
        if not key:
            continue
        params[key.strip().lower()] = collapse_rfc2231_value(param_value).strip()

    return media_type, params


def normalize_content_id(value) -> str:
    """Strip whitespace and one pair of surrounding angle brackets"""
    if not value:
        return ""
    value = str(value).strip()
    value = value.removeprefix("<").removesuffix(">")
    return value.strip()


class MimeWalker:
    """
    Classifies and decodes the parts of one parsed message

    A walker is single-use: create one per message and call walk() once.
    """

    def __init__(
        self,
        message: Message,
        max_parts: int = MAX_MIME_PARTS,
        max_depth: int = MAX_MIME_DEPTH,
        source_encoding: str = "utf-8"
    ):
        self.message = message
        self.source_encoding = source_encoding
        self.max_parts = max_parts
        self.max_depth = max_depth
        self.logger = logging.getLogger("MimeWalker")
        self._parts_seen = 0

    def walk(self) -> WalkResult:
        """
        Walk the message and collect its bodies and attachments

        Returns:
            WalkResult; attachments are in encounter (depth-first) order and a
            later text part of the same kind replaces an earlier one
        """
        result = WalkResult()
        media_type, _ = parse_content_type(self.message.get("Content-Type"))

        if media_type.startswith("multipart/"):
            self._walk_container(self.message, 0, result)
        else:
            try:
                self._take_single_part(media_type, result)
            except Exception as e:
                self.logger.warning(f"Could not read message body: {e}")

        return result

    def _take_single_part(self, media_type: str, result: WalkResult) -> None:
        """A non-multipart message is always a body, never an attachment"""
        text = _decode_bytes(
            _part_bytes(self.message, self.source_encoding), self.message.get_content_charset()
        )
        if media_type.startswith(TEXT_HTML):
            result.body_html = text
        else:
            result.body_text = text

    def _walk_container(self, container: Message, depth: int, result: WalkResult) -> bool:
        """
        Walk the children of one multipart container

        Returns:
            False once the part limit is hit, so callers stop walking
        """
        children = container.get_payload()
        if not isinstance(children, list):
            # Missing or unmatched boundary: the parser kept the body as text
            self.logger.debug("Multipart container without readable parts at depth %d", depth)
            return True

        for child in children:
            self._parts_seen += 1
            if self._parts_seen > self.max_parts:
                self.logger.warning(
                    f"Message exceeds max MIME parts ({self.max_parts}). "
                    f"Ignoring remaining parts."
                )
                return False

            try:
                media_type, _ = parse_content_type(child.get("Content-Type"))
                if media_type.startswith("multipart/"):
                    if depth + 1 >= self.max_depth:
                        self.logger.warning(
                            f"Multipart nesting deeper than {self.max_depth}; skipping container"
                        )
                        continue
                    if not self._walk_container(child, depth + 1, result):
                        return False
                    continue

                self._classify_part(child, media_type, result)
            except Exception as e:
                self.logger.warning(f"Skipping unreadable MIME part: {e}")

        return True

    def _classify_part(self, part: Message, media_type: str, result: WalkResult) -> None:
        disposition = _disposition_type(part)
        filename = _part_filename(part)
        content_id = normalize_content_id(part.get("Content-ID"))

        if disposition == DISPOSITION_ATTACHMENT or (disposition == DISPOSITION_INLINE and filename):
            result.attachments.append(self._build_attachment(
                part, filename, content_id, disposition
            ))
            return

        if media_type in (TEXT_PLAIN, TEXT_HTML):
            text = _decode_bytes(_part_bytes(part, self.source_encoding), part.get_content_charset())
            if media_type == TEXT_HTML:
                result.body_html = text
            else:
                result.body_text = text
            return

        if media_type.startswith("image/") and content_id:
            result.attachments.append(self._build_attachment(
                part, filename, content_id, DISPOSITION_INLINE
            ))
            return

        self.logger.debug("Ignoring %s part", media_type)

    def _build_attachment(
        self,
        part: Message,
        filename: str,
        content_id: str,
        disposition: str
    ) -> Attachment:
        attachment = Attachment(
            filename=filename,
            content_type=_declared_media_type(part),
            data=_part_bytes(part, self.source_encoding),
            content_id=content_id,
            disposition=disposition,
        )
        self.logger.debug(
            "Collected %s part %s (%d bytes)",
            disposition, sanitize_for_logging(filename), attachment.size
        )
        return attachment


def _part_bytes(part: Message, source_encoding: str = "utf-8") -> bytes:
    """
    Return the transfer-decoded body of a leaf part

    *source_encoding* is the codec the parser used to turn the received
    bytes into text; encoding with it again gives back the bytes as sent.
    """
    payload = part.get_payload()
    if isinstance(payload, list):
        # message/rfc822 and friends: keep the embedded message as text
        raw = "".join(sub.as_string() for sub in payload if isinstance(sub, Message))
    else:
        raw = payload or ""

    if isinstance(raw, str):
        raw = raw.encode(source_encoding, errors="surrogateescape")

    return decode_transfer(raw, part.get("Content-Transfer-Encoding"))


def _declared_media_type(part: Message) -> str:
    """Media type exactly as declared; empty when missing or malformed"""
    raw = part.get("Content-Type")
    if not raw:
        return ""
    media_type = str(raw).split(";", 1)[0].strip().lower()
    if media_type.count("/") != 1:
        return ""
    return media_type


def _disposition_type(part: Message) -> str:
    raw = part.get("Content-Disposition")
    if not raw:
        return ""
    return str(raw).split(";", 1)[0].strip().lower()


def _part_filename(part: Message) -> str:
    """``filename`` (disposition, then content-type) before legacy ``name``"""
    for header, param in (
        ("content-disposition", "filename"),
        ("content-type", "filename"),
        ("content-type", "name"),
    ):
        value = part.get_param(param, header=header)
        if value:
            return collapse_rfc2231_value(value).strip()
    return ""


def _decode_bytes(data: bytes, charset: Optional[str]) -> str:
    """
    Decode bytes to string with charset fallback

    Uses 'replace' so an undecodable byte costs one character, not the body.
    """
    if not data:
        return ""
    encoding = charset or "utf-8"
    try:
        return data.decode(encoding, errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")
