"""
Content-ID Image Inliner
Replaces cid: references in an HTML body with base64 data URIs

A stored rendering must display without fetching anything, and a cid: URI
only has meaning inside the original MIME message. Inlining is a pure
string transform, so re-running it during reprocessing yields the same
output for the same input.
"""

import base64
import re
from typing import Dict, Iterable, Tuple

from .email_data import Attachment

CID_REFERENCE_PATTERN = re.compile(r"""cid:([^"'\s>]+)""")

DEFAULT_IMAGE_TYPE = "image/jpeg"

# (offset, signature, media type); first match wins
IMAGE_SIGNATURES = (
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"\x89PNG", "image/png"),
    (0, b"GIF", "image/gif"),
    (0, b"BM", "image/bmp"),
)


def detect_image_type(data: bytes) -> str:
    """
    Guess an image media type from its leading bytes

    Example:
        >>> detect_image_type(b"\\x89PNG\\r\\n\\x1a\\n")
        'image/png'
    """
    if not data or len(data) < 4:
        return DEFAULT_IMAGE_TYPE

    for offset, signature, media_type in IMAGE_SIGNATURES:
        if data[offset:offset + len(signature)] == signature:
            return media_type

    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"

    return DEFAULT_IMAGE_TYPE


def build_cid_map(attachments: Iterable[Attachment]) -> Dict[str, Tuple[bytes, str]]:
    """Map normalized Content-ID to (data, declared type) for inline images"""
    images: Dict[str, Tuple[bytes, str]] = {}
    for attachment in attachments:
        if attachment.is_inline_image:
            images[attachment.content_id] = (attachment.data, attachment.content_type)
    return images


def to_data_uri(data: bytes, media_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def inline_cid_images(html_body: str, attachments: Iterable[Attachment]) -> str:
    """
    Inline every resolvable cid: reference in *html_body*

    Unknown Content-IDs are left untouched. When an inline part declares no
    media type, the type is sniffed from the payload.
    """
    if not html_body or "cid:" not in html_body:
        return html_body

    images = build_cid_map(attachments)
    if not images:
        return html_body

    def _replace(match: "re.Match") -> str:
        found = images.get(match.group(1))
        if found is None:
            return match.group(0)
        data, media_type = found
        return to_data_uri(data, media_type or detect_image_type(data))

    return CID_REFERENCE_PATTERN.sub(_replace, html_body)
