"""
Transfer-Encoding Decoder
Removes base64 / quoted-printable transfer encodings from part bodies

SECURITY STORY: Senders routinely lie about their Content-Transfer-Encoding.
Decoding is total: a body that does not decode under its declared encoding
is kept exactly as received instead of failing the whole message.
"""

import base64
import binascii
import logging
import quopri
import re

logger = logging.getLogger(__name__)

_BASE64_WHITESPACE = re.compile(rb"\s+")


def decode_transfer(data: bytes, encoding) -> bytes:
    """
    Decode *data* according to a Content-Transfer-Encoding token

    The token is matched case-insensitively as a substring, so values such
    as ``" Base64 "`` or ``"x-base64"`` are honoured.

    Args:
        data: Part body as found in the message
        encoding: Header value (may be None or empty)

    Returns:
        Decoded bytes, or *data* unchanged if decoding fails or the
        encoding is 7bit / 8bit / binary / unknown
    """
    if not data:
        return data or b""

    token = str(encoding or "").lower()

    if "base64" in token:
        return _decode_base64(data)

    if "quoted-printable" in token:
        return _decode_quoted_printable(data)

    return data


def _decode_base64(data: bytes) -> bytes:
    # MIME wraps base64 at 76 columns; strip line breaks before strict decoding
    compact = _BASE64_WHITESPACE.sub(b"", data)
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        logger.debug("Body is not valid base64 (%s); keeping it as-is", exc)
        return data


def _decode_quoted_printable(data: bytes) -> bytes:
    try:
        return quopri.decodestring(data)
    except (binascii.Error, ValueError) as exc:
        logger.debug("Body is not valid quoted-printable (%s); keeping it as-is", exc)
        return data
