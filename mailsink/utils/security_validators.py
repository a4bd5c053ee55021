"""
Security Validators Module
Centralizes the limits applied to untrusted message content

SECURITY STORY: Every message arrives from an unauthenticated SMTP peer.
These limits keep a single hostile message from monopolizing a worker:
- MAX_MIME_PARTS: caps the number of MIME parts visited per message
- MAX_MIME_DEPTH: caps nested multipart containers (CWE-674)
- HEADER_FALLBACK_LINES: bounds the permissive header rescan
"""

import re

MAX_MIME_PARTS = 100
MAX_MIME_DEPTH = 10

# Only the first lines of a message are rescanned for From:/To: fallbacks
HEADER_FALLBACK_LINES = 20

DEFAULT_EMAIL_SIZE_LIMIT = 512 * 1024
DEFAULT_ATTACHMENT_SIZE_LIMIT = 2 * 1024 * 1024

# Filename sanitization patterns to prevent path traversal (CWE-22)
FILENAME_SANITIZE_PATTERN = re.compile(r"[^\w\s\-_\.]")
FILENAME_COLLAPSE_DOTS_PATTERN = re.compile(r"\.{2,}")

WINDOWS_RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9"
}


def sanitize_filename(filename: str) -> str:
    """
    Turn an attachment filename into a name safe to create on disk

    Only used when attachments are written to the filesystem. The stored
    Attachment keeps the sender's original filename.

    Example:
        >>> sanitize_filename("../../etc/passwd")
        'passwd'
        >>> sanitize_filename("report 2024.pdf")
        'report 2024.pdf'
    """
    if not filename:
        return "unnamed_attachment"

    # Drop any directory components first
    filename = filename.split("/")[-1].split("\\")[-1]

    sanitized = FILENAME_SANITIZE_PATTERN.sub("", filename)
    sanitized = FILENAME_COLLAPSE_DOTS_PATTERN.sub(".", sanitized)
    sanitized = sanitized.strip(". ")

    if not sanitized:
        return "unnamed_attachment"

    base_name = sanitized.split('.')[0].strip().upper()
    if base_name in WINDOWS_RESERVED_NAMES:
        sanitized = "_" + sanitized

    return sanitized[:255]


def is_oversized(length: int, limit: int) -> bool:
    """Return True when *length* exceeds *limit*."""
    return length > limit
