"""
Sanitization Utility Module
Makes untrusted header values safe to write into log lines.
"""

import re
import unicodedata

ANSI_ESCAPE_PATTERN = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')


def sanitize_for_logging(text, max_length: int = 255) -> str:
    """
    Sanitize text for safe logging to prevent log injection (CRLF) and
    terminal manipulation.

    SECURITY STORY: Sender addresses, subjects and filenames come straight
    from the SMTP peer. A subject containing "\\r\\nINFO Email saved" would
    otherwise forge a log line.

    Args:
        text: Value to sanitize (bytes are decoded leniently)
        max_length: Maximum length kept before truncating

    Returns:
        Sanitized single-line string
    """
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")

    text = unicodedata.normalize('NFKC', str(text))
    text = text.replace('\n', '\\n').replace('\r', '\\r')
    text = ANSI_ESCAPE_PATTERN.sub('', text)
    text = "".join(ch for ch in text if ch == '\t' or ord(ch) >= 32)

    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text
