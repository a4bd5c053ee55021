"""
HTML Renderer
Produces the self-contained HTML rendering that gets persisted

Plain-text bodies are escaped, linkified and wrapped in a minimal document;
HTML bodies get their cid: images inlined.
"""

import html

from .cid_inliner import inline_cid_images
from .email_data import Email

LINE_BREAK = "<br>"

DOCUMENT_TEMPLATE = (
    "<!DOCTYPE html>\n"
    "<html>\n"
    "<head>\n"
    "<meta charset=\"utf-8\">\n"
    "<style>body { font-family: sans-serif; white-space: pre-wrap; }</style>\n"
    "</head>\n"
    "<body>{content}</body>\n"
    "</html>\n"
)


def _linkify_token(token: str) -> str:
    if token.startswith("http://") or token.startswith("https://"):
        return f'<a href="{token}">{token}</a>'
    return token


def render_plaintext(text: str) -> str:
    """
    Render a plain-text body as a standalone HTML document

    Example:
        >>> "a &lt; b" in render_plaintext("a < b")
        True
    """
    escaped = html.escape(text or "", quote=True)

    rendered_lines = []
    for line in escaped.split("\n"):
        rendered_lines.append(" ".join(_linkify_token(token) for token in line.split()))

    return DOCUMENT_TEMPLATE.replace("{content}", LINE_BREAK.join(rendered_lines))


def render_email_html(email: Email) -> str:
    """
    Pick the HTML rendering to persist for *email*

    The HTML body wins when present; otherwise the plain body is rendered.
    """
    if email.body_html:
        return inline_cid_images(email.body_html, email.attachments)
    return render_plaintext(email.body_text)
