"""Pull one complete HTML document out of free-form model output."""

import re

from arena.services.generation.errors import HtmlValidationError

_FENCED_BLOCK = re.compile(r"```(?:html)?\s*([\s\S]*?)```", re.IGNORECASE)

_DOCTYPE_MARKER = "<!doctype html"
_HTML_MARKER = "<html"
_HTML_CLOSE = "</html>"


def extract_html_document(raw_text: str) -> str:
    """Extract a single HTML document from raw model text.

    Prefers the interior of the first fenced block, then locates
    ``<!doctype html`` (or ``<html``) and slices through the last ``</html>``.
    Truncated output without a closing tag is kept up to end-of-string.
    Malformed markup is never repaired.

    Args:
        raw_text: Buffered or fully concatenated streamed output.

    Returns:
        The trimmed document.

    Raises:
        HtmlValidationError: If the output is empty or has no HTML marker.
    """
    trimmed = raw_text.strip()
    if not trimmed:
        raise HtmlValidationError("Model returned empty output.")

    fenced = _FENCED_BLOCK.search(trimmed)
    candidate = (fenced.group(1).strip() if fenced else "") or trimmed

    lowered = candidate.lower()
    start = lowered.find(_DOCTYPE_MARKER)
    if start < 0:
        start = lowered.find(_HTML_MARKER)
    if start < 0:
        raise HtmlValidationError("Model output does not contain a full HTML document.")

    end = lowered.rfind(_HTML_CLOSE)
    if end >= start:
        return candidate[start : end + len(_HTML_CLOSE)].strip()
    return candidate[start:].strip()
