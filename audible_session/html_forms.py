"""
HTML Form Helpers
=================
Scrape the few things the sign-in flow needs out of Amazon's pages:
hidden form fields, the CAPTCHA image and the error banner.
"""

import html
import re
from typing import Dict, Optional

_INPUT_RE = re.compile(r"<input\b([^>]*)>", re.IGNORECASE)
_ATTR_RE = re.compile(
    r"""([a-zA-Z_:][\w:.\-]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""",
)
_CAPTCHA_RE = re.compile(
    r"""<div[^>]*\bid\s*=\s*["']auth-captcha-image-container["'][^>]*>.*?"""
    r"""<img\b[^>]*\bsrc\s*=\s*["']([^"']+)["']""",
    re.IGNORECASE | re.DOTALL,
)
_ERROR_BOX_RE = re.compile(
    r"""<div[^>]*\bid\s*=\s*["']auth-error-message-box["'][^>]*>.*?<ul[^>]*>(.*?)</ul>""",
    re.IGNORECASE | re.DOTALL,
)
_TAG_RE = re.compile(r"<[^>]+>")


def _attributes(tag_body: str) -> Dict[str, str]:
    attrs = {}
    for match in _ATTR_RE.finditer(tag_body):
        name = match.group(1).lower()
        value = next((g for g in match.groups()[1:] if g is not None), "")
        attrs[name] = html.unescape(value)
    return attrs


def parse_hidden_inputs(page: str) -> Dict[str, str]:
    """
    Collect every <input type="hidden"> that has both a name and a value.

    Later inputs win on duplicate names, the way a browser would submit them.
    """
    fields: Dict[str, str] = {}
    for match in _INPUT_RE.finditer(page or ""):
        attrs = _attributes(match.group(1))
        if attrs.get("type", "").lower() != "hidden":
            continue
        if "name" in attrs and "value" in attrs:
            fields[attrs["name"]] = attrs["value"]
    return fields


def find_captcha_url(page: str) -> Optional[str]:
    """CAPTCHA image URL, if the page is asking for one."""
    match = _CAPTCHA_RE.search(page or "")
    if match:
        return html.unescape(match.group(1))
    return None


def find_error_message(page: str) -> Optional[str]:
    """Text of the sign-in error banner, trimmed. None if there is no banner."""
    match = _ERROR_BOX_RE.search(page or "")
    if not match:
        return None
    text = html.unescape(_TAG_RE.sub(" ", match.group(1)))
    text = " ".join(text.split())
    return text or None
