"""
Kirikou - Text Utilities
=========================
Helpers for cleaning crawled page text and checking page URLs before
they enter the knowledge base.

Stateless and side-effect-free; consumed by the ``IngestionPipeline``.
"""

from __future__ import annotations

import html
import re
import unicodedata
from urllib.parse import urlparse

# Control characters (except \n, \r, \t), BOM, zero-width chars, soft hyphens
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")

# Site chrome left in the page text by the crawler
_CHROME_LINE_RE = re.compile(
    r"^(?:skip to (?:main )?content|toggle navigation|main menu|back to top|read more|search(?: for)?:?"
    r"|all rights reserved\.?|(?:copyright\b|\u00a9).*)$",
    re.IGNORECASE,
)
# Lines up to this length are kept only on their first appearance in a page
_SHORT_LINE_MAX = 40

# Hosts whose pages may be cited to students
KNUST_DOMAINS: tuple[str, ...] = ("knust.edu.gh",)


def clean_text(text: str) -> str:
    """
    Turn one crawled page body into embeddable prose.

    HTML entities are decoded and invisible characters removed.
    Horizontal whitespace is collapsed while newlines are kept.  Site
    chrome lines (skip links, footers) are dropped, as is any short line
    already seen on the page, which is how menus repeated in header and
    footer disappear.  At most one blank line separates paragraphs.
    """
    text = unicodedata.normalize("NFC", html.unescape(text))
    text = _NON_PRINTABLE_RE.sub("", text)
    text = re.sub(r"[^\S\n]+", " ", text)

    kept: list[str] = []
    seen_short: set[str] = set()
    for line in text.splitlines():
        line = line.strip()
        if not line:
            kept.append("")
            continue
        if _CHROME_LINE_RE.match(line):
            continue
        if len(line) <= _SHORT_LINE_MAX:
            key = line.casefold()
            if key in seen_short:
                continue
            seen_short.add(key)
        kept.append(line)

    return re.sub(r"\n{3,}", "\n\n", "\n".join(kept)).strip()


def is_knust_url(url: str, domains: tuple[str, ...] = KNUST_DOMAINS) -> bool:
    """
    True when *url* is an http(s) link on a KNUST host or sub-host.

    Examples::

        "https://idl.knust.edu.gh/admissions"  → True
        "http://knust.edu.gh"                  → True
        "https://knust.edu.gh.example.com/"    → False
        "ftp://idl.knust.edu.gh/file"          → False
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    host = parsed.hostname.lower()
    return any(host == d or host.endswith("." + d) for d in domains)


def title_from_url(url: str) -> str:
    """
    Fallback page title built from the last URL path segment.

    ``"https://idl.knust.edu.gh/fees-and-payments/"`` → ``"Fees And Payments"``
    """
    parsed = urlparse(url)
    segments = [s for s in parsed.path.split("/") if s]
    if not segments:
        return parsed.hostname or url
    words = re.split(r"[-_]+", segments[-1].rsplit(".", 1)[0])
    return " ".join(w.capitalize() for w in words if w)
