"""HTML normalization helpers for the fetch and extraction pipeline.

This module is deterministic and network-free. It decodes fetched bytes,
repairs broken markup ahead of parsing, strips markup noise the extractor
trips over, and sanitizes the final article HTML.
"""

from __future__ import annotations

import codecs
import html as html_lib
import logging
import re
import unicodedata
from typing import Mapping, Optional

import ftfy
import lxml.html
from bs4 import BeautifulSoup
from charset_normalizer import from_bytes
from lxml.html.clean import Cleaner

logger = logging.getLogger(__name__)

__all__ = [
    "decode_bytes_auto",
    "minimal_text_fix",
    "repair_markup",
    "sanitize_html",
    "strip_empty_nodes",
    "strip_conditional_comments",
    "inner_html",
    "outer_html",
]

_ZERO_WIDTH = {0x200B, 0x200C, 0x200D, 0x2060, 0xFEFF}
_REMOVE = {0x00, 0x0B, 0x0C}
_C1_TO_SPACE = {cp: " " for cp in range(0x80, 0xA0)}
_TRANSLATE = {**{cp: None for cp in _ZERO_WIDTH | _REMOVE}, **_C1_TO_SPACE}

_HEADER_CHARSET_RE = re.compile(r"charset=[\"']?([^;\"'\n]*)", re.I)
_XML_DECL_RE = re.compile(r"^<\?xml\s+version=(?:\"[^\"]*\"|'[^']*')\s+encoding=(\"[^\"]*\"|'[^']*')", re.S)
_META_HTTP_EQUIV_RE = re.compile(
    r"<meta\s+http-equiv\s*=\s*[\"']?Content-Type[\"']? content\s*=\s*[\"'][^;]+;\s*charset=[\"']?([^;\"'>]+)",
    re.I,
)
_META_TAG_RE = re.compile(r"<meta\s+([^>]+)>", re.I)
_META_CHARSET_RE = re.compile(r"charset\s*=\s*[\"']?([^\"']+)", re.I)
_LATIN1_ALIASES = {"iso-8859-1", "iso8859-1", "latin1", "latin-1", "us-ascii"}

_EMPTY_NODE_RE = re.compile(
    r"<(?!iframe|td|th)([^>\s]+)[^>]*>(?:<br />|&nbsp;|&thinsp;|&ensp;|&emsp;|&#8201;|&#8194;|&#8195;|\s)*</\1>",
    re.M,
)
_BLANK_LINES_RE = re.compile(r"^[ \t]*[\r\n]+", re.M)
_CONDITIONAL_HEAD_RE = re.compile(r"<!--\[if[^\]]*\]>.*?(?=<head[\s>])", re.I | re.S)
_HTML_OPEN_TAG_RE = re.compile(r"<html[^>]*>", re.I)
_CONDITIONAL_COMMENT_RE = re.compile(r"<!--(?:\[| ?<!).+?-->", re.I | re.S | re.M)

# Removes scripts, event handlers, javascript: links, inline styles and
# meta tags; keeps iframes (embedded video) and unknown tags.
_XSS_CLEANER = Cleaner(
    scripts=True,
    javascript=True,
    comments=True,
    style=True,
    inline_style=True,
    links=False,
    meta=True,
    page_structure=False,
    processing_instructions=True,
    embedded=False,
    frames=False,
    forms=False,
    annoying_tags=False,
    kill_tags={"applet", "embed", "object", "param"},
    remove_unknown_tags=False,
    safe_attrs_only=False,
)


def _charset_from_headers(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    if not headers:
        return None
    content_type = headers.get("content-type", "")
    match = _HEADER_CHARSET_RE.search(content_type)
    if not match:
        return None
    return match.group(1).strip("\"' \r\n\t\x00\x0b")


def _charset_from_markup(head: str) -> Optional[str]:
    match = _XML_DECL_RE.search(head)
    if match:
        return match.group(1).strip("\"'")
    match = _META_HTTP_EQUIV_RE.search(head)
    if match:
        return match.group(1).strip()
    for attrs in _META_TAG_RE.findall(head):
        found = _META_CHARSET_RE.search(attrs)
        if found:
            return found.group(1).strip()
    return None


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using the charset header, then in-document hints,
    with charset-normalizer as the last resort.

    Latin-1 labels decode as cp1252 so MS Word smart quotes survive.
    """

    if not body:
        return ""

    enc = _charset_from_headers(headers)
    if not enc or enc.lower() == "none":
        enc = _charset_from_markup(body[:50000].decode("ascii", errors="ignore"))

    enc = (enc or "").strip().lower()
    if enc == "iso-8850-1":
        enc = "iso-8859-1"
    if enc in _LATIN1_ALIASES:
        enc = "cp1252"

    text: Optional[str] = None
    if enc:
        try:
            codecs.lookup(enc)
            text = body.decode(enc, errors="replace")
            logger.info("Decoding with %s", enc)
        except LookupError:
            logger.info("Unknown encoding %r, guessing instead", enc)
    if text is None:
        result = from_bytes(body).best()
        text = body.decode("utf-8", errors="replace") if result is None else str(result)
    return text.replace("</[>", "")


def minimal_text_fix(text: str) -> str:
    """Fix mojibake and strip zero-width/control noise without collapsing structure."""

    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text)
    fixed = ftfy.fix_text(normalized, normalization="NFC", uncurl_quotes=False)
    return fixed.translate(_TRANSLATE)


def repair_markup(html: str) -> str:
    """Repair malformed markup by parsing/re-serializing with tolerant parsers."""

    for parser in ("html5lib", "lxml", "html.parser"):
        try:
            return str(BeautifulSoup(html, parser))
        except Exception as exc:  # parser backends raise assorted errors
            logger.debug("repair_markup: %s failed: %s", parser, exc)
            continue
    return html


def strip_empty_nodes(html: str) -> str:
    """Drop blank lines and elements holding only whitespace (iframe/td/th kept)."""

    compact = _BLANK_LINES_RE.sub("", html)
    return _EMPTY_NODE_RE.sub("", compact)


def strip_conditional_comments(html: str) -> str:
    """Normalize IE conditional comments.

    The conditional block in front of ``<head>`` collapses to the innermost
    ``<html ...>`` tag it wraps. If several conditional comments remain they
    are all removed.
    """

    def _keep_html_tag(match: "re.Match[str]") -> str:
        tags = _HTML_OPEN_TAG_RE.findall(match.group(0))
        return tags[-1] if tags else ""

    html = _CONDITIONAL_HEAD_RE.sub(_keep_html_tag, html, count=1)
    if len(_CONDITIONAL_COMMENT_RE.findall(html)) > 1:
        html = _CONDITIONAL_COMMENT_RE.sub("", html)
    return html


def inner_html(element) -> str:
    parts = [html_lib.escape(element.text, quote=False)] if element.text else []
    parts.extend(lxml.html.tostring(child, encoding="unicode") for child in element)
    return "".join(parts)


def outer_html(element) -> str:
    return lxml.html.tostring(element, encoding="unicode", with_tail=False)


def sanitize_html(html: str) -> str:
    """Remove script/style/event-handler content from an HTML fragment."""

    if not html or not html.strip():
        return html
    wrapper = lxml.html.fragment_fromstring(html, create_parent="div")
    _XSS_CLEANER(wrapper)
    return inner_html(wrapper)
