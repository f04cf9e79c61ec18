"""Shared helper functions used by the readpage workflows."""

from __future__ import annotations

import os
import re
import unicodedata
from typing import Iterable, List, Optional, Set, Tuple
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from .reader_config import EXCERPT_LENGTH, EXCERPT_SEPARATOR

_HUMAN_SCHEME_RE = re.compile(r"^(https?|feed)://.+", re.I)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"[\n\r\t ]+")
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"


def strip_www(host: str) -> str:
    h = (host or "").lower()
    return h[4:] if h.startswith("www.") else h


def _env_int(name: str, default: int = 0) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _split_env_list(value: str, *, sep: str = ",") -> Tuple[str, ...]:
    tokens: List[str] = []
    seen: Set[str] = set()
    for token in (value or "").split(sep):
        cleaned = token.strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        tokens.append(cleaned)
    return tuple(tokens)


def normalize_input_url(url: str) -> str:
    """Turn a human-entered URL into a fetchable absolute http(s) URL.

    Adds a missing scheme, maps ``feed://`` to ``http://``, IDNA-encodes a
    unicode host and percent-encodes unicode characters in the path.
    Raises ``ValueError`` when the result is still not a valid URL.
    """

    raw = (url or "").strip()
    if not _HUMAN_SCHEME_RE.match(raw):
        raw = "http://" + raw

    parts = urlsplit(raw)
    scheme = parts.scheme.lower()
    if scheme == "feed":
        scheme = "http"

    netloc = parts.netloc
    host = parts.hostname or ""
    if any(ord(ch) > 127 for ch in host):
        try:
            ascii_host = host.encode("idna").decode("ascii")
        except UnicodeError as exc:
            raise ValueError(f'Url "{url}" is not valid IDN to ascii.') from exc
        userinfo, _, _ = netloc.rpartition("@")
        port = f":{parts.port}" if parts.port else ""
        netloc = f"{userinfo}@{ascii_host}{port}" if userinfo else f"{ascii_host}{port}"

    path = parts.path
    if path and any(ord(ch) > 127 for ch in path):
        path = quote(path, safe=_PATH_SAFE)

    query = parts.query
    if query and any(ord(ch) > 127 for ch in query):
        query = quote(query, safe="=&%+/:;,@?")

    if scheme not in {"http", "https"} or not host or " " in netloc:
        raise ValueError(f'Url "{url}" is not valid.')

    return urlunsplit((scheme, netloc, path, query, parts.fragment))


def make_absolute_str(base: str, url: Optional[str]) -> Optional[str]:
    """Resolve ``url`` against ``base``; None when it cannot be resolved."""

    if not url:
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme:
        return url
    if not urlsplit(base).netloc:
        return None
    try:
        return urljoin(base, url)
    except ValueError:
        return None


def is_url_allowed(url: str, allowed_urls: Iterable[str], blocked_urls: Iterable[str]) -> bool:
    """Substring allow/deny check; an allowlist, when set, ignores the blocklist."""

    haystack = (url or "").lower()
    allowed = [token for token in allowed_urls if token]
    if allowed:
        return any(token.lower() in haystack for token in allowed)
    return not any(token and token.lower() in haystack for token in blocked_urls)


def _strip_separators(text: str) -> str:
    def _edge(ch: str) -> bool:
        return unicodedata.category(ch)[0] in {"Z", "C"}

    start, end = 0, len(text)
    while start < end and _edge(text[start]):
        start += 1
    while end > start and _edge(text[end - 1]):
        end -= 1
    return text[start:end]


def get_excerpt(text: str, length: int = EXCERPT_LENGTH, separator: str = EXCERPT_SEPARATOR) -> str:
    """Plain-text excerpt of an HTML fragment, cut on a word boundary."""

    cleaned = _TAG_RE.sub(" ", text or "")
    cleaned = _strip_separators(cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip(" ")
    if len(cleaned) > length:
        breakpoint_at = cleaned.find(" ", length)
        if breakpoint_at == -1:
            return cleaned
        return cleaned[:breakpoint_at].rstrip() + separator
    return cleaned


def sanity_check() -> None:
    assert strip_www("WWW.example.com") == "example.com"
    assert normalize_input_url("feed://example.com/rss") == "http://example.com/rss"
    assert make_absolute_str("http://example.com/a/b", "c") == "http://example.com/a/c"
    assert is_url_allowed("http://example.com", [], ["EXAMPLE"]) is False
    assert get_excerpt("<p>a</p><p>b</p>") == "a b"


sanity_check()

__all__ = [
    "strip_www",
    "normalize_input_url",
    "make_absolute_str",
    "is_url_allowed",
    "get_excerpt",
    "sanity_check",
]
