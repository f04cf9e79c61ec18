from __future__ import annotations

import copy
import logging
import re
import time
from dataclasses import dataclass, field, replace
from pathlib import PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode, urljoin, urlsplit, urlunsplit

import requests

from .html_normalize import decode_bytes_auto, strip_conditional_comments
from .reader_config import (
    AJAX_TRIGGERS,
    DEFAULT_MAX_REDIRECT,
    DEFAULT_REFERER,
    DEFAULT_TIMEOUT,
    DEFAULT_UA_BROWSER,
    HDR_ACCEPT,
    HDR_COOKIE,
    HDR_HOST,
    HDR_REFERER,
    HDR_USER_AGENT,
    HEADER_ONLY_CLUES,
    HEADER_ONLY_TYPES,
    REWRITE_URL,
)
from .reader_utils import make_absolute_str, strip_www
from .ssrf_guard import InvalidURLError, Options, validate_url

logger = logging.getLogger(__name__)

_REDIRECT_STATUSES = {301, 302, 303, 307, 308}
_REFRESH_HEADER_RE = re.compile(r"[0-9];\s*url=[\"']?([^\"'>]+)", re.I)
_META_REFRESH_RE = re.compile(
    r"<meta http-equiv=[\"']?refresh[\"']? content=[\"']?[0-9];\s*url=[\"']?([^\"'>]+)[\"']?",
    re.I,
)
_META_REFRESH_REVERSED_RE = re.compile(
    r"<meta content=[\"']?[0-9];\s*url=[\"']?([^\"'>]+)[\"']? http-equiv=[\"']?refresh[\"']?",
    re.I,
)
_MIME_RE = re.compile(r"\s*(([-\w]+)/([-\w+]+))", re.M)
_TEXTUAL_HINTS = ("html", "xml", "text")

STATUS_LOOP = 310
STATUS_TRANSPORT_ERROR = 500
STATUS_DEADLINE = 504


@dataclass
class HttpClientConfig:
    """Configuration for :class:`HttpClient`."""

    ua_browser: str = DEFAULT_UA_BROWSER
    default_referer: str = DEFAULT_REFERER
    rewrite_url: Dict[str, Dict[str, str]] = field(default_factory=lambda: copy.deepcopy(REWRITE_URL))
    header_only_types: Tuple[str, ...] = HEADER_ONLY_TYPES
    header_only_clues: Tuple[str, ...] = HEADER_ONLY_CLUES
    user_agents: Dict[str, str] = field(default_factory=dict)
    ajax_triggers: Tuple[str, ...] = AJAX_TRIGGERS
    max_redirect: int = DEFAULT_MAX_REDIRECT
    timeout: float = DEFAULT_TIMEOUT
    ssrf: Options = field(default_factory=Options)

    def __post_init__(self) -> None:
        if isinstance(self.max_redirect, bool) or not isinstance(self.max_redirect, int) or self.max_redirect < 0:
            raise ValueError("max_redirect must be a non-negative integer")
        if self.timeout is None or float(self.timeout) <= 0:
            raise ValueError("timeout must be positive")
        if isinstance(self.ssrf, Mapping):
            self.ssrf = Options(**self.ssrf)
        self.header_only_types = tuple(t.lower() for t in self.header_only_types)
        self.header_only_clues = tuple(c.lower() for c in self.header_only_clues)
        self.ajax_triggers = tuple(self.ajax_triggers)


@dataclass(frozen=True)
class Deadline:
    """Monotonic wall-clock budget shared by every request of one call."""

    expires_at: Optional[float] = None

    @classmethod
    def after(cls, seconds: Optional[float]) -> "Deadline":
        if seconds is None:
            return cls()
        return cls(time.monotonic() + float(seconds))

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def clamp(self, timeout: float) -> float:
        remaining = self.remaining()
        return timeout if remaining is None else min(timeout, remaining)


@dataclass
class FetchSession:
    """Request-scoped state of one top-level :meth:`HttpClient.fetch` call.

    ``redirect_count`` counts every HTTP request sent, redirect hops and
    internal refetches alike.
    """

    initial_url: Optional[str] = None
    redirect_count: int = 0
    visited: List[str] = field(default_factory=list)
    deadline: Deadline = field(default_factory=Deadline)


@dataclass(frozen=True)
class FetchResult:
    """One resolved HTTP exchange (possibly synthetic for 310/500/504)."""

    effective_url: str
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    status: int = 200
    # Set when the body was already decoded and re-encoded by the client.
    encoding: Optional[str] = None

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def content_type(self) -> str:
        return self.header("content-type")

    def text(self) -> str:
        if self.encoding:
            return self.body.decode(self.encoding, errors="replace")
        return decode_bytes_auto(self.body, self.headers)

    def with_effective_url(self, url: str) -> "FetchResult":
        return replace(self, effective_url=url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "effective_url": self.effective_url,
            "status": self.status,
            "headers": dict(self.headers),
            "body_length": len(self.body),
        }


def _lower_headers(headers: Any) -> Dict[str, str]:
    if not headers:
        return {}
    return {str(k).lower(): str(v) for k, v in headers.items()}


class HttpClient:
    """SSRF-guarded HTTP fetcher that follows redirect-like signals.

    Redirects, ``refresh`` headers, meta refresh tags and AJAX crawl markers
    are all followed in a bounded loop. Every outgoing request consumes one
    unit of the ``max_redirect + 1`` request budget of the current session.
    """

    def __init__(
        self,
        config: Optional[HttpClientConfig] = None,
        session: Optional[requests.Session] = None,
        extractor: Any = None,
    ) -> None:
        self.config = config or HttpClientConfig()
        self._session = session or requests.Session()
        self._extractor = extractor

    def fetch(
        self,
        url: str,
        skip_type_check: bool = False,
        http_header: Optional[Mapping[str, str]] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> FetchResult:
        session = FetchSession(deadline=deadline or Deadline())
        return self._fetch(url, skip_type_check, dict(http_header or {}), session)

    def cleanup_url(self, url: str) -> str:
        """Apply rewrite rules, turn ``#!frag`` into ``_escaped_fragment_`` and drop fragments."""

        for find, action in self.config.rewrite_url.items():
            if find in url:
                for old, new in action.items():
                    url = url.replace(old, new)

        pos = url.find("#!")
        if pos > 0:
            fragment = urlsplit(url).fragment[1:]
            url = url[:pos]
            url += "&" if urlsplit(url).query else "?"
            url += urlencode({"_escaped_fragment_": fragment}).replace("%2F", "/")

        pos = url.find("#")
        if pos > 0:
            url = url[:pos]
        return url

    def _fetch(self, url: str, skip_type_check: bool, http_header: Dict[str, str], session: FetchSession) -> FetchResult:
        while True:
            url = self.cleanup_url(url)
            if session.initial_url is None:
                session.initial_url = url

            method = "GET"
            if not skip_type_check and self.config.header_only_types and self._possible_unsupported_type(url):
                method = "HEAD"

            logger.info('Trying using method "%s" on url "%s"', method, url)
            outcome = self._send(method, url, self._build_headers(url, http_header), session)
            if isinstance(outcome, FetchResult):
                return outcome
            response, effective_url = outcome
            headers = _lower_headers(response.headers)

            refresh = headers.get("refresh", "")
            match = _REFRESH_HEADER_RE.search(refresh) if refresh else None
            if match:
                url = make_absolute_str(effective_url, match.group(1).strip()) or match.group(1).strip()
                skip_type_check = True
                continue

            if method == "HEAD" and not self._header_only_type(headers):
                url = effective_url
                skip_type_check = True
                continue

            body = response.content or b""
            encoding = None
            if self._is_textual(headers):
                text = strip_conditional_comments(decode_bytes_auto(body, headers))
                if self._extractor is not None:
                    text = self._extractor.process_string_replacements(text, effective_url)
                if "_escaped_fragment_" not in effective_url:
                    redirect = self._meta_refresh_url(effective_url, text) or self._ugly_url(effective_url, text)
                    if redirect is not None:
                        url = redirect
                        skip_type_check = True
                        continue
                body = text.encode("utf-8")
                encoding = "utf-8"

            effective_url = self._remove_trackers(effective_url.replace("&amp;", "&"))
            logger.info(
                "Data fetched: %s",
                {"effective_url": effective_url, "body": f"(only length for debug): {len(body)}", "status": response.status_code},
            )
            return FetchResult(effective_url, body, headers, int(response.status_code), encoding)

    def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        session: FetchSession,
    ) -> Union[FetchResult, Tuple[Any, str]]:
        current = url
        while True:
            if session.redirect_count > self.config.max_redirect:
                logger.info('Endless redirect: %s on "%s"', self.config.max_redirect + 1, session.initial_url)
                return FetchResult(session.initial_url or url, status=STATUS_LOOP)
            if session.deadline.expired():
                logger.warning('Deadline exceeded before requesting "%s"', current)
                return FetchResult(current, status=STATUS_DEADLINE)

            try:
                guarded = validate_url(current, self.config.ssrf)
            except InvalidURLError as exc:
                logger.warning("Request throw exception (with no response): %s", exc)
                return FetchResult(current, status=STATUS_TRANSPORT_ERROR)

            request_headers = dict(headers)
            if guarded.url != current:
                parts = urlsplit(current)
                request_headers[HDR_HOST] = parts.netloc.rpartition("@")[2]

            session.redirect_count += 1
            session.visited.append(current)
            try:
                response = self._session.request(
                    method,
                    guarded.url,
                    headers=request_headers,
                    allow_redirects=False,
                    timeout=session.deadline.clamp(self.config.timeout),
                )
            except requests.RequestException as exc:
                partial = getattr(exc, "response", None)
                if partial is not None:
                    logger.warning("Request throw exception (with a response): %s", exc)
                    return FetchResult(current, b"", _lower_headers(partial.headers), int(partial.status_code))
                logger.warning("Request throw exception (with no response): %s", exc)
                return FetchResult(current, status=STATUS_TRANSPORT_ERROR)

            location = _lower_headers(response.headers).get("location")
            if response.status_code in _REDIRECT_STATUSES and location:
                if response.status_code == 303:
                    method = "GET"
                close = getattr(response, "close", None)
                if close is not None:
                    close()
                current = urljoin(current, location.strip())
                continue
            return response, current

    def _build_headers(self, url: str, http_header: Mapping[str, str]) -> Dict[str, str]:
        headers = {
            HDR_USER_AGENT: self._user_agent(url, http_header),
            HDR_REFERER: self._referer(url, http_header),
        }
        cookie = self._cookie(url, http_header)
        if cookie:
            headers[HDR_COOKIE] = cookie
        accept = http_header.get("accept")
        if accept:
            logger.info('Found accept header "%s" for url "%s" from site config', accept, url)
            headers[HDR_ACCEPT] = accept
        return headers

    def _user_agent(self, url: str, http_header: Mapping[str, str]) -> str:
        if http_header.get("user-agent"):
            logger.info('Found user-agent "%s" for url "%s" from site config', http_header["user-agent"], url)
            return http_header["user-agent"]

        host = strip_www(urlsplit(url).hostname or "")
        tries = [host]
        labels = host.split(".")
        if len(labels) > 1:
            tries.append("." + ".".join(labels[1:]))
        for candidate in tries:
            if candidate in self.config.user_agents:
                logger.info('Found user-agent "%s" for url "%s" from config', self.config.user_agents[candidate], url)
                return self.config.user_agents[candidate]

        logger.info('Use default user-agent "%s" for url "%s"', self.config.ua_browser, url)
        return self.config.ua_browser

    def _referer(self, url: str, http_header: Mapping[str, str]) -> str:
        if http_header.get("referer"):
            logger.info('Found referer "%s" for url "%s" from site config', http_header["referer"], url)
            return http_header["referer"]
        return self.config.default_referer

    @staticmethod
    def _cookie(url: str, http_header: Mapping[str, str]) -> Optional[str]:
        raw = http_header.get("cookie")
        if not raw:
            return None
        logger.info('Found cookie "%s" for url "%s" from site config', raw, url)
        cookies: Dict[str, str] = {}
        for piece in (p.strip() for p in raw.split(";")):
            if not piece:
                continue
            name, sep, value = piece.partition("=")
            # flag-only attributes (secure, httpOnly) become name=1
            cookies[name.strip()] = value.strip(" \n\r\t\0\x0b\"") if sep else "1"
        return "; ".join(f"{name}={value}" for name, value in cookies.items())

    def _possible_unsupported_type(self, url: str) -> bool:
        ext = PurePosixPath(urlsplit(url).path).suffix.lstrip(".").strip().lower()
        return bool(ext) and ext in self.config.header_only_clues

    def _header_only_type(self, headers: Mapping[str, str]) -> bool:
        match = _MIME_RE.search(headers.get("content-type", "").lower())
        if not match:
            return False
        return any(mime.strip() in self.config.header_only_types for mime in (match.group(1), match.group(2)))

    @staticmethod
    def _is_textual(headers: Mapping[str, str]) -> bool:
        content_type = headers.get("content-type", "").lower()
        return not content_type or any(hint in content_type for hint in _TEXTUAL_HINTS)

    def _meta_refresh_url(self, url: str, html: str) -> Optional[str]:
        if not html:
            return None
        match = _META_REFRESH_RE.search(html) or _META_REFRESH_REVERSED_RE.search(html)
        if not match:
            return None
        redirect = match.group(1).strip().replace("&amp;", "&")
        logger.info('Meta refresh redirect found (http-equiv="refresh"), new URL: %s', redirect)
        if re.match(r"^https?://", redirect, re.I):
            return redirect
        return urljoin(url, redirect)

    def _ugly_url(self, url: str, html: str) -> Optional[str]:
        haystack = html.lower()
        if not any(trigger.lower() in haystack for trigger in self.config.ajax_triggers):
            return None
        logger.info("Added escaped fragment to url")
        parts = urlsplit(url)
        query = f"{parts.query}&" if parts.query else ""
        query += urlencode({"_escaped_fragment_": ""}).replace("%2F", "/")
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))

    @staticmethod
    def _remove_trackers(url: str) -> str:
        parts = urlsplit(url)
        query = parts.query
        if query:
            query = "&".join(p for p in query.split("&") if not p.startswith("utm_"))
        fragment = "" if "xtor=RSS" in parts.fragment else parts.fragment
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, fragment))


__all__ = [
    "HttpClientConfig",
    "HttpClient",
    "FetchResult",
    "FetchSession",
    "Deadline",
    "STATUS_LOOP",
    "STATUS_TRANSPORT_ERROR",
    "STATUS_DEADLINE",
]
