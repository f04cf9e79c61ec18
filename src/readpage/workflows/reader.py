"""Top-level fetch-and-extract orchestration.

:class:`Reader` ties the pieces together: it normalizes and polices the
input URL, fetches it through :class:`HttpClient`, dispatches on the
response content type, follows "single page" and "next page" links, runs
the :class:`ContentExtractor` and assembles the final :class:`Content`.

Network and extraction problems never raise: they end up as a ``Content``
carrying a status code and the configured placeholder text. Invalid input
URLs, blocked URLs and excluded content types do raise.
"""

from __future__ import annotations

import copy
import html as html_lib
import json
import logging
import re
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit, urlunsplit

import lxml.html
import pymupdf
import requests

from ..core.keys import (
    K_AUTHORS,
    K_DATE,
    K_HEADERS,
    K_HTML,
    K_IMAGE,
    K_LANGUAGE,
    K_NATIVE_AD,
    K_STATUS,
    K_SUMMARY,
    K_TITLE,
    K_URL,
)
from .config_builder import ConfigBuilder
from .content_extractor import ContentExtractor, ContentExtractorConfig, find_link, validate_date
from .html_normalize import inner_html, outer_html, sanitize_html, strip_empty_nodes
from .http_client import Deadline, FetchResult, HttpClient, HttpClientConfig
from .logging_utils import RecordingHandler, attach_recording_handler
from .readability_engine import ReadabilityEngine, parse_document
from .reader_config import (
    CONTENT_TYPE_EXC,
    DEFAULT_MAX_REDIRECT,
    ENV_MAX_REDIRECT,
    ENV_TIMEOUT,
    ERROR_MESSAGE,
    ERROR_MESSAGE_TITLE,
    MULTIPAGE_FAILURE_NOTICE,
)
from .reader_utils import _env_float, _env_int, get_excerpt, is_url_allowed, make_absolute_str, normalize_input_url
from .ssrf_guard import validate_url

logger = logging.getLogger(__name__)

_MIME_RE = re.compile(r"\s*(([-\w]+)/([-\w+]+))")
_ABSOLUTE_OR_ANCHOR_RE = re.compile(r"^(https?://|#)", re.I)
_EMPTY_PARAGRAPH_RE = re.compile(r"<p>[\s\u00a0]*</p>")
_ANCHOR_TAG_RE = re.compile(r"</?a(?:\s[^>]*)?>", re.I)
_PDF_DATE_RE = re.compile(r"^D:(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?(Z|[+-]\d{2}'?\d{2}'?)?")
_UNWANTED_PDF_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffd]")

_WRAPPER_TAGS = ("div", "article", "section", "header", "footer")
_INNER_HTML_TAGS = _WRAPPER_TAGS + ("li", "td")
_LOG_LEVELS = ("info", "debug")


class UrlNotAllowedError(ValueError):
    """Raised when a URL is rejected by the allow/deny lists."""


class MimeTypeExcludedError(RuntimeError):
    """Raised when the response content type is configured as ``exclude``."""


class ContentLinks(str, Enum):
    PRESERVE = "preserve"
    FOOTNOTES = "footnotes"
    REMOVE = "remove"


@dataclass(frozen=True)
class ContentTypeAction:
    action: str
    name: str = ""

    def __post_init__(self) -> None:
        if self.action not in ("link", "exclude"):
            raise ValueError(f"content type action must be 'link' or 'exclude', got {self.action!r}")


def _coerce_actions(table: Mapping[str, Any]) -> Dict[str, ContentTypeAction]:
    actions: Dict[str, ContentTypeAction] = {}
    for key, value in table.items():
        if isinstance(value, ContentTypeAction):
            actions[key.lower()] = value
        elif isinstance(value, Mapping):
            actions[key.lower()] = ContentTypeAction(str(value.get("action", "")), str(value.get("name", "")))
        else:
            raise ValueError(f"content_type_exc[{key!r}] must be a mapping with 'action' and 'name'")
    return actions


def _build_nested(kind, value: Any, name: str):
    if isinstance(value, kind):
        return value
    if isinstance(value, Mapping):
        try:
            return kind(**value)
        except TypeError as exc:
            raise ValueError(f"invalid {name} options: {exc}") from exc
    raise ValueError(f"{name} must be a mapping or {kind.__name__}")


@dataclass
class ReaderConfig:
    """Options of one :class:`Reader`; validated at construction."""

    debug: bool = False
    log_level: str = "info"
    rewrite_relative_urls: bool = True
    singlepage: bool = True
    multipage: bool = True
    content_links: ContentLinks = ContentLinks.PRESERVE
    allowed_urls: List[str] = field(default_factory=list)
    blocked_urls: List[str] = field(default_factory=list)
    xss_filter: bool = True
    content_type_exc: Dict[str, ContentTypeAction] = field(default_factory=lambda: _coerce_actions(CONTENT_TYPE_EXC))
    error_message: str = ERROR_MESSAGE
    error_message_title: str = ERROR_MESSAGE_TITLE
    http_client: HttpClientConfig = field(default_factory=HttpClientConfig)
    extractor: ContentExtractorConfig = field(default_factory=ContentExtractorConfig)
    # Total wall-clock budget of one fetch_content call, in seconds.
    timeout: Optional[float] = None
    img_no_referrer: bool = False

    def __post_init__(self) -> None:
        self.log_level = str(self.log_level).lower()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        try:
            self.content_links = ContentLinks(self.content_links)
        except ValueError as exc:
            allowed = ", ".join(mode.value for mode in ContentLinks)
            raise ValueError(f"content_links must be one of {allowed}") from exc
        for name in ("allowed_urls", "blocked_urls"):
            value = getattr(self, name)
            if isinstance(value, str):
                value = [value]
            setattr(self, name, [str(v) for v in value])
        if not isinstance(self.content_type_exc, Mapping):
            raise ValueError("content_type_exc must be a mapping")
        self.content_type_exc = _coerce_actions(self.content_type_exc)
        self.http_client = _build_nested(HttpClientConfig, self.http_client, "http_client")
        self.extractor = _build_nested(ContentExtractorConfig, self.extractor, "extractor")
        if self.timeout is not None and float(self.timeout) <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ReaderConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown reader option(s): {', '.join(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_env(cls, overrides: Optional[Mapping[str, Any]] = None) -> "ReaderConfig":
        """Defaults, then ``READPAGE_TIMEOUT``/``READPAGE_MAX_REDIRECT``, then ``overrides``."""

        data: Dict[str, Any] = dict(overrides or {})
        timeout = _env_float(ENV_TIMEOUT)
        if timeout is not None and "timeout" not in data:
            data["timeout"] = timeout
        http_client = data.get("http_client") or {}
        if isinstance(http_client, Mapping) and "max_redirect" not in http_client:
            http_client = dict(http_client)
            http_client["max_redirect"] = _env_int(ENV_MAX_REDIRECT, DEFAULT_MAX_REDIRECT)
            data["http_client"] = http_client
        return cls.from_mapping(data)


@dataclass(frozen=True)
class Content:
    """Final result of :meth:`Reader.fetch_content`."""

    status: int
    html: str
    title: str
    url: str
    language: Optional[str] = None
    date: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    image: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    is_native_ad: bool = False
    summary: str = ""

    def with_html(self, html: str) -> "Content":
        return replace(self, html=html)

    def with_summary(self, summary: str) -> "Content":
        return replace(self, summary=summary)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            K_STATUS: data["status"],
            K_HTML: data["html"],
            K_TITLE: data["title"],
            K_LANGUAGE: data["language"],
            K_DATE: data["date"],
            K_AUTHORS: data["authors"],
            K_URL: data["url"],
            K_IMAGE: data["image"],
            K_HEADERS: data["headers"],
            K_NATIVE_AD: data["is_native_ad"],
            K_SUMMARY: data["summary"],
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


def _encode_path_spaces(url: str) -> str:
    parts = urlsplit(url)
    if " " not in parts.path:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path.replace(" ", "%20"), parts.query, parts.fragment))


def _nl2br(text: str) -> str:
    return re.sub(r"(\r\n|\n\r|\n|\r)", r"<br />\1", text)


def _pdf_date(raw: str) -> Optional[str]:
    match = _PDF_DATE_RE.match((raw or "").strip())
    if not match:
        return validate_date(raw) if raw else None
    year, month, day, hour, minute, second, zone = match.groups()
    stamp = f"{year}-{month or '01'}-{day or '01'}T{hour or '00'}:{minute or '00'}:{second or '00'}"
    if zone and zone != "Z":
        digits = zone.replace("'", "")
        stamp += f"{digits[:3]}:{digits[3:5]}"
    elif zone == "Z":
        stamp += "+00:00"
    return validate_date(stamp)


class Reader:
    """Fetch a URL and return its readable article content."""

    def __init__(
        self,
        config: Union[ReaderConfig, Mapping[str, Any], None] = None,
        session: Optional[requests.Session] = None,
        extractor: Optional[ContentExtractor] = None,
        http_client: Optional[HttpClient] = None,
        config_builder: Optional[ConfigBuilder] = None,
    ) -> None:
        if config is None:
            config = ReaderConfig()
        elif isinstance(config, Mapping):
            config = ReaderConfig.from_mapping(config)
        self.config: ReaderConfig = config

        if config_builder is None:
            config_builder = extractor.config_builder if extractor is not None else ConfigBuilder(
                self.config.extractor.config_builder, self.config.extractor.fingerprints
            )
        self.config_builder = config_builder
        self.extractor = extractor or ContentExtractor(self.config.extractor, self.config_builder)
        self.http_client = http_client or HttpClient(self.config.http_client, session, extractor=self.extractor)

        self.log_records: Optional[RecordingHandler] = None
        if self.config.debug:
            self.log_records = attach_recording_handler(self.config.log_level)

        self._prefetched: Optional[str] = None

    # -- public API ----------------------------------------------------------

    def set_content_as_prefetched(self, html: str) -> None:
        """Use ``html`` instead of fetching on the next :meth:`fetch_content` call."""

        self._prefetched = html

    def reload_config_files(self) -> None:
        self.config_builder.reload_config_files()

    def toggle_img_no_referrer(self, value: bool = True) -> None:
        self.config.img_no_referrer = value

    def fetch_content(self, url: str) -> Content:
        """Fetch ``url`` and extract its article.

        Raises ``ValueError`` for an invalid input URL,
        :class:`UrlNotAllowedError` for a blocked one, an
        :class:`~readpage.workflows.ssrf_guard.InvalidURLError` when the
        guard rejects it and :class:`MimeTypeExcludedError` for excluded
        content types.
        """

        deadline = Deadline.after(self.config.timeout)
        url = normalize_input_url(url)
        self._ensure_allowed(url)
        if self._prefetched is None:
            validate_url(url, self.config.http_client.ssrf)

        try:
            content = self._do_fetch_content(url, deadline)
        finally:
            self._prefetched = None

        return content.with_summary(get_excerpt(content.html))

    def cleanup_html(self, content_block: Any, url: str, engine: Optional[ReadabilityEngine] = None) -> str:
        """Assemble the final HTML string out of an extracted body node.

        A string input is run through the extractor first; when that finds
        nothing the (sanitized) input is returned as is.
        """

        if isinstance(content_block, str):
            original = content_block
            extracted = self.extractor.process(content_block, url)
            if not extracted.success:
                return self._cleanup_xss(original).strip()
            content_block = extracted.body
            engine = extracted.readability

        if engine is None:
            engine = ReadabilityEngine("", url, use_tidy=False)

        engine.clean(content_block, "select")

        if self.config.rewrite_relative_urls:
            self._make_absolute(url, content_block)

        host = urlsplit(url).hostname or ""
        if self.config.content_links is ContentLinks.FOOTNOTES and "wikipedia.org" not in host:
            engine.add_footnotes(content_block)

        # whitespace-only text directly under the block
        if content_block.text is not None and not content_block.text.strip():
            content_block.text = None
        for child in content_block:
            if child.tail is not None and not child.tail.strip():
                child.tail = None

        # <div><div><p>test</p></div></div> becomes <p>test</p>
        while (
            len(content_block) == 1
            and not content_block.text
            and not content_block[0].tail
            and isinstance(content_block[0].tag, str)
            and isinstance(content_block.tag, str)
            and content_block.tag.lower() in _WRAPPER_TAGS
        ):
            content_block = content_block[0]

        if self.config.img_no_referrer:
            for img in content_block.iter("img"):
                img.set("referrerpolicy", "no-referrer")

        if isinstance(content_block.tag, str) and content_block.tag.lower() in _INNER_HTML_TAGS:
            html = inner_html(content_block)
        else:
            html = outer_html(content_block)

        html = _EMPTY_PARAGRAPH_RE.sub("", html)
        if self.config.content_links is ContentLinks.REMOVE:
            html = _ANCHOR_TAG_RE.sub("", html)

        return self._cleanup_xss(html).strip()

    # -- orchestration -------------------------------------------------------

    def _ensure_allowed(self, url: str) -> None:
        if not is_url_allowed(url, self.config.allowed_urls, self.config.blocked_urls):
            raise UrlNotAllowedError(f'Url "{url}" is not allowed to be parsed.')

    def _do_fetch_content(self, url: str, deadline: Deadline) -> Content:
        site_config = self.config_builder.build_from_url(url)

        if self._prefetched is not None:
            logger.info("Using prefetched content for %s", url)
            response = FetchResult(url, self._prefetched.encode("utf-8"), {"content-type": "text/html"}, 200, "utf-8")
        else:
            logger.info("Fetching url: %s", url)
            response = self.http_client.fetch(url, False, site_config.http_header, deadline=deadline)

        effective_url = _encode_path_spaces(response.effective_url)
        self._ensure_allowed(effective_url)
        response = response.with_effective_url(effective_url)

        linked = self._handle_mime_action(response)
        if linked is not None:
            return linked

        html = strip_empty_nodes(response.text())

        is_single_page = False
        if self.config.singlepage and self._prefetched is None:
            single = self._single_page_response(html, effective_url, deadline)
            if single is not None:
                is_single_page = True
                response = single
                effective_url = single.effective_url
                self._ensure_allowed(effective_url)
                linked = self._handle_mime_action(response)
                if linked is not None:
                    return linked
                html = strip_empty_nodes(response.text())

        extracted = self.extractor.process(html, effective_url)
        language = extracted.language or response.header("content-language") or None
        content_block = extracted.body

        if (
            self.config.multipage
            and not is_single_page
            and self._prefetched is None
            and extracted.success
            and extracted.next_page_url
        ):
            response = self._append_next_pages(content_block, extracted.next_page_url, effective_url, deadline) or response

        content = Content(
            status=response.status,
            html=self.config.error_message,
            title=extracted.title or self.config.error_message_title,
            url=effective_url,
            language=language,
            date=extracted.date,
            authors=[a.strip() for a in extracted.authors if a and a.strip()],
            image=make_absolute_str(effective_url, extracted.image) if extracted.image else None,
            headers=dict(response.headers),
            is_native_ad=extracted.is_native_ad,
        )

        if not extracted.success:
            logger.info("Extraction failed for %s", effective_url)
            return content

        html = self.cleanup_html(content_block, effective_url, extracted.readability)
        if not html:
            logger.info("Extracted body of %s is empty after cleanup", effective_url)
            return content
        return content.with_html(html)

    def _append_next_pages(self, content_block, next_page_url: str, first_url: str, deadline: Deadline) -> Optional[FetchResult]:
        """Follow next-page links, appending each page body to ``content_block``.

        Returns the last response fetched, or None when nothing was fetched.
        """

        logger.info("Attempting multi-page")
        visited = [first_url]
        pages = []
        last_response: Optional[FetchResult] = None
        failed = False
        current_url = first_url

        while next_page_url:
            absolute = make_absolute_str(current_url, next_page_url.strip())
            if not absolute:
                logger.info("Failed to resolve next page url: %s", next_page_url)
                failed = True
                break
            if absolute in visited:
                logger.info("Next page url %s already seen, stopping", absolute)
                failed = True
                break
            visited.append(absolute)

            logger.info("Fetching next page: %s", absolute)
            page_config = self.config_builder.build_from_url(absolute)
            response = self.http_client.fetch(absolute, False, page_config.http_header, deadline=deadline)
            last_response = response
            if self._mime_action(response) is not None:
                logger.info("Next page has an unsupported content type, stopping")
                failed = True
                break

            extracted = self.extractor.process(strip_empty_nodes(response.text()), absolute)
            if not extracted.success:
                logger.info("Failed to extract content from next page %s", absolute)
                failed = True
                break

            pages.append(copy.deepcopy(extracted.body))
            current_url = absolute
            next_page_url = extracted.next_page_url

        for page in pages:
            content_block.append(page)
        if failed:
            content_block.append(lxml.html.fragment_fromstring(f"<p>{MULTIPAGE_FAILURE_NOTICE}</p>"))
        return last_response

    def _single_page_response(self, html: str, url: str, deadline: Deadline) -> Optional[FetchResult]:
        site_config = self.extractor.build_site_config(url, html)
        if not site_config.single_page_link:
            return None

        parser = site_config.parser()
        if parser not in self.extractor.config.allowed_parsers:
            parser = self.extractor.config.default_parser
        dom = parse_document(html, parser)
        link = find_link(dom, site_config.single_page_link, site_config, "single_page_link")
        if not link:
            logger.info("No single page link found")
            return None

        single_page_url = make_absolute_str(url, link.strip())
        if not single_page_url or single_page_url == url:
            return None
        logger.info("Single page link found: %s", single_page_url)

        http_header = site_config.http_header
        host = urlsplit(single_page_url).hostname or ""
        if host and host != (urlsplit(url).hostname or ""):
            http_header = self.config_builder.build_for_host(host).http_header

        response = self.http_client.fetch(single_page_url, True, http_header, deadline=deadline)
        if response.status >= 300:
            logger.info("Single page request failed with status %s", response.status)
            return None
        logger.info("Single page content found with url: %s", single_page_url)
        return response.with_effective_url(_encode_path_spaces(response.effective_url))

    # -- content type dispatch -----------------------------------------------

    def _mime_action(self, response: FetchResult) -> Optional[Tuple[str, str, ContentTypeAction]]:
        match = _MIME_RE.match(response.content_type.lower())
        if not match:
            return None
        mime, kind = match.group(1), match.group(2)
        action = self.config.content_type_exc.get(mime) or self.config.content_type_exc.get(kind)
        if action is None:
            return None
        return mime, kind, action

    def _handle_mime_action(self, response: FetchResult) -> Optional[Content]:
        info = self._mime_action(response)
        if info is None:
            return None
        mime, kind, action = info
        url = response.effective_url

        if action.action == "exclude":
            raise MimeTypeExcludedError(f'Url "{url}" is blocked by the mime action of {mime}.')

        escaped_url = html_lib.escape(url)
        escaped_name = html_lib.escape(action.name)
        title = action.name
        authors: List[str] = []
        date: Optional[str] = None
        body = f'<a href="{escaped_url}">Download {escaped_name}</a>'

        if kind == "image":
            body = f'<a href="{escaped_url}"><img src="{escaped_url}" alt="{escaped_name}" /></a>'

        if mime == "application/pdf":
            pdf = self._pdf_content(response.body)
            if pdf is not None:
                body, pdf_title, pdf_author, date = pdf
                title = pdf_title or title
                if pdf_author:
                    authors = [pdf_author]

        if mime == "text/plain":
            body = "<pre>" + html_lib.escape(response.text(), quote=False) + "</pre>"

        logger.info("Content type %s handled with action %s", mime, action.action)
        return Content(
            status=response.status,
            html=self._cleanup_xss(body),
            title=title,
            url=url,
            date=date,
            authors=authors,
            headers=dict(response.headers),
        )

    @staticmethod
    def _pdf_content(body: bytes) -> Optional[Tuple[str, str, str, Optional[str]]]:
        try:
            with pymupdf.open(stream=body, filetype="pdf") as document:
                text = "".join(page.get_text() for page in document)
                metadata = document.metadata or {}
        except (RuntimeError, ValueError) as exc:
            logger.warning("Unable to read PDF: %s", exc)
            return None

        html = _UNWANTED_PDF_CHARS_RE.sub("", _nl2br(html_lib.escape(text, quote=False)))
        title = (metadata.get("title") or "").strip()
        author = (metadata.get("author") or "").strip()
        date = _pdf_date(metadata.get("creationDate") or "")
        return html, title, author, date

    # -- html helpers ---------------------------------------------------------

    def _cleanup_xss(self, html: str) -> str:
        if not self.config.xss_filter:
            return html
        logger.debug("Filtering HTML to remove XSS")
        return sanitize_html(html)

    @staticmethod
    def _make_absolute(base: str, element) -> None:
        for tag, attr in (("a", "href"), ("img", "src"), ("iframe", "src")):
            for node in reversed(list(element.iter(tag))):
                value = node.get(attr)
                if value is None:
                    continue
                value = value.strip().replace("%20", " ")
                if not _ABSOLUTE_OR_ANCHOR_RE.match(value):
                    absolute = make_absolute_str(base, value)
                    if absolute:
                        value = absolute
                node.set(attr, value.replace(" ", "%20"))


__all__ = [
    "ContentLinks",
    "ContentTypeAction",
    "ReaderConfig",
    "Content",
    "Reader",
    "UrlNotAllowedError",
    "MimeTypeExcludedError",
]
