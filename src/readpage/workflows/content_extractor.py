"""Rule-driven article extraction.

The extractor applies a host's :class:`SiteConfig` rules to a document and
falls back through generic markers (hNews, Instapaper, Schema.org) and
finally the readability scorer when the rules are missing or find nothing.

Each phase is a small function operating on an :class:`_ExtractionState`;
``_RULE_STEPS`` and ``_DETECTION_STEPS`` fix their order.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import lxml.etree
import lxml.html
from dateutil import parser as dateparser

from .config_builder import ConfigBuilder, ConfigBuilderConfig
from .readability_engine import ReadabilityEngine
from .reader_config import (
    ALLOWED_PARSERS,
    DEFAULT_PARSER,
    EMBEDDED_CONTENT_PLACEHOLDER,
    FINGERPRINTS,
    JSON_LD_IGNORE_TYPES,
    SRC_LAZY_LOAD_ATTRIBUTES,
)
from .site_config import SiteConfig

logger = logging.getLogger(__name__)

_HEADINGS = ("h1", "h2", "h3", "h4", "h5", "h6")
_LANGUAGE_XPATHS = ("//html[@lang]/@lang", '//meta[@name="DC.language"]/@content')


def _has_class(name: str) -> str:
    return f"contains(concat(' ',normalize-space(@class),' '),' {name} ')"


@dataclass
class ContentExtractorConfig:
    default_parser: str = DEFAULT_PARSER
    allowed_parsers: Tuple[str, ...] = ALLOWED_PARSERS
    fingerprints: Dict[str, str] = field(default_factory=lambda: dict(FINGERPRINTS))
    config_builder: ConfigBuilderConfig = field(default_factory=ConfigBuilderConfig)
    readability_pre_filters: Dict[str, str] = field(default_factory=dict)
    readability_post_filters: Dict[str, str] = field(default_factory=dict)
    src_lazy_load_attributes: Tuple[str, ...] = SRC_LAZY_LOAD_ATTRIBUTES
    json_ld_ignore_types: Tuple[str, ...] = JSON_LD_IGNORE_TYPES

    def __post_init__(self) -> None:
        self.allowed_parsers = tuple(self.allowed_parsers)
        if self.default_parser not in self.allowed_parsers:
            raise ValueError(f"default_parser must be one of {', '.join(self.allowed_parsers)}")
        if isinstance(self.config_builder, Mapping):
            self.config_builder = ConfigBuilderConfig(**self.config_builder)
        for name in ("fingerprints", "readability_pre_filters", "readability_post_filters"):
            value = getattr(self, name)
            if not isinstance(value, Mapping) or not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
                raise ValueError(f"{name} must map strings to strings")
        self.src_lazy_load_attributes = tuple(self.src_lazy_load_attributes)
        self.json_ld_ignore_types = tuple(self.json_ld_ignore_types)


@dataclass
class ExtractedContent:
    """What one :meth:`ContentExtractor.process` call found."""

    readability: Optional[ReadabilityEngine] = None
    site_config: Optional[SiteConfig] = None
    title: Optional[str] = None
    language: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    body: Any = None
    image: Optional[str] = None
    is_native_ad: bool = False
    date: Optional[str] = None
    success: bool = False
    next_page_url: Optional[str] = None


@dataclass
class _ExtractionState:
    html: str
    url: str
    site_config: SiteConfig
    engine: ReadabilityEngine
    lazy_attributes: Tuple[str, ...]
    title: Optional[str] = None
    language: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    body: Any = None
    image: Optional[str] = None
    is_native_ad: bool = False
    date: Optional[str] = None
    next_page_url: Optional[str] = None
    detect_title: bool = False
    detect_body: bool = False
    detect_date: bool = False
    detect_author: bool = False
    hentry: Any = None

    @property
    def dom(self):
        return self.engine.dom


def _xpath(node, expression: str):
    """Evaluate ``expression``; None when the expression is invalid."""

    try:
        return node.xpath(expression)
    except lxml.etree.XPathError as exc:
        logger.info("Bad pattern %r: %s", expression, exc)
        return None


def _is_element(item) -> bool:
    return isinstance(item, lxml.etree._Element) and isinstance(item.tag, str)


def _is_attribute(item) -> bool:
    return isinstance(item, str) and getattr(item, "is_attribute", False)


def _node_text(item) -> str:
    if _is_element(item):
        return item.text_content() or ""
    return str(item)


def _remove(item) -> None:
    """Remove an element (keeping its tail text) or an attribute node."""

    if _is_attribute(item):
        owner = item.getparent()
        if owner is not None:
            owner.attrib.pop(item.attrname, None)
        return
    if isinstance(item, lxml.etree._Element) and item.getparent() is not None:
        item.drop_tree()


def _detach(element) -> None:
    if element.getparent() is not None:
        element.drop_tree()
    element.tail = None


def _remove_all(items, message: str) -> None:
    if not items or not isinstance(items, list):
        return
    logger.info(message, len(items))
    for item in reversed(items):
        _remove(item)


def _link_value(result) -> Optional[str]:
    """A link rule may yield a string, an element with href or an attribute."""

    if isinstance(result, str) and not _is_attribute(result):
        return result.strip() or None
    if isinstance(result, list):
        for item in result:
            if _is_element(item) and item.get("href") is not None:
                return item.get("href")
            if _is_attribute(item) and str(item):
                return str(item)
    return None


def _condition_met(dom, condition: Optional[str]) -> bool:
    if not condition:
        return True
    result = _xpath(dom, condition)
    return isinstance(result, list) and len(result) > 0


def find_link(dom, patterns: Sequence[str], site_config: SiteConfig, kind: str) -> Optional[str]:
    """First link matched by ``patterns`` whose ``if_page_contains`` condition holds."""

    for pattern in patterns:
        if not _condition_met(dom, site_config.get_if_page_contains_condition(kind, pattern)):
            continue
        value = _link_value(_xpath(dom, pattern))
        if value:
            return value
    return None


def _entity_from_pattern(entity: str, pattern: str, dom) -> Optional[str]:
    result = _xpath(dom, pattern)
    if isinstance(result, str) and not _is_attribute(result):
        if result.strip():
            logger.info("%s expression evaluated as string: %s", entity, result.strip())
            return result.strip()
        return None
    if isinstance(result, list) and result:
        value = _node_text(result[0]).strip()
        logger.info("%s matched: %s (XPath match: %s)", entity, value, pattern)
        _remove(result[0])
        return value
    return None


def _entities_from_pattern(entity: str, pattern: str, dom) -> Optional[List[str]]:
    result = _xpath(dom, pattern)
    if isinstance(result, str) and not _is_attribute(result):
        return [result.strip()] if result.strip() else None
    if isinstance(result, list) and result:
        values = [_node_text(item).strip() for item in result]
        for item in reversed(result):
            _remove(item)
        logger.info("%s matched: %s (XPath match: %s)", entity, values, pattern)
        return values
    return None


def _entity_from_query(entity: str, detect: bool, expression: str, node) -> Optional[str]:
    if not detect or node is None:
        return None
    result = _xpath(node, expression)
    if not isinstance(result, list) or not result:
        return None
    value = _node_text(result[0]).strip()
    logger.info("%s found: %s", entity, value)
    _remove(result[0])
    return value


def _extract_body(state: _ExtractionState, detect: bool, expression: str, node, source: str):
    if not detect or node is None:
        return None
    result = _xpath(node, expression)
    if not isinstance(result, list) or not result:
        return None
    logger.info('%s: found "%d" with %s', source, len(result), expression)

    prune = state.site_config.prune()
    if len(result) == 1:
        body = result[0]
        if not _is_element(body):
            logger.info("Body must be an element")
            return None
        if prune:
            logger.info("Pruning content")
            state.engine.prep_article(body)
        return body

    body = lxml.html.Element("div")
    collected: List[Any] = []
    for element in result:
        if not _is_element(element) or element.getparent() is None:
            continue
        if any(ancestor in collected for ancestor in element.iterancestors()):
            logger.info("...element is child of another body element, skipping.")
            continue
        if prune:
            state.engine.prep_article(element)
        _detach(element)
        body.append(element)
        collected.append(element)
    logger.info("...%d elements added to body", len(collected))
    return body


# -- rule steps ---------------------------------------------------------------


def _step_next_page(state: _ExtractionState) -> None:
    state.next_page_url = find_link(state.dom, state.site_config.next_page_link, state.site_config, "next_page_link")


def _step_defined_information(state: _ExtractionState, ignore_types: Sequence[str]) -> None:
    info = _open_graph(state.dom)
    if state.site_config.skip_json_ld is not True:
        json_ld = _json_ld(state.dom, ignore_types)
        for key in ("title", "date", "image"):
            if json_ld.get(key) and not info.get(key):
                info[key] = json_ld[key]
        if json_ld.get("authors"):
            info["authors"] = json_ld["authors"]
        if json_ld.get("body") is not None:
            info["body"] = json_ld["body"]

    state.title = info.get("title") or state.title
    state.image = info.get("image") or state.image
    state.language = info.get("language") or state.language
    state.date = info.get("date") or state.date
    state.authors.extend(info.get("authors") or [])
    if info.get("body") is not None:
        state.body = info["body"]


def _step_native_ad(state: _ExtractionState) -> None:
    for pattern in state.site_config.native_ad_clue:
        result = _xpath(state.dom, pattern)
        if (isinstance(result, list) and result) or result is True:
            state.is_native_ad = True
            return


def _step_title(state: _ExtractionState) -> None:
    for pattern in state.site_config.title:
        logger.info("Trying %s for title", pattern)
        value = _entity_from_pattern("title", pattern, state.dom)
        if value is not None:
            state.title = value
            return


def _step_authors(state: _ExtractionState) -> None:
    if state.authors:
        return
    for pattern in state.site_config.author:
        logger.info("Trying %s for author", pattern)
        values = _entities_from_pattern("authors", pattern, state.dom)
        if values is not None:
            state.authors = values
            return


def _step_date(state: _ExtractionState) -> None:
    for pattern in state.site_config.date:
        logger.info("Trying %s for date", pattern)
        value = _entity_from_pattern("date", pattern, state.dom)
        if value is not None:
            state.date = value
            return


def _step_language(state: _ExtractionState) -> None:
    for pattern in _LANGUAGE_XPATHS:
        result = _xpath(state.dom, pattern)
        if isinstance(result, list) and result:
            state.language = str(result[-1]).strip()
            logger.info("Language matched: %s", state.language)
            return


def _step_wrap_in(state: _ExtractionState) -> None:
    for tag, pattern in state.site_config.wrap_in.items():
        result = _xpath(state.dom, pattern)
        if not isinstance(result, list) or not result:
            continue
        logger.info("Wrapping %d elements (wrap_in)", len(result))
        for element in result:
            parent = element.getparent() if _is_element(element) else None
            if parent is None:
                continue
            wrapper = lxml.html.Element(tag)
            wrapper.tail, element.tail = element.tail, None
            parent.replace(element, wrapper)
            wrapper.append(element)


def _step_strip(state: _ExtractionState) -> None:
    site = state.site_config
    for pattern in site.strip:
        _remove_all(_xpath(state.dom, pattern), "Stripping %d elements (strip)")

    for value in site.strip_id_or_class:
        value = value.replace("'", "").replace('"', "")
        expression = (
            f"//*[contains(concat(' ',normalize-space(@class), ' '),' {value} ') "
            f"or contains(concat(' ',normalize-space(@id),' '), ' {value} ')]"
        )
        _remove_all(_xpath(state.dom, expression), "Stripping %d elements (strip_id_or_class)")

    for value in site.strip_image_src:
        value = value.replace("'", "").replace('"', "")
        images = [img for img in state.dom.iter("img") if value in (img.get("src") or "")]
        _remove_all(images, "Stripping %d images (strip_image_src)")

    _remove_all(
        _xpath(state.dom, f"//*[{_has_class('entry-unrelated')} or {_has_class('instapaper_ignore')}]"),
        "Stripping %d .entry-unrelated,.instapaper_ignore elements",
    )
    _remove_all(
        _xpath(state.dom, "//*[contains(@style,'display:none') or contains(@style,'visibility:hidden')]"),
        "Stripping %d elements with inline display:none or visibility:hidden style",
    )
    _remove_all(_xpath(state.dom, "//a[not(./*) and normalize-space(.)='']"), "Stripping %d empty a elements")


def _step_body(state: _ExtractionState) -> None:
    for pattern in state.site_config.body:
        logger.info("Trying %s for body", pattern)
        body = _extract_body(state, True, pattern, state.dom, "XPath")
        if body is not None:
            state.body = body
            return


def _step_detect_flags(state: _ExtractionState) -> None:
    site = state.site_config
    autodetect = site.autodetect_on_failure()
    state.detect_title = state.title is None and (not site.title or autodetect)
    state.detect_body = state.body is None and (not site.body or autodetect)
    state.detect_date = state.date is None and (not site.date or autodetect)
    state.detect_author = not state.authors and (not site.author or autodetect)


# -- detection strategies -----------------------------------------------------


def _detect_hnews(state: _ExtractionState) -> None:
    if not (state.detect_title or state.detect_body):
        return
    entries = _xpath(state.dom, f"//*[{_has_class('hentry')}]")
    if not isinstance(entries, list) or not entries:
        return
    logger.info("hNews: found hentry")
    hentry = entries[0]

    title = _entity_from_query("hNews title", state.detect_title, f".//*[{_has_class('entry-title')}]", hentry)
    if title is not None:
        state.title, state.detect_title = title, False

    date = _entity_from_query(
        "hNews publication date",
        state.detect_date,
        f".//time[@pubdate or @pubDate] | .//abbr[{_has_class('published')}]",
        hentry,
    )
    if date is not None:
        state.date, state.detect_date = date, False

    if state.detect_author:
        authors = _hnews_authors(hentry)
        if authors:
            state.authors.extend(authors)
            state.detect_author = False

    body = _extract_body(state, state.detect_body, f".//*[{_has_class('entry-content')}]", hentry, "hNews")
    if body is not None:
        state.body, state.detect_body = body, False


def _hnews_authors(hentry) -> List[str]:
    cards = _xpath(hentry, f".//*[{_has_class('vcard')} and ({_has_class('author')} or {_has_class('byline')})]")
    if not isinstance(cards, list) or not cards:
        return []
    card = cards[0]
    names = _xpath(card, f".//*[{_has_class('fn')}]") or []
    candidates = names if names else [card]
    authors = [_node_text(item).strip() for item in candidates if _node_text(item).strip()]
    for author in authors:
        logger.info("hNews: found author: %s", author)
    return authors


def _detect_instapaper(state: _ExtractionState) -> None:
    title = _entity_from_query("Title (.instapaper_title)", state.detect_title, f".//*[{_has_class('instapaper_title')}]", state.dom)
    if title is not None:
        state.title, state.detect_title = title, False
    body = _extract_body(state, state.detect_body, f"//*[{_has_class('instapaper_body')}]", state.dom, "instapaper")
    if body is not None:
        state.body, state.detect_body = body, False


def _detect_schema_org(state: _ExtractionState) -> None:
    body = _extract_body(state, state.detect_body, "//*[@itemprop='articleBody']", state.dom, "Schema.org")
    if body is not None:
        state.body, state.detect_body = body, False


def _detect_meta_authors_and_date(state: _ExtractionState) -> None:
    for expression in ("//a[contains(concat(' ',normalize-space(@rel),' '),' author ')]", '//meta[@name="author"]/@content'):
        author = _entity_from_query("Author", state.detect_author, expression, state.dom)
        if author is not None:
            state.authors.append(author)

    date = _entity_from_query("Date (datetime marked time element)", state.detect_date, "//time[@pubdate or @pubDate]", state.dom)
    if date is not None:
        state.date = date


def _detect_readability(state: _ExtractionState) -> None:
    if not (state.detect_title or state.detect_body):
        return
    logger.info("Using Readability")
    if state.body is not None:
        state.body = copy.deepcopy(state.body)
    success = state.engine.init()

    title = state.engine.get_title()
    if state.detect_title and title:
        state.title = title.strip()
        logger.info("Detected title: %s", state.title)

    if state.detect_body and success:
        logger.info("Detecting body")
        body = state.engine.get_content()
        if len(body) == 1 and not (body.text or "").strip() and _is_element(body[0]):
            body = body[0]
        if state.site_config.prune():
            logger.info("Pruning content")
            state.engine.prep_article(body)
        state.body = body


_RULE_STEPS: Tuple[Callable[[_ExtractionState], None], ...] = (
    _step_native_ad,
    _step_title,
    _step_authors,
    _step_date,
    _step_language,
    _step_wrap_in,
    _step_strip,
    _step_body,
    _step_detect_flags,
)

_DETECTION_STEPS: Tuple[Callable[[_ExtractionState], None], ...] = (
    _detect_hnews,
    _detect_instapaper,
    _detect_schema_org,
    _detect_meta_authors_and_date,
    _detect_readability,
)


# -- defined information (OpenGraph / JSON-LD) --------------------------------


def _open_graph(dom) -> Dict[str, Any]:
    metas: Dict[str, str] = {}
    for meta in dom.iter("meta"):
        prop = (meta.get("property") or "").replace(":", "_")
        if not prop.startswith("og_"):
            continue
        content = meta.get("content") or ""
        if prop in ("og_image", "og_image_url", "og_image_secure_url"):
            # first usable image wins; data: URIs are skipped
            if content.lower().startswith("data:image") or metas.get(prop):
                continue
        metas[prop] = content
    logger.info('Opengraph "og:" data: %s', metas)

    extracted: Dict[str, Any] = {}
    if metas.get("og_title"):
        extracted["title"] = metas["og_title"]
    for prop in ("og_image", "og_image_url", "og_image_secure_url"):
        if metas.get(prop):
            extracted["image"] = metas[prop]
    if metas.get("og_locale"):
        extracted["language"] = metas["og_locale"]

    article: Dict[str, str] = {}
    for meta in dom.iter("meta"):
        prop = meta.get("property") or ""
        if prop.startswith("article:"):
            article[prop.replace(":", "_")] = meta.get("content") or ""
    for prop in ("article_modified_time", "article_published_time"):
        if article.get(prop):
            extracted["date"] = article[prop]
    return extracted


def _json_ld_authors(authors: Any) -> List[str]:
    if isinstance(authors, str):
        return [authors]
    if isinstance(authors, dict):
        name = authors.get("name")
        if isinstance(name, list):
            return [str(n) for n in name]
        return [str(name)] if name else []
    if isinstance(authors, list):
        return [a["name"] for a in authors if isinstance(a, dict) and isinstance(a.get("name"), str)]
    return []


def _json_ld_entries(data: Any) -> List[Dict[str, Any]]:
    entries = data if isinstance(data, list) else [data]
    flat: List[Dict[str, Any]] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        flat.append(entry)
        graph = entry.get("@graph")
        if isinstance(graph, list):
            flat.extend(item for item in graph if isinstance(item, dict))
    return flat


def _first(value: Any) -> Any:
    return value[0] if isinstance(value, list) and value else value


def _json_ld(dom, ignore_types: Sequence[str]) -> Dict[str, Any]:
    ignored_names: List[str] = []
    candidate_names: List[str] = []
    extracted: Dict[str, Any] = {}

    for script in dom.xpath('//script[@type="application/ld+json"]'):
        try:
            data = json.loads((script.text or "").strip())
        except ValueError:
            continue
        for entry in _json_ld_entries(data):
            types = entry.get("@type")
            types = types if isinstance(types, list) else [types]
            if any(t in ignore_types for t in types if isinstance(t, str)):
                if entry.get("name"):
                    ignored_names.append(entry["name"])
                continue

            if entry.get("dateModified"):
                extracted["date"] = _first(entry["dateModified"])
            if entry.get("datePublished"):
                extracted["date"] = _first(entry["datePublished"])
            if entry.get("articleBody"):
                paragraph = lxml.html.Element("p")
                paragraph.text = str(entry["articleBody"]).strip()
                extracted["body"] = paragraph
            for key in ("headline", "name"):
                if entry.get(key):
                    candidate_names.append(entry[key])
            if entry.get("author"):
                extracted.setdefault("authors", []).extend(_json_ld_authors(entry["author"]))
            image = entry.get("image")
            if isinstance(image, dict) and image.get("url"):
                extracted["image"] = _first(image["url"])

    for name in candidate_names:
        if name not in ignored_names and isinstance(name, str):
            extracted["title"] = name
    if extracted:
        logger.info("JSON-LD data: %s", {k: v for k, v in extracted.items() if k != "body"})
    return extracted


# -- post-processing ----------------------------------------------------------


def _remove_title_heading(body, title: Optional[str]) -> None:
    if not title:
        return
    first = next((child for child in body if _is_element(child)), None)
    if first is None or first.tag.lower() not in _HEADINGS:
        return
    if (first.text_content() or "").strip().lower() == title.strip().lower():
        _remove(first)


def _fill_empty_iframes(body) -> None:
    frames = [body] if body.tag == "iframe" else list(body.iter("iframe"))
    for frame in frames:
        if not len(frame) and not frame.text:
            frame.text = EMBEDDED_CONTENT_PLACEHOLDER


def _swap_noscript_image(img) -> bool:
    noscript = img.getnext()
    if noscript is None or noscript.tag != "noscript" or (img.tail or "").strip():
        return False
    children = list(noscript)
    if not children and (noscript.text or "").strip():
        children = [c for c in lxml.html.fragments_fromstring(noscript.text) if _is_element(c)]
    for child in children:
        noscript.addprevious(child)
    _remove(noscript)
    _remove(img)
    return True


def _promote_lazy_images(body, lazy_attributes: Sequence[str]) -> None:
    for img in list(body.iter("img")):
        if not any(img.get(attr) is not None for attr in lazy_attributes):
            continue
        if _swap_noscript_image(img):
            continue
        promoted: Dict[str, str] = {}
        for attr in lazy_attributes:
            value = img.get(attr)
            if value is not None:
                promoted["srcset" if attr == "data-srcset" else "src"] = value
                del img.attrib[attr]
        for attr in ("src", "srcset"):
            if promoted.get(attr):
                img.set(attr, promoted[attr])


def validate_date(date: Optional[str]) -> Optional[str]:
    """Normalize a date to W3C format (``YYYY-MM-DDTHH:MM:SS+HH:MM``)."""

    if date is None:
        return None
    try:
        parsed = dateparser.parse(str(date))
    except (ValueError, OverflowError) as exc:
        logger.info("Cannot parse date: %s (%s)", date, exc)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat(timespec="seconds")


class ContentExtractor:
    """Extract title, body and metadata from an HTML document."""

    def __init__(
        self,
        config: Optional[ContentExtractorConfig] = None,
        config_builder: Optional[ConfigBuilder] = None,
    ) -> None:
        self.config = config or ContentExtractorConfig()
        self.config_builder = config_builder or ConfigBuilder(self.config.config_builder, self.config.fingerprints)

    def find_host_using_fingerprints(self, html: str) -> Optional[str]:
        return self.config_builder.find_host_using_fingerprints(html)

    def build_site_config(self, url: str, html: str = "", add_to_cache: bool = True) -> SiteConfig:
        return self.config_builder.build_site_config(url, html, add_to_cache)

    def process_string_replacements(self, html: str, url: str, site_config: Optional[SiteConfig] = None) -> str:
        """Apply the site's ``find_string``/``replace_string`` pairs to ``html``."""

        if site_config is None:
            site_config = self.build_site_config(url, html)
        if not site_config.find_string:
            return html
        pairs = site_config.find_replace_pairs()
        if not pairs:
            logger.info("Skipped string replacement - incorrect number of find-replace strings in site config")
            return html
        count = 0
        for find, replace in pairs:
            if not find:
                continue
            count += html.count(find)
            html = html.replace(find, replace)
        logger.info("Strings replaced: %d (find_string and/or replace_string)", count)
        return html

    def _parser_for(self, site_config: SiteConfig) -> str:
        parser = site_config.parser()
        if parser not in self.config.allowed_parsers:
            logger.info("HTML parser %s not listed, using %s instead", parser, self.config.default_parser)
            parser = self.config.default_parser
        return parser

    def _lazy_attributes(self, site_config: SiteConfig) -> Tuple[str, ...]:
        attributes = self.config.src_lazy_load_attributes
        extra = site_config.src_lazy_load_attr
        if extra and extra not in attributes:
            attributes = attributes + (extra,)
        return attributes

    def process(
        self,
        html: str,
        url: str,
        site_config: Optional[SiteConfig] = None,
        smart_tidy: bool = True,
    ) -> ExtractedContent:
        """Run the extraction cascade; retried once without tidy on failure."""

        if site_config is None:
            site_config = self.build_site_config(url, html)

        result = self._process_once(html, url, site_config, smart_tidy)
        if not result.success and smart_tidy and result.readability is not None and result.readability.tidied:
            logger.info("Trying again without tidy")
            result = self._process_once(html, url, site_config, False)
        logger.info("Success ? %s", result.success)
        return result

    def _process_once(self, html: str, url: str, site_config: SiteConfig, smart_tidy: bool) -> ExtractedContent:
        html = self.process_string_replacements(html, url, site_config)
        parser = self._parser_for(site_config)
        logger.info("Attempting to parse HTML with %s", parser)
        engine = ReadabilityEngine(
            html,
            url,
            parser=parser,
            use_tidy=site_config.tidy() and smart_tidy,
            pre_filters=self.config.readability_pre_filters,
            post_filters=self.config.readability_post_filters,
        )
        logger.debug("Body after Readability: %s", lxml.html.tostring(engine.dom, encoding="unicode"))

        state = _ExtractionState(
            html=html,
            url=url,
            site_config=site_config,
            engine=engine,
            lazy_attributes=self._lazy_attributes(site_config),
        )
        _step_next_page(state)
        _step_defined_information(state, self.config.json_ld_ignore_types)
        for step in _RULE_STEPS:
            step(state)
        for strategy in _DETECTION_STEPS:
            strategy(state)

        state.date = validate_date(state.date)
        if state.date:
            logger.info("Detected date: %s", state.date)

        success = state.body is not None
        if success:
            _remove_title_heading(state.body, state.title)
            _fill_empty_iframes(state.body)
            _promote_lazy_images(state.body, state.lazy_attributes)

        return ExtractedContent(
            readability=engine,
            site_config=site_config,
            title=state.title,
            language=state.language,
            authors=state.authors,
            body=state.body,
            image=state.image,
            is_native_ad=state.is_native_ad,
            date=state.date,
            success=success,
            next_page_url=state.next_page_url,
        )


__all__ = [
    "ContentExtractorConfig",
    "ContentExtractor",
    "ExtractedContent",
    "find_link",
    "validate_date",
]
