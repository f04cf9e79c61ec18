"""DOM building and generic content scoring on top of readability-lxml.

:class:`ReadabilityEngine` owns the parsed document the extractor runs its
XPath rules against. The text-density scoring itself is delegated to
``readability.Document``; this module adds the pieces the extraction
cascade needs around it: parser selection, the optional tidy pass, article
pruning, link footnotes and tag cleaning.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit

import html5lib
import lxml.etree
import lxml.html
from readability import Document
from readability.readability import Unparseable

from .html_normalize import minimal_text_fix, repair_markup

logger = logging.getLogger(__name__)

PARSER_LIBXML = "libxml"
PARSER_HTML5LIB = "html5lib"

_XML_DECLARATION_RE = re.compile(r"^\s*<\?xml[^>]*\?>", re.I)
_EMPTY_DOCUMENT = "<html><head></head><body></body></html>"

_NEGATIVE_RE = re.compile(
    r"combx|comment|com-|contact|foot|footer|footnote|masthead|media|meta|outbrain|promo|related|"
    r"scroll|shoutbox|sidebar|sponsor|shopping|tags|tool|widget|share|social|newsletter",
    re.I,
)
_POSITIVE_RE = re.compile(r"article|body|content|entry|hentry|main|page|pagination|post|text|blog|story", re.I)
_SKIP_FOOTNOTE_LINK_RE = re.compile(r"^\s*(\[?[a-z0-9]{1,2}\]?|^|edit|citation needed)\s*$", re.I)

_PRUNED_TAGS = ("script", "style", "form", "object", "embed", "textarea", "input", "select", "button", "link", "meta")
_CONDITIONAL_TAGS = ("table", "ul", "ol", "div", "aside", "section")


def _link_density(element) -> float:
    text_length = len(element.text_content() or "")
    if not text_length:
        return 0.0
    link_length = sum(len(a.text_content() or "") for a in element.iter("a"))
    return link_length / float(text_length)


def _class_weight(element) -> int:
    weight = 0
    for name in ("class", "id"):
        value = element.get(name)
        if not value:
            continue
        if _NEGATIVE_RE.search(value):
            weight -= 25
        if _POSITIVE_RE.search(value):
            weight += 25
    return weight


def _drop(element) -> None:
    parent = element.getparent()
    if parent is not None:
        element.drop_tree()


def parse_document(html: str, parser: str = PARSER_LIBXML):
    """Parse ``html`` into an ``lxml.html`` document element."""

    source = _XML_DECLARATION_RE.sub("", html or "", count=1)
    if not source.strip():
        source = _EMPTY_DOCUMENT
    if parser == PARSER_HTML5LIB:
        tree = html5lib.parse(source, treebuilder="lxml", namespaceHTMLElements=False)
        source = lxml.etree.tostring(tree, encoding="unicode", method="html")
    try:
        return lxml.html.document_fromstring(source)
    except (lxml.etree.ParserError, ValueError) as exc:
        logger.info("Unable to parse document (%s), using an empty one", exc)
        return lxml.html.document_fromstring(_EMPTY_DOCUMENT)


class ReadabilityEngine:
    """Parsed document plus readability-lxml fallback for one HTML input."""

    def __init__(
        self,
        html: str,
        url: str = "",
        parser: str = PARSER_LIBXML,
        use_tidy: bool = True,
        pre_filters: Optional[Mapping[str, str]] = None,
        post_filters: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.original_html = html or ""
        self.url = url
        self.parser = parser
        self.pre_filters: Dict[str, str] = dict(pre_filters or {})
        self.post_filters: Dict[str, str] = dict(post_filters or {})

        source = self._apply_filters(self.original_html, self.pre_filters)
        self.tidied = False
        if use_tidy and source.strip():
            source = repair_markup(minimal_text_fix(source))
            self.tidied = True
        self.html = source
        self.dom = parse_document(source, parser)

        self._title: Optional[str] = None
        self._content = None
        self._initialized = False

    @staticmethod
    def _apply_filters(html: str, filters: Mapping[str, str]) -> str:
        for pattern, replacement in filters.items():
            try:
                html = re.sub(pattern, replacement, html, flags=re.I | re.S)
            except re.error as exc:
                logger.warning("Skipping invalid readability filter %r: %s", pattern, exc)
        return html

    def init(self) -> bool:
        """Run the scoring algorithm; True when it found an article node."""

        self._initialized = True
        source = lxml.html.tostring(self.dom, encoding="unicode")
        try:
            document = Document(source, url=self.url or None)
            title = document.short_title()
            summary = document.summary(html_partial=True)
        except Unparseable as exc:
            logger.info("Readability could not parse the document: %s", exc)
            return False

        self._title = None if not title or title == "[no-title]" else title.strip()
        summary = self._apply_filters(summary or "", self.post_filters)
        if not summary.strip():
            return False
        try:
            self._content = lxml.html.fragment_fromstring(summary, create_parent="div")
        except (lxml.etree.ParserError, ValueError) as exc:
            logger.info("Readability summary could not be parsed: %s", exc)
            return False
        if len(self._content) == 1 and not (self._content.text or "").strip():
            self._content = self._content[0]
        self._content.attrib.pop("id", None)
        self._content.attrib.pop("class", None)
        return bool((self._content.text_content() or "").strip())

    def get_title(self) -> Optional[str]:
        if not self._initialized:
            self.init()
        return self._title

    def get_content(self):
        if not self._initialized:
            self.init()
        return self._content

    def prep_article(self, node) -> None:
        """Prune low-value descendants of an already chosen content node."""

        for tag in _PRUNED_TAGS:
            for element in reversed(list(node.iter(tag))):
                if element is not node:
                    _drop(element)

        for element in reversed(list(node.iter(*_CONDITIONAL_TAGS))):
            if element is node:
                continue
            weight = _class_weight(element)
            if weight < 0:
                _drop(element)
                continue
            text = element.text_content() or ""
            images = len(list(element.iter("img")))
            if _link_density(element) > 0.5 and weight < 25 and text.count(",") < 10 and images == 0:
                _drop(element)

        for tag in ("h1", "h2", "h3"):
            for heading in reversed(list(node.iter(tag))):
                if heading is not node and (_class_weight(heading) < 0 or _link_density(heading) > 0.33):
                    _drop(heading)

    def clean(self, node, tag: str) -> None:
        """Remove every ``tag`` descendant of ``node``."""

        for element in reversed(list(node.iter(tag))):
            if element is not node:
                _drop(element)

    def add_footnotes(self, node) -> None:
        """Turn article links into numbered references listed at the end."""

        footnotes = lxml.html.Element("ol", id="readability-footnotesList")
        count = 0
        for link in list(node.iter("a")):
            text = (link.text_content() or "").strip()
            if "readability-DoNotFootnote" in (link.get("class") or "") or _SKIP_FOOTNOTE_LINK_RE.match(text):
                continue
            count += 1
            href = link.get("href") or ""
            domain = urlsplit(href).hostname or urlsplit(self.url).hostname or ""

            ref = lxml.html.fragment_fromstring(
                f'<a href="#readabilityFootnoteLink-{count}" class="readability-DoNotFootnote" '
                f'style="color: inherit;"><small><sup>[{count}]</sup></small></a>'
            )
            ref.tail = link.tail
            link.tail = None
            link.addnext(ref)

            footnote_link = lxml.html.Element("a", href=href, name=f"readabilityFootnoteLink-{count}")
            footnote_link.text = link.get("title") or text
            link.set("style", "color: inherit; text-decoration: none;")
            link.set("name", f"readabilityLink-{count}")

            item = lxml.html.fragment_fromstring(
                f'<li><small><sup><a href="#readabilityLink-{count}" title="Jump to Link in Article">^</a></sup></small> </li>'
            )
            item.append(footnote_link)
            if domain:
                small = lxml.html.Element("small")
                small.text = f" ({domain})"
                item.append(small)
            footnotes.append(item)

        if count:
            wrapper = lxml.html.Element("footer", {"class": "readability-footnotes"})
            heading = lxml.html.Element("h3")
            heading.text = "References"
            wrapper.append(heading)
            wrapper.append(footnotes)
            node.append(wrapper)


__all__ = ["ReadabilityEngine", "parse_document", "PARSER_LIBXML", "PARSER_HTML5LIB"]
