"""Per-host extraction rules and the line-oriented DSL they are written in.

A site config file holds one ``command: value`` directive per line::

    title: //h1[@class="headline"]
    body: //div[@id="article"]
    strip_id_or_class: related
    replace_string(<amp-img): <img
    http_header(user-agent): Mozilla/5.0 (compatible)
    next_page_link: //a[@rel="next"]
    if_page_contains: //div[@class="pager"]

Blank lines and ``#`` comments are ignored. Unknown commands are skipped.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Optional

from .reader_config import DEFAULT_PARSER

logger = logging.getLogger(__name__)

MULTI_VALUE_COMMANDS = (
    "title",
    "body",
    "author",
    "date",
    "strip",
    "strip_id_or_class",
    "strip_image_src",
    "native_ad_clue",
    "single_page_link",
    "next_page_link",
    "test_url",
    "find_string",
    "replace_string",
    "login_extra_fields",
)
BOOLEAN_COMMANDS = ("tidy", "prune", "autodetect_on_failure", "requires_login", "skip_json_ld")
STRING_COMMANDS = ("parser", "src_lazy_load_attr")

# test_url and login_extra_fields are per-file facts, they do not merge.
MERGED_LIST_FIELDS = (
    "title",
    "body",
    "strip",
    "strip_id_or_class",
    "strip_image_src",
    "native_ad_clue",
    "single_page_link",
    "next_page_link",
    "date",
    "author",
)
MERGED_SCALAR_FIELDS = ("tidy", "prune", "parser", "autodetect_on_failure", "requires_login", "skip_json_ld", "src_lazy_load_attr")

ACCEPTED_HEADERS = ("user-agent", "referer", "cookie", "accept")
ACCEPTED_WRAP_IN_TAGS = ("blockquote", "p", "div")
IF_PAGE_CONTAINS_KINDS = ("single_page_link", "next_page_link")

_REPLACE_STRING_RE = re.compile(r"^([a-z0-9_]+)\((.*?)\)$", re.I)
_HTTP_HEADER_RE = re.compile(r"^([a-z0-9_]+)\(([a-z0-9_-]+)\)$", re.I)
_WRAP_IN_RE = re.compile(r"([a-z0-9_]+)\(([a-z]+)\)$", re.I)


@dataclass
class SiteConfig:
    """Extraction rules for one host.

    Scalar directives are tri-state: ``None`` means "not set in any file"
    and the accessor methods resolve it to the built-in default.
    """

    title: List[str] = field(default_factory=list)
    body: List[str] = field(default_factory=list)
    author: List[str] = field(default_factory=list)
    date: List[str] = field(default_factory=list)
    strip: List[str] = field(default_factory=list)
    strip_id_or_class: List[str] = field(default_factory=list)
    strip_image_src: List[str] = field(default_factory=list)
    native_ad_clue: List[str] = field(default_factory=list)
    single_page_link: List[str] = field(default_factory=list)
    next_page_link: List[str] = field(default_factory=list)
    test_url: List[str] = field(default_factory=list)
    find_string: List[str] = field(default_factory=list)
    replace_string: List[str] = field(default_factory=list)
    login_extra_fields: List[str] = field(default_factory=list)
    http_header: Dict[str, str] = field(default_factory=dict)
    if_page_contains: Dict[str, Dict[str, str]] = field(default_factory=dict)
    wrap_in: Dict[str, str] = field(default_factory=dict)
    tidy_flag: Optional[bool] = None
    prune_flag: Optional[bool] = None
    autodetect_flag: Optional[bool] = None
    parser_name: Optional[str] = None
    requires_login: Optional[bool] = None
    skip_json_ld: Optional[bool] = None
    src_lazy_load_attr: Optional[str] = None
    cache_key: Optional[str] = None

    def tidy(self) -> bool:
        return True if self.tidy_flag is None else self.tidy_flag

    def prune(self) -> bool:
        return True if self.prune_flag is None else self.prune_flag

    def autodetect_on_failure(self) -> bool:
        return True if self.autodetect_flag is None else self.autodetect_flag

    def parser(self) -> str:
        return self.parser_name or DEFAULT_PARSER

    def get_if_page_contains_condition(self, kind: str, pattern: str) -> Optional[str]:
        return self.if_page_contains.get(kind, {}).get(pattern)

    def find_replace_pairs(self) -> List[tuple]:
        if len(self.find_string) != len(self.replace_string):
            return []
        return list(zip(self.find_string, self.replace_string))

    def copy(self) -> "SiteConfig":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Plain mapping keyed by DSL command names."""

        data: Dict[str, Any] = {}
        for f in fields(self):
            data[_SCALAR_ATTRS_REVERSED.get(f.name, f.name)] = copy.deepcopy(getattr(self, f.name))
        return data


# DSL command -> attribute name when they differ (the accessors own the bare name).
_SCALAR_ATTRS = {
    "tidy": "tidy_flag",
    "prune": "prune_flag",
    "autodetect_on_failure": "autodetect_flag",
    "parser": "parser_name",
}
_SCALAR_ATTRS_REVERSED = {v: k for k, v in _SCALAR_ATTRS.items()}


def _attr(command: str) -> str:
    return _SCALAR_ATTRS.get(command, command)


def _handle_if_page_contains(config: SiteConfig, condition: str) -> None:
    # Attaches to the latest single_page_link, else the latest next_page_link.
    for kind in IF_PAGE_CONTAINS_KINDS:
        patterns = getattr(config, kind)
        if patterns:
            config.if_page_contains.setdefault(kind, {})[patterns[-1]] = condition
            return
    logger.debug("if_page_contains without a preceding link rule: %s", condition)


def parse_lines(lines: Iterable[str]) -> SiteConfig:
    """Parse DSL lines into a :class:`SiteConfig`."""

    config = SiteConfig()
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        command, sep, value = line.partition(":")
        if not sep:
            continue
        command = command.strip()
        value = value.strip()
        if not command:
            continue

        if command == "strip_attr":
            command = "strip"

        if command in MULTI_VALUE_COMMANDS:
            getattr(config, command).append(value)
        elif command in BOOLEAN_COMMANDS:
            setattr(config, _attr(command), value in ("yes", "true"))
        elif command in STRING_COMMANDS:
            setattr(config, _attr(command), value)
        elif command == "cache_key":
            config.cache_key = value or None
        elif command == "if_page_contains":
            _handle_if_page_contains(config, value)
        elif command.endswith(")"):
            _parse_call_command(config, command, value)

    if len(config.find_string) != len(config.replace_string):
        logger.warning(
            "find_string & replace_string size mismatch, check the site config to fix it: %s",
            {"find_string": config.find_string, "replace_string": config.replace_string},
        )
        config.find_string = []
        config.replace_string = []
    return config


def _parse_call_command(config: SiteConfig, command: str, value: str) -> None:
    match = _REPLACE_STRING_RE.match(command)
    if match and match.group(1) == "replace_string":
        config.find_string.append(match.group(2))
        config.replace_string.append(value)
        return

    match = _HTTP_HEADER_RE.match(command)
    if match and match.group(1) == "http_header":
        name = match.group(2).strip().lower()
        if name in ACCEPTED_HEADERS:
            config.http_header[name] = value
        else:
            logger.debug("Ignoring unsupported http_header(%s)", name)
        return

    match = _WRAP_IN_RE.search(command)
    if match and match.group(1) == "wrap_in":
        tag = match.group(2).strip().lower()
        if tag in ACCEPTED_WRAP_IN_TAGS:
            config.wrap_in[tag] = value


def parse_text(text: str) -> SiteConfig:
    return parse_lines(text.splitlines())


def _union(current: List[str], new: List[str]) -> List[str]:
    merged: List[str] = []
    for value in list(current) + list(new):
        if value not in merged:
            merged.append(value)
    return merged


def merge_config(current: SiteConfig, new: SiteConfig) -> SiteConfig:
    """Merge ``new`` into ``current`` in place and return ``current``.

    Lists are unioned without duplicates, scalars are only filled when still
    unset, and ``current`` wins on conflicting headers and find strings
    defined in both.
    """

    for name in MERGED_LIST_FIELDS:
        setattr(current, name, _union(getattr(current, name), getattr(new, name)))

    for kind in IF_PAGE_CONTAINS_KINDS:
        if kind in new.if_page_contains:
            merged = dict(new.if_page_contains[kind])
            merged.update(current.if_page_contains.get(kind, {}))
            current.if_page_contains[kind] = merged

    for name in MERGED_SCALAR_FIELDS:
        attr = _attr(name)
        if getattr(current, attr) is None:
            setattr(current, attr, getattr(new, attr))

    headers = dict(new.http_header)
    headers.update(current.http_header)
    current.http_header = headers

    wrap_in = dict(new.wrap_in)
    wrap_in.update(current.wrap_in)
    current.wrap_in = wrap_in

    # find strings act as keys so the same replacement is never applied twice
    find_replace: Dict[str, str] = {}
    for find, replace in current.find_replace_pairs() + new.find_replace_pairs():
        find_replace.setdefault(find, replace)
    current.find_string = list(find_replace.keys())
    current.replace_string = list(find_replace.values())
    return current


__all__ = [
    "SiteConfig",
    "parse_lines",
    "parse_text",
    "merge_config",
    "ACCEPTED_HEADERS",
    "ACCEPTED_WRAP_IN_TAGS",
]
