"""Server-side request forgery guard.

Every URL the HTTP client is about to request goes through
:func:`validate_url`. The guard checks scheme, port, host and the resolved
IPv4 addresses against allow/deny lists and can pin the request to the
address it validated so the HTTP layer cannot re-resolve somewhere else.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

from .reader_config import SSRF_BLACKLIST, SSRF_WHITELIST

logger = logging.getLogger(__name__)

LIST_NAMES = ("whitelist", "blacklist")
LIST_TYPES = ("ip", "port", "domain", "scheme")


class InvalidOptionError(ValueError):
    """Unknown list name or list type on :class:`Options`."""


class InvalidURLError(ValueError):
    """Base class for every URL the guard refuses."""

    kind = "url"


class EmptyURLError(InvalidURLError):
    kind = "empty"


class InvalidCredentialsError(InvalidURLError):
    kind = "credentials"


class InvalidSchemeError(InvalidURLError):
    kind = "scheme"


class InvalidPortError(InvalidURLError):
    kind = "port"


class InvalidDomainError(InvalidURLError):
    kind = "domain"


class InvalidIPError(InvalidURLError):
    kind = "ip"


def _default_lists(source: Dict[str, Sequence[str]]) -> Dict[str, List[str]]:
    return {kind: list(source.get(kind, ())) for kind in LIST_TYPES}


@dataclass
class Options:
    """Allow/deny policy for the guard.

    A non-empty whitelist entry type wins: the value must appear in it. The
    blacklist is checked afterwards and always applies.
    """

    whitelist: Dict[str, List[str]] = field(default_factory=lambda: _default_lists(SSRF_WHITELIST))
    blacklist: Dict[str, List[str]] = field(default_factory=lambda: _default_lists(SSRF_BLACKLIST))
    send_credentials: bool = False
    pin_dns: bool = False

    def __post_init__(self) -> None:
        for list_name in LIST_NAMES:
            lists = getattr(self, list_name)
            unknown = sorted(set(lists) - set(LIST_TYPES))
            if unknown:
                raise InvalidOptionError(f"Provided type {unknown[0]!r} must be one of {', '.join(LIST_TYPES)}")
            for kind in LIST_TYPES:
                lists[kind] = [str(value) for value in lists.get(kind, [])]

    def _lists(self, list_name: str) -> Dict[str, List[str]]:
        if list_name not in LIST_NAMES:
            raise InvalidOptionError(f"Provided list {list_name!r} must be 'whitelist' or 'blacklist'")
        return getattr(self, list_name)

    @staticmethod
    def _check_type(kind: str) -> None:
        if kind not in LIST_TYPES:
            raise InvalidOptionError(f"Provided type {kind!r} must be one of {', '.join(LIST_TYPES)}")

    def get_list(self, list_name: str, kind: Optional[str] = None):
        lists = self._lists(list_name)
        if kind is None:
            return {k: list(v) for k, v in lists.items()}
        self._check_type(kind)
        return list(lists[kind])

    def set_list(self, list_name: str, values, kind: Optional[str] = None) -> "Options":
        lists = self._lists(list_name)
        if kind is None:
            if not isinstance(values, dict):
                raise InvalidOptionError("Setting a whole list requires a mapping of type to values")
            for key in values:
                self._check_type(key)
            for key in LIST_TYPES:
                lists[key] = [str(v) for v in values.get(key, [])]
            return self
        self._check_type(kind)
        lists[kind] = [str(v) for v in values]
        return self

    def add_to_list(self, list_name: str, kind: str, values: Sequence[str] | str) -> "Options":
        lists = self._lists(list_name)
        self._check_type(kind)
        if isinstance(values, str):
            values = [values]
        for value in values:
            if str(value) not in lists[kind]:
                lists[kind].append(str(value))
        return self

    def remove_from_list(self, list_name: str, kind: str, values: Sequence[str] | str) -> "Options":
        lists = self._lists(list_name)
        self._check_type(kind)
        if isinstance(values, str):
            values = [values]
        drop = {str(v) for v in values}
        lists[kind] = [entry for entry in lists[kind] if entry not in drop]
        return self

    def is_in_list(self, list_name: str, kind: str, value: str) -> bool:
        """Membership test with the empty-list convention.

        An empty whitelist accepts everything, an empty blacklist rejects
        nothing. Domains match as anchored case-insensitive regexes, IPs by
        CIDR containment, everything else by equality.
        """

        lists = self._lists(list_name)
        self._check_type(kind)
        entries = lists[kind]
        if not entries:
            return list_name == "whitelist"
        if kind == "domain":
            for entry in entries:
                try:
                    if re.match(f"^{entry}$", value, re.I):
                        return True
                except re.error:
                    logger.warning("Skipping invalid domain pattern %r", entry)
            return False
        if kind == "ip":
            return any(cidr_match(value, entry) for entry in entries)
        return value in entries


@dataclass(frozen=True)
class GuardedUrl:
    """Result of a successful validation."""

    url: str
    host: str
    ips: Tuple[str, ...]


def cidr_match(ip: str, cidr: str) -> bool:
    """True when ``ip`` lies in ``cidr``; a bare address matches only itself."""

    if "/" not in cidr:
        return ip == cidr
    try:
        address = ipaddress.ip_address(ip)
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError:
        return False
    if address.version != network.version:
        return False
    mask = int(network.netmask)
    return int(address) & mask == int(network.network_address) & mask


def _resolve_ipv4(host: str) -> List[str]:
    try:
        _name, _aliases, addresses = socket.gethostbyname_ex(host)
    except (socket.gaierror, socket.herror, UnicodeError):
        return []
    return list(addresses)


def _passes(options: Options, kind: str, value: str) -> bool:
    if not options.is_in_list("whitelist", kind, value):
        return False
    return not options.is_in_list("blacklist", kind, value)


def validate_url(url: str, options: Optional[Options] = None) -> GuardedUrl:
    """Validate ``url`` against ``options`` and return the URL to request.

    Raises a subclass of :class:`InvalidURLError` naming the first rule the
    URL breaks.
    """

    options = options or Options()
    if not url or not url.strip():
        raise EmptyURLError("Provided URL cannot be empty")

    try:
        parts = urlsplit(url.strip())
        port_value = parts.port
    except ValueError as exc:
        raise InvalidURLError(f"Error parsing URL {url!r}") from exc

    host = parts.hostname
    if not host:
        raise InvalidURLError(f"Provided URL {url!r} doesn't contain a hostname")

    if (parts.username or parts.password) and not options.send_credentials:
        raise InvalidCredentialsError("Credentials passed in but 'send_credentials' is set to false")

    scheme = (parts.scheme or "http").lower()
    if not _passes(options, "scheme", scheme):
        raise InvalidSchemeError(f"Provided scheme {scheme!r} doesn't match whitelisted values or matches a blacklisted one")

    if port_value is not None and not _passes(options, "port", str(port_value)):
        raise InvalidPortError(f"Provided port {port_value!r} doesn't match whitelisted values or matches a blacklisted one")

    host = host.lower()
    domain = host[4:] if host.startswith("www.") else host
    if not _passes(options, "domain", domain):
        raise InvalidDomainError(f"Provided host {host!r} doesn't match whitelisted values or matches a blacklisted one")

    try:
        ipaddress.IPv4Address(host)
        ips = [host]
    except ValueError:
        ips = _resolve_ipv4(host)
    if not ips:
        raise InvalidDomainError(f"Provided host {host!r} doesn't resolve to an IP address")

    if options.whitelist["ip"]:
        if not any(options.is_in_list("whitelist", "ip", ip) for ip in ips):
            raise InvalidIPError(f"Provided host {host!r} resolves to {', '.join(ips)}, which doesn't match whitelisted values")
    for ip in ips:
        if options.is_in_list("blacklist", "ip", ip):
            raise InvalidIPError(f"Provided host {host!r} resolves to {ip}, which matches a blacklisted value")

    netloc_host = ips[0] if options.pin_dns else host
    netloc = netloc_host if port_value is None else f"{netloc_host}:{port_value}"
    if parts.username and options.send_credentials:
        userinfo = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{userinfo}@{netloc}"

    safe_url = urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))
    return GuardedUrl(url=safe_url, host=host, ips=tuple(ips))


__all__ = [
    "Options",
    "GuardedUrl",
    "validate_url",
    "cidr_match",
    "InvalidOptionError",
    "InvalidURLError",
    "EmptyURLError",
    "InvalidCredentialsError",
    "InvalidSchemeError",
    "InvalidPortError",
    "InvalidDomainError",
    "InvalidIPError",
]
