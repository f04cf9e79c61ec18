"""Site config repository: file lookup, host matching, merging and caching."""

from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlsplit

from .reader_config import BUNDLED_SITE_CONFIG_DIR, ENV_SITE_CONFIG_DIRS, FINGERPRINTS, HOSTNAME_REGEX
from .reader_utils import _split_env_list, strip_www
from .site_config import SiteConfig, merge_config, parse_lines

logger = logging.getLogger(__name__)

GLOBAL_HOST = "global"
FINGERPRINT_PREFIX = "fingerprint."
_MAX_HOST_LENGTH = 200


def _default_site_config_dirs() -> List[Path]:
    extra = _split_env_list(os.getenv(ENV_SITE_CONFIG_DIRS, ""), sep=os.pathsep)
    return [Path(p).expanduser() for p in extra] + [BUNDLED_SITE_CONFIG_DIR]


@dataclass
class ConfigBuilderConfig:
    site_config: List[Path] = field(default_factory=_default_site_config_dirs)
    hostname_regex: str = HOSTNAME_REGEX

    def __post_init__(self) -> None:
        if isinstance(self.site_config, (str, Path)):
            self.site_config = [self.site_config]
        self.site_config = [Path(str(p).rstrip("/") or "/") for p in self.site_config]
        try:
            re.compile(self.hostname_regex)
        except re.error as exc:
            raise ValueError(f"hostname_regex is not a valid regex: {exc}") from exc


def _cache_key(key: str) -> str:
    return strip_www(key.lower())


class ConfigBuilder:
    """Loads and caches :class:`SiteConfig` objects for hosts.

    Host lookup tries ``host.txt`` and then the wildcard form
    ``.parent.tld.txt``. Directories are searched in order and the first
    file found wins, except for ``global.txt`` and ``fingerprint.*`` files,
    which merge across every directory that has one.
    """

    def __init__(
        self,
        config: Optional[ConfigBuilderConfig] = None,
        fingerprints: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config or ConfigBuilderConfig()
        self.fingerprints: Dict[str, str] = dict(FINGERPRINTS if fingerprints is None else fingerprints)
        self._fingerprint_res = [(re.compile(p, re.I), host) for p, host in self.fingerprints.items()]
        self._hostname_re = re.compile(self.config.hostname_regex)
        self._cache: Dict[str, SiteConfig] = {}
        self._lock = threading.RLock()
        self._config_files: Dict[str, List[Path]] = {}
        self.load_config_files()

    def load_config_files(self) -> None:
        """Index ``*.txt`` files of every configured directory."""

        files: Dict[str, List[Path]] = {}
        for directory in self.config.site_config:
            if not directory.is_dir():
                logger.debug("Site config directory %s does not exist", directory)
                continue
            for path in sorted(directory.glob("*.txt")):
                files.setdefault(path.name, []).append(path)
        with self._lock:
            self._config_files = files

    def reload_config_files(self) -> None:
        self.load_config_files()
        self.clear_cache()

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    @property
    def config_files(self) -> Dict[str, List[Path]]:
        return {name: list(paths) for name, paths in self._config_files.items()}

    def add_to_cache(self, key: str, config: SiteConfig) -> None:
        key = config.cache_key or _cache_key(key)
        with self._lock:
            self._cache[key] = config
        logger.info("Cached site config with key: %s", key)

    def get_cached_version(self, key: str) -> Optional[SiteConfig]:
        with self._lock:
            return self._cache.get(_cache_key(key))

    def _read(self, name: str) -> Optional[SiteConfig]:
        paths = self._config_files.get(f"{name}.txt") or []
        if not paths:
            return None
        if not (name == GLOBAL_HOST or name.startswith(FINGERPRINT_PREFIX)):
            paths = paths[:1]

        merged: Optional[SiteConfig] = None
        for path in paths:
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Unable to read site config %s: %s", path, exc)
                continue
            if not any(line.strip() for line in lines):
                continue
            logger.info("... found site config %s", path)
            parsed = parse_lines(lines)
            merged = parsed if merged is None else merge_config(merged, parsed)
        return merged

    def load_site_config(self, host: str, exact_host_match: bool = False) -> Optional[SiteConfig]:
        """Return the config file matching ``host`` or its wildcard form, or None."""

        host = _cache_key(host)
        if not host or len(host) > _MAX_HOST_LENGTH or not self._hostname_re.match(host.lstrip(".")):
            return None

        tries = [host]
        if not exact_host_match:
            labels = host.split(".")
            if len(labels) > 1:
                tries.append("." + ".".join(labels[1:]))

        logger.info(". looking for site config for %s", host)
        for candidate in tries:
            cached = self.get_cached_version(candidate)
            if cached is not None:
                logger.info("... site config for %s already loaded in this request", candidate)
                return cached
            config = self._read(candidate)
            if config is not None:
                config.cache_key = candidate
                return config
        return None

    def build_for_host(self, host: str, add_to_cache: bool = True) -> SiteConfig:
        """Host config merged with ``global.txt``; never None."""

        host = _cache_key(host)
        cached = self.get_cached_version(f"{host}.merged")
        if cached is not None:
            logger.info("Returning cached and merged site config for %s", host)
            return cached

        with self._lock:
            config = self.load_site_config(host)
            if add_to_cache and config is not None and self.get_cached_version(config.cache_key or host) is None:
                self.add_to_cache(host, config)

            config = SiteConfig() if config is None else config.copy()

            if config.autodetect_on_failure():
                global_config = self.load_site_config(GLOBAL_HOST, exact_host_match=True)
                if global_config is not None:
                    logger.info("Appending site config settings from global.txt")
                    merge_config(config, global_config)
                    if add_to_cache and self.get_cached_version(GLOBAL_HOST) is None:
                        self.add_to_cache(GLOBAL_HOST, global_config)

            if add_to_cache:
                config.cache_key = None
                self.add_to_cache(f"{host}.merged", config)
        return config

    def build_from_url(self, url: str, add_to_cache: bool = True) -> SiteConfig:
        return self.build_for_host(urlsplit(url).hostname or "", add_to_cache)

    def find_host_using_fingerprints(self, html: str) -> Optional[str]:
        for pattern, host in self._fingerprint_res:
            if pattern.search(html or ""):
                return host
        return None

    def build_site_config(self, url: str, html: str = "", add_to_cache: bool = True) -> SiteConfig:
        """Config for ``url``: exact, wildcard, fingerprint, global, default."""

        config = self.build_from_url(url, add_to_cache)
        if not config.autodetect_on_failure():
            return config

        fingerprint_host = self.find_host_using_fingerprints(html)
        if fingerprint_host is None:
            return config

        fingerprint_config = self.build_for_host(fingerprint_host, add_to_cache)
        logger.info("Appending site config settings from %s (fingerprint match)", fingerprint_host)
        return merge_config(config.copy(), fingerprint_config)

    @staticmethod
    def merge_config(current: SiteConfig, new: SiteConfig) -> SiteConfig:
        return merge_config(current, new)

    def known_hosts(self) -> Sequence[str]:
        return sorted(name[: -len(".txt")] for name in self._config_files)


__all__ = ["ConfigBuilderConfig", "ConfigBuilder", "GLOBAL_HOST"]
