"""readpage defaults (headers, rewrite rules, clue lists, fingerprints, SSRF ranges).

Centralizes static defaults so the workflow modules carry no embedded magic
strings. These are baseline constants used to construct the typed configs;
callers can pass their own config objects to override any of them.
"""

from __future__ import annotations

from pathlib import Path

# Paths (package-relative)
_ROOT = Path(__file__).resolve().parents[1]
BUNDLED_SITE_CONFIG_DIR = _ROOT / "data" / "site_config"

# Headers
HDR_USER_AGENT = "User-Agent"
HDR_REFERER = "Referer"
HDR_COOKIE = "Cookie"
HDR_ACCEPT = "Accept"
HDR_HOST = "Host"

DEFAULT_UA_BROWSER = (
    "Mozilla/5.0 (Windows NT 6.1; WOW64) AppleWebKit/535.2 "
    "(KHTML, like Gecko) Chrome/15.0.874.92 Safari/535.2"
)
DEFAULT_REFERER = "http://www.google.co.uk/url?sa=t&source=web&cd=1"
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_REDIRECT = 10

# Host-keyed literal rewrites applied before fetching.
REWRITE_URL = {
    "docs.google.com": {"/Doc?": "/View?"},
    "tnr.com": {"tnr.com/article/": "tnr.com/print/article/"},
    ".m.wikipedia.org": {".m.wikipedia.org": ".wikipedia.org"},
    "m.vanityfair.com": {"m.vanityfair.com": "www.vanityfair.com"},
}

# Content types that never need a body download.
HEADER_ONLY_TYPES = ("image", "audio", "video")

# URL extensions suggesting binary content (HEAD first).
HEADER_ONLY_CLUES = (
    "mp3",
    "zip",
    "exe",
    "gif",
    "gzip",
    "gz",
    "jpeg",
    "jpg",
    "mpg",
    "mpeg",
    "png",
    "ppt",
    "mov",
)

# Google AJAX crawling markers.
AJAX_TRIGGERS = (
    "<meta name='fragment' content='!'",
    '<meta name="fragment" content="!"',
    "<meta content='!' name='fragment'",
    '<meta content="!" name="fragment"',
)

# Extractor defaults
DEFAULT_PARSER = "libxml"
ALLOWED_PARSERS = ("libxml", "html5lib")

FINGERPRINTS = {
    r"<meta\s*content=(['\"])blogger(['\"])\s*name=(['\"])generator(['\"])": "fingerprint.blogspot.com",
    r"<meta\s*name=(['\"])generator(['\"])\s*content=(['\"])Blogger(['\"])": "fingerprint.blogspot.com",
    r"<meta\s*name=(['\"])generator(['\"])\s*content=(['\"])WordPress": "fingerprint.wordpress.com",
    r"<meta\s*data-rh=(['\"])true(['\"])\s*property=(['\"])al:ios:app_name(['\"])\s*content=(['\"])Medium(['\"])": "fingerprint.medium.com",
    r"<script>.*\{(['\"])de\.ippen-digital\.story\.onlineId(['\"])": "fingerprint.ippen.media",
    r"<link\s*rel=(['\"])stylesheet(['\"])\s*type=(['\"])text/css(['\"])\s*href=(['\"])https://substackcdn\.com/": "fingerprint.substack.com",
}

SRC_LAZY_LOAD_ATTRIBUTES = (
    "data-src",
    "data-lazy-src",
    "data-original",
    "data-sources",
    "data-hi-res-src",
    "data-srcset",
)

JSON_LD_IGNORE_TYPES = ("Organization", "WebSite", "Person", "VideoGame")

HOSTNAME_REGEX = r"^(([a-zA-Z0-9-]*[a-zA-Z0-9])\.)*([A-Za-z0-9-]*[A-Za-z0-9])$"

# Reader defaults
ERROR_MESSAGE = "[unable to retrieve full-text content]"
ERROR_MESSAGE_TITLE = "No title found"
MULTIPAGE_FAILURE_NOTICE = "<em>This article appears to continue on subsequent pages which we could not extract</em>"
EMBEDDED_CONTENT_PLACEHOLDER = "[embedded content]"
EXCERPT_LENGTH = 250
EXCERPT_SEPARATOR = " &hellip;"

CONTENT_TYPE_EXC = {
    "application/zip": {"action": "link", "name": "ZIP"},
    "application/pdf": {"action": "link", "name": "PDF"},
    "image": {"action": "link", "name": "Image"},
    "audio": {"action": "link", "name": "Audio"},
    "video": {"action": "link", "name": "Video"},
    "text/plain": {"action": "link", "name": "Plain text"},
}

# SSRF guard defaults
SSRF_WHITELIST = {
    "ip": (),
    "port": ("80", "443", "8080"),
    "domain": (),
    "scheme": ("http", "https"),
}

SSRF_BLACKLIST = {
    "ip": (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.0.0.0/29",
        "192.0.2.0/24",
        "192.88.99.0/24",
        "192.168.0.0/16",
        "198.18.0.0/15",
        "198.51.100.0/24",
        "203.0.113.0/24",
        "224.0.0.0/4",
        "240.0.0.0/4",
    ),
    "port": (),
    "domain": (),
    "scheme": (),
}

# Environment knobs
ENV_LOG_LEVEL = "READPAGE_LOG_LEVEL"
ENV_LOG_FORMAT = "READPAGE_LOG_FORMAT"
ENV_SITE_CONFIG_DIRS = "READPAGE_SITE_CONFIG_DIRS"
ENV_TIMEOUT = "READPAGE_TIMEOUT"
ENV_MAX_REDIRECT = "READPAGE_MAX_REDIRECT"
