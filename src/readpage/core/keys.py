"""Stable keys for serialized readpage results."""

from __future__ import annotations

# Content payload keys
K_STATUS = "status"
K_HTML = "html"
K_TITLE = "title"
K_LANGUAGE = "language"
K_DATE = "date"
K_AUTHORS = "authors"
K_URL = "url"
K_IMAGE = "image"
K_HEADERS = "headers"
K_NATIVE_AD = "native_ad"
K_SUMMARY = "summary"
