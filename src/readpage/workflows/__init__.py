"""High-level exports for the readpage workflows."""

from .config_builder import ConfigBuilder, ConfigBuilderConfig
from .content_extractor import ContentExtractor, ContentExtractorConfig, ExtractedContent
from .http_client import Deadline, FetchResult, HttpClient, HttpClientConfig
from .logging_utils import RecordingHandler, configure_logging
from .reader import (
    Content,
    ContentLinks,
    ContentTypeAction,
    MimeTypeExcludedError,
    Reader,
    ReaderConfig,
    UrlNotAllowedError,
)
from .site_config import SiteConfig, merge_config, parse_lines
from .ssrf_guard import InvalidURLError, Options, validate_url

__all__ = [
    "ConfigBuilder",
    "ConfigBuilderConfig",
    "ContentExtractor",
    "ContentExtractorConfig",
    "ExtractedContent",
    "Deadline",
    "FetchResult",
    "HttpClient",
    "HttpClientConfig",
    "RecordingHandler",
    "configure_logging",
    "Content",
    "ContentLinks",
    "ContentTypeAction",
    "MimeTypeExcludedError",
    "Reader",
    "ReaderConfig",
    "UrlNotAllowedError",
    "SiteConfig",
    "merge_config",
    "parse_lines",
    "InvalidURLError",
    "Options",
    "validate_url",
]
