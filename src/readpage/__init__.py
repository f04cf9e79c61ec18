"""readpage: fetch a web page and extract its readable article."""

from .workflows import Content, Reader, ReaderConfig

__version__ = "0.1.0"

__all__ = ["Content", "Reader", "ReaderConfig", "__version__"]
