import json
import logging

from readpage.workflows.logging_utils import (
    StructuredFormatter,
    attach_recording_handler,
    configure_logging,
    detach_recording_handler,
)


def test_structured_formatter_includes_extras():
    record = logging.LogRecord("readpage.test", logging.WARNING, __file__, 10, "fetched %s", ("x",), None)
    record.url = "http://example.com/"

    payload = json.loads(StructuredFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "readpage.test"
    assert payload["message"] == "fetched x"
    assert payload["url"] == "http://example.com/"


def test_configure_logging_reads_environment(monkeypatch):
    monkeypatch.setenv("READPAGE_LOG_LEVEL", "debug")
    monkeypatch.setenv("READPAGE_LOG_FORMAT", "json")
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging()

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)


def test_recording_handler_groups_by_level():
    handler = attach_recording_handler("debug", logger_name="readpage.recording")
    log = logging.getLogger("readpage.recording.child")
    try:
        log.debug("first %d", 1)
        log.info("second")

        assert handler.has_records(logging.DEBUG)
        assert handler.has_records("info")
        assert not handler.has_records("error")
        assert handler.messages() == ["first 1", "second"]
        assert handler.messages("info") == ["second"]

        handler.clear()
        assert handler.records == []
    finally:
        detach_recording_handler(handler, logger_name="readpage.recording")

    log.info("after detach")
    assert handler.records == []
