import logging
import time
from typing import Dict, List, Optional

import pytest
import requests

from readpage.workflows import ssrf_guard
from readpage.workflows.http_client import (
    STATUS_DEADLINE,
    STATUS_LOOP,
    STATUS_TRANSPORT_ERROR,
    Deadline,
    FetchResult,
    HttpClient,
    HttpClientConfig,
)


class FakeResponse:
    def __init__(self, status_code: int = 200, headers: Optional[Dict[str, str]] = None, content: bytes = b"") -> None:
        self.status_code = status_code
        self.headers = headers or {}
        self.content = content
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Returns queued responses in order; the last one repeats forever."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, object]] = []

    def request(self, method, url, headers=None, allow_redirects=True, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": dict(headers or {}), "timeout": timeout})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def _html(body: str, status: int = 200, **headers: str) -> FakeResponse:
    merged = {"Content-Type": "text/html; charset=utf-8"}
    merged.update(headers)
    return FakeResponse(status, merged, body.encode("utf-8"))


@pytest.fixture(autouse=True)
def _fake_dns(monkeypatch):
    def resolve(host):
        return ["127.0.0.1"] if host == "localhost" else ["93.184.216.34"]

    monkeypatch.setattr(ssrf_guard, "_resolve_ipv4", resolve)


def test_redirect_loop_stops_after_budget(caplog) -> None:
    caplog.set_level(logging.INFO, logger="readpage")
    session = FakeSession(FakeResponse(302, {"Location": "/loop"}))
    client = HttpClient(HttpClientConfig(max_redirect=3), session=session)

    result = client.fetch("http://example.com/start")

    assert result.status == STATUS_LOOP
    assert result.effective_url == "http://example.com/start"
    assert len(session.calls) == 4
    assert 'Endless redirect: 4 on "http://example.com/start"' in caplog.text


def test_fetch_follows_redirect_and_decodes_body() -> None:
    session = FakeSession(
        FakeResponse(301, {"Location": "/final"}),
        _html("<html><body><p>café</p></body></html>"),
    )
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/start")

    assert result.status == 200
    assert result.effective_url == "http://example.com/final"
    assert "café" in result.text()
    assert result.content_type.startswith("text/html")
    assert [call["url"] for call in session.calls] == ["http://example.com/start", "http://example.com/final"]
    first_headers = session.calls[0]["headers"]
    assert first_headers["User-Agent"] == HttpClientConfig().ua_browser
    assert first_headers["Referer"] == HttpClientConfig().default_referer


def test_head_request_then_get_for_textual_content() -> None:
    session = FakeSession(
        FakeResponse(200, {"Content-Type": "text/html"}),
        _html("<html><body>picture page</body></html>"),
    )
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/picture.jpg")

    assert [call["method"] for call in session.calls] == ["HEAD", "GET"]
    assert "picture page" in result.text()


def test_head_request_is_enough_for_images() -> None:
    session = FakeSession(FakeResponse(200, {"Content-Type": "image/jpeg"}))
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/picture.jpg")

    assert [call["method"] for call in session.calls] == ["HEAD"]
    assert result.body == b""
    assert result.content_type == "image/jpeg"


def test_meta_refresh_is_followed() -> None:
    session = FakeSession(
        _html('<html><head><meta http-equiv="refresh" content="0;url=/next"></head></html>'),
        _html("<html><body>arrived</body></html>"),
    )
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/")

    assert result.effective_url == "http://example.com/next"
    assert "arrived" in result.text()


def test_refresh_header_is_followed() -> None:
    session = FakeSession(
        _html("<html></html>", Refresh="5; url=http://example.com/elsewhere"),
        _html("<html><body>elsewhere</body></html>"),
    )
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/")

    assert session.calls[1]["url"] == "http://example.com/elsewhere"
    assert result.effective_url == "http://example.com/elsewhere"


def test_ajax_fragment_marker_triggers_escaped_fragment_fetch() -> None:
    session = FakeSession(
        _html('<html><head><meta name="fragment" content="!"></head></html>'),
        _html("<html><body>static</body></html>"),
    )
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/app")

    assert session.calls[1]["url"] == "http://example.com/app?_escaped_fragment_="
    assert "static" in result.text()


def test_trackers_are_removed_from_effective_url() -> None:
    session = FakeSession(_html("<html></html>"))
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/a?utm_source=feed&id=1&amp;utm_medium=rss")

    assert result.effective_url == "http://example.com/a?id=1"


def test_cleanup_url() -> None:
    client = HttpClient(session=FakeSession(_html("")))

    assert client.cleanup_url("http://example.com/page#!/section/2") == "http://example.com/page?_escaped_fragment_=/section/2"
    assert client.cleanup_url("http://example.com/page?a=1#!x") == "http://example.com/page?a=1&_escaped_fragment_=x"
    assert client.cleanup_url("http://example.com/page#comments") == "http://example.com/page"
    assert client.cleanup_url("https://en.m.wikipedia.org/wiki/Python") == "https://en.wikipedia.org/wiki/Python"


def test_transport_error_degrades_to_500() -> None:
    session = FakeSession(requests.ConnectionError("boom"))
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/")

    assert result.status == STATUS_TRANSPORT_ERROR
    assert result.body == b""
    assert result.effective_url == "http://example.com/"


def test_unsafe_redirect_hop_degrades_to_500() -> None:
    session = FakeSession(FakeResponse(302, {"Location": "http://localhost/admin"}))
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/")

    assert result.status == STATUS_TRANSPORT_ERROR
    assert len(session.calls) == 1


def test_expired_deadline_returns_504_without_request() -> None:
    session = FakeSession(_html("<html></html>"))
    client = HttpClient(session=session)

    result = client.fetch("http://example.com/", deadline=Deadline(time.monotonic() - 1))

    assert result.status == STATUS_DEADLINE
    assert session.calls == []


def test_deadline_clamps_request_timeout() -> None:
    session = FakeSession(_html("<html></html>"))
    client = HttpClient(HttpClientConfig(timeout=10), session=session)

    client.fetch("http://example.com/", deadline=Deadline.after(2))

    assert session.calls[0]["timeout"] <= 2


def test_site_config_headers_are_sent() -> None:
    session = FakeSession(_html("<html></html>"))
    client = HttpClient(session=session)

    client.fetch(
        "http://example.com/",
        http_header={"user-agent": "CustomBot/2.0", "referer": "http://ref.example/", "cookie": "session=abc; secure", "accept": "text/html"},
    )

    headers = session.calls[0]["headers"]
    assert headers["User-Agent"] == "CustomBot/2.0"
    assert headers["Referer"] == "http://ref.example/"
    assert headers["Cookie"] == "session=abc; secure=1"
    assert headers["Accept"] == "text/html"


def test_user_agent_table_matches_parent_domain() -> None:
    session = FakeSession(_html("<html></html>"))
    client = HttpClient(HttpClientConfig(user_agents={".example.com": "ParentBot"}), session=session)

    client.fetch("http://news.example.com/")

    assert session.calls[0]["headers"]["User-Agent"] == "ParentBot"


def test_string_replacements_apply_to_fetched_body() -> None:
    class Replacer:
        def process_string_replacements(self, html, url):
            return html.replace("old", "new")

    session = FakeSession(_html("<html><body>old text</body></html>"))
    client = HttpClient(session=session, extractor=Replacer())

    result = client.fetch("http://example.com/")

    assert "new text" in result.text()


def test_config_validation() -> None:
    with pytest.raises(ValueError):
        HttpClientConfig(max_redirect=-1)
    with pytest.raises(ValueError):
        HttpClientConfig(timeout=0)


def test_fetch_result_helpers() -> None:
    result = FetchResult("http://example.com/", b"abc", {"content-type": "text/plain"}, 200, "utf-8")

    assert result.header("Content-Type") == "text/plain"
    assert result.text() == "abc"
    assert result.with_effective_url("http://example.com/b").effective_url == "http://example.com/b"
    assert result.to_dict()["body_length"] == 3
