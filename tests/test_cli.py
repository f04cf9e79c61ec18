import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from readpage import cli
from readpage.workflows.reader import Content, ContentLinks, UrlNotAllowedError

FIXTURES = Path(__file__).parent / "fixtures" / "site_config"

runner = CliRunner()


class FakeReader:
    instances = []

    def __init__(self, config):
        self.config = config
        self.log_records = None
        FakeReader.instances.append(self)

    def fetch_content(self, url):
        if "blocked" in url:
            raise UrlNotAllowedError(f'Url "{url}" is not allowed to be parsed.')
        if "explode" in url:
            raise RuntimeError("boom")
        return Content(status=200, html="<p>body</p>", title="Title", url=url, summary="body")


@pytest.fixture(autouse=True)
def _quiet(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli, "Reader", FakeReader)
    FakeReader.instances = []


def test_no_arguments_prints_minimal_help():
    result = runner.invoke(cli.app, [])
    assert result.exit_code == 0
    assert "readpage get <url>" in result.stdout


def test_help_full_describes_pdf_fallback():
    result = runner.invoke(cli.app, ["--help-full"])
    assert result.exit_code == 0
    assert "PDFs that pymupdf cannot read come back as a download link." in result.stdout


def test_find_searches_the_index():
    result = runner.invoke(cli.app, ["--find", "timeout"])
    assert result.exit_code == 0
    assert "flag --timeout" in result.stdout
    assert "env READPAGE_TIMEOUT" in result.stdout


def test_get_prints_title_and_html():
    result = runner.invoke(cli.app, ["get", "http://example.com/a"])
    assert result.exit_code == 0
    assert result.stdout.splitlines()[:3] == ["Title", "", "<p>body</p>"]


def test_get_json_output():
    result = runner.invoke(cli.app, ["get", "http://example.com/a", "--json"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["title"] == "Title"
    assert data["url"] == "http://example.com/a"
    assert data["native_ad"] is False


def test_get_passes_options_to_reader(tmp_path):
    config_file = tmp_path / "reader.json"
    config_file.write_text(json.dumps({"content_links": "footnotes", "blocked_urls": ["ads."]}), encoding="utf-8")

    result = runner.invoke(
        cli.app,
        ["get", "http://example.com/a", "--config", str(config_file), "--content-links", "remove", "--timeout", "7"],
    )

    assert result.exit_code == 0
    config = FakeReader.instances[0].config
    assert config.content_links is ContentLinks.REMOVE
    assert config.timeout == 7.0
    assert config.blocked_urls == ["ads."]


def test_get_rejects_invalid_options():
    result = runner.invoke(cli.app, ["get", "http://example.com/a", "--content-links", "sideways"])
    assert result.exit_code == 2
    assert FakeReader.instances == []


def test_get_exit_codes_for_errors():
    assert runner.invoke(cli.app, ["get", "http://blocked.example.com/"]).exit_code == 2
    assert runner.invoke(cli.app, ["get", "http://explode.example.com/"]).exit_code == 3


def test_site_config_prints_merged_rules():
    result = runner.invoke(cli.app, ["site-config", "www.example.com", "--dir", str(FIXTURES)])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["body"] == ["//article"]
    assert "global-strip" in data["strip_id_or_class"]


def test_doctor_exit_code_follows_report(monkeypatch):
    monkeypatch.setattr(cli, "build_doctor_report", lambda: {"generated_at": "now", "ok": False, "checks": []})
    result = runner.invoke(cli.app, ["doctor"])
    assert result.exit_code == 2
    assert "readpage doctor" in result.stdout
