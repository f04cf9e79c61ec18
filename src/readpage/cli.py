from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from dotenv import load_dotenv

from .workflows.config_builder import ConfigBuilder, ConfigBuilderConfig
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.logging_utils import configure_logging
from .workflows.reader import MimeTypeExcludedError, Reader, ReaderConfig, UrlNotAllowedError
from .workflows.ssrf_guard import InvalidURLError

load_dotenv()

app = typer.Typer(add_help_option=False, no_args_is_help=False)


def _minimal_help() -> str:
    return """readpage (article extraction CLI)

Usage:
  readpage get <url> [--json] [--config <FILE>] [--content-links <MODE>] [--timeout <S>] [--debug]
  readpage site-config <host> [--dir <DIR>]...
  readpage doctor

Common options:
  --json                 Print the result as JSON.
  --config <FILE>        JSON file with reader options.
  --content-links MODE   preserve, footnotes or remove.
  --timeout <S>          Overall time budget in seconds.
  --debug                Print captured log records to stderr.

Discoverability:
  --help-full     Expanded help + env vars.
  --find <query>  Search commands, flags, env vars.
  --doctor        Run environment diagnostics and exit.
"""


def _help_full() -> str:
    return """readpage CLI

Commands:
  get           Fetch one URL and print its title and article HTML.
  site-config   Print the merged site config for a host as JSON.
  doctor        Print environment and dependency diagnostics.

Exit codes (get):
  0  Content returned (possibly the placeholder for a failed extraction).
  2  URL rejected (invalid, blocked or unsafe) or content type excluded.
  3  Unexpected error.

Important env vars:
  READPAGE_SITE_CONFIG_DIRS  Extra site config directories, searched first.
  READPAGE_TIMEOUT           Overall time budget of one fetch in seconds.
  READPAGE_MAX_REDIRECT      Request budget for redirects and refetches.
  READPAGE_LOG_LEVEL         DEBUG, INFO, WARNING or ERROR.
  READPAGE_LOG_FORMAT        plain or json.

Troubleshooting:
  - PDFs that pymupdf cannot read come back as a download link.
  - Use `readpage site-config <host>` to see which rules apply to a page.
"""


_FIND_INDEX = [
    ("command", "get", "Fetch one URL and extract its article."),
    ("command", "site-config", "Print the merged site config for a host."),
    ("command", "doctor", "Print environment and dependency diagnostics."),
    ("flag", "--json", "Print the result as JSON."),
    ("flag", "--config", "JSON file with reader options."),
    ("flag", "--content-links", "preserve, footnotes or remove links."),
    ("flag", "--timeout", "Overall time budget in seconds."),
    ("flag", "--debug", "Print captured log records to stderr."),
    ("flag", "--dir", "Extra site config directory (site-config)."),
    ("flag", "--help-full", "Expanded help, env vars."),
    ("flag", "--find", "Search commands, flags, env vars."),
    ("flag", "--doctor", "Run environment diagnostics and exit."),
    ("env", "READPAGE_SITE_CONFIG_DIRS", "Extra site config directories."),
    ("env", "READPAGE_TIMEOUT", "Overall time budget of one fetch."),
    ("env", "READPAGE_MAX_REDIRECT", "Request budget for redirects and refetches."),
    ("env", "READPAGE_LOG_LEVEL", "Log level."),
    ("env", "READPAGE_LOG_FORMAT", "plain or json logs."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _load_options(config_path: Optional[Path]) -> Dict[str, Any]:
    if config_path is None:
        return {}
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Unable to read config file {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise typer.BadParameter("Config file must hold a JSON object")
    return data


def _build_reader(
    config_path: Optional[Path],
    content_links: Optional[str],
    timeout: Optional[float],
    debug: bool,
) -> Reader:
    options = _load_options(config_path)
    if content_links is not None:
        options["content_links"] = content_links
    if timeout is not None:
        options["timeout"] = timeout
    if debug:
        options["debug"] = True
        options.setdefault("log_level", "debug")
    try:
        config = ReaderConfig.from_env(options)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return Reader(config)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
) -> None:
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)
    configure_logging()


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("get", add_help_option=True)
def get_url(
    url: str = typer.Argument(..., help="URL to fetch."),
    json_out: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="JSON file with reader options."),
    content_links: Optional[str] = typer.Option(None, "--content-links", help="preserve, footnotes or remove."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall time budget in seconds."),
    debug: bool = typer.Option(False, "--debug", help="Print captured log records to stderr."),
) -> None:
    reader = _build_reader(config_path, content_links, timeout, debug)
    try:
        content = reader.fetch_content(url)
    except (UrlNotAllowedError, InvalidURLError, MimeTypeExcludedError, ValueError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)

    if debug and reader.log_records is not None:
        for message in reader.log_records.messages():
            typer.echo(f"[log] {message}", err=True)

    if json_out:
        sys.stdout.write(content.to_json() + "\n")
    else:
        typer.echo(content.title)
        typer.echo("")
        typer.echo(content.html)
    raise typer.Exit(code=0)


@app.command("site-config", add_help_option=True)
def site_config_cmd(
    host: str = typer.Argument(..., help="Host name, e.g. www.example.com."),
    dirs: Optional[List[Path]] = typer.Option(None, "--dir", help="Extra site config directory (repeatable)."),
) -> None:
    """Print the merged site config for a host as JSON."""
    config = ConfigBuilderConfig()
    if dirs:
        config = ConfigBuilderConfig(site_config=list(dirs) + config.site_config)
    builder = ConfigBuilder(config)
    site_config = builder.build_for_host(host, add_to_cache=False)
    sys.stdout.write(json.dumps(site_config.to_dict(), ensure_ascii=False, indent=2) + "\n")
    raise typer.Exit(code=0)
