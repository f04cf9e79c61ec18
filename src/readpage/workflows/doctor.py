from __future__ import annotations

import importlib
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config_builder import _default_site_config_dirs
from .reader_config import (
    BUNDLED_SITE_CONFIG_DIR,
    ENV_LOG_FORMAT,
    ENV_LOG_LEVEL,
    ENV_MAX_REDIRECT,
    ENV_SITE_CONFIG_DIRS,
    ENV_TIMEOUT,
)


_SECRET_TOKENS = ("key", "token", "secret", "password", "pass", "proxy")
_LOG_FORMATS = ("plain", "json", "structured")
_LOG_LEVEL_NAMES = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _is_secret_name(name: str) -> bool:
    lowered = (name or "").lower()
    return any(token in lowered for token in _SECRET_TOKENS)


def redact_value(value: str, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return "*" * len(raw)
    return f"{raw[:keep]}...{raw[-keep:]}"


def _redacted_env_value(name: str, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return redact_value(value) if _is_secret_name(name) else value


def _env_present(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _check_module(name: str) -> bool:
    try:
        importlib.import_module(name)
    except ImportError:
        return False
    return True


def _check_readable_dir(path: Path) -> bool:
    try:
        return path.is_dir() and os.access(path, os.R_OK | os.X_OK)
    except OSError:
        return False


def collect_environment_warnings() -> List[Dict[str, str]]:
    """Misconfigured ``READPAGE_*`` knobs, as code/message/remedy dicts."""

    warnings: List[Dict[str, str]] = []

    raw_timeout = os.getenv(ENV_TIMEOUT, "").strip()
    if raw_timeout:
        try:
            valid = float(raw_timeout) > 0
        except ValueError:
            valid = False
        if not valid:
            warnings.append(
                {
                    "code": "invalid_timeout",
                    "message": f"{ENV_TIMEOUT}={raw_timeout!r} is not a positive number; no overall deadline is applied.",
                    "remedy": f"Set {ENV_TIMEOUT} to a number of seconds, e.g. 30.",
                }
            )

    raw_redirect = os.getenv(ENV_MAX_REDIRECT, "").strip()
    if raw_redirect:
        try:
            valid = int(raw_redirect) >= 0
        except ValueError:
            valid = False
        if not valid:
            warnings.append(
                {
                    "code": "invalid_max_redirect",
                    "message": f"{ENV_MAX_REDIRECT}={raw_redirect!r} is not a non-negative integer; the default is used.",
                    "remedy": f"Set {ENV_MAX_REDIRECT} to an integer such as 10.",
                }
            )

    raw_format = os.getenv(ENV_LOG_FORMAT, "").strip().lower()
    if raw_format and raw_format not in _LOG_FORMATS:
        warnings.append(
            {
                "code": "invalid_log_format",
                "message": f"{ENV_LOG_FORMAT}={raw_format!r} is unknown; plain text logs are used.",
                "remedy": f"Set {ENV_LOG_FORMAT} to plain or json.",
            }
        )

    raw_level = os.getenv(ENV_LOG_LEVEL, "").strip().upper()
    if raw_level and raw_level not in _LOG_LEVEL_NAMES:
        warnings.append(
            {
                "code": "invalid_log_level",
                "message": f"{ENV_LOG_LEVEL}={raw_level!r} is unknown; INFO is used.",
                "remedy": f"Set {ENV_LOG_LEVEL} to DEBUG, INFO, WARNING or ERROR.",
            }
        )

    extra_dirs = [p for p in os.getenv(ENV_SITE_CONFIG_DIRS, "").split(os.pathsep) if p.strip()]
    for raw_dir in extra_dirs:
        path = Path(raw_dir.strip()).expanduser()
        if not _check_readable_dir(path):
            warnings.append(
                {
                    "code": "site_config_dir_missing",
                    "message": f"Site config directory {path} does not exist or is not readable.",
                    "remedy": f"Create the directory or remove it from {ENV_SITE_CONFIG_DIRS}.",
                }
            )

    return warnings


def build_doctor_report(*, site_config_dirs: Optional[Sequence[Path]] = None) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = _redacted_env_value(name, value)
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    cleaner_ok = _check_module("lxml.html.clean")
    add_check(
        "lxml_html_clean",
        cleaner_ok,
        detail="HTML sanitizer available" if cleaner_ok else "HTML sanitizer unavailable",
        remedy="Install lxml[html_clean] (or the lxml_html_clean package).",
        level="warn",
    )

    readability_ok = _check_module("readability")
    add_check(
        "readability",
        readability_ok,
        detail="Readability fallback enabled" if readability_ok else "Readability fallback disabled",
        remedy="Install readability-lxml.",
        level="warn",
    )

    html5lib_ok = _check_module("html5lib")
    add_check(
        "html5lib",
        html5lib_ok,
        detail="html5lib parser and tidy pass available" if html5lib_ok else "html5lib parser unavailable",
        remedy="Install html5lib.",
        level="warn",
    )

    pdf_ok = _check_module("pymupdf")
    add_check(
        "pymupdf",
        pdf_ok,
        detail="PDF text extraction enabled" if pdf_ok else "PDF links fall back to a download link",
        remedy="Install pymupdf.",
        level="info",
    )

    dirs = list(site_config_dirs) if site_config_dirs is not None else _default_site_config_dirs()
    for directory in dirs:
        readable = _check_readable_dir(directory)
        count = len(list(directory.glob("*.txt"))) if readable else 0
        bundled = directory == BUNDLED_SITE_CONFIG_DIR
        add_check(
            "site_config_dir",
            readable,
            detail=f"{directory} ({count} files{', bundled' if bundled else ''})",
            remedy=f"Create the directory or fix {ENV_SITE_CONFIG_DIRS}.",
            level="warn" if bundled else "info",
        )

    for name in (ENV_TIMEOUT, ENV_MAX_REDIRECT, ENV_LOG_LEVEL, ENV_LOG_FORMAT):
        value = os.getenv(name)
        add_check(name, bool(value), detail="set" if value else "using default", level="info", value=value)

    proxy = _env_present("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy")
    add_check(
        "HTTPS_PROXY",
        bool(proxy),
        detail="Requests go through a proxy" if proxy else "No proxy configured",
        level="info",
        value=proxy,
    )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("readpage doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("Values are redacted where applicable.")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        value = check.get("value")
        label = f"{name}: {status}"
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{level}] {label}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            code = warning.get("code", "warning")
            message = warning.get("message", "")
            remedy = warning.get("remedy", "")
            lines.append(f"- {code}: {message}")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
