"""Free-text sanitization applied to request fields before validation."""

from __future__ import annotations

import html
import re

MAX_INPUT_LENGTH = 10_000
MAX_DESCRIPTION_LENGTH = 50_000
MAX_ICON_LENGTH = 50

_SCRIPT_RE = re.compile(r"(?is)<script[^>]*>.*?</script>")
_TAG_RE = re.compile(r"<[^>]*>")
_SQL_KEYWORD_RE = re.compile(
    r"(?i)\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|UNION|OR|AND|EXEC|EXECUTE)\b"
)
_WHITESPACE_RE = re.compile(r"\s+")
_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
_ICON_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def _mask_sql_keywords(value: str) -> str:
    return _SQL_KEYWORD_RE.sub(lambda m: "*" * len(m.group(0)), value)


def sanitize_input(value: str) -> str:
    value = html.escape(value.strip())
    value = _SCRIPT_RE.sub("", value)
    value = _TAG_RE.sub("", value)
    value = _mask_sql_keywords(value)
    value = value.replace("\x00", "").replace("\r", "")
    return value[:MAX_INPUT_LENGTH]


def sanitize_project_name(value: str) -> str:
    value = sanitize_input(value).strip(". ")
    return _WHITESPACE_RE.sub(" ", value)


def sanitize_task_title(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", sanitize_input(value))


def sanitize_description(value: str) -> str:
    """Like sanitize_input but keeps line structure and allows longer text."""
    value = html.escape(value.strip())
    value = _SCRIPT_RE.sub("", value)
    value = _mask_sql_keywords(value)
    value = value.replace("\x00", "")
    return value[:MAX_DESCRIPTION_LENGTH]


def validate_color(value: str) -> bool:
    return bool(_COLOR_RE.match(value))


def validate_icon(value: str) -> bool:
    return 0 < len(value) <= MAX_ICON_LENGTH and bool(_ICON_RE.match(value))
