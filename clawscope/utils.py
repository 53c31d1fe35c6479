"""
Utility functions for ClawScope
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional, Union

logger = logging.getLogger("clawscope.utils")

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")
WHITESPACE_RUN = re.compile(r"\s+")

SNIPPET_MAX_LEN = 220
ELLIPSIS = "…"


def build_snippet(text: Optional[str], max_len: int = SNIPPET_MAX_LEN) -> str:
    """Collapse whitespace to a single line and cap it at max_len characters"""
    single_line = WHITESPACE_RUN.sub(" ", text or "").strip()
    if len(single_line) <= max_len:
        return single_line
    return single_line[:max_len] + ELLIPSIS


def truncate(text: Optional[str], max_len: int) -> str:
    return (text or "")[:max_len]


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text or "")


def extract_json_payload(output: str) -> Any:
    """Parse the JSON document embedded in CLI output.

    Colour codes are removed and everything before the first '{' or '['
    is dropped (banners, warnings). Raises ValueError when nothing parses.
    """
    clean = strip_ansi(output)
    match = re.search(r"[\[{]", clean)
    payload = clean[match.start():] if match else clean
    return json.loads(payload)


def parse_timestamp(value: Union[str, int, float, None]) -> Optional[datetime]:
    """Parse ISO strings or epoch milliseconds into an aware UTC datetime"""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        text = str(value).strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    except (ValueError, OverflowError, OSError) as e:
        logger.debug(f"Unparseable timestamp {value!r}: {e}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(value: Union[str, int, float, None]) -> Optional[str]:
    """Normalize a timestamp to ISO-8601 UTC with millisecond precision"""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
