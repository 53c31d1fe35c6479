"""
Activity log classification for ClawScope

Turns OpenClaw gateway log records (JSON lines from `openclaw logs --json` or
the companion plugin) into TimelineEvents. Rules are tried in order and the
first one that matches wins; records matching none are dropped.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import EVENT_KINDS, TimelineEvent
from .utils import strip_ansi, to_iso, truncate

logger = logging.getLogger("clawscope.activity")

TOOL_NAME = re.compile(r"tool=(\w+)")
TOOL_ACTION = re.compile(r"tool (start|end)")
SESSION_STATE = re.compile(r"new=(\w+)")

# Emitted on every CLI call when the config is newer than the binary
BENIGN_ALERT = "Config was last written by a newer OpenClaw"

MEMORY_SUMMARY_LEN = 80
CRON_SUMMARY_LEN = 60
ALERT_SUMMARY_LEN = 80
STRUCTURED_SUMMARY_LEN = 150


def _event(record: Dict[str, Any], suffix: str, kind: str, summary: str, level: str) -> TimelineEvent:
    time = record.get("time") or ""
    return TimelineEvent(
        id=f"{time}-{suffix}",
        ts=to_iso(time) or str(time),
        kind=kind,
        summary=summary,
        level=level,
    )


def _classify_tool(record, subsystem, message, level) -> Optional[TimelineEvent]:
    if subsystem != "agent/embedded" or "tool " not in message:
        return None
    name = TOOL_NAME.search(message)
    action = TOOL_ACTION.search(message)
    if not (name and action):
        return None
    marker = "▶" if action.group(1) == "start" else "✓"
    return _event(record, name.group(1), "tool", f"{marker} {name.group(1)}", level)


def _classify_session(record, subsystem, message, level) -> Optional[TimelineEvent]:
    if subsystem != "diagnostic" or "session state" not in message:
        return None
    state = SESSION_STATE.search(message)
    if not state:
        return None
    return _event(record, "session", "session", f"Session {state.group(1)}", level)


def _classify_memory(record, subsystem, message, level) -> Optional[TimelineEvent]:
    if subsystem == "memory" or "memory" in message or "Memory" in message:
        return _event(record, "memory", "memory", truncate(message, MEMORY_SUMMARY_LEN), level)
    return None


def _classify_cron(record, subsystem, message, level) -> Optional[TimelineEvent]:
    if subsystem == "cron" or "cron" in message:
        return _event(record, "cron", "cron", truncate(message, CRON_SUMMARY_LEN), level)
    return None


def _classify_alert(record, subsystem, message, level) -> Optional[TimelineEvent]:
    if level in ("warn", "error") and BENIGN_ALERT not in message:
        return _event(record, "alert", "alert", truncate(message, ALERT_SUMMARY_LEN), level)
    return None


RULES = [
    _classify_tool,
    _classify_session,
    _classify_memory,
    _classify_cron,
    _classify_alert,
]


def classify_record(record: Dict[str, Any]) -> Optional[TimelineEvent]:
    """Classify one parsed log record, or return None when it is not interesting"""
    record_type = record.get("type")
    if record_type and record_type != "log":
        return None

    subsystem = str(record.get("subsystem") or "")
    message = str(record.get("message") or "")
    level = str(record.get("level") or "debug")

    for rule in RULES:
        event = rule(record, subsystem, message, level)
        if event is not None:
            return event
    return None


def classify_line(line: str) -> Optional[TimelineEvent]:
    """Classify one raw JSON log line; malformed lines are skipped"""
    text = strip_ansi(line).strip()
    if not text.startswith("{"):
        return None
    try:
        record = json.loads(text)
    except ValueError:
        return None
    if not isinstance(record, dict):
        return None
    return classify_record(record)


def classify_lines(lines: Iterable[Union[str, Dict[str, Any]]]) -> List[TimelineEvent]:
    """Classify a batch of log lines or already parsed records, keeping input order"""
    events = []
    for line in lines:
        if isinstance(line, dict):
            event = classify_record(line)
        else:
            event = classify_line(str(line))
        if event is not None:
            events.append(event)
    return events


def is_structured_event(data: Any) -> bool:
    """True for records already shaped like a TimelineEvent (companion plugin output)"""
    return (
        isinstance(data, dict)
        and data.get("kind") in EVENT_KINDS
        and bool(data.get("id"))
        and bool(data.get("ts"))
        and "summary" in data
    )


def normalize_structured_event(data: Dict[str, Any]) -> TimelineEvent:
    return TimelineEvent(
        id=str(data["id"]),
        ts=to_iso(data["ts"]) or str(data["ts"]),
        kind=data["kind"],
        summary=truncate(str(data.get("summary") or ""), STRUCTURED_SUMMARY_LEN),
        level=data.get("level"),
        details=data.get("details"),
    )


def unpack_activity_payload(data: Any) -> List[Any]:
    """Accept a bare list or an object with `lines` / `logs` / `events`"""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("lines", "logs", "events"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


def normalize_activity(entries: Iterable[Any]) -> List[TimelineEvent]:
    """Structured events pass through; everything else goes through the classifier"""
    events = []
    for entry in entries:
        if is_structured_event(entry):
            try:
                events.append(normalize_structured_event(entry))
            except (KeyError, ValueError) as e:
                logger.debug(f"Skipping malformed activity event: {e}")
            continue
        event = classify_record(entry) if isinstance(entry, dict) else classify_line(str(entry))
        if event is not None:
            events.append(event)
    return events
