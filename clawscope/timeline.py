"""
Timeline aggregation for ClawScope

Sessions, cron runs and activity events are merged into one feed keyed by
event id. Later sources overwrite earlier ones with the same id.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .activity import STRUCTURED_SUMMARY_LEN
from .models import ScheduledTask, TimelineEvent
from .utils import parse_timestamp, to_iso, truncate, utc_now

logger = logging.getLogger("clawscope.timeline")

DEFAULT_WINDOW = timedelta(days=7)
DEFAULT_LIMIT = 100


def default_since() -> datetime:
    return utc_now() - DEFAULT_WINDOW


def session_events(sessions: Iterable[Dict[str, Any]]) -> List[TimelineEvent]:
    """One event per session that carries an id and an update time"""
    events = []
    for session in sessions:
        event_id = session.get("sessionId") or session.get("key")
        ts = to_iso(session.get("updatedAt"))
        if not event_id or not ts:
            continue
        events.append(TimelineEvent(
            id=event_id,
            ts=ts,
            kind="session",
            summary=truncate(str(session.get("displayName") or session.get("key") or "Session activity"),
                             STRUCTURED_SUMMARY_LEN),
            details=session,
        ))
    return events


def cron_events(tasks: Iterable[ScheduledTask]) -> List[TimelineEvent]:
    """Last run of each scheduled task that has run at least once"""
    return [
        TimelineEvent(
            id=task.id,
            ts=task.lastRunAt,
            kind="cron",
            summary=truncate(task.name or "Scheduled task", STRUCTURED_SUMMARY_LEN),
            details=task.details or None,
        )
        for task in tasks
        if task.lastRunAt
    ]


def merge_events(*sources: Iterable[TimelineEvent]) -> List[TimelineEvent]:
    """Key events by id in source order; the last write for an id wins"""
    merged: Dict[str, TimelineEvent] = {}
    for source in sources:
        for event in source:
            merged[event.id] = event
    return list(merged.values())


def build_timeline(sessions: Iterable[Dict[str, Any]], tasks: Iterable[ScheduledTask],
                   activity: Iterable[TimelineEvent], since: Optional[datetime] = None,
                   limit: int = DEFAULT_LIMIT) -> List[TimelineEvent]:
    since = since or default_since()
    merged = merge_events(session_events(sessions), cron_events(tasks), activity)

    dated = []
    for event in merged:
        ts = parse_timestamp(event.ts)
        if ts is None:
            logger.debug(f"Dropping timeline event {event.id} with bad timestamp {event.ts!r}")
            continue
        if ts >= since:
            dated.append((ts, event))

    dated.sort(key=lambda pair: pair[0], reverse=True)
    return [event for _, event in dated[:max(limit, 0)]]
