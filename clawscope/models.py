"""
Data models for ClawScope
"""

from dataclasses import dataclass, asdict, field
from typing import Any, List, Dict, Optional


SEARCH_KINDS = ("memory", "doc", "convo", "task", "event")
EVENT_KINDS = ("tool", "session", "cron", "alert", "memory")
TASK_KINDS = ("cron_job", "reminder", "heartbeat")


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unset optional fields so the JSON stays small"""
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class SearchItem:
    """Normalized search result"""
    id: str
    snippet: str
    score: float
    kind: str = "memory"
    source: Optional[str] = None
    title: Optional[str] = None
    score_fts: Optional[float] = None
    score_embed: Optional[float] = None
    created_at: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        self.id = str(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))


@dataclass
class TimelineEvent:
    """Normalized activity, session or cron occurrence"""
    id: str
    ts: str
    kind: str  # tool | session | cron | alert | memory
    summary: str
    level: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {self.kind}")
        self.id = str(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))


@dataclass
class ScheduledTask:
    """Cron job, reminder or heartbeat descriptor"""
    id: str
    kind: str  # cron_job | reminder | heartbeat
    name: str
    nextRunAt: Optional[str]
    schedule: str
    active: bool
    source: str
    owner: Optional[str] = None
    description: Optional[str] = None
    lastRunAt: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in TASK_KINDS:
            raise ValueError(f"Unknown task kind: {self.kind}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # nextRunAt is always present, null means one-shot already executed
        next_run = data.pop("nextRunAt")
        data = _compact(data)
        data["nextRunAt"] = next_run
        return data


@dataclass
class Fact:
    """Subject-predicate-object triple from the engine's fact table"""
    subject: str
    predicate: str
    object: str
    confidence: float
    id: Optional[int] = None
    source_item_id: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))


def serialize_list(items: List[Any]) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in items]
