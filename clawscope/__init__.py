"""
ClawScope - dashboard and MCP tools over OpenClaw memory and activity
"""

__version__ = "0.1.0"

from .models import SearchItem, TimelineEvent, ScheduledTask, Fact
from .cache import LRUCache, TTLCache
from .config import ClawScopeConfig

__all__ = [
    'SearchItem',
    'TimelineEvent',
    'ScheduledTask',
    'Fact',
    'LRUCache',
    'TTLCache',
    'ClawScopeConfig',
]
