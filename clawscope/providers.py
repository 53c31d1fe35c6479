"""
Session, scheduled-task and activity providers for ClawScope

Each provider walks an ordered list of fetch strategies (companion plugin over
HTTP, then the openclaw CLI) and keeps the first success. These panels are
best effort: when every strategy fails the provider logs and returns [].
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from .activity import classify_lines, normalize_activity, unpack_activity_payload
from .cache import TTLCache
from .config import ClawScopeConfig
from .models import ScheduledTask, TimelineEvent
from .utils import extract_json_payload, strip_ansi, to_iso

logger = logging.getLogger("clawscope.providers")


class UpstreamError(Exception):
    """A fetch strategy could not produce data"""


def format_schedule(schedule: Any) -> str:
    """Render a cron job schedule descriptor as a short human string"""
    if not isinstance(schedule, dict):
        return "unknown"
    kind = schedule.get("kind")
    if kind == "cron":
        return schedule.get("expr") or "cron"
    if kind == "every":
        minutes = round((schedule.get("everyMs") or 0) / 60000)
        return f"every {minutes}min" if minutes else "every"
    if kind == "at":
        return f"once at {schedule['at']}" if schedule.get("at") else "once"
    return "unknown"


# ===== FETCH STRATEGIES =====

class PluginStrategy:
    """GET a JSON document from the companion plugin"""

    name = "plugin"

    def __init__(self, base_url: str, path: str, timeout: float = 4.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = base_url.rstrip("/") + path
        self.timeout = timeout
        self._transport = transport

    async def fetch(self) -> Any:
        try:
            # httpx timeouts apply per phase; wait_for bounds the whole request
            return await asyncio.wait_for(self._get(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamError(f"plugin {self.url}: timed out after {self.timeout}s") from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"plugin {self.url}: {e}") from e

    async def _get(self) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.url, headers={"Accept": "application/json"})
            response.raise_for_status()
            return response.json()


class CliStrategy:
    """Run an openclaw subcommand and parse its JSON output"""

    name = "cli"

    def __init__(self, args: Sequence[str], binary: str = "openclaw", timeout: float = 12.0,
                 json_lines: bool = False):
        self.args = list(args)
        self.binary = binary
        self.timeout = timeout
        self.json_lines = json_lines

    async def run(self) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *self.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise UpstreamError(f"cannot run {self.binary}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise UpstreamError(f"{self.command} timed out after {self.timeout}s") from e

        output = stdout.decode("utf-8", errors="replace")
        # A non-zero exit still counts when stdout carries data (warnings on stderr)
        if proc.returncode != 0 and not output.strip():
            message = stderr.decode("utf-8", errors="replace").strip()
            raise UpstreamError(f"{self.command} exited with {proc.returncode}: {message}")
        return output

    async def fetch(self) -> Any:
        output = await self.run()
        if self.json_lines:
            return [line for line in strip_ansi(output).splitlines() if line.strip()]
        try:
            return extract_json_payload(output)
        except ValueError as e:
            raise UpstreamError(f"{self.command} returned invalid JSON: {e}") from e

    @property
    def command(self) -> str:
        return " ".join([self.binary] + self.args)


async def fetch_first(strategies: Sequence[Any], what: str) -> Any:
    """Try each strategy in order; raise UpstreamError when all of them fail"""
    errors = []
    for strategy in strategies:
        try:
            data = await strategy.fetch()
        except UpstreamError as e:
            logger.debug(f"{what}: {strategy.name} strategy failed: {e}")
            errors.append(str(e))
            continue
        logger.debug(f"{what}: served by {strategy.name} strategy")
        return data
    raise UpstreamError(f"{what}: all sources failed ({'; '.join(errors)})")


# ===== PROVIDERS =====

def _unwrap(data: Any, key: str) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    return []


class SessionProvider:
    """Session list with a single-slot TTL cache"""

    def __init__(self, strategies: Sequence[Any], cache: TTLCache):
        self.strategies = list(strategies)
        self.cache = cache

    async def list_sessions(self) -> List[Dict[str, Any]]:
        cached = self.cache.get()
        if cached is not None:
            return cached
        try:
            data = await fetch_first(self.strategies, "sessions")
        except UpstreamError as e:
            logger.warning(str(e))
            return []
        sessions = [s for s in _unwrap(data, "sessions") if isinstance(s, dict)]
        self.cache.set(sessions)
        return sessions


def task_kind(job: Dict[str, Any]) -> str:
    schedule = job.get("schedule") if isinstance(job.get("schedule"), dict) else {}
    name = str(job.get("name") or "").lower()
    if job.get("kind") == "heartbeat" or "heartbeat" in name:
        return "heartbeat"
    if job.get("kind") == "reminder" or schedule.get("kind") == "at":
        return "reminder"
    return "cron_job"


def normalize_task(job: Dict[str, Any]) -> ScheduledTask:
    state = job.get("state") if isinstance(job.get("state"), dict) else {}
    return ScheduledTask(
        id=str(job.get("id") or job.get("name")),
        kind=task_kind(job),
        name=job.get("name") or str(job.get("id")),
        nextRunAt=to_iso(job.get("nextRunAt") or state.get("nextRunAtMs")),
        schedule=format_schedule(job.get("schedule")),
        active=job.get("enabled") is not False,
        source="cron",
        owner=job.get("agentId") or job.get("owner"),
        description=job.get("description") or job.get("payloadSummary"),
        lastRunAt=to_iso(state.get("lastRunAtMs")),
        details=job,
    )


class TaskProvider:
    def __init__(self, strategies: Sequence[Any]):
        self.strategies = list(strategies)

    async def list_tasks(self) -> List[ScheduledTask]:
        try:
            data = await fetch_first(self.strategies, "tasks")
        except UpstreamError as e:
            logger.warning(str(e))
            return []

        tasks = []
        for job in _unwrap(data, "jobs"):
            if not isinstance(job, dict) or not (job.get("id") or job.get("name")):
                continue
            tasks.append(normalize_task(job))
        return tasks


class ActivityProvider:
    """Recent activity: structured plugin events, or classified CLI log lines

    cli_for_limit, when given, builds the CLI strategy for an explicit
    log window so callers can ask for more (or fewer) lines than the default.
    """

    def __init__(self, plugin: Optional[Any], cli: Optional[CliStrategy],
                 cli_for_limit: Optional[Callable[[int], Any]] = None):
        self.plugin = plugin
        self.cli = cli
        self.cli_for_limit = cli_for_limit

    async def list_activity(self, limit: Optional[int] = None) -> List[TimelineEvent]:
        cli = self.cli
        if limit is not None and self.cli_for_limit is not None:
            cli = self.cli_for_limit(limit)

        if self.plugin is not None:
            try:
                entries = unpack_activity_payload(await self.plugin.fetch())
            except UpstreamError as e:
                logger.debug(f"activity: plugin strategy failed: {e}")
                entries = []
            if entries:
                return normalize_activity(entries)

        if cli is not None:
            try:
                return classify_lines(await cli.fetch())
            except UpstreamError as e:
                logger.warning(f"activity: all sources failed ({e})")
        return []


def build_providers(config: ClawScopeConfig, session_cache: TTLCache,
                    transport: Optional[httpx.AsyncBaseTransport] = None,
                    activity_limit: int = 100) -> Dict[str, Any]:
    """Wire the default plugin-then-CLI strategies for every provider"""
    base = config.plugin_base_url
    binary = config.openclaw_bin

    def plugin(path: str) -> PluginStrategy:
        return PluginStrategy(base, path, timeout=config.plugin_timeout, transport=transport)

    def activity(cli_timeout: float) -> ActivityProvider:
        def logs(limit: int) -> CliStrategy:
            return CliStrategy(["logs", "--json", "--limit", str(limit)], binary, cli_timeout, json_lines=True)

        return ActivityProvider(
            plugin(f"/clawscope/activity?limit={activity_limit * 2}"),
            logs(activity_limit),
            cli_for_limit=logs,
        )

    return {
        "sessions": SessionProvider(
            [plugin("/clawscope/sessions"),
             CliStrategy(["sessions", "--json"], binary, config.cli_timeout)],
            session_cache,
        ),
        "tasks": TaskProvider(
            [plugin("/clawscope/cron?includeDisabled=true"),
             CliStrategy(["cron", "list", "--json"], binary, config.cli_timeout)],
        ),
        "activity": activity(config.cli_timeout),
        # Timeline pulls a larger log window, so the CLI gets more time
        "timeline_activity": activity(config.cli_log_timeout),
    }
