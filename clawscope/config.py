"""
Configuration for ClawScope

All settings come from the environment; see ClawScopeConfig.from_env.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path


def default_db_path() -> Path:
    """Same default as the memory-offline-sqlite plugin"""
    return Path.home() / ".openclaw" / "memory" / "offline.sqlite"


def _first_env(*names: str, default: str) -> str:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


@dataclass
class ClawScopeConfig:
    db_path: Path = field(default_factory=default_db_path)
    plugin_base_url: str = "http://127.0.0.1:3000"
    host: str = "0.0.0.0"
    port: int = 3101
    settings_path: Path = field(default_factory=lambda: Path.cwd() / "clawscope.settings.json")
    openclaw_bin: str = "openclaw"

    # Embedding backend, must match the memory-offline-sqlite plugin
    ollama_base_url: str = "http://127.0.0.1:11434"
    embedding_model: str = "bge-m3"
    ollama_timeout: float = 3.0
    semantic_weight: float = 0.7

    default_limit: int = 20
    default_candidates: int = 80

    plugin_timeout: float = 4.0
    cli_timeout: float = 12.0
    cli_log_timeout: float = 15.0
    sessions_ttl: float = 15 * 60

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ClawScopeConfig":
        return cls(
            db_path=Path(_first_env("CLAWSCOPE_DB_PATH", "OPENCLAW_MEMORY_DB",
                                    default=str(default_db_path()))).expanduser(),
            plugin_base_url=_first_env("CLAWSCOPE_PLUGIN_BASE_URL", "OPENCLAW_HTTP_BASE",
                                       "OPENCLAW_GATEWAY_URL", default="http://127.0.0.1:3000"),
            host=os.getenv("CLAWSCOPE_HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", 3101)),
            settings_path=Path(os.getenv("CLAWSCOPE_SETTINGS_PATH",
                                         str(Path.cwd() / "clawscope.settings.json"))).expanduser(),
            openclaw_bin=os.getenv("OPENCLAW_BIN", "openclaw"),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434"),
            embedding_model=os.getenv("CLAWSCOPE_EMBEDDING_MODEL", "bge-m3"),
            ollama_timeout=float(os.getenv("CLAWSCOPE_OLLAMA_TIMEOUT", 3.0)),
            semantic_weight=float(os.getenv("CLAWSCOPE_SEMANTIC_WEIGHT", 0.7)),
            log_level=os.getenv("CLAWSCOPE_LOG_LEVEL", "INFO").upper(),
        )


def setup_logging(level: str = "INFO"):
    """Configure stderr logging; stdout is reserved for the MCP transport"""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    )
    for logger_name in ["httpx", "httpcore", "mcp"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
