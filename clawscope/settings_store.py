"""
Local ClawScope settings persisted as one JSON file

The file is replaced wholesale on every save; there is no partial merge.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger("clawscope.settings")


class LocalSettings(BaseModel):
    """Typed view over the settings keys the server itself reads"""
    model_config = ConfigDict(extra="allow")

    mode: Optional[str] = Field(default=None, description="Default search mode: lexical/semantic/hybrid")
    topK: Optional[int] = Field(default=None, ge=1, le=500, description="Default result count")
    extractionMode: Optional[str] = Field(default=None, description="Fact extraction mode: simple/ner/hybrid")


class SettingsStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        """Return the saved settings, or {} when the file is absent or unreadable"""
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw or "{}")
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: Any):
        if not isinstance(data, dict):
            raise ValueError("Settings payload must be a JSON object")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        logger.info(f"Saved settings to {self.path}")

    def typed(self) -> LocalSettings:
        """Saved settings as LocalSettings; invalid known keys fall back to defaults"""
        data = self.load()
        try:
            return LocalSettings(**data)
        except ValidationError as e:
            logger.warning(f"Invalid settings in {self.path}, using defaults: {e.error_count()} errors")
            return LocalSettings()
