"""Application settings and user preferences."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel

from .services.completion import OPENAI_CHAT_COMPLETIONS_URL

logger = structlog.get_logger()

DEFAULT_HOME = Path("~/.ai_chat")
API_KEY_PREFERENCE = "openaiApiKey"


class Settings(BaseModel):
    """Process-wide configuration, fixed at startup."""

    database_path: Path = DEFAULT_HOME / "chat.sqlite3"
    in_memory: bool = False
    preferences_path: Path = DEFAULT_HOME / "preferences.json"
    endpoint: str = OPENAI_CHAT_COMPLETIONS_URL
    model: str = "gpt-4o-mini-2024-07-18"
    system_prompt: Optional[str] = "You are a helpful AI assistant."
    temperature: float = 0.7
    max_tokens: int = 1000
    request_timeout: float = 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings, overriding defaults with AI_CHAT_* variables."""
        overrides: Dict[str, Any] = {}
        for field in cls.model_fields:
            value = os.getenv(f"AI_CHAT_{field.upper()}")
            if value is not None:
                overrides[field] = value
        return cls.model_validate(overrides)


class Preferences:
    """User preferences persisted as a small JSON file.

    The API key is read fresh on every access so a key saved from the
    settings screen applies to the next message without a restart.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path).expanduser() if path is not None else None
        self._values: Dict[str, Any] = {}

    def _load(self) -> Dict[str, Any]:
        if self.path is None:
            return dict(self._values)
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("preferences_unreadable", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, values: Dict[str, Any]) -> None:
        if self.path is None:
            self._values = values
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(values, indent=2), encoding="utf-8")

    @property
    def api_key(self) -> str:
        """The stored key, then OPENAI_API_KEY, else an empty string."""
        value = self._load().get(API_KEY_PREFERENCE) or os.getenv("OPENAI_API_KEY", "")
        return str(value).strip()

    def set_api_key(self, value: str) -> None:
        values = self._load()
        value = value.strip()
        if value:
            values[API_KEY_PREFERENCE] = value
        else:
            values.pop(API_KEY_PREFERENCE, None)
        self._save(values)
        logger.info("api_key_updated", has_api_key=bool(value))
