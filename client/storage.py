"""
Client-side state storage.

PersistentStore survives restarts (a JSON file); SessionStore lives only as
long as the process. Both expose the same small key/value interface.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog

from client.config import config as client_config

logger = structlog.get_logger(__name__)

TOKEN_KEY = "authToken"
VIEW_MODE_KEY = "showType"
SEARCH_KEY = "search"


class SessionStore:
    """In-memory key/value store scoped to the running session."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class PersistentStore(SessionStore):
    """Key/value store written through to a JSON file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        super().__init__()
        self.path = Path(path).expanduser() if path else None
        self._load()

    @classmethod
    def from_config(cls) -> "PersistentStore":
        """Store backed by the configured state file."""
        return cls(client_config.get_state_file_path())

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable state file", path=str(self.path), error=str(e))
            return
        if isinstance(data, dict):
            self._data.update(data)

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data), encoding="utf-8")
        tmp_path.replace(self.path)

    def set(self, key: str, value: Any) -> None:
        super().set(key, value)
        self._save()

    def remove(self, key: str) -> None:
        if key in self._data:
            super().remove(key)
            self._save()

    def clear(self) -> None:
        super().clear()
        self._save()
