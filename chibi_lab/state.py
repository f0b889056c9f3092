"""Device-local key/value state persisted as a single JSON document."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

LIBRARY_KEY = "library-key"
BASE_CHARACTER_IMAGE = "baseCharacterImage"
BASE_CHARACTER_NAME = "baseCharacterName"
EXPRESSION_HISTORY = "expressionHistory"
USER_TOKEN = "user-token"
SAVE_BY_DEFAULT = "saveByDefault"

DEFAULT_BASE_NAME = "Base Character"


class LocalState:
    """Small persistent mapping, the device-side counterpart of the record store.

    With ``path=None`` nothing is written to disk.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if self.path is None or not self.path.is_file():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Error reading local state %s: %s", self.path, exc)
            return {}
        if not isinstance(payload, dict):
            logger.warning("Ignoring local state %s: top level is not an object", self.path)
            return {}
        return payload

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    # ------------------------------------------------------------------
    # Typed accessors
    @property
    def library_key(self) -> Optional[str]:
        value = self.get(LIBRARY_KEY)
        return value if isinstance(value, str) and value else None

    @property
    def token(self) -> Optional[str]:
        value = self.get(USER_TOKEN)
        return value if isinstance(value, str) and value else None

    @property
    def save_by_default(self) -> bool:
        return bool(self.get(SAVE_BY_DEFAULT, True))


__all__ = [
    "BASE_CHARACTER_IMAGE",
    "BASE_CHARACTER_NAME",
    "DEFAULT_BASE_NAME",
    "EXPRESSION_HISTORY",
    "LIBRARY_KEY",
    "LocalState",
    "SAVE_BY_DEFAULT",
    "USER_TOKEN",
]
