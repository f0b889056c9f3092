"""Chibi character and expression generator with a shared, metered library."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - type checking helper
    from .config import AppConfig, load_config
    from .orchestrator import GenerationOrchestrator, GenerationOutcome
    from .session import Session

__all__ = ["AppConfig", "GenerationOrchestrator", "GenerationOutcome", "Session", "load_config"]

_EXPORTS = {
    "AppConfig": ".config",
    "load_config": ".config",
    "GenerationOrchestrator": ".orchestrator",
    "GenerationOutcome": ".orchestrator",
    "Session": ".session",
}


def __getattr__(name: str) -> Any:  # pragma: no cover - dispatch helper
    if name not in _EXPORTS:
        raise AttributeError(name)
    value = getattr(import_module(_EXPORTS[name], __name__), name)
    globals()[name] = value
    return value
