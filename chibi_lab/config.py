from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml
from dotenv import load_dotenv

from .image.gemini.adapter import DEFAULT_IMAGE_MODEL, DEFAULT_VALIDATION_MODEL
from .tokens.meter import DEFAULT_NAMESPACE

CONFIG_ENV_VAR = "CHIBI_LAB_CONFIG"
DEFAULT_CONFIG_NAME = "config.yaml"
DEFAULT_DATA_DIR = Path(".chibi_lab")


@dataclass
class StorageConfig:
    database: Path
    assets_dir: Path
    state_file: Path
    namespace: str = DEFAULT_NAMESPACE


@dataclass
class GenerationConfig:
    image_model: str = DEFAULT_IMAGE_MODEL
    validation_model: str = DEFAULT_VALIDATION_MODEL
    similarity: int = 75

    def __post_init__(self) -> None:
        self.similarity = max(0, min(100, int(self.similarity)))


@dataclass
class TokensConfig:
    max_retries: int = 25

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("tokens.max_retries must be at least 1")


@dataclass
class SyncConfig:
    poll_interval: float = 0.5

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("sync.poll_interval must be positive")


@dataclass
class LoggingConfig:
    level: str = "INFO"
    logfile: Path | None = None


@dataclass
class AppConfig:
    storage: StorageConfig
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    tokens: TokensConfig = field(default_factory=TokensConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    path: Path | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, base_dir: Path | None = None) -> "AppConfig":
        base = Path(base_dir) if base_dir is not None else Path.cwd()
        storage_data = _nested_mapping(raw, "storage")
        generation_data = _nested_mapping(raw, "generation")
        tokens_data = _nested_mapping(raw, "tokens")
        sync_data = _nested_mapping(raw, "sync")
        logging_data = _nested_mapping(raw, "logging")

        data_dir = _resolve(base, storage_data.get("data_dir") or DEFAULT_DATA_DIR)
        storage = StorageConfig(
            database=_resolve(base, storage_data.get("database") or data_dir / "records.sqlite"),
            assets_dir=_resolve(base, storage_data.get("assets_dir") or data_dir / "assets"),
            state_file=_resolve(base, storage_data.get("state_file") or data_dir / "state.json"),
            namespace=_optional_str(storage_data.get("namespace")) or DEFAULT_NAMESPACE,
        )
        generation = GenerationConfig(
            image_model=_optional_str(generation_data.get("image_model")) or DEFAULT_IMAGE_MODEL,
            validation_model=_optional_str(generation_data.get("validation_model"))
            or DEFAULT_VALIDATION_MODEL,
            similarity=int(generation_data.get("similarity", 75)),
        )
        tokens = TokensConfig(max_retries=int(tokens_data.get("max_retries", 25)))
        sync = SyncConfig(poll_interval=float(sync_data.get("poll_interval", 0.5)))
        logfile = _optional_path(logging_data.get("logfile"))
        log_config = LoggingConfig(
            level=_optional_str(logging_data.get("level")) or "INFO",
            logfile=_resolve(base, logfile) if logfile is not None else None,
        )
        return cls(
            storage=storage,
            generation=generation,
            tokens=tokens,
            sync=sync,
            logging=log_config,
        )


def load_config(path: Path) -> AppConfig:
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".json", ".jsonc"}:
        data = json.loads(_strip_jsonc(text))
    else:
        data = yaml.safe_load(text)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    config = AppConfig.from_dict(data, base_dir=path.resolve().parent)
    config.path = path
    return config


def resolve_config(path: Path | None = None) -> AppConfig:
    """Load ``path``, ``$CHIBI_LAB_CONFIG`` or ``./config.yaml``; defaults when none exist."""

    load_dotenv()
    if path is not None:
        return load_config(Path(path))
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return load_config(Path(env_path))
    local = Path.cwd() / DEFAULT_CONFIG_NAME
    if local.is_file():
        return load_config(local)
    return AppConfig.from_dict({})


def _strip_jsonc(payload: str) -> str:
    result: list[str] = []
    length = len(payload)
    i = 0
    in_string = False
    escape = False
    while i < length:
        ch = payload[i]
        if in_string:
            result.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            result.append(ch)
            i += 1
            continue

        if ch == "/" and i + 1 < length:
            nxt = payload[i + 1]
            if nxt == "/":
                i += 2
                while i < length and payload[i] not in "\r\n":
                    i += 1
                continue
            if nxt == "*":
                i += 2
                while i < length - 1:
                    if payload[i] == "*" and payload[i + 1] == "/":
                        i += 2
                        break
                    i += 1
                continue

        result.append(ch)
        i += 1
    return "".join(result)


def _resolve(base: Path, value: Any) -> Path:
    candidate = Path(str(value)).expanduser()
    return candidate if candidate.is_absolute() else base / candidate


def _optional_path(value: Any) -> Path | None:
    if value in (None, "", False):
        return None
    return Path(str(value))


def _optional_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _nested_mapping(source: Any, key: str) -> Dict[str, Any]:
    if not isinstance(source, Mapping):
        return {}
    value = source.get(key, {})
    return dict(value) if isinstance(value, Mapping) else {}


__all__ = [
    "AppConfig",
    "GenerationConfig",
    "LoggingConfig",
    "StorageConfig",
    "SyncConfig",
    "TokensConfig",
    "load_config",
    "resolve_config",
]
