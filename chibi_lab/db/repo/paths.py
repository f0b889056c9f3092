"""Helpers for mapping a JSON tree onto flat ``path -> leaf`` rows."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Sequence

from .interfaces import SERVER_TIMESTAMP

FORBIDDEN_CHARS = frozenset(".#$[]")


def normalise_path(path: str, *, allow_root: bool = False) -> str:
    if not isinstance(path, str):
        raise TypeError("record path must be a string")
    segments = [segment for segment in path.strip().strip("/").split("/")]
    if segments == [""]:
        if allow_root:
            return ""
        raise ValueError("record path must not be empty")
    for segment in segments:
        if not segment or segment != segment.strip():
            raise ValueError(f"invalid record path: {path!r}")
        if FORBIDDEN_CHARS.intersection(segment):
            raise ValueError(f"record path segment {segment!r} contains a forbidden character")
    return "/".join(segments)


def is_key_segment(value: object) -> bool:
    """True when ``value`` can be used as a single path segment as-is."""

    return (
        isinstance(value, str)
        and bool(value)
        and value == value.strip()
        and "/" not in value
        and not FORBIDDEN_CHARS.intersection(value)
    )


def join_path(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


def ancestors(path: str) -> list[str]:
    segments = path.split("/")
    return ["/".join(segments[:idx]) for idx in range(1, len(segments))]


def subtree_bounds(path: str) -> tuple[str, str]:
    # "/" sorts directly before "0", so (p + "/", p + "0") spans every descendant.
    return path + "/", path + "0"


def overlapping(paths: Sequence[str]) -> tuple[str, str] | None:
    ordered = sorted(paths)
    for current, following in zip(ordered, ordered[1:]):
        if current == "" or following == current or following.startswith(current + "/"):
            return current, following
    return None


def _resolve(value: Any, now_ms: int) -> Any:
    if value is SERVER_TIMESTAMP:
        return now_ms
    if isinstance(value, Mapping):
        return {str(key): _resolve(item, now_ms) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve(item, now_ms) for item in value]
    return value


def flatten(path: str, value: Any, now_ms: int) -> list[tuple[str, str]]:
    """Return the leaf rows that represent ``value`` stored at ``path``.

    Empty mappings and ``None`` produce no rows, so writing them deletes.
    """

    rows: list[tuple[str, str]] = []
    if value is None:
        return rows
    if isinstance(value, Mapping):
        for key, item in value.items():
            key = str(key)
            if not key or FORBIDDEN_CHARS.intersection(key) or "/" in key:
                raise ValueError(f"invalid record key: {key!r}")
            child = f"{path}/{key}" if path else key
            rows.extend(flatten(child, item, now_ms))
        return rows
    if not path:
        raise ValueError("cannot store a scalar at the root")
    rows.append((path, json.dumps(_resolve(value, now_ms), ensure_ascii=False)))
    return rows


def assemble(path: str, rows: Iterable[tuple[str, str]]) -> Any:
    """Rebuild the value stored at ``path`` from its leaf rows."""

    root: dict[str, Any] = {}
    prefix = path + "/" if path else ""
    for row_path, raw in rows:
        leaf = json.loads(raw)
        if row_path == path:
            return leaf
        relative = row_path[len(prefix):]
        node = root
        parts = relative.split("/")
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = leaf
    return root or None


def canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


__all__ = [
    "ancestors",
    "assemble",
    "canonical",
    "flatten",
    "is_key_segment",
    "join_path",
    "normalise_path",
    "overlapping",
    "subtree_bounds",
]
