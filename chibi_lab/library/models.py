from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_expression_id() -> str:
    """``{epoch_ms}-{9 base36 chars}``: time ordered, collision resistant."""

    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True)
class Expression:
    """One generated image of the base character, the unit of a library."""

    id: str
    name: str
    image: str
    storage_path: str = ""
    is_favorite: bool = False
    created_at: Optional[int] = None
    deleted_at: Optional[int] = None

    @classmethod
    def create(cls, name: str, image: str) -> "Expression":
        return cls(id=new_expression_id(), name=name, image=image)

    @classmethod
    def from_record(cls, raw: Mapping[str, Any], *, fallback_id: str = "") -> "Expression":
        identifier = str(raw.get("id") or fallback_id)
        if not identifier:
            raise ValueError("expression record missing 'id'")
        created = raw.get("createdAt")
        deleted = raw.get("deletedAt")
        return cls(
            id=identifier,
            name=str(raw.get("name") or ""),
            image=str(raw.get("image") or ""),
            storage_path=str(raw.get("storagePath") or ""),
            is_favorite=bool(raw.get("isFavorite", False)),
            created_at=int(created) if isinstance(created, (int, float)) else None,
            deleted_at=int(deleted) if isinstance(deleted, (int, float)) else None,
        )

    def to_record(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "image": self.image,
            "storagePath": self.storage_path,
            "isFavorite": self.is_favorite,
        }
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        if self.deleted_at is not None:
            data["deletedAt"] = self.deleted_at
        return data

    def renamed(self, name: str) -> "Expression":
        return replace(self, name=name)

    def toggled_favorite(self) -> "Expression":
        return replace(self, is_favorite=not self.is_favorite)

    def relocated(self, image: str, storage_path: str) -> "Expression":
        return replace(self, image=image, storage_path=storage_path)


@dataclass(frozen=True)
class BaseCharacter:
    image: str
    name: str = "Base Character"


def favorites_first(expressions: Iterable[Expression]) -> List[Expression]:
    """Stable partition: favourites keep their relative order ahead of the rest."""

    items = list(expressions)
    return [item for item in items if item.is_favorite] + [item for item in items if not item.is_favorite]


def expressions_from_snapshot(snapshot: Any) -> List[Expression]:
    """Decode a ``{id: record}`` subtree in store (key) order."""

    if not isinstance(snapshot, Mapping):
        return []
    result: List[Expression] = []
    for key in sorted(snapshot):
        raw = snapshot[key]
        if isinstance(raw, Mapping):
            result.append(Expression.from_record(raw, fallback_id=str(key)))
    return result


__all__ = [
    "BaseCharacter",
    "Expression",
    "expressions_from_snapshot",
    "favorites_first",
    "new_expression_id",
]
