"""Soft-delete protocol: move a record and its asset from live to deleted.

Phase one relocates the asset and reports failure as a warning value.
Phase two always runs and commits the record move as one multi-path update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from ..db.repo.interfaces import SERVER_TIMESTAMP
from ..errors import AssetRelocationFailed
from .backends import CloudBackend
from .models import Expression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelocationOutcome:
    expression: Expression
    warning: Optional[AssetRelocationFailed] = None

    @property
    def relocated(self) -> bool:
        return self.warning is None and bool(self.expression.storage_path)


async def relocate_asset(backend: CloudBackend, expression: Expression) -> RelocationOutcome:
    """Copy the asset to the archive path, then delete the original.

    The asset is read through the store by its path, not through its public
    URL. Any failure leaves the expression's image and storage path as they
    were.
    """

    if not expression.storage_path:
        return RelocationOutcome(expression)

    target = backend.archived_asset_path(expression.id)
    try:
        data = await backend.assets.download(expression.storage_path)
        new_url = await backend.assets.upload(target, data)
        await backend.assets.delete(expression.storage_path)
    except Exception as exc:
        warning = AssetRelocationFailed(expression.id, exc)
        logger.error(
            "Failed to move stored image for %s; archiving the record anyway: %s",
            expression.id,
            exc,
        )
        return RelocationOutcome(expression, warning)
    return RelocationOutcome(expression.relocated(new_url, target))


def archived_record(expression: Expression) -> Dict[str, Any]:
    record = expression.to_record()
    record["deletedAt"] = SERVER_TIMESTAMP
    return record


def archive_changes(
    backend: CloudBackend,
    outcomes: Iterable[RelocationOutcome],
    *,
    drop_live_subtree: bool = False,
) -> Dict[str, Any]:
    """Build the multi-path update committing ``outcomes`` to the deleted namespace."""

    changes: Dict[str, Any] = {}
    if drop_live_subtree:
        changes[backend.live_path] = None
    for outcome in outcomes:
        expression = outcome.expression
        if not drop_live_subtree:
            changes[backend.live_record_path(expression.id)] = None
        changes[backend.deleted_record_path(expression.id)] = archived_record(expression)
    return changes


__all__ = ["RelocationOutcome", "archive_changes", "archived_record", "relocate_asset"]
