"""The two persistence substrates a library session can be bound to.

A session builds exactly one of these and never switches it in place;
changing mode means building a new ``LibraryStore``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Union

from ..db.repo.interfaces import SERVER_TIMESTAMP, RecordStoreProtocol
from ..db.repo.paths import is_key_segment, join_path
from ..errors import NotFoundError, ValidationRejectedError
from ..image.store.interfaces import AssetStoreProtocol
from ..state import LocalState
from ..tokens.meter import DEFAULT_NAMESPACE

logger = logging.getLogger(__name__)

LIVE_ASSET_PREFIX = "expressions"
ARCHIVED_ASSET_PREFIX = "deleted_expressions"


@dataclass(frozen=True)
class LocalBackend:
    state: LocalState

    mode = "local"


@dataclass(frozen=True)
class CloudBackend:
    key: str
    records: RecordStoreProtocol
    assets: AssetStoreProtocol
    namespace: str = DEFAULT_NAMESPACE

    mode = "cloud"

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", validate_library_key(self.key))

    @property
    def library_path(self) -> str:
        return join_path(self.namespace, "libraries", self.key)

    @property
    def live_path(self) -> str:
        return join_path(self.library_path, "expressions")

    @property
    def deleted_path(self) -> str:
        return join_path(self.library_path, "deleted_expressions")

    def live_record_path(self, expression_id: str) -> str:
        return join_path(self.live_path, _expression_key(expression_id))

    def deleted_record_path(self, expression_id: str) -> str:
        return join_path(self.deleted_path, _expression_key(expression_id))

    def live_asset_path(self, expression_id: str) -> str:
        return f"{LIVE_ASSET_PREFIX}/{self.key}/{_expression_key(expression_id)}.png"

    def archived_asset_path(self, expression_id: str) -> str:
        return f"{ARCHIVED_ASSET_PREFIX}/{self.key}/{_expression_key(expression_id)}.png"


LibraryBackend = Union[LocalBackend, CloudBackend]


def _expression_key(expression_id: str) -> str:
    if not is_key_segment(expression_id):
        raise NotFoundError(f"No expression with id {expression_id}.")
    return expression_id


def validate_library_key(key: str) -> str:
    cleaned = key.strip() if isinstance(key, str) else ""
    if not is_key_segment(cleaned):
        raise ValidationRejectedError("Please enter a valid library key.")
    return cleaned


async def create_library_key(
    records: RecordStoreProtocol,
    *,
    namespace: str = DEFAULT_NAMESPACE,
) -> str:
    """Mint a new shared library and stamp its creation time."""

    key = f"lib-{uuid.uuid4().hex[:20]}"
    await records.set(join_path(namespace, "libraries", key, "createdAt"), SERVER_TIMESTAMP)
    logger.info("created cloud library %s", key)
    return key


__all__ = [
    "ARCHIVED_ASSET_PREFIX",
    "CloudBackend",
    "LIVE_ASSET_PREFIX",
    "LibraryBackend",
    "LocalBackend",
    "create_library_key",
    "validate_library_key",
]
