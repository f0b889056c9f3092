"""Shared library backed by the record store and the asset store."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from ..db.repo.interfaces import ABORT, SERVER_TIMESTAMP, Subscription
from ..db.repo.paths import is_key_segment
from ..errors import NotFoundError
from ..image.codec import fetch_image_bytes, is_data_uri
from .archival import RelocationOutcome, archive_changes, relocate_asset
from .backends import CloudBackend
from .models import Expression, expressions_from_snapshot

logger = logging.getLogger(__name__)


class CloudLibrary:
    def __init__(self, backend: CloudBackend) -> None:
        self.backend = backend

    @property
    def records(self):
        return self.backend.records

    @property
    def assets(self):
        return self.backend.assets

    async def list(self) -> List[Expression]:
        return expressions_from_snapshot(await self.records.get(self.backend.live_path))

    async def list_deleted(self) -> List[Expression]:
        return expressions_from_snapshot(await self.records.get(self.backend.deleted_path))

    async def get(self, expression_id: str) -> Optional[Expression]:
        if not is_key_segment(expression_id):
            return None
        raw = await self.records.get(self.backend.live_record_path(expression_id))
        if not isinstance(raw, dict):
            return None
        return Expression.from_record(raw, fallback_id=expression_id)

    async def add(self, expression: Expression) -> Expression:
        """Upload the image, then write the record pointing at it.

        A failed upload writes nothing. A failed record write removes the
        asset it just uploaded before re-raising.
        """

        storage_path = self.backend.live_asset_path(expression.id)
        if is_data_uri(expression.image):
            payload: Any = expression.image
        else:
            payload = await asyncio.to_thread(fetch_image_bytes, expression.image)
        url = await self.assets.upload(storage_path, payload)
        stored = expression.relocated(url, storage_path)
        record = stored.to_record()
        record["createdAt"] = SERVER_TIMESTAMP
        try:
            await self.records.set(self.backend.live_record_path(stored.id), record)
        except Exception:
            try:
                await self.assets.delete(storage_path)
            except Exception as cleanup_exc:
                logger.warning("Could not remove orphaned asset %s: %s", storage_path, cleanup_exc)
            raise
        logger.info("saved expression %s to library %s", stored.id, self.backend.key)
        return stored

    async def update(self, expression: Expression) -> Expression:
        """Replace a live record; ids that are gone raise ``NotFoundError``.

        The existence check and the write happen in one transaction, so an
        update racing a delete from another session never revives the entry.
        """

        record = expression.to_record()

        def replace(current: Any) -> Any:
            return ABORT if not isinstance(current, dict) else record

        result = await self.records.transaction(self.backend.live_record_path(expression.id), replace)
        if not result.committed:
            raise NotFoundError(f"No expression with id {expression.id}.")
        return expression

    async def delete(self, expression_id: str) -> Optional[RelocationOutcome]:
        current = await self.get(expression_id)
        if current is None:
            logger.debug("expression %s already gone from library %s", expression_id, self.backend.key)
            return None
        outcome = await relocate_asset(self.backend, current)
        await self.records.update(archive_changes(self.backend, [outcome]))
        logger.info("archived expression %s", expression_id)
        return outcome

    async def clear(self) -> List[RelocationOutcome]:
        """Archive every expression listed at the start of the call.

        The final update drops the whole live subtree, so an expression another
        session adds while the assets are being moved is removed without an
        archived copy.
        """

        current = await self.list()
        if not current:
            return []
        outcomes = list(await asyncio.gather(*(relocate_asset(self.backend, item) for item in current)))
        await self.records.update(archive_changes(self.backend, outcomes, drop_live_subtree=True))
        failed = sum(1 for outcome in outcomes if outcome.warning is not None)
        logger.info(
            "archived %d expressions from library %s (%d asset moves failed)",
            len(outcomes),
            self.backend.key,
            failed,
        )
        return outcomes

    def subscribe(
        self,
        on_change: Callable[[List[Expression]], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> Subscription:
        return self.records.subscribe(
            self.backend.live_path,
            lambda snapshot: on_change(expressions_from_snapshot(snapshot)),
            on_error,
        )


__all__ = ["CloudLibrary"]
