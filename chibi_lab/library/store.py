"""Mode-transparent facade over the local and cloud libraries.

Observers always receive the full collection, favourites first, whether the
change came from this session or from another writer sharing the library.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional, Union

from ..errors import NotFoundError
from .backends import CloudBackend, LibraryBackend, LocalBackend
from .cloud import CloudLibrary
from .local import LocalLibrary
from .models import Expression, favorites_first

logger = logging.getLogger(__name__)

Observer = Callable[[List[Expression]], None]
ErrorObserver = Callable[[BaseException], None]


class _LocalSubscription:
    def __init__(self, store: "LibraryStore", observer: Observer) -> None:
        self._store = store
        self._observer = observer
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._observers.remove(self._observer)


class LibraryStore:
    def __init__(self, backend: LibraryBackend) -> None:
        self.backend = backend
        self._impl: Union[LocalLibrary, CloudLibrary]
        if isinstance(backend, LocalBackend):
            self._impl = LocalLibrary(backend.state)
        elif isinstance(backend, CloudBackend):
            self._impl = CloudLibrary(backend)
        else:
            raise TypeError(f"unsupported library backend: {type(backend).__name__}")
        self._observers: List[Observer] = []

    @property
    def mode(self) -> str:
        return self.backend.mode

    @property
    def is_cloud(self) -> bool:
        return isinstance(self.backend, CloudBackend)

    @property
    def library_key(self) -> Optional[str]:
        return self.backend.key if isinstance(self.backend, CloudBackend) else None

    async def list(self) -> List[Expression]:
        return favorites_first(await self._impl.list())

    async def list_deleted(self) -> List[Expression]:
        if isinstance(self._impl, CloudLibrary):
            return await self._impl.list_deleted()
        return []

    async def find(self, expression_id: str) -> Expression:
        for item in await self._impl.list():
            if item.id == expression_id:
                return item
        raise NotFoundError(f"No expression with id {expression_id}.")

    async def add(self, expression: Expression) -> Expression:
        stored = await self._impl.add(expression)
        await self._publish()
        return stored

    async def update(self, expression: Expression) -> Expression:
        stored = await self._impl.update(expression)
        await self._publish()
        return stored

    async def rename(self, expression_id: str, name: str) -> Expression:
        current = await self.find(expression_id)
        return await self.update(current.renamed(name.strip() or current.name))

    async def toggle_favorite(self, expression_id: str) -> Expression:
        current = await self.find(expression_id)
        return await self.update(current.toggled_favorite())

    async def delete(self, expression_id: str):
        """Remove one expression; in cloud mode returns its ``RelocationOutcome``."""

        outcome = await self._impl.delete(expression_id)
        await self._publish()
        return outcome

    async def clear(self):
        outcomes = await self._impl.clear()
        await self._publish()
        return outcomes

    def subscribe(self, observer: Observer, on_error: Optional[ErrorObserver] = None):
        """Deliver the collection now and after every change until closed.

        Cloud subscriptions are driven by the record store and see writes
        from every session sharing the key. Local ones fire after this
        store's own mutations.
        """

        if isinstance(self._impl, CloudLibrary):
            return self._impl.subscribe(lambda items: observer(favorites_first(items)), on_error)
        self._observers.append(observer)
        handle = _LocalSubscription(self, observer)
        observer(favorites_first(self._impl.snapshot()))
        return handle

    async def _publish(self) -> None:
        if not self._observers or isinstance(self._impl, CloudLibrary):
            return
        items = favorites_first(await self._impl.list())
        for observer in list(self._observers):
            observer(items)


@asynccontextmanager
async def open_library(
    backend: LibraryBackend,
    observer: Optional[Observer] = None,
    on_error: Optional[ErrorObserver] = None,
) -> AsyncIterator[LibraryStore]:
    """Bind a store to ``backend`` for the lifetime of the block.

    The subscription is disposed on exit, so switching modes is a matter of
    leaving one block and entering another.
    """

    store = LibraryStore(backend)
    subscription = store.subscribe(observer, on_error) if observer is not None else None
    logger.debug("opened %s library", store.mode)
    try:
        yield store
    finally:
        if subscription is not None:
            subscription.close()


__all__ = ["LibraryStore", "open_library"]
