"""One user's working session: token, library mode, base character.

The session owns exactly one ``LibraryStore`` at a time. Choosing another
mode disposes the current store's subscription before the new one is built.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Optional

from .audit import UploadAuditLog
from .config import AppConfig
from .db.repo import SQLiteRecordStore
from .db.repo.interfaces import RecordStoreProtocol, Subscription
from .errors import ConnectionFailedError, ValidationRejectedError
from .image.codec import fetch_image_bytes, is_data_uri, sniff_mime_type, to_data_uri
from .image.gemini.interfaces import GenerationBackendProtocol
from .image.store import FilesystemAssetStore
from .image.store.interfaces import AssetStoreProtocol
from .library.backends import CloudBackend, LibraryBackend, LocalBackend, create_library_key
from .library.models import BaseCharacter, Expression
from .library.store import LibraryStore
from .orchestrator import GenerationOrchestrator, GenerationOutcome
from .state import (
    BASE_CHARACTER_IMAGE,
    BASE_CHARACTER_NAME,
    DEFAULT_BASE_NAME,
    LIBRARY_KEY,
    LocalState,
)
from .tokens.gate import TokenGate
from .tokens.meter import TokenMeter

logger = logging.getLogger(__name__)

PROMOTE_FAILED_MESSAGE = "Could not load the selected image to use as a base."


class Session:
    def __init__(
        self,
        config: AppConfig,
        backend: Optional[GenerationBackendProtocol] = None,
        *,
        records: Optional[RecordStoreProtocol] = None,
        assets: Optional[AssetStoreProtocol] = None,
        state: Optional[LocalState] = None,
        watch: bool = False,
    ) -> None:
        self.config = config
        self.records = records or SQLiteRecordStore(
            Path(config.storage.database),
            poll_interval=config.sync.poll_interval,
            max_retries=config.tokens.max_retries,
        )
        self.assets = assets or FilesystemAssetStore(Path(config.storage.assets_dir))
        self.state = state or LocalState(Path(config.storage.state_file))
        self.namespace = config.storage.namespace
        self.watch = watch

        self.gate = TokenGate(TokenMeter(self.records, namespace=self.namespace), self.state)
        self.audit = UploadAuditLog(self.records, self.assets, namespace=self.namespace)
        self.library = LibraryStore(self._backend_from_state())
        self.orchestrator = GenerationOrchestrator(
            backend, self.gate, self.state, library=self.library, audit=self.audit
        )
        self.expressions: List[Expression] = []
        self.library_error: Optional[str] = None
        self._subscription: Optional[Subscription] = None

    async def __aenter__(self) -> "Session":
        await self.gate.refresh()
        self._bind(self.library)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._release()

    # ------------------------------------------------------------------
    # Library mode
    def _backend_from_state(self) -> LibraryBackend:
        key = self.state.library_key
        if key:
            return CloudBackend(key, self.records, self.assets, namespace=self.namespace)
        return LocalBackend(self.state)

    def _on_library_change(self, items: List[Expression]) -> None:
        self.expressions = items
        self.library_error = None

    def _on_library_error(self, exc: BaseException) -> None:
        logger.error("Error fetching library: %s", exc)
        self.library_error = "Could not load library. Please check the key and your connection."

    def _bind(self, store: LibraryStore) -> None:
        self._release()
        self.library = store
        self.orchestrator.library = store
        self.expressions = []
        if self.watch:
            self._subscription = store.subscribe(self._on_library_change, self._on_library_error)

    def _release(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    @property
    def mode(self) -> str:
        return self.library.mode

    def use_local(self) -> LibraryStore:
        self.state.remove(LIBRARY_KEY)
        self._bind(LibraryStore(LocalBackend(self.state)))
        return self.library

    def use_library_key(self, key: str) -> LibraryStore:
        backend = CloudBackend(key, self.records, self.assets, namespace=self.namespace)
        self.state.set(LIBRARY_KEY, backend.key)
        self._bind(LibraryStore(backend))
        logger.info("using cloud library %s", backend.key)
        return self.library

    async def create_cloud_library(self) -> LibraryStore:
        try:
            key = await create_library_key(self.records, namespace=self.namespace)
        except ConnectionFailedError:
            self.library_error = "Could not create a new library. Please try again."
            raise
        return self.use_library_key(key)

    def leave_cloud(self) -> LibraryStore:
        return self.use_local()

    async def refresh_library(self) -> List[Expression]:
        self.expressions = await self.library.list()
        return self.expressions

    # ------------------------------------------------------------------
    # Base character
    @property
    def base_character(self) -> Optional[BaseCharacter]:
        return self.orchestrator.base_character()

    def confirm_base(self, candidate: GenerationOutcome | str, name: Optional[str] = None) -> BaseCharacter:
        if isinstance(candidate, GenerationOutcome):
            image, default_name = candidate.image, candidate.name
        else:
            image, default_name = candidate, DEFAULT_BASE_NAME
        chosen = (name or "").strip() or default_name or DEFAULT_BASE_NAME
        self.state.set(BASE_CHARACTER_IMAGE, image)
        self.state.set(BASE_CHARACTER_NAME, chosen)
        return BaseCharacter(image=image, name=chosen)

    def rename_base(self, name: str) -> BaseCharacter:
        base = self.base_character
        if base is None:
            raise ValidationRejectedError("There is no base character to rename.")
        chosen = name.strip() or base.name
        self.state.set(BASE_CHARACTER_NAME, chosen)
        return BaseCharacter(image=base.image, name=chosen)

    async def promote_to_base(self, expression_id: str) -> BaseCharacter:
        """Replace the base image with a copy of a library expression's pixels."""

        expression = await self.library.find(expression_id)
        if is_data_uri(expression.image):
            image = expression.image
        else:
            try:
                data = await asyncio.to_thread(fetch_image_bytes, expression.image)
            except (ConnectionFailedError, ValueError) as exc:
                logger.error("Failed to set new base image: %s", exc)
                raise ConnectionFailedError(PROMOTE_FAILED_MESSAGE) from exc
            image = to_data_uri(data, sniff_mime_type(data) or "image/png")
        self.state.set(BASE_CHARACTER_IMAGE, image)
        name = self.state.get(BASE_CHARACTER_NAME) or DEFAULT_BASE_NAME
        return BaseCharacter(image=image, name=str(name))

    def reset_base(self) -> None:
        self.state.remove(BASE_CHARACTER_IMAGE)
        self.state.remove(BASE_CHARACTER_NAME)


__all__ = ["Session"]
