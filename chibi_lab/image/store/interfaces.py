from __future__ import annotations

from typing import Protocol, Union

AssetPayload = Union[bytes, str]


class AssetStoreProtocol(Protocol):
    async def upload(self, path: str, payload: AssetPayload) -> str:
        """Store ``payload`` (raw bytes or a data URI) and return its durable URL."""

    async def download(self, path: str) -> bytes:
        ...

    async def delete(self, path: str) -> None:
        ...

    def url_for(self, path: str) -> str:
        ...
